"""
Time-based subscription transitions, run periodically by
scripts/expire_subscriptions.py.

Each subscription is moved in its own transaction; one failure is logged and
counted without undoing the others.
"""
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional

from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.errors import SubscriptionServiceError
from app.dal import subscription_dal
from app.services.subscription_service import SubscriptionService

logger = logging.getLogger(__name__)

JOB_ACTOR = "system:expire_subscriptions"


@dataclass
class LifecycleRunResult:
    expired_trials: int = 0
    expired_grace_periods: int = 0
    finalized_cancellations: int = 0
    failed: List[uuid.UUID] = field(default_factory=list)

    @property
    def total(self) -> int:
        return self.expired_trials + self.expired_grace_periods + self.finalized_cancellations


def expire_lapsed_subscriptions(
    db: Session,
    now: datetime = None,
    organization_id: Optional[uuid.UUID] = None,
) -> LifecycleRunResult:
    """
    Expire trials past trial_ends_at, expire suspensions past
    grace_period_ends_at and cancel subscriptions scheduled to cancel at a
    period end that has passed.
    """
    now = now or datetime.utcnow()
    service = SubscriptionService(db, clock=lambda: now)
    result = LifecycleRunResult()

    for subscription in subscription_dal.find_expired_trials(db, now, organization_id):
        if _apply(service.expire_subscription, subscription, result):
            result.expired_trials += 1

    for subscription in subscription_dal.find_grace_periods_ended(db, now, organization_id):
        if _apply(service.expire_subscription, subscription, result):
            result.expired_grace_periods += 1

    for subscription in subscription_dal.find_due_period_end_cancellations(db, now, organization_id):
        if _apply(service.finalize_scheduled_cancellation, subscription, result):
            result.finalized_cancellations += 1

    logger.info(
        f"[LIFECYCLE] Run at {now.isoformat()}: {result.expired_trials} trials expired, "
        f"{result.expired_grace_periods} grace periods expired, "
        f"{result.finalized_cancellations} scheduled cancellations finalized, {len(result.failed)} failed"
    )
    return result


def _apply(operation, subscription, result: LifecycleRunResult) -> bool:
    subscription_id = subscription.id
    try:
        operation(subscription_id, subscription.organization_id, actor_id=JOB_ACTOR)
    except SubscriptionServiceError as e:
        logger.error(f"[LIFECYCLE] Could not transition subscription {subscription_id}: {e.message}")
        result.failed.append(subscription_id)
        return False
    except Exception as e:
        # Session was rolled back by transaction(); keep going with the next row
        logger.exception(f"[LIFECYCLE] Error transitioning subscription {subscription_id}: {e}")
        result.failed.append(subscription_id)
        return False
    return True


def find_grace_period_reminders(
    db: Session,
    now: datetime = None,
    days_threshold: int = None,
    organization_id: Optional[uuid.UUID] = None,
):
    """Subscriptions whose grace period ends within `days_threshold` days."""
    now = now or datetime.utcnow()
    if days_threshold is None:
        days_threshold = settings.GRACE_PERIOD_REMINDER_DAYS
    subscriptions = subscription_dal.find_grace_period_ending_soon(db, now, days_threshold, organization_id)
    for subscription in subscriptions:
        logger.info(
            f"[LIFECYCLE] Grace period for subscription {subscription.id} "
            f"(cabinet {subscription.cabinet_id}) ends {subscription.grace_period_ends_at}"
        )
    return subscriptions

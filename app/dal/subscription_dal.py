"""
Tenant-scoped data access for subscriptions.

Every query filters by organization_id; a subscription id or cabinet id from
another organization behaves exactly like a missing row.
"""
import uuid
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from sqlalchemy import and_
from sqlalchemy.orm import Session, selectinload

from app.models.subscription import Subscription, SubscriptionStatus
from app.models.subscription_module import SubscriptionModule


def get_subscription_by_id(
        db: Session,
        subscription_id: uuid.UUID,
        organization_id: uuid.UUID,
        include_modules: bool = True) -> Optional[Subscription]:
    query = db.query(Subscription).filter(
        Subscription.id == subscription_id,
        Subscription.organization_id == organization_id,
    )
    if include_modules:
        query = query.options(selectinload(Subscription.modules))
    return query.first()


def get_subscription_by_cabinet_id(
        db: Session,
        cabinet_id: uuid.UUID,
        organization_id: uuid.UUID,
        include_modules: bool = True) -> Optional[Subscription]:
    query = db.query(Subscription).filter(
        Subscription.cabinet_id == cabinet_id,
        Subscription.organization_id == organization_id,
    )
    if include_modules:
        query = query.options(selectinload(Subscription.modules))
    return query.first()


def list_subscriptions(
        db: Session,
        organization_id: uuid.UUID,
        status: Optional[SubscriptionStatus] = None,
        include_modules: bool = False) -> List[Subscription]:
    """Newest first."""
    query = db.query(Subscription).filter(Subscription.organization_id == organization_id)
    if status:
        query = query.filter(Subscription.status == status)
    if include_modules:
        query = query.options(selectinload(Subscription.modules))
    return query.order_by(Subscription.created_at.desc()).all()


def update_subscription(
        db: Session,
        subscription: Subscription,
        update_data: Dict[str, Any]) -> Subscription:
    for key, value in update_data.items():
        if not hasattr(subscription, key):
            raise AttributeError(f"Subscription has no field {key!r}")
        setattr(subscription, key, value)
    db.flush()
    return subscription


def get_active_module_codes_by_cabinet(
        db: Session,
        cabinet_id: uuid.UUID,
        organization_id: uuid.UUID) -> List[str]:
    """Active module codes of a cabinet whose subscription is TRIAL or ACTIVE."""
    rows = (
        db.query(SubscriptionModule.module_code)
        .join(Subscription, SubscriptionModule.subscription_id == Subscription.id)
        .filter(
            Subscription.cabinet_id == cabinet_id,
            Subscription.organization_id == organization_id,
            Subscription.status.in_([SubscriptionStatus.TRIAL, SubscriptionStatus.ACTIVE]),
            SubscriptionModule.is_active.is_(True),
        )
        .order_by(SubscriptionModule.module_code)
        .all()
    )
    return [row[0] for row in rows]


# Batch lookups for the maintenance job: scoped to one tenant only when
# organization_id is given.

def find_expired_trials(
        db: Session,
        now: datetime,
        organization_id: Optional[uuid.UUID] = None) -> List[Subscription]:
    query = db.query(Subscription).filter(
        Subscription.status == SubscriptionStatus.TRIAL,
        Subscription.trial_ends_at.isnot(None),
        Subscription.trial_ends_at < now,
    )
    if organization_id:
        query = query.filter(Subscription.organization_id == organization_id)
    return query.all()


def find_grace_periods_ended(
        db: Session,
        now: datetime,
        organization_id: Optional[uuid.UUID] = None) -> List[Subscription]:
    query = db.query(Subscription).filter(
        Subscription.status == SubscriptionStatus.SUSPENDED,
        Subscription.grace_period_ends_at.isnot(None),
        Subscription.grace_period_ends_at <= now,
    )
    if organization_id:
        query = query.filter(Subscription.organization_id == organization_id)
    return query.all()


def find_grace_period_ending_soon(
        db: Session,
        now: datetime,
        days_threshold: int = 3,
        organization_id: Optional[uuid.UUID] = None) -> List[Subscription]:
    threshold = now + timedelta(days=days_threshold)
    query = db.query(Subscription).filter(
        Subscription.in_grace_period.is_(True),
        Subscription.grace_period_ends_at > now,
        Subscription.grace_period_ends_at <= threshold,
    )
    if organization_id:
        query = query.filter(Subscription.organization_id == organization_id)
    return query.order_by(Subscription.grace_period_ends_at).all()


def find_due_period_end_cancellations(
        db: Session,
        now: datetime,
        organization_id: Optional[uuid.UUID] = None) -> List[Subscription]:
    query = db.query(Subscription).filter(
        and_(
            Subscription.status.in_([SubscriptionStatus.ACTIVE, SubscriptionStatus.SUSPENDED]),
            Subscription.cancel_at_period_end.is_(True),
            Subscription.current_period_end.isnot(None),
            Subscription.current_period_end < now,
        )
    )
    if organization_id:
        query = query.filter(Subscription.organization_id == organization_id)
    return query.all()

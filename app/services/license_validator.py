"""
License validation: may a cabinet use a module right now?

`validate_license` is a pure decision over an already-loaded subscription and
never touches the database, so it is safe to call from any thread.
`LicenseService` adds the tenant-scoped lookup and the require_* helpers used
by request guards.
"""
import logging
import math
import uuid
from datetime import datetime
from typing import Iterable, List, Optional, Tuple

from sqlalchemy.orm import Session

from app.core.errors import LicenseForbiddenError, PaymentRequiredError
from app.dal import subscription_dal
from app.models.subscription import Subscription, SubscriptionStatus
from app.models.subscription_module import SubscriptionModule
from app.schemas.license import LicenseDenialReason, LicenseValidationResult
from app.services.module_catalog import normalize_code

logger = logging.getLogger(__name__)

R = LicenseDenialReason

_MESSAGES = {
    R.OK: "Access granted",
    R.NO_SUBSCRIPTION: "No subscription found for this cabinet",
    R.TRIAL_EXPIRED: "Your trial has ended. Please activate your subscription to continue.",
    R.GRACE_PERIOD_ENDED: "Your subscription payment has failed and the grace period has ended. Please update your payment method.",
    R.SUBSCRIPTION_EXPIRED: "Your subscription has expired. Please renew to continue using this feature.",
    R.SUBSCRIPTION_CANCELLED: "Your subscription has been cancelled. Please renew to continue using this feature.",
}

# Denials that a payment would fix, as opposed to a missing module
PAYMENT_REASONS = frozenset({R.TRIAL_EXPIRED, R.GRACE_PERIOD_ENDED, R.SUBSCRIPTION_EXPIRED, R.SUBSCRIPTION_CANCELLED})


def _days_until(moment: Optional[datetime], now: datetime) -> Optional[int]:
    if moment is None:
        return None
    seconds = (moment - now).total_seconds()
    return max(0, math.ceil(seconds / 86400))


def check_subscription_status(
    subscription: Subscription,
    now: datetime,
) -> Tuple[bool, LicenseDenialReason, Optional[datetime]]:
    """
    Returns (valid, reason, window_end) where window_end is the trial or grace
    period end that bounds access, if any.
    """
    status = subscription.status
    if status == SubscriptionStatus.TRIAL:
        if subscription.is_trial_expired(now):
            return False, R.TRIAL_EXPIRED, subscription.trial_ends_at
        return True, R.OK, subscription.trial_ends_at
    if status == SubscriptionStatus.ACTIVE:
        return True, R.OK, None
    if status == SubscriptionStatus.SUSPENDED:
        grace_end = subscription.grace_period_ends_at
        if grace_end and now < grace_end:
            return True, R.OK, grace_end
        return False, R.GRACE_PERIOD_ENDED, grace_end
    if status == SubscriptionStatus.CANCELLED:
        return False, R.SUBSCRIPTION_CANCELLED, None
    return False, R.SUBSCRIPTION_EXPIRED, None


def find_subscription_module(subscription: Subscription, module_ref: str) -> Optional[SubscriptionModule]:
    """Look a module row up by code (case-insensitive) or by module id."""
    code = normalize_code(module_ref)
    for row in subscription.modules:
        if row.module_code and normalize_code(row.module_code) == code:
            return row
        if str(row.module_id).lower() == str(module_ref).strip().lower():
            return row
    return None


def validate_license(
    subscription: Subscription,
    module_code: str,
    now: datetime = None,
) -> LicenseValidationResult:
    """
    Decide access for one module.

    1. Subscription status must be usable (TRIAL before trial end, ACTIVE,
       SUSPENDED inside the grace window).
    2. Only then is the module row looked up; it must exist and be active.
    Access requires both.
    """
    now = now or datetime.utcnow()
    status_valid, reason, window_end = check_subscription_status(subscription, now)

    module_active = False
    if status_valid:
        row = find_subscription_module(subscription, module_code)
        module_active = bool(row and row.is_active)
        if not module_active:
            reason = R.MODULE_NOT_ACTIVE

    if reason == R.MODULE_NOT_ACTIVE:
        message = f"Module '{normalize_code(module_code)}' is required but not enabled in your subscription"
    else:
        message = _MESSAGES[reason]

    in_grace = subscription.status == SubscriptionStatus.SUSPENDED and status_valid
    tracks_window = subscription.status in (SubscriptionStatus.TRIAL, SubscriptionStatus.SUSPENDED)
    return LicenseValidationResult(
        has_access=status_valid and module_active,
        module_code=normalize_code(module_code),
        subscription_status=subscription.status,
        status_valid=status_valid,
        module_active=module_active,
        is_trial=subscription.status == SubscriptionStatus.TRIAL,
        in_grace_period=in_grace,
        reason=reason,
        message=message,
        expires_at=window_end if tracks_window else None,
        days_until_expiry=_days_until(window_end, now) if tracks_window else None,
    )


def no_subscription_result(module_code: str) -> LicenseValidationResult:
    return LicenseValidationResult(
        has_access=False,
        module_code=normalize_code(module_code),
        reason=R.NO_SUBSCRIPTION,
        message=_MESSAGES[R.NO_SUBSCRIPTION],
    )


class LicenseService:
    """Tenant-scoped license checks for a cabinet."""

    def __init__(self, db: Session, clock=datetime.utcnow):
        self.db = db
        self.clock = clock

    def _load(self, cabinet_id: uuid.UUID, organization_id: uuid.UUID) -> Optional[Subscription]:
        return subscription_dal.get_subscription_by_cabinet_id(self.db, cabinet_id, organization_id)

    def validate_license(
        self,
        cabinet_id: uuid.UUID,
        organization_id: uuid.UUID,
        module_code: str,
    ) -> LicenseValidationResult:
        subscription = self._load(cabinet_id, organization_id)
        if subscription is None:
            result = no_subscription_result(module_code)
        else:
            result = validate_license(subscription, module_code, self.clock())

        log = logger.info if result.has_access else logger.warning
        log(
            f"[LICENSE] cabinet={cabinet_id} module={result.module_code} "
            f"has_access={result.has_access} status={result.subscription_status.value if result.subscription_status else None} "
            f"reason={result.reason.value}"
        )
        return result

    def require_module(
        self,
        cabinet_id: uuid.UUID,
        organization_id: uuid.UUID,
        module_code: str,
    ) -> LicenseValidationResult:
        """Raise PaymentRequiredError for lapsed subscriptions, LicenseForbiddenError otherwise."""
        result = self.validate_license(cabinet_id, organization_id, module_code)
        if result.has_access:
            return result
        error_cls = PaymentRequiredError if result.reason in PAYMENT_REASONS else LicenseForbiddenError
        raise error_cls(
            f"Access denied: {result.message}",
            context={
                "module_code": result.module_code,
                "reason": result.reason.value,
                "subscription_status": result.subscription_status,
            },
        )

    def get_available_modules(self, cabinet_id: uuid.UUID, organization_id: uuid.UUID) -> List[str]:
        """Active module codes, or an empty list when the subscription is not usable."""
        subscription = self._load(cabinet_id, organization_id)
        if subscription is None:
            return []
        status_valid, _, _ = check_subscription_status(subscription, self.clock())
        if not status_valid:
            return []
        return sorted(normalize_code(m.module_code) for m in subscription.modules if m.is_active)

    def get_missing_modules(
        self,
        cabinet_id: uuid.UUID,
        organization_id: uuid.UUID,
        required: Iterable[str],
    ) -> List[str]:
        available = set(self.get_available_modules(cabinet_id, organization_id))
        return [normalize_code(code) for code in required if normalize_code(code) not in available]

    def has_any_module(self, cabinet_id: uuid.UUID, organization_id: uuid.UUID, codes: Iterable[str]) -> bool:
        available = set(self.get_available_modules(cabinet_id, organization_id))
        return any(normalize_code(code) in available for code in codes)

    def has_all_modules(self, cabinet_id: uuid.UUID, organization_id: uuid.UUID, codes: Iterable[str]) -> bool:
        return not self.get_missing_modules(cabinet_id, organization_id, codes)

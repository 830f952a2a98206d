from pydantic import BaseModel
from typing import Optional
from datetime import datetime
from enum import Enum
from app.models.subscription import SubscriptionStatus


class LicenseDenialReason(str, Enum):
    OK = "OK"
    NO_SUBSCRIPTION = "NO_SUBSCRIPTION"
    TRIAL_EXPIRED = "TRIAL_EXPIRED"
    GRACE_PERIOD_ENDED = "GRACE_PERIOD_ENDED"
    SUBSCRIPTION_EXPIRED = "SUBSCRIPTION_EXPIRED"
    SUBSCRIPTION_CANCELLED = "SUBSCRIPTION_CANCELLED"
    MODULE_NOT_ACTIVE = "MODULE_NOT_ACTIVE"


class LicenseValidationResult(BaseModel):
    """Outcome of a license check for one cabinet and module."""
    has_access: bool
    module_code: str
    subscription_status: Optional[SubscriptionStatus] = None
    status_valid: bool = False
    module_active: bool = False
    is_trial: bool = False
    in_grace_period: bool = False
    reason: LicenseDenialReason
    message: str
    expires_at: Optional[datetime] = None  # end of the trial or grace window
    days_until_expiry: Optional[int] = None

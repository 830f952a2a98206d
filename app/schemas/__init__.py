from app.schemas.subscription import (
    CreateSubscriptionRequest, UpdateSubscriptionRequest,
    AddModulesRequest, RemoveModulesRequest,
    ActivateSubscriptionRequest, CancelSubscriptionRequest,
    SubscriptionResponse, SubscriptionModuleResponse,
)
from app.schemas.license import LicenseValidationResult, LicenseDenialReason

__all__ = [
    "CreateSubscriptionRequest", "UpdateSubscriptionRequest",
    "AddModulesRequest", "RemoveModulesRequest",
    "ActivateSubscriptionRequest", "CancelSubscriptionRequest",
    "SubscriptionResponse", "SubscriptionModuleResponse",
    "LicenseValidationResult", "LicenseDenialReason",
]

from app.models.subscription import Subscription, SubscriptionStatus, BillingCycle
from app.models.subscription_module import SubscriptionModule
from app.models.module import Module
from app.models.audit_log import AuditLog, AuditEventType

__all__ = [
    "Subscription", "SubscriptionStatus", "BillingCycle",
    "SubscriptionModule", "Module",
    "AuditLog", "AuditEventType",
]

from sqlalchemy import Column, String, DateTime, Enum as SQLEnum, Text
from sqlalchemy.dialects.postgresql import UUID
import uuid
from datetime import datetime
import enum
from app.db.session import Base


class AuditEventType(str, enum.Enum):
    """Subscription lifecycle events to audit"""
    SUBSCRIPTION_CREATED = "subscription_created"
    SUBSCRIPTION_ACTIVATED = "subscription_activated"
    SUBSCRIPTION_CANCELLED = "subscription_cancelled"
    CANCELLATION_SCHEDULED = "cancellation_scheduled"
    CANCELLATION_REVOKED = "cancellation_revoked"
    SUBSCRIPTION_SUSPENDED = "subscription_suspended"
    SUBSCRIPTION_REACTIVATED = "subscription_reactivated"
    SUBSCRIPTION_EXPIRED = "subscription_expired"
    BILLING_CYCLE_CHANGED = "billing_cycle_changed"
    MODULES_ADDED = "modules_added"
    MODULES_REMOVED = "modules_removed"


class AuditLog(Base):
    __tablename__ = "audit_logs"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    organization_id = Column(UUID(as_uuid=True), nullable=False, index=True)
    actor_id = Column(String, nullable=True)  # user or job that triggered the event
    event_type = Column(SQLEnum(AuditEventType, name="audit_event_type"), nullable=False, index=True)
    resource_type = Column(String, nullable=True)  # e.g. "subscription"
    resource_id = Column(String, nullable=True, index=True)
    details = Column(Text, nullable=True)  # JSON string with additional details
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False, index=True)

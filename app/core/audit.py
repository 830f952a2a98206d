"""
Audit logging for subscription lifecycle events
"""
from sqlalchemy.orm import Session
from app.models.audit_log import AuditLog, AuditEventType
from typing import Optional
import json
import uuid


def log_subscription_event(
    db: Session,
    event_type: AuditEventType,
    organization_id: uuid.UUID,
    subscription_id: uuid.UUID,
    actor_id: Optional[str] = None,
    details: Optional[dict] = None,
) -> AuditLog:
    """
    Record a subscription event in the audit log.

    The row joins the caller's transaction; it is committed or rolled back
    together with the change it describes.

    Args:
        db: Database session
        event_type: Type of lifecycle event
        organization_id: Organization ID
        subscription_id: Subscription the event belongs to
        actor_id: User or job that triggered the event
        details: Additional details (JSON-encoded)
    """
    audit_log = AuditLog(
        organization_id=organization_id,
        actor_id=actor_id,
        event_type=event_type,
        resource_type="subscription",
        resource_id=str(subscription_id),
        details=json.dumps(details, default=str) if details else None,
    )
    db.add(audit_log)
    return audit_log

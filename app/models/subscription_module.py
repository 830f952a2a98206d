from sqlalchemy import Column, String, Boolean, DateTime, Numeric, Text, ForeignKey, Enum as SQLEnum, UniqueConstraint
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship
from decimal import Decimal
from datetime import datetime
import uuid
from app.core.config import settings
from app.db.session import Base
from app.models.subscription import BillingCycle


class SubscriptionModule(Base):
    """
    A module licensed to a subscription.

    Rows are never deleted: removal flips is_active and stamps deactivated_at
    so the activation history stays auditable. Core rows stay active forever.
    """
    __tablename__ = "subscription_modules"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    organization_id = Column(UUID(as_uuid=True), nullable=False, index=True)
    subscription_id = Column(UUID(as_uuid=True), ForeignKey("subscriptions.id", ondelete="CASCADE"), nullable=False, index=True)
    module_id = Column(UUID(as_uuid=True), ForeignKey("modules.id"), nullable=False, index=True)
    module_code = Column(String(50), nullable=False, index=True)  # snapshot, used by license checks
    module_name = Column(String(100), nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)
    is_core = Column(Boolean, default=False, nullable=False)
    price = Column(Numeric(10, 2), default=Decimal("0.00"), nullable=False)  # price at activation for billing_cycle
    billing_cycle = Column(SQLEnum(BillingCycle, name="billing_cycle"), default=BillingCycle.MONTHLY, nullable=False)
    currency = Column(String(10), default=settings.DEFAULT_CURRENCY, nullable=False)
    activated_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    deactivated_at = Column(DateTime, nullable=True)
    deactivation_reason = Column(Text, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    subscription = relationship("Subscription", back_populates="modules")
    module = relationship("Module")

    __table_args__ = (
        UniqueConstraint("subscription_id", "module_id", name="uq_subscription_modules_subscription_module"),
    )

    def __repr__(self):
        return f"<SubscriptionModule {self.module_code} active={self.is_active}>"

from sqlalchemy import Column, String, Boolean, DateTime, Numeric, Text, Enum as SQLEnum, UniqueConstraint, Index
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship
from decimal import Decimal
from datetime import datetime
import uuid
import enum
from app.core.config import settings
from app.db.session import Base


class SubscriptionStatus(str, enum.Enum):
    TRIAL = "TRIAL"  # free trial period
    ACTIVE = "ACTIVE"  # paid, payment valid
    EXPIRED = "EXPIRED"  # trial or grace period ended without payment
    SUSPENDED = "SUSPENDED"  # payment failed, grace period running
    CANCELLED = "CANCELLED"  # cancelled by user or admin


class BillingCycle(str, enum.Enum):
    MONTHLY = "MONTHLY"
    YEARLY = "YEARLY"


class Subscription(Base):
    """
    Subscription of one cabinet (dental practice) within an organization.

    All lookups must be scoped by organization_id. A cabinet has at most one
    subscription per organization.
    """
    __tablename__ = "subscriptions"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    organization_id = Column(UUID(as_uuid=True), nullable=False, index=True)
    cabinet_id = Column(UUID(as_uuid=True), nullable=False, index=True)
    status = Column(SQLEnum(SubscriptionStatus, name="subscription_status"), default=SubscriptionStatus.TRIAL, nullable=False)
    billing_cycle = Column(SQLEnum(BillingCycle, name="billing_cycle"), default=BillingCycle.MONTHLY, nullable=False)
    total_price = Column(Numeric(10, 2), default=Decimal("0.00"), nullable=False)  # sum of active module prices
    currency = Column(String(10), default=settings.DEFAULT_CURRENCY, nullable=False)

    # Trial
    trial_starts_at = Column(DateTime, nullable=True)
    trial_ends_at = Column(DateTime, nullable=True)

    # Paid period
    active_at = Column(DateTime, nullable=True)
    current_period_start = Column(DateTime, nullable=True)
    current_period_end = Column(DateTime, nullable=True)
    renews_at = Column(DateTime, nullable=True)  # null once cancellation is requested

    # Cancellation
    cancelled_at = Column(DateTime, nullable=True)
    cancellation_reason = Column(Text, nullable=True)
    cancel_at_period_end = Column(Boolean, default=False, nullable=False)

    # Payment provider references
    stripe_customer_id = Column(String(255), nullable=True)
    stripe_subscription_id = Column(String(255), nullable=True, index=True)
    last_payment_intent_id = Column(String(255), nullable=True)
    last_payment_at = Column(DateTime, nullable=True)
    next_payment_at = Column(DateTime, nullable=True)

    # Grace period after payment failure
    in_grace_period = Column(Boolean, default=False, nullable=False)
    grace_period_ends_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    modules = relationship(
        "SubscriptionModule",
        back_populates="subscription",
        cascade="all, delete-orphan",
        order_by="SubscriptionModule.created_at",
    )

    __table_args__ = (
        UniqueConstraint("organization_id", "cabinet_id", name="uq_subscriptions_org_cabinet"),
        Index("ix_subscriptions_org_status", "organization_id", "status"),
    )

    @property
    def is_trial(self) -> bool:
        return self.status == SubscriptionStatus.TRIAL

    @property
    def is_active(self) -> bool:
        return self.status == SubscriptionStatus.ACTIVE

    @property
    def can_activate(self) -> bool:
        return self.status == SubscriptionStatus.TRIAL

    @property
    def can_cancel(self) -> bool:
        return self.status in (SubscriptionStatus.TRIAL, SubscriptionStatus.ACTIVE, SubscriptionStatus.SUSPENDED)

    def is_trial_expired(self, now: datetime = None) -> bool:
        """False when no trial window was ever set."""
        if not self.trial_ends_at:
            return False
        return (now or datetime.utcnow()) > self.trial_ends_at

    def is_period_ended(self, now: datetime = None) -> bool:
        if not self.current_period_end:
            return False
        return (now or datetime.utcnow()) > self.current_period_end

    @property
    def active_modules(self):
        return [m for m in self.modules if m.is_active]

    @property
    def active_module_count(self) -> int:
        return len(self.active_modules)

    def __repr__(self):
        return f"<Subscription {self.id} cabinet={self.cabinet_id} status={self.status}>"

from pydantic import BaseModel, Field
from typing import Optional, List
from datetime import datetime
from decimal import Decimal
from uuid import UUID
from app.models.subscription import SubscriptionStatus, BillingCycle


class CreateSubscriptionRequest(BaseModel):
    cabinet_id: UUID
    billing_cycle: BillingCycle = BillingCycle.MONTHLY
    currency: Optional[str] = Field(default=None, min_length=3, max_length=10)  # defaults to settings.DEFAULT_CURRENCY
    auto_start_trial: bool = True


class UpdateSubscriptionRequest(BaseModel):
    billing_cycle: Optional[BillingCycle] = None
    cancel_at_period_end: Optional[bool] = None
    cancellation_reason: Optional[str] = None


class AddModulesRequest(BaseModel):
    module_ids: List[UUID] = Field(min_length=1)


class RemoveModulesRequest(BaseModel):
    module_ids: List[UUID] = Field(min_length=1)
    reason: Optional[str] = None


class ActivateSubscriptionRequest(BaseModel):
    stripe_subscription_id: Optional[str] = None
    stripe_customer_id: Optional[str] = None


class CancelSubscriptionRequest(BaseModel):
    reason: str
    immediate: bool = False


class SubscriptionModuleResponse(BaseModel):
    id: UUID
    module_id: UUID
    module_code: str
    module_name: Optional[str] = None
    is_active: bool
    is_core: bool
    price: Decimal
    billing_cycle: BillingCycle
    currency: str
    activated_at: datetime
    deactivated_at: Optional[datetime] = None
    deactivation_reason: Optional[str] = None

    class Config:
        from_attributes = True


class SubscriptionResponse(BaseModel):
    id: UUID
    organization_id: UUID
    cabinet_id: UUID
    status: SubscriptionStatus
    billing_cycle: BillingCycle
    total_price: Decimal
    currency: str
    trial_starts_at: Optional[datetime] = None
    trial_ends_at: Optional[datetime] = None
    active_at: Optional[datetime] = None
    current_period_start: Optional[datetime] = None
    current_period_end: Optional[datetime] = None
    renews_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    cancellation_reason: Optional[str] = None
    cancel_at_period_end: bool
    in_grace_period: bool
    grace_period_ends_at: Optional[datetime] = None
    modules: List[SubscriptionModuleResponse] = []
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True

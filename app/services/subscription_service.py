"""
Subscription lifecycle and module management for cabinets.

Every mutating operation runs inside `transaction(db)` together with its audit
row, so a failure leaves neither a half-applied change nor an orphan audit
entry. All lookups are scoped to the caller's organization.
"""
import logging
import uuid
from datetime import datetime, timedelta
from decimal import Decimal
from typing import List, Optional

from dateutil.relativedelta import relativedelta
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.core.audit import log_subscription_event
from app.core.config import settings
from app.core.errors import ConflictError, NotFoundError, ValidationError
from app.dal import subscription_dal
from app.db.session import transaction
from app.models.audit_log import AuditEventType
from app.models.module import Module
from app.models.subscription import BillingCycle, Subscription, SubscriptionStatus
from app.models.subscription_module import SubscriptionModule
from app.schemas.subscription import (
    AddModulesRequest,
    CreateSubscriptionRequest,
    RemoveModulesRequest,
    UpdateSubscriptionRequest,
)
from app.services.module_catalog import CORE_MODULE_CODES, ModuleCatalog, module_price, normalize_code
from app.services.subscription_state import MODULE_CHANGE_STATUSES, is_terminal, require_transition

logger = logging.getLogger(__name__)

CENTS = Decimal("0.01")


def billing_period_delta(billing_cycle: BillingCycle) -> relativedelta:
    if billing_cycle == BillingCycle.YEARLY:
        return relativedelta(years=1)
    return relativedelta(months=1)


def recalculate_total(subscription: Subscription) -> Decimal:
    """Set and return total_price as the sum of active module prices."""
    total = sum((Decimal(str(row.price)) for row in subscription.modules if row.is_active), Decimal("0.00"))
    subscription.total_price = total.quantize(CENTS)
    return subscription.total_price


class SubscriptionService:
    """
    Operations on cabinet subscriptions.

    `clock` returns the current naive UTC time; tests pass a frozen one.
    """

    def __init__(self, db: Session, clock=datetime.utcnow):
        self.db = db
        self.clock = clock
        self.catalog = ModuleCatalog(db)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_subscription(self, subscription_id: uuid.UUID, organization_id: uuid.UUID) -> Subscription:
        subscription = subscription_dal.get_subscription_by_id(self.db, subscription_id, organization_id)
        if subscription is None:
            raise NotFoundError(
                f"Subscription {subscription_id} not found",
                resource_type="subscription",
                resource_id=subscription_id,
            )
        return subscription

    def get_subscription_by_cabinet(self, cabinet_id: uuid.UUID, organization_id: uuid.UUID) -> Subscription:
        subscription = subscription_dal.get_subscription_by_cabinet_id(self.db, cabinet_id, organization_id)
        if subscription is None:
            raise NotFoundError(
                f"No subscription found for cabinet {cabinet_id}",
                resource_type="subscription",
                resource_id=cabinet_id,
            )
        return subscription

    def list_subscriptions(
        self,
        organization_id: uuid.UUID,
        status: Optional[SubscriptionStatus] = None,
    ) -> List[Subscription]:
        return subscription_dal.list_subscriptions(self.db, organization_id, status=status, include_modules=True)

    def get_active_module_codes(self, cabinet_id: uuid.UUID, organization_id: uuid.UUID) -> List[str]:
        return subscription_dal.get_active_module_codes_by_cabinet(self.db, cabinet_id, organization_id)

    # ------------------------------------------------------------------
    # Create
    # ------------------------------------------------------------------

    def create_subscription(
        self,
        organization_id: uuid.UUID,
        request: CreateSubscriptionRequest,
        actor_id: Optional[str] = None,
    ) -> Subscription:
        """
        Create a subscription with all core modules attached.

        Starts in TRIAL for TRIAL_DURATION_DAYS when auto_start_trial is set,
        otherwise ACTIVE with the first billing period already running.
        """
        existing = subscription_dal.get_subscription_by_cabinet_id(
            self.db, request.cabinet_id, organization_id, include_modules=False
        )
        if existing:
            raise ConflictError(
                f"Subscription already exists for cabinet {request.cabinet_id}",
                resource_type="subscription",
                existing_id=existing.id,
            )

        core_modules = self.catalog.get_core_modules()
        missing = sorted(set(CORE_MODULE_CODES) - {m.code for m in core_modules})
        if missing:
            raise ValidationError.for_field(
                "Core modules are missing from the module catalog",
                field="modules",
                reason="All core modules must be seeded before creating subscriptions",
                value=missing,
            )

        now = self.clock()
        currency = (request.currency or settings.DEFAULT_CURRENCY).upper()
        subscription = Subscription(
            organization_id=organization_id,
            cabinet_id=request.cabinet_id,
            billing_cycle=request.billing_cycle,
            currency=currency,
            cancel_at_period_end=False,
            in_grace_period=False,
        )
        if request.auto_start_trial:
            subscription.status = SubscriptionStatus.TRIAL
            subscription.trial_starts_at = now
            subscription.trial_ends_at = now + timedelta(days=settings.TRIAL_DURATION_DAYS)
        else:
            subscription.status = SubscriptionStatus.ACTIVE
            subscription.active_at = now
            self._start_billing_period(subscription, now)

        for module in core_modules:
            subscription.modules.append(self._new_module_row(subscription, module, now, is_core=True))
        recalculate_total(subscription)

        try:
            with transaction(self.db):
                self.db.add(subscription)
                self.db.flush()
                log_subscription_event(
                    self.db,
                    AuditEventType.SUBSCRIPTION_CREATED,
                    organization_id,
                    subscription.id,
                    actor_id=actor_id,
                    details={
                        "cabinet_id": request.cabinet_id,
                        "status": subscription.status.value,
                        "billing_cycle": subscription.billing_cycle.value,
                        "total_price": subscription.total_price,
                    },
                )
        except IntegrityError:
            # Lost a race against a concurrent create for the same cabinet
            raise ConflictError(
                f"Subscription already exists for cabinet {request.cabinet_id}",
                resource_type="subscription",
                existing_id=None,
            )

        logger.info(
            f"[SUBSCRIPTION] Created {subscription.id} for cabinet {request.cabinet_id} "
            f"status={subscription.status.value} total={subscription.total_price} {currency}"
        )
        return subscription

    # ------------------------------------------------------------------
    # Modules
    # ------------------------------------------------------------------

    def add_modules(
        self,
        subscription_id: uuid.UUID,
        organization_id: uuid.UUID,
        request: AddModulesRequest,
        actor_id: Optional[str] = None,
    ) -> Subscription:
        """
        Add non-core modules (and any modules they require) to a TRIAL or
        ACTIVE subscription. Modules already active are skipped; when nothing
        new remains the subscription is returned unchanged.
        """
        subscription = self.get_subscription(subscription_id, organization_id)
        if subscription.status not in MODULE_CHANGE_STATUSES:
            raise ValidationError.for_field(
                f"Cannot add modules to a {subscription.status.value} subscription",
                field="status",
                reason="Modules can only be added to TRIAL or ACTIVE subscriptions",
                value=subscription.status.value,
            )

        requested = self.catalog.get_by_ids(request.module_ids)
        if not requested:
            raise ValidationError.for_field(
                "No valid modules found",
                field="module_ids",
                reason="None of the requested module ids exist in the catalog",
                value=[str(i) for i in request.module_ids],
            )

        core = [m.code for m in requested if m.is_core]
        if core:
            raise ValidationError.for_field(
                "Core modules are already included in every subscription",
                field="module_ids",
                reason="Core modules cannot be added",
                value=core,
            )

        active_codes = {normalize_code(row.module_code) for row in subscription.modules if row.is_active}
        new_modules = [m for m in requested if m.code not in active_codes]
        if not new_modules:
            logger.info(f"[SUBSCRIPTION] add_modules on {subscription.id}: all requested modules already active")
            return subscription

        to_add = self.catalog.resolve_dependencies(new_modules, active_codes)
        requested_codes = {m.code for m in new_modules}
        now = self.clock()
        rows_by_module = {row.module_id: row for row in subscription.modules}
        previous_total = subscription.total_price

        with transaction(self.db):
            for module in to_add:
                row = rows_by_module.get(module.id)
                if row is None:
                    subscription.modules.append(self._new_module_row(subscription, module, now))
                else:
                    self._reactivate_module_row(subscription, row, module, now)
            recalculate_total(subscription)
            self.db.flush()
            log_subscription_event(
                self.db,
                AuditEventType.MODULES_ADDED,
                organization_id,
                subscription.id,
                actor_id=actor_id,
                details={
                    "modules": [m.code for m in to_add],
                    "dependencies_added": [m.code for m in to_add if m.code not in requested_codes],
                    "previous_total": previous_total,
                    "total_price": subscription.total_price,
                },
            )

        logger.info(
            f"[SUBSCRIPTION] Added modules {[m.code for m in to_add]} to {subscription.id}, "
            f"total {previous_total} -> {subscription.total_price}"
        )
        return subscription

    def remove_modules(
        self,
        subscription_id: uuid.UUID,
        organization_id: uuid.UUID,
        request: RemoveModulesRequest,
        actor_id: Optional[str] = None,
    ) -> Subscription:
        """
        Deactivate modules and every active module that depends on them.

        Core modules can never be removed; a request naming one fails as a
        whole. Rows are kept with deactivated_at/deactivation_reason set.
        """
        subscription = self.get_subscription(subscription_id, organization_id)
        requested_ids = set(request.module_ids)

        core_codes = {row.module_code for row in subscription.modules if row.is_core and row.module_id in requested_ids}
        core_codes.update(m.code for m in self.catalog.get_by_ids(requested_ids) if m.is_core)
        if core_codes:
            raise ValidationError.for_field(
                "Core modules cannot be removed",
                field="module_ids",
                reason="Core modules are always included in every subscription",
                value=sorted(core_codes),
            )

        active_rows = [row for row in subscription.modules if row.is_active]
        targets = [row for row in active_rows if row.module_id in requested_ids]
        if not targets:
            logger.info(f"[SUBSCRIPTION] remove_modules on {subscription.id}: no requested module is active")
            return subscription

        removed_codes = {normalize_code(row.module_code) for row in targets}
        active_codes = {normalize_code(row.module_code) for row in active_rows}
        dependents = self.catalog.find_dependents(removed_codes, active_codes)
        to_remove = [
            row for row in active_rows
            if not row.is_core and (row in targets or normalize_code(row.module_code) in dependents)
        ]

        now = self.clock()
        reason = request.reason or "Removed by user"
        previous_total = subscription.total_price

        with transaction(self.db):
            for row in to_remove:
                row.is_active = False
                row.deactivated_at = now
                row.deactivation_reason = (
                    reason if row in targets else f"Dependency removed: {', '.join(sorted(removed_codes))}"
                )
            recalculate_total(subscription)
            self.db.flush()
            log_subscription_event(
                self.db,
                AuditEventType.MODULES_REMOVED,
                organization_id,
                subscription.id,
                actor_id=actor_id,
                details={
                    "modules": [row.module_code for row in to_remove],
                    "dependents_removed": sorted(dependents),
                    "reason": reason,
                    "previous_total": previous_total,
                    "total_price": subscription.total_price,
                },
            )

        logger.info(
            f"[SUBSCRIPTION] Removed modules {[row.module_code for row in to_remove]} from {subscription.id}, "
            f"total {previous_total} -> {subscription.total_price}"
        )
        return subscription

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def activate_subscription(
        self,
        subscription_id: uuid.UUID,
        organization_id: uuid.UUID,
        stripe_subscription_id: Optional[str] = None,
        stripe_customer_id: Optional[str] = None,
        actor_id: Optional[str] = None,
    ) -> Subscription:
        """TRIAL -> ACTIVE, starting the first paid billing period."""
        subscription = self.get_subscription(subscription_id, organization_id)
        if not subscription.can_activate:
            raise ValidationError.for_field(
                f"Cannot activate subscription in {subscription.status.value} status",
                field="status",
                reason="Activation allowed only when subscription is in TRIAL status",
                value=subscription.status.value,
            )

        now = self.clock()
        with transaction(self.db):
            subscription.status = SubscriptionStatus.ACTIVE
            subscription.active_at = now
            subscription.last_payment_at = now
            self._start_billing_period(subscription, now)
            if stripe_subscription_id:
                subscription.stripe_subscription_id = stripe_subscription_id
            if stripe_customer_id:
                subscription.stripe_customer_id = stripe_customer_id
            log_subscription_event(
                self.db,
                AuditEventType.SUBSCRIPTION_ACTIVATED,
                organization_id,
                subscription.id,
                actor_id=actor_id,
                details={
                    "current_period_end": subscription.current_period_end,
                    "stripe_subscription_id": stripe_subscription_id,
                },
            )

        logger.info(f"[SUBSCRIPTION] Activated {subscription.id}, period ends {subscription.current_period_end}")
        return subscription

    def cancel_subscription(
        self,
        subscription_id: uuid.UUID,
        organization_id: uuid.UUID,
        reason: Optional[str] = None,
        immediate: bool = False,
        actor_id: Optional[str] = None,
    ) -> Subscription:
        """
        Cancel now, or at the end of the current billing period.

        A TRIAL has no paid period and is always cancelled immediately.
        Deferred cancellation keeps the status and requires a reason.
        """
        subscription = self.get_subscription(subscription_id, organization_id)
        require_transition(
            subscription.status,
            SubscriptionStatus.CANCELLED,
            message=f"Cannot cancel subscription in {subscription.status.value} status",
        )

        deferred = not immediate and subscription.status != SubscriptionStatus.TRIAL
        if deferred:
            self._validate_cancellation_reason(reason)

        now = self.clock()
        with transaction(self.db):
            subscription.cancelled_at = now
            subscription.cancellation_reason = reason
            subscription.renews_at = None
            if deferred:
                subscription.cancel_at_period_end = True
                event_type = AuditEventType.CANCELLATION_SCHEDULED
            else:
                subscription.status = SubscriptionStatus.CANCELLED
                subscription.cancel_at_period_end = False
                subscription.in_grace_period = False
                event_type = AuditEventType.SUBSCRIPTION_CANCELLED
            log_subscription_event(
                self.db,
                event_type,
                organization_id,
                subscription.id,
                actor_id=actor_id,
                details={"reason": reason, "immediate": not deferred},
            )

        if deferred:
            logger.info(
                f"[SUBSCRIPTION] Scheduled cancellation of {subscription.id} at {subscription.current_period_end}"
            )
        else:
            logger.info(f"[SUBSCRIPTION] Cancelled {subscription.id}")
        return subscription

    def update_subscription(
        self,
        subscription_id: uuid.UUID,
        organization_id: uuid.UUID,
        request: UpdateSubscriptionRequest,
        actor_id: Optional[str] = None,
    ) -> Subscription:
        """
        Change the billing cycle or toggle cancellation at period end.

        A billing cycle change re-prices every active module for the new cycle.
        """
        subscription = self.get_subscription(subscription_id, organization_id)
        if is_terminal(subscription.status):
            raise ValidationError.for_field(
                f"Cannot update a {subscription.status.value} subscription",
                field="status",
                reason="EXPIRED and CANCELLED subscriptions are read-only",
                value=subscription.status.value,
            )

        update_data = request.model_dump(exclude_unset=True)
        changes = {}
        events = []
        now = self.clock()

        new_cycle = update_data.get("billing_cycle")
        if new_cycle and new_cycle != subscription.billing_cycle:
            changes["billing_cycle"] = new_cycle
            events.append((
                AuditEventType.BILLING_CYCLE_CHANGED,
                {"from": subscription.billing_cycle.value, "to": new_cycle.value},
            ))

        reason = update_data.get("cancellation_reason")
        schedule = update_data.get("cancel_at_period_end")
        if schedule is True and not subscription.cancel_at_period_end:
            if subscription.status == SubscriptionStatus.TRIAL:
                raise ValidationError.for_field(
                    "A trial cannot be cancelled at period end",
                    field="cancel_at_period_end",
                    reason="Trials have no billing period; cancel immediately instead",
                    value=True,
                )
            self._validate_cancellation_reason(reason)
            changes.update(
                cancel_at_period_end=True,
                cancelled_at=now,
                cancellation_reason=reason,
                renews_at=None,
            )
            events.append((AuditEventType.CANCELLATION_SCHEDULED, {"reason": reason}))
        elif schedule is False and subscription.cancel_at_period_end:
            changes.update(
                cancel_at_period_end=False,
                cancelled_at=None,
                cancellation_reason=None,
                renews_at=subscription.current_period_end,
            )
            events.append((AuditEventType.CANCELLATION_REVOKED, {}))
        elif reason is not None and schedule is not False:
            if not subscription.cancel_at_period_end:
                raise ValidationError.for_field(
                    "No cancellation is scheduled for this subscription",
                    field="cancellation_reason",
                    reason="A reason can only be set together with a cancellation",
                    value=reason,
                )
            self._validate_cancellation_reason(reason)
            changes["cancellation_reason"] = reason

        if not changes:
            return subscription

        with transaction(self.db):
            subscription_dal.update_subscription(self.db, subscription, changes)
            if "billing_cycle" in changes:
                self._reprice_modules(subscription, changes["billing_cycle"])
            for event_type, details in events:
                log_subscription_event(
                    self.db, event_type, organization_id, subscription.id, actor_id=actor_id, details=details
                )

        logger.info(f"[SUBSCRIPTION] Updated {subscription.id}: {sorted(changes)}")
        return subscription

    def suspend_for_payment_failure(
        self,
        subscription_id: uuid.UUID,
        organization_id: uuid.UUID,
        payment_intent_id: Optional[str] = None,
        actor_id: Optional[str] = None,
    ) -> Subscription:
        """ACTIVE -> SUSPENDED with a grace period of GRACE_PERIOD_DAYS."""
        subscription = self.get_subscription(subscription_id, organization_id)
        require_transition(subscription.status, SubscriptionStatus.SUSPENDED)

        now = self.clock()
        with transaction(self.db):
            subscription.status = SubscriptionStatus.SUSPENDED
            subscription.in_grace_period = True
            subscription.grace_period_ends_at = now + timedelta(days=settings.GRACE_PERIOD_DAYS)
            if payment_intent_id:
                subscription.last_payment_intent_id = payment_intent_id
            log_subscription_event(
                self.db,
                AuditEventType.SUBSCRIPTION_SUSPENDED,
                organization_id,
                subscription.id,
                actor_id=actor_id,
                details={
                    "grace_period_ends_at": subscription.grace_period_ends_at,
                    "payment_intent_id": payment_intent_id,
                },
            )

        logger.warning(
            f"[SUBSCRIPTION] Suspended {subscription.id} after payment failure, "
            f"grace period ends {subscription.grace_period_ends_at}"
        )
        return subscription

    def reactivate_after_payment(
        self,
        subscription_id: uuid.UUID,
        organization_id: uuid.UUID,
        payment_intent_id: Optional[str] = None,
        actor_id: Optional[str] = None,
    ) -> Subscription:
        """SUSPENDED -> ACTIVE once payment succeeds; starts a new billing period."""
        subscription = self.get_subscription(subscription_id, organization_id)
        if subscription.status != SubscriptionStatus.SUSPENDED:
            raise ValidationError.for_field(
                f"Cannot reactivate subscription in {subscription.status.value} status",
                field="status",
                reason="Only SUSPENDED subscriptions can be reactivated",
                value=subscription.status.value,
            )

        now = self.clock()
        with transaction(self.db):
            subscription.status = SubscriptionStatus.ACTIVE
            subscription.in_grace_period = False
            subscription.grace_period_ends_at = None
            subscription.last_payment_at = now
            if payment_intent_id:
                subscription.last_payment_intent_id = payment_intent_id
            self._start_billing_period(subscription, now)
            log_subscription_event(
                self.db,
                AuditEventType.SUBSCRIPTION_REACTIVATED,
                organization_id,
                subscription.id,
                actor_id=actor_id,
                details={"payment_intent_id": payment_intent_id, "current_period_end": subscription.current_period_end},
            )

        logger.info(f"[SUBSCRIPTION] Reactivated {subscription.id} after payment")
        return subscription

    def expire_subscription(
        self,
        subscription_id: uuid.UUID,
        organization_id: uuid.UUID,
        actor_id: Optional[str] = None,
    ) -> Subscription:
        """TRIAL or SUSPENDED -> EXPIRED, only once the trial or grace period has run out."""
        subscription = self.get_subscription(subscription_id, organization_id)
        require_transition(subscription.status, SubscriptionStatus.EXPIRED)

        now = self.clock()
        if subscription.status == SubscriptionStatus.TRIAL and not subscription.is_trial_expired(now):
            raise ValidationError.for_field(
                "Trial period has not ended yet",
                field="trial_ends_at",
                reason="A trial can only expire after trial_ends_at",
                value=subscription.trial_ends_at,
            )
        grace_end = subscription.grace_period_ends_at
        if subscription.status == SubscriptionStatus.SUSPENDED and grace_end and now < grace_end:
            raise ValidationError.for_field(
                "Grace period has not ended yet",
                field="grace_period_ends_at",
                reason="A suspended subscription can only expire after its grace period",
                value=grace_end,
            )

        previous_status = subscription.status
        with transaction(self.db):
            subscription.status = SubscriptionStatus.EXPIRED
            subscription.in_grace_period = False
            subscription.renews_at = None
            log_subscription_event(
                self.db,
                AuditEventType.SUBSCRIPTION_EXPIRED,
                organization_id,
                subscription.id,
                actor_id=actor_id,
                details={"previous_status": previous_status.value},
            )

        logger.info(f"[SUBSCRIPTION] Expired {subscription.id} (was {previous_status.value})")
        return subscription

    def finalize_scheduled_cancellation(
        self,
        subscription_id: uuid.UUID,
        organization_id: uuid.UUID,
        actor_id: Optional[str] = None,
    ) -> Subscription:
        """Cancel a subscription whose cancel_at_period_end period has ended."""
        subscription = self.get_subscription(subscription_id, organization_id)
        if not subscription.cancel_at_period_end:
            raise ValidationError.for_field(
                "No cancellation is scheduled for this subscription",
                field="cancel_at_period_end",
                reason="Only subscriptions scheduled to cancel at period end can be finalized",
                value=False,
            )
        if not subscription.is_period_ended(self.clock()):
            raise ValidationError.for_field(
                "Current billing period has not ended yet",
                field="current_period_end",
                reason="Scheduled cancellations take effect at the end of the billing period",
                value=subscription.current_period_end,
            )
        require_transition(subscription.status, SubscriptionStatus.CANCELLED)

        with transaction(self.db):
            subscription.status = SubscriptionStatus.CANCELLED
            subscription.cancel_at_period_end = False
            subscription.in_grace_period = False
            log_subscription_event(
                self.db,
                AuditEventType.SUBSCRIPTION_CANCELLED,
                organization_id,
                subscription.id,
                actor_id=actor_id,
                details={"reason": subscription.cancellation_reason, "at_period_end": True},
            )

        logger.info(f"[SUBSCRIPTION] Cancelled {subscription.id} at end of billing period")
        return subscription

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _start_billing_period(self, subscription: Subscription, now: datetime) -> None:
        period_end = now + billing_period_delta(subscription.billing_cycle)
        subscription.current_period_start = now
        subscription.current_period_end = period_end
        subscription.next_payment_at = period_end
        subscription.renews_at = None if subscription.cancel_at_period_end else period_end

    def _new_module_row(
        self,
        subscription: Subscription,
        module: Module,
        now: datetime,
        is_core: bool = False,
    ) -> SubscriptionModule:
        return SubscriptionModule(
            organization_id=subscription.organization_id,
            module_id=module.id,
            module_code=module.code,
            module_name=module.name,
            is_active=True,
            is_core=is_core,
            price=module_price(module, subscription.billing_cycle),
            billing_cycle=subscription.billing_cycle,
            currency=subscription.currency,
            activated_at=now,
        )

    def _reactivate_module_row(
        self,
        subscription: Subscription,
        row: SubscriptionModule,
        module: Module,
        now: datetime,
    ) -> None:
        row.is_active = True
        row.module_code = module.code
        row.module_name = module.name
        row.price = module_price(module, subscription.billing_cycle)
        row.billing_cycle = subscription.billing_cycle
        row.currency = subscription.currency
        row.activated_at = now
        row.deactivated_at = None
        row.deactivation_reason = None

    def _reprice_modules(self, subscription: Subscription, billing_cycle: BillingCycle) -> None:
        modules = {m.id: m for m in self.catalog.get_by_codes([row.module_code for row in subscription.active_modules])}
        for row in subscription.active_modules:
            module = modules.get(row.module_id)
            if module is None:
                logger.warning(f"[SUBSCRIPTION] Module {row.module_code} no longer in catalog, keeping price {row.price}")
            else:
                row.price = module_price(module, billing_cycle)
            row.billing_cycle = billing_cycle
        recalculate_total(subscription)
        self.db.flush()

    def _validate_cancellation_reason(self, reason: Optional[str]) -> None:
        minimum = settings.MIN_CANCELLATION_REASON_LENGTH
        if not reason or len(reason.strip()) < minimum:
            raise ValidationError.for_field(
                f"Cancellation reason must be at least {minimum} characters",
                field="cancellation_reason",
                reason=f"A reason of at least {minimum} characters is required to cancel at period end",
                value=reason,
            )

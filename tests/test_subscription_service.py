"""Subscription service: create, module add/remove and lifecycle operations"""
import json
import uuid
from datetime import datetime, timedelta
from decimal import Decimal

import pytest

from app.core.config import settings
from app.core.errors import ConflictError, NotFoundError, ValidationError
from app.dal import subscription_dal
from app.models.audit_log import AuditEventType, AuditLog
from app.models.subscription import BillingCycle, Subscription, SubscriptionStatus
from app.models.subscription_module import SubscriptionModule
from app.schemas.subscription import (
    AddModulesRequest,
    CreateSubscriptionRequest,
    RemoveModulesRequest,
    UpdateSubscriptionRequest,
)
from app.services.module_catalog import CORE_MODULE_CODES, ModuleDefinition, seed_module_catalog
from tests.conftest import NOW

CORE_MONTHLY_TOTAL = Decimal("199.96")


def active_codes(subscription):
    return sorted(row.module_code for row in subscription.modules if row.is_active)


def assert_total_matches_active_prices(subscription):
    expected = sum((row.price for row in subscription.modules if row.is_active), Decimal("0.00"))
    assert subscription.total_price == expected


def audit_events(db, subscription):
    rows = db.query(AuditLog).filter(AuditLog.resource_id == str(subscription.id)).all()
    return [row.event_type for row in rows]


# ----------------------------------------------------------------------
# Create
# ----------------------------------------------------------------------

def test_create_starts_trial_with_core_modules(service, org_id, db):
    cabinet_id = uuid.uuid4()
    subscription = service.create_subscription(org_id, CreateSubscriptionRequest(cabinet_id=cabinet_id))

    assert subscription.status == SubscriptionStatus.TRIAL
    assert subscription.trial_starts_at == NOW
    assert subscription.trial_ends_at == NOW + timedelta(days=30)
    assert subscription.currency == "USD"
    assert active_codes(subscription) == sorted(CORE_MODULE_CODES)
    assert all(row.is_core for row in subscription.modules)
    assert subscription.total_price == CORE_MONTHLY_TOTAL
    assert audit_events(db, subscription) == [AuditEventType.SUBSCRIPTION_CREATED]


def test_create_without_trial_starts_billing_period(service, org_id):
    subscription = service.create_subscription(
        org_id,
        CreateSubscriptionRequest(cabinet_id=uuid.uuid4(), billing_cycle=BillingCycle.YEARLY, auto_start_trial=False),
    )

    assert subscription.status == SubscriptionStatus.ACTIVE
    assert subscription.trial_ends_at is None
    assert subscription.current_period_start == NOW
    assert subscription.current_period_end == datetime(2027, 1, 15, 12, 0, 0)
    assert subscription.renews_at == subscription.current_period_end
    assert subscription.total_price == Decimal("1999.96")


def test_create_twice_for_same_cabinet_conflicts(service, org_id, db):
    cabinet_id = uuid.uuid4()
    first = service.create_subscription(org_id, CreateSubscriptionRequest(cabinet_id=cabinet_id))

    with pytest.raises(ConflictError) as exc_info:
        service.create_subscription(org_id, CreateSubscriptionRequest(cabinet_id=cabinet_id))

    assert exc_info.value.status_code == 409
    assert exc_info.value.context["existing_id"] == first.id
    assert db.query(Subscription).filter(Subscription.cabinet_id == cabinet_id).count() == 1


def test_concurrent_create_hits_unique_constraint(service, org_id, db, monkeypatch):
    cabinet_id = uuid.uuid4()
    service.create_subscription(org_id, CreateSubscriptionRequest(cabinet_id=cabinet_id))
    # Second writer that did not see the first row before inserting
    monkeypatch.setattr(subscription_dal, "get_subscription_by_cabinet_id", lambda *args, **kwargs: None)

    with pytest.raises(ConflictError) as exc_info:
        service.create_subscription(org_id, CreateSubscriptionRequest(cabinet_id=cabinet_id))

    assert exc_info.value.status_code == 409
    assert db.query(Subscription).filter(Subscription.cabinet_id == cabinet_id).count() == 1
    assert db.query(AuditLog).filter(AuditLog.event_type == AuditEventType.SUBSCRIPTION_CREATED).count() == 1


def test_same_cabinet_in_another_organization_is_independent(service, org_id):
    cabinet_id = uuid.uuid4()
    service.create_subscription(org_id, CreateSubscriptionRequest(cabinet_id=cabinet_id))
    other = service.create_subscription(uuid.uuid4(), CreateSubscriptionRequest(cabinet_id=cabinet_id))
    assert other.status == SubscriptionStatus.TRIAL


def test_create_requires_seeded_core_modules(service, org_id, modules, db):
    modules["BILLING"].is_available = False
    db.commit()

    with pytest.raises(ValidationError) as exc_info:
        service.create_subscription(org_id, CreateSubscriptionRequest(cabinet_id=uuid.uuid4()))

    assert exc_info.value.details[0]["field"] == "modules"
    assert exc_info.value.details[0]["value"] == ["BILLING"]


# ----------------------------------------------------------------------
# Reads and tenant isolation
# ----------------------------------------------------------------------

def test_other_organization_cannot_see_subscription(service, trial_subscription):
    other_org = uuid.uuid4()
    with pytest.raises(NotFoundError):
        service.get_subscription(trial_subscription.id, other_org)
    with pytest.raises(NotFoundError):
        service.get_subscription_by_cabinet(trial_subscription.cabinet_id, other_org)
    assert service.list_subscriptions(other_org) == []


def test_list_subscriptions_filters_by_status(service, org_id, trial_subscription, active_subscription):
    assert len(service.list_subscriptions(org_id)) == 2
    trials = service.list_subscriptions(org_id, status=SubscriptionStatus.TRIAL)
    assert [s.id for s in trials] == [trial_subscription.id]


def test_active_module_codes_only_for_usable_subscriptions(service, org_id, trial_subscription):
    codes = service.get_active_module_codes(trial_subscription.cabinet_id, org_id)
    assert codes == sorted(CORE_MODULE_CODES)

    service.cancel_subscription(trial_subscription.id, org_id, reason="Closing the practice")
    assert service.get_active_module_codes(trial_subscription.cabinet_id, org_id) == []


# ----------------------------------------------------------------------
# Add modules
# ----------------------------------------------------------------------

def test_add_module_increases_total_by_its_price(service, org_id, trial_subscription, modules, db):
    imaging = modules["IMAGING"]
    subscription = service.add_modules(trial_subscription.id, org_id, AddModulesRequest(module_ids=[imaging.id]))

    assert "IMAGING" in active_codes(subscription)
    assert subscription.total_price == CORE_MONTHLY_TOTAL + Decimal("99.00")
    assert_total_matches_active_prices(subscription)
    assert AuditEventType.MODULES_ADDED in audit_events(db, subscription)


def test_add_module_uses_yearly_price_on_yearly_cycle(service, org_id, modules):
    subscription = service.create_subscription(
        org_id,
        CreateSubscriptionRequest(cabinet_id=uuid.uuid4(), billing_cycle=BillingCycle.YEARLY),
    )
    subscription = service.add_modules(subscription.id, org_id, AddModulesRequest(module_ids=[modules["INVENTORY"].id]))

    row = next(r for r in subscription.modules if r.module_code == "INVENTORY")
    assert row.price == Decimal("690.00")
    assert row.billing_cycle == BillingCycle.YEARLY
    assert subscription.total_price == Decimal("1999.96") + Decimal("690.00")


def test_add_already_active_module_is_noop(service, org_id, trial_subscription, modules, db):
    request = AddModulesRequest(module_ids=[modules["INVENTORY"].id])
    service.add_modules(trial_subscription.id, org_id, request)
    total = trial_subscription.total_price

    subscription = service.add_modules(trial_subscription.id, org_id, request)

    assert subscription.total_price == total
    assert db.query(SubscriptionModule).filter(SubscriptionModule.module_code == "INVENTORY").count() == 1
    assert audit_events(db, subscription).count(AuditEventType.MODULES_ADDED) == 1


def test_add_core_module_rejected(service, org_id, trial_subscription, modules):
    with pytest.raises(ValidationError) as exc_info:
        service.add_modules(
            trial_subscription.id,
            org_id,
            AddModulesRequest(module_ids=[modules["IMAGING"].id, modules["SCHEDULING"].id]),
        )
    assert exc_info.value.details[0]["value"] == ["SCHEDULING"]
    assert "IMAGING" not in active_codes(trial_subscription)


def test_add_unknown_modules_rejected(service, org_id, trial_subscription):
    with pytest.raises(ValidationError) as exc_info:
        service.add_modules(trial_subscription.id, org_id, AddModulesRequest(module_ids=[uuid.uuid4()]))
    assert exc_info.value.details[0]["field"] == "module_ids"


def test_add_modules_requires_trial_or_active(service, org_id, active_subscription, modules):
    service.suspend_for_payment_failure(active_subscription.id, org_id)

    with pytest.raises(ValidationError) as exc_info:
        service.add_modules(active_subscription.id, org_id, AddModulesRequest(module_ids=[modules["IMAGING"].id]))
    assert exc_info.value.details[0]["value"] == "SUSPENDED"


def test_add_modules_pulls_in_required_dependencies(service, org_id, trial_subscription, db):
    seed_module_catalog(db, [
        ModuleDefinition("PERIO_AI", "Perio AI", "", False, Decimal("10.00"), Decimal("100.00"), ["IMAGING"]),
    ])
    db.commit()
    perio = next(m for m in service.catalog.list_modules() if m.code == "PERIO_AI")

    subscription = service.add_modules(trial_subscription.id, org_id, AddModulesRequest(module_ids=[perio.id]))

    assert {"IMAGING", "PERIO_AI"} <= set(active_codes(subscription))
    assert subscription.total_price == CORE_MONTHLY_TOTAL + Decimal("99.00") + Decimal("10.00")


def test_add_modules_unknown_subscription(service, org_id, modules):
    with pytest.raises(NotFoundError):
        service.add_modules(uuid.uuid4(), org_id, AddModulesRequest(module_ids=[modules["IMAGING"].id]))


# ----------------------------------------------------------------------
# Remove modules
# ----------------------------------------------------------------------

def test_remove_module_soft_deactivates_and_recomputes_total(service, clock, org_id, trial_subscription, modules):
    service.add_modules(
        trial_subscription.id,
        org_id,
        AddModulesRequest(module_ids=[modules["IMAGING"].id, modules["INVENTORY"].id]),
    )
    clock.advance(days=2)

    subscription = service.remove_modules(
        trial_subscription.id,
        org_id,
        RemoveModulesRequest(module_ids=[modules["INVENTORY"].id], reason="Not needed"),
    )

    row = next(r for r in subscription.modules if r.module_code == "INVENTORY")
    assert row.is_active is False
    assert row.deactivated_at == NOW + timedelta(days=2)
    assert row.deactivation_reason == "Not needed"
    assert subscription.total_price == CORE_MONTHLY_TOTAL + Decimal("99.00")
    assert_total_matches_active_prices(subscription)


def test_remove_core_module_always_fails(service, org_id, trial_subscription, modules):
    service.add_modules(trial_subscription.id, org_id, AddModulesRequest(module_ids=[modules["INVENTORY"].id]))

    with pytest.raises(ValidationError) as exc_info:
        service.remove_modules(
            trial_subscription.id,
            org_id,
            RemoveModulesRequest(module_ids=[modules["INVENTORY"].id, modules["CLINICAL"].id]),
        )

    assert exc_info.value.details[0]["value"] == ["CLINICAL"]
    assert "INVENTORY" in active_codes(trial_subscription)


def test_remove_inactive_module_is_noop(service, org_id, trial_subscription, modules):
    total = trial_subscription.total_price
    subscription = service.remove_modules(
        trial_subscription.id,
        org_id,
        RemoveModulesRequest(module_ids=[modules["MARKETING"].id]),
    )
    assert subscription.total_price == total
    assert active_codes(subscription) == sorted(CORE_MODULE_CODES)


def test_remove_module_cascades_to_dependents(service, org_id, trial_subscription, modules, db):
    seed_module_catalog(db, [
        ModuleDefinition("PERIO_AI", "Perio AI", "", False, Decimal("10.00"), Decimal("100.00"), ["IMAGING"]),
    ])
    db.commit()
    perio = next(m for m in service.catalog.list_modules() if m.code == "PERIO_AI")
    service.add_modules(trial_subscription.id, org_id, AddModulesRequest(module_ids=[perio.id]))

    subscription = service.remove_modules(
        trial_subscription.id,
        org_id,
        RemoveModulesRequest(module_ids=[modules["IMAGING"].id]),
    )

    assert active_codes(subscription) == sorted(CORE_MODULE_CODES)
    perio_row = next(r for r in subscription.modules if r.module_code == "PERIO_AI")
    assert perio_row.deactivation_reason == "Dependency removed: IMAGING"
    assert subscription.total_price == CORE_MONTHLY_TOTAL


def test_readding_removed_module_reactivates_same_row(service, org_id, trial_subscription, modules, db):
    inventory = modules["INVENTORY"]
    service.add_modules(trial_subscription.id, org_id, AddModulesRequest(module_ids=[inventory.id]))
    service.remove_modules(trial_subscription.id, org_id, RemoveModulesRequest(module_ids=[inventory.id]))

    subscription = service.add_modules(trial_subscription.id, org_id, AddModulesRequest(module_ids=[inventory.id]))

    rows = db.query(SubscriptionModule).filter(SubscriptionModule.module_id == inventory.id).all()
    assert len(rows) == 1
    assert rows[0].is_active is True
    assert rows[0].deactivated_at is None
    assert subscription.total_price == CORE_MONTHLY_TOTAL + Decimal("69.00")


# ----------------------------------------------------------------------
# Activate / cancel / update
# ----------------------------------------------------------------------

def test_activate_trial(service, org_id, trial_subscription, db):
    subscription = service.activate_subscription(
        trial_subscription.id, org_id, stripe_subscription_id="sub_123", stripe_customer_id="cus_123"
    )

    assert subscription.status == SubscriptionStatus.ACTIVE
    assert subscription.active_at == NOW
    assert subscription.current_period_end == datetime(2026, 2, 15, 12, 0, 0)
    assert subscription.renews_at == subscription.current_period_end
    assert subscription.next_payment_at == subscription.current_period_end
    assert subscription.stripe_subscription_id == "sub_123"
    assert AuditEventType.SUBSCRIPTION_ACTIVATED in audit_events(db, subscription)


@pytest.mark.parametrize("prepare", ["active", "suspended", "cancelled"])
def test_activate_only_from_trial(service, org_id, active_subscription, prepare):
    if prepare == "suspended":
        service.suspend_for_payment_failure(active_subscription.id, org_id)
    elif prepare == "cancelled":
        service.cancel_subscription(active_subscription.id, org_id, immediate=True)

    with pytest.raises(ValidationError) as exc_info:
        service.activate_subscription(active_subscription.id, org_id)

    assert exc_info.value.details[0]["field"] == "status"
    assert exc_info.value.details[0]["value"] == active_subscription.status.value


def test_immediate_cancel_of_active_clears_renewal(service, org_id, active_subscription, db):
    subscription = service.cancel_subscription(active_subscription.id, org_id, reason="Switching", immediate=True)

    assert subscription.status == SubscriptionStatus.CANCELLED
    assert subscription.renews_at is None
    assert subscription.cancelled_at == NOW
    assert subscription.cancel_at_period_end is False
    assert AuditEventType.SUBSCRIPTION_CANCELLED in audit_events(db, subscription)


def test_deferred_cancel_keeps_status(service, org_id, active_subscription):
    subscription = service.cancel_subscription(
        active_subscription.id, org_id, reason="Moving to another software vendor"
    )

    assert subscription.status == SubscriptionStatus.ACTIVE
    assert subscription.cancel_at_period_end is True
    assert subscription.renews_at is None
    assert subscription.cancellation_reason == "Moving to another software vendor"


@pytest.mark.parametrize("reason", [None, "", "too short", "   padded   "])
def test_deferred_cancel_requires_reason(service, org_id, active_subscription, reason):
    with pytest.raises(ValidationError) as exc_info:
        service.cancel_subscription(active_subscription.id, org_id, reason=reason)

    assert exc_info.value.details[0]["field"] == "cancellation_reason"
    assert active_subscription.cancel_at_period_end is False


def test_trial_cancel_is_immediate_without_reason(service, org_id, trial_subscription):
    subscription = service.cancel_subscription(trial_subscription.id, org_id)
    assert subscription.status == SubscriptionStatus.CANCELLED


def test_cancel_terminal_subscription_fails(service, clock, org_id, trial_subscription):
    clock.advance(days=31)
    service.expire_subscription(trial_subscription.id, org_id)
    with pytest.raises(ValidationError) as exc_info:
        service.cancel_subscription(trial_subscription.id, org_id, immediate=True)
    assert exc_info.value.details[0]["value"] == "EXPIRED"


def test_update_billing_cycle_reprices_active_modules(service, org_id, active_subscription, modules, db):
    service.add_modules(active_subscription.id, org_id, AddModulesRequest(module_ids=[modules["MARKETING"].id]))

    subscription = service.update_subscription(
        active_subscription.id, org_id, UpdateSubscriptionRequest(billing_cycle=BillingCycle.YEARLY)
    )

    assert subscription.billing_cycle == BillingCycle.YEARLY
    assert all(row.billing_cycle == BillingCycle.YEARLY for row in subscription.active_modules)
    assert subscription.total_price == Decimal("1999.96") + Decimal("890.00")
    assert_total_matches_active_prices(subscription)
    assert AuditEventType.BILLING_CYCLE_CHANGED in audit_events(db, subscription)


def test_update_schedules_and_revokes_cancellation(service, org_id, active_subscription):
    subscription = service.update_subscription(
        active_subscription.id,
        org_id,
        UpdateSubscriptionRequest(cancel_at_period_end=True, cancellation_reason="Budget cuts this quarter"),
    )
    assert subscription.cancel_at_period_end is True
    assert subscription.renews_at is None

    subscription = service.update_subscription(
        active_subscription.id, org_id, UpdateSubscriptionRequest(cancel_at_period_end=False)
    )
    assert subscription.cancel_at_period_end is False
    assert subscription.cancellation_reason is None
    assert subscription.renews_at == subscription.current_period_end


def test_update_schedule_cancellation_requires_reason(service, org_id, active_subscription):
    with pytest.raises(ValidationError):
        service.update_subscription(
            active_subscription.id, org_id, UpdateSubscriptionRequest(cancel_at_period_end=True)
        )


def test_update_terminal_subscription_fails(service, org_id, active_subscription):
    service.cancel_subscription(active_subscription.id, org_id, immediate=True)
    with pytest.raises(ValidationError):
        service.update_subscription(
            active_subscription.id, org_id, UpdateSubscriptionRequest(billing_cycle=BillingCycle.YEARLY)
        )


# ----------------------------------------------------------------------
# Payment failure and expiry
# ----------------------------------------------------------------------

def test_suspend_opens_grace_period(service, org_id, active_subscription):
    subscription = service.suspend_for_payment_failure(active_subscription.id, org_id, payment_intent_id="pi_1")

    assert subscription.status == SubscriptionStatus.SUSPENDED
    assert subscription.in_grace_period is True
    assert subscription.grace_period_ends_at == NOW + timedelta(days=7)
    assert subscription.last_payment_intent_id == "pi_1"


def test_suspend_trial_fails(service, org_id, trial_subscription):
    with pytest.raises(ValidationError):
        service.suspend_for_payment_failure(trial_subscription.id, org_id)


def test_reactivate_after_payment_starts_new_period(service, clock, org_id, active_subscription):
    service.suspend_for_payment_failure(active_subscription.id, org_id)
    clock.advance(days=3)

    subscription = service.reactivate_after_payment(active_subscription.id, org_id, payment_intent_id="pi_2")

    assert subscription.status == SubscriptionStatus.ACTIVE
    assert subscription.in_grace_period is False
    assert subscription.grace_period_ends_at is None
    assert subscription.current_period_start == clock.now
    assert subscription.last_payment_at == clock.now


def test_reactivate_requires_suspended(service, org_id, trial_subscription):
    with pytest.raises(ValidationError):
        service.reactivate_after_payment(trial_subscription.id, org_id)


def test_expire_active_subscription_fails(service, org_id, active_subscription):
    with pytest.raises(ValidationError):
        service.expire_subscription(active_subscription.id, org_id)


def test_expire_trial_before_trial_end_fails(service, clock, org_id, trial_subscription, db):
    clock.advance(days=29)
    with pytest.raises(ValidationError) as exc_info:
        service.expire_subscription(trial_subscription.id, org_id)

    assert exc_info.value.details[0]["field"] == "trial_ends_at"
    assert trial_subscription.status == SubscriptionStatus.TRIAL
    assert AuditEventType.SUBSCRIPTION_EXPIRED not in audit_events(db, trial_subscription)

    clock.advance(days=2)
    assert service.expire_subscription(trial_subscription.id, org_id).status == SubscriptionStatus.EXPIRED


def test_expire_suspension_inside_grace_period_fails(service, clock, org_id, active_subscription):
    service.suspend_for_payment_failure(active_subscription.id, org_id)
    clock.advance(days=3)

    with pytest.raises(ValidationError) as exc_info:
        service.expire_subscription(active_subscription.id, org_id)
    assert exc_info.value.details[0]["field"] == "grace_period_ends_at"
    assert active_subscription.status == SubscriptionStatus.SUSPENDED
    assert active_subscription.in_grace_period is True

    clock.advance(days=4)
    subscription = service.expire_subscription(active_subscription.id, org_id)
    assert subscription.status == SubscriptionStatus.EXPIRED
    assert subscription.in_grace_period is False


# ----------------------------------------------------------------------
# Model helpers
# ----------------------------------------------------------------------

def test_trial_expiry_helper(trial_subscription):
    assert trial_subscription.is_trial_expired(NOW) is False
    assert trial_subscription.is_trial_expired(NOW + timedelta(days=30)) is False
    assert trial_subscription.is_trial_expired(NOW + timedelta(days=30, seconds=1)) is True


def test_period_end_helper(active_subscription, trial_subscription):
    period_end = active_subscription.current_period_end
    assert active_subscription.is_period_ended(period_end) is False
    assert active_subscription.is_period_ended(period_end + timedelta(minutes=1)) is True
    assert trial_subscription.is_period_ended(NOW + timedelta(days=400)) is False


def test_raw_insert_uses_configured_currency(db, org_id):
    subscription = Subscription(organization_id=org_id, cabinet_id=uuid.uuid4())
    db.add(subscription)
    db.commit()

    assert subscription.currency == settings.DEFAULT_CURRENCY
    assert subscription.status == SubscriptionStatus.TRIAL


def test_active_module_count_follows_module_changes(service, org_id, trial_subscription, modules):
    assert trial_subscription.active_module_count == len(CORE_MODULE_CODES)

    service.add_modules(trial_subscription.id, org_id, AddModulesRequest(module_ids=[modules["MARKETING"].id]))
    assert trial_subscription.active_module_count == len(CORE_MODULE_CODES) + 1

    service.remove_modules(trial_subscription.id, org_id, RemoveModulesRequest(module_ids=[modules["MARKETING"].id]))
    assert trial_subscription.active_module_count == len(CORE_MODULE_CODES)


def test_audit_details_are_json(service, org_id, trial_subscription, db):
    row = db.query(AuditLog).filter(AuditLog.event_type == AuditEventType.SUBSCRIPTION_CREATED).one()
    details = json.loads(row.details)
    assert details["status"] == "TRIAL"
    assert details["total_price"] == "199.96"
    assert row.organization_id == org_id

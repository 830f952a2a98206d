"""Subscription lifecycle transition rules."""
from typing import Dict, FrozenSet

from app.core.errors import ValidationError
from app.models.subscription import SubscriptionStatus

S = SubscriptionStatus

VALID_TRANSITIONS: Dict[SubscriptionStatus, FrozenSet[SubscriptionStatus]] = {
    S.TRIAL: frozenset({S.ACTIVE, S.CANCELLED, S.EXPIRED}),
    S.ACTIVE: frozenset({S.SUSPENDED, S.CANCELLED}),
    S.SUSPENDED: frozenset({S.ACTIVE, S.CANCELLED, S.EXPIRED}),
    S.EXPIRED: frozenset(),
    S.CANCELLED: frozenset(),
}

# Statuses from which modules may be added to a subscription
MODULE_CHANGE_STATUSES = frozenset({S.TRIAL, S.ACTIVE})

_TRANSITION_MESSAGES = {
    S.ACTIVE: "Activation allowed only when subscription is in TRIAL status",
    S.CANCELLED: "Cancellation is only allowed for TRIAL, ACTIVE, or SUSPENDED subscriptions",
    S.SUSPENDED: "Only ACTIVE subscriptions can be suspended",
    S.EXPIRED: "Only TRIAL or SUSPENDED subscriptions can expire",
}


def can_transition(from_status: SubscriptionStatus, to_status: SubscriptionStatus) -> bool:
    return to_status in VALID_TRANSITIONS.get(from_status, frozenset())


def is_terminal(status: SubscriptionStatus) -> bool:
    return not VALID_TRANSITIONS.get(status)


def require_transition(
    from_status: SubscriptionStatus,
    to_status: SubscriptionStatus,
    message: str = None,
    reason: str = None,
) -> None:
    """Raise ValidationError on the `status` field when the move is not allowed."""
    if can_transition(from_status, to_status):
        return
    raise ValidationError.for_field(
        message or f"Cannot move subscription from {from_status.value} to {to_status.value}",
        field="status",
        reason=reason or _TRANSITION_MESSAGES.get(to_status, "Invalid status transition"),
        value=from_status.value,
        allowed=sorted(s.value for s in VALID_TRANSITIONS.get(from_status, frozenset())),
    )

"""Payment and subscription status graphs.

`validate_transition` guards explicit operations (one legal step).
`is_reachable` is used by reconciliation, where the gateway may have moved
through several steps between two notifications.
"""

from collections import deque
from enum import Enum

from paysub.common.errors import ConflictError


class PaymentStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    AUTHORIZED = "authorized"
    IN_PROCESS = "in_process"
    IN_MEDIATION = "in_mediation"
    REJECTED = "rejected"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"
    CHARGED_BACK = "charged_back"


class SubscriptionStatus(str, Enum):
    PENDING = "pending"
    AUTHORIZED = "authorized"
    ACTIVE = "active"
    PAUSED = "paused"
    CANCELLED = "cancelled"
    ENDED = "ended"
    PAYMENT_FAILED = "payment_failed"


PAYMENT_TRANSITIONS: dict[PaymentStatus, set[PaymentStatus]] = {
    PaymentStatus.PENDING: {
        PaymentStatus.APPROVED,
        PaymentStatus.AUTHORIZED,
        PaymentStatus.IN_PROCESS,
        PaymentStatus.IN_MEDIATION,
        PaymentStatus.REJECTED,
        PaymentStatus.CANCELLED,
    },
    PaymentStatus.AUTHORIZED: {PaymentStatus.APPROVED, PaymentStatus.REJECTED, PaymentStatus.CANCELLED},
    PaymentStatus.IN_PROCESS: {
        PaymentStatus.APPROVED,
        PaymentStatus.REJECTED,
        PaymentStatus.CANCELLED,
        PaymentStatus.IN_MEDIATION,
    },
    PaymentStatus.IN_MEDIATION: {PaymentStatus.APPROVED, PaymentStatus.REJECTED, PaymentStatus.CANCELLED},
    PaymentStatus.APPROVED: {PaymentStatus.REFUNDED, PaymentStatus.CHARGED_BACK},
    PaymentStatus.REJECTED: set(),
    PaymentStatus.CANCELLED: set(),
    PaymentStatus.REFUNDED: set(),
    PaymentStatus.CHARGED_BACK: set(),
}

_SUBSCRIPTION_EXITS = {SubscriptionStatus.CANCELLED, SubscriptionStatus.PAYMENT_FAILED}

SUBSCRIPTION_TRANSITIONS: dict[SubscriptionStatus, set[SubscriptionStatus]] = {
    SubscriptionStatus.PENDING: {SubscriptionStatus.AUTHORIZED} | _SUBSCRIPTION_EXITS,
    SubscriptionStatus.AUTHORIZED: {SubscriptionStatus.ACTIVE, SubscriptionStatus.PAUSED} | _SUBSCRIPTION_EXITS,
    SubscriptionStatus.ACTIVE: {SubscriptionStatus.PAUSED, SubscriptionStatus.ENDED} | _SUBSCRIPTION_EXITS,
    SubscriptionStatus.PAUSED: {SubscriptionStatus.ACTIVE, SubscriptionStatus.ENDED} | _SUBSCRIPTION_EXITS,
    SubscriptionStatus.CANCELLED: set(),
    SubscriptionStatus.ENDED: set(),
    SubscriptionStatus.PAYMENT_FAILED: set(),
}

OPEN_SUBSCRIPTION_STATUSES: frozenset[SubscriptionStatus] = frozenset(
    {
        SubscriptionStatus.PENDING,
        SubscriptionStatus.AUTHORIZED,
        SubscriptionStatus.ACTIVE,
        SubscriptionStatus.PAUSED,
    }
)


def _graph_for(status: Enum) -> dict:
    if isinstance(status, PaymentStatus):
        return PAYMENT_TRANSITIONS
    return SUBSCRIPTION_TRANSITIONS


def is_terminal(status: PaymentStatus | SubscriptionStatus) -> bool:
    return not _graph_for(status)[status]


def validate_transition(current: PaymentStatus | SubscriptionStatus, new: PaymentStatus | SubscriptionStatus) -> None:
    """Raise when a single-step transition is not allowed by the graph."""

    if new not in _graph_for(current).get(current, set()):
        raise ConflictError(f"Invalid transition: {current.value} -> {new.value}")


def is_reachable(current: PaymentStatus | SubscriptionStatus, target: PaymentStatus | SubscriptionStatus) -> bool:
    """Whether `target` can be reached from `current` in one or more steps."""

    graph = _graph_for(current)
    seen = {current}
    queue = deque([current])
    while queue:
        node = queue.popleft()
        for nxt in graph.get(node, set()):
            if nxt == target:
                return True
            if nxt not in seen:
                seen.add(nxt)
                queue.append(nxt)
    return False

"""
Order status transition tables.

Both tables are closed over their enum: every OrderStatus / PaymentStatus
member must appear as a key, otherwise importing this module fails. Adding a
status therefore forces a decision about its outgoing edges here.
"""

from marketplace.domain.exceptions import InvalidTransitionError

from .models.order import OrderStatus, PaymentStatus

ORDER_TRANSITIONS = {
    OrderStatus.PENDING: frozenset({OrderStatus.PAID, OrderStatus.CANCELLED}),
    OrderStatus.PAID: frozenset({OrderStatus.SHIPPED, OrderStatus.CANCELLED}),
    OrderStatus.SHIPPED: frozenset({OrderStatus.DELIVERED}),
    OrderStatus.DELIVERED: frozenset(),
    OrderStatus.CANCELLED: frozenset(),
    OrderStatus.REFUNDED: frozenset(),
}

# Self-edges mean "may be recorded again" (e.g. a retried payment attempt)
PAYMENT_TRANSITIONS = {
    PaymentStatus.PENDING: frozenset({PaymentStatus.PENDING, PaymentStatus.COMPLETED, PaymentStatus.FAILED}),
    PaymentStatus.FAILED: frozenset({PaymentStatus.PENDING, PaymentStatus.COMPLETED, PaymentStatus.FAILED}),
    PaymentStatus.COMPLETED: frozenset({PaymentStatus.COMPLETED, PaymentStatus.REFUNDED}),
    PaymentStatus.REFUNDED: frozenset(),
}

# Orders in these states accept no further payment or shipping updates
CLOSED_ORDER_STATUSES = frozenset({OrderStatus.CANCELLED, OrderStatus.REFUNDED})


def _assert_exhaustive(table, enum):
    missing = set(enum) - set(table)
    if missing:
        raise RuntimeError(f"Transition table for {enum.__name__} is missing {sorted(missing)}")


_assert_exhaustive(ORDER_TRANSITIONS, OrderStatus)
_assert_exhaustive(PAYMENT_TRANSITIONS, PaymentStatus)

CANCELLABLE_STATUSES = frozenset(
    status for status, targets in ORDER_TRANSITIONS.items() if OrderStatus.CANCELLED in targets
)


def allowed_transitions(current):
    return ORDER_TRANSITIONS[OrderStatus(current)]


def transition_allowed(current, target) -> bool:
    return OrderStatus(target) in allowed_transitions(current)


def payment_transition_allowed(current, target) -> bool:
    return PaymentStatus(target) in PAYMENT_TRANSITIONS[PaymentStatus(current)]


def ensure_transition(order, target):
    """Raise InvalidTransitionError unless ``order`` may move to ``target``."""
    if not transition_allowed(order.status, target):
        raise InvalidTransitionError(f"Cannot move order {order.id} from {order.status} to {target}")


def ensure_open(order, action):
    if order.status in CLOSED_ORDER_STATUSES:
        raise InvalidTransitionError(f"Cannot {action} for order {order.id} with status {order.status}")

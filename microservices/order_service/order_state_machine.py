"""
Order Status State Machine

Valid Transitions:
- PENDING -> PROCESSING, CANCELLED
- PROCESSING -> SHIPPED, CANCELLED
- SHIPPED -> DELIVERED, RETURNED
- DELIVERED -> COMPLETED
- RETURNED -> REFUNDED

COMPLETED, CANCELLED and REFUNDED are terminal.
"""

from typing import FrozenSet

from .models import OrderStatus
from .protocols import InvalidStatusTransitionError

VALID_TRANSITIONS = {
    OrderStatus.PENDING: frozenset({OrderStatus.PROCESSING, OrderStatus.CANCELLED}),
    OrderStatus.PROCESSING: frozenset({OrderStatus.SHIPPED, OrderStatus.CANCELLED}),
    OrderStatus.SHIPPED: frozenset({OrderStatus.DELIVERED, OrderStatus.RETURNED}),
    OrderStatus.DELIVERED: frozenset({OrderStatus.COMPLETED}),
    OrderStatus.RETURNED: frozenset({OrderStatus.REFUNDED}),
    # Terminal states
    OrderStatus.COMPLETED: frozenset(),
    OrderStatus.CANCELLED: frozenset(),
    OrderStatus.REFUNDED: frozenset(),
}

INITIAL_STATUS = OrderStatus.PENDING

# Statuses that reject every field change, not only status changes
LOCKED_STATUSES = frozenset({OrderStatus.COMPLETED, OrderStatus.CANCELLED})


def allowed_transitions(current: OrderStatus) -> FrozenSet[OrderStatus]:
    return VALID_TRANSITIONS.get(current, frozenset())


def can_transition(current: OrderStatus, target: OrderStatus) -> bool:
    """Check if transition is valid; staying in the same status never is"""
    return target in allowed_transitions(current)


def validate_transition(current: OrderStatus, target: OrderStatus) -> None:
    if not can_transition(current, target):
        raise InvalidStatusTransitionError(current, target)


def is_terminal(status: OrderStatus) -> bool:
    return not allowed_transitions(status)


def is_modifiable(status: OrderStatus) -> bool:
    return status not in LOCKED_STATUSES

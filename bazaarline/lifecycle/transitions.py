"""Order status lifecycle.

The graph below is the only source of truth for client-requested transitions.
Cascades and the storefront webhook write statuses through
``OrderStatusOrchestrator.force_set_status`` instead, which checks
``is_forward_move`` rather than the edge table.
"""

from __future__ import annotations

from typing import Dict, FrozenSet, Optional

from ..domain import OrderAction, OrderStatus

TRANSITIONS: Dict[OrderStatus, FrozenSet[OrderStatus]] = {
    OrderStatus.PENDING: frozenset({OrderStatus.CONFIRMED, OrderStatus.CANCELLED}),
    # confirmed -> shipped lets an admin ship by hand without the intermediate stages
    OrderStatus.CONFIRMED: frozenset(
        {
            OrderStatus.PROCESSING,
            OrderStatus.READY_FOR_SHIPPING,
            OrderStatus.SHIPPED,
            OrderStatus.CANCELLED,
        }
    ),
    OrderStatus.PROCESSING: frozenset(
        {OrderStatus.READY_FOR_SHIPPING, OrderStatus.SHIPPED, OrderStatus.CANCELLED}
    ),
    OrderStatus.READY_FOR_SHIPPING: frozenset({OrderStatus.SHIPPED, OrderStatus.CANCELLED}),
    OrderStatus.SHIPPED: frozenset(
        {OrderStatus.OUT_FOR_DELIVERY, OrderStatus.DELIVERED, OrderStatus.RETURNED}
    ),
    OrderStatus.OUT_FOR_DELIVERY: frozenset({OrderStatus.DELIVERED, OrderStatus.RETURNED}),
    OrderStatus.DELIVERED: frozenset({OrderStatus.RETURNED}),
    OrderStatus.CANCELLED: frozenset(),
    OrderStatus.RETURNED: frozenset(),
    OrderStatus.REFUNDED: frozenset(),
}

TERMINAL_STATUSES: FrozenSet[OrderStatus] = frozenset(
    {OrderStatus.CANCELLED, OrderStatus.RETURNED, OrderStatus.REFUNDED}
)

ACTION_TARGETS: Dict[OrderAction, OrderStatus] = {
    OrderAction.CONFIRM: OrderStatus.CONFIRMED,
    OrderAction.PROCESS: OrderStatus.PROCESSING,
    OrderAction.SHIP: OrderStatus.SHIPPED,
    OrderAction.DELIVER: OrderStatus.DELIVERED,
    OrderAction.CANCEL: OrderStatus.CANCELLED,
    OrderAction.RETURN: OrderStatus.RETURNED,
}

# position along the happy path; used only for cascade writes
_LIFECYCLE_RANK: Dict[OrderStatus, int] = {
    OrderStatus.PENDING: 0,
    OrderStatus.CONFIRMED: 1,
    OrderStatus.PROCESSING: 2,
    OrderStatus.READY_FOR_SHIPPING: 3,
    OrderStatus.SHIPPED: 4,
    OrderStatus.OUT_FOR_DELIVERY: 5,
    OrderStatus.DELIVERED: 6,
}


def is_valid_transition(current: OrderStatus, requested: OrderStatus) -> bool:
    return requested in TRANSITIONS.get(current, frozenset())


def status_for_action(action: OrderAction) -> Optional[OrderStatus]:
    """Target status of an action; ``None`` for update-shipping, which never changes status."""
    return ACTION_TARGETS.get(action)


def is_action_allowed(current: OrderStatus, action: OrderAction) -> bool:
    target = status_for_action(action)
    if target is None:
        return False
    return is_valid_transition(current, target)


def is_forward_move(current: OrderStatus, target: OrderStatus) -> bool:
    """True when ``target`` lies strictly later on the happy path than a non-terminal ``current``."""
    if current in TERMINAL_STATUSES:
        return False
    if target not in _LIFECYCLE_RANK or current not in _LIFECYCLE_RANK:
        return False
    return _LIFECYCLE_RANK[target] > _LIFECYCLE_RANK[current]

"""
Order lifecycle state machine and authorization rules.

The transition table and the per-role target sets live here so every
operation that changes an order's status checks the same rules.
"""
from datetime import datetime, timedelta
from enum import Enum
from typing import Dict, FrozenSet, Optional, Tuple

from .config import CANCELLATION_WINDOW_MINUTES


class OrderStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    PREPARING = "preparing"
    READY = "ready"
    PICKED_UP = "picked_up"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


# Forward-only: no entry ever points back to an earlier status
TRANSITIONS: Dict[OrderStatus, FrozenSet[OrderStatus]] = {
    OrderStatus.PENDING: frozenset({OrderStatus.CONFIRMED, OrderStatus.CANCELLED}),
    OrderStatus.CONFIRMED: frozenset({OrderStatus.PREPARING, OrderStatus.CANCELLED}),
    OrderStatus.PREPARING: frozenset({OrderStatus.READY}),
    OrderStatus.READY: frozenset({OrderStatus.PICKED_UP}),
    OrderStatus.PICKED_UP: frozenset({OrderStatus.DELIVERED}),
    OrderStatus.DELIVERED: frozenset(),
    OrderStatus.CANCELLED: frozenset(),
}

TIMESTAMP_FIELDS: Dict[OrderStatus, str] = {
    OrderStatus.CONFIRMED: "confirmed_at",
    OrderStatus.PREPARING: "preparing_at",
    OrderStatus.READY: "ready_at",
    OrderStatus.PICKED_UP: "picked_up_at",
    OrderStatus.DELIVERED: "delivered_at",
    OrderStatus.CANCELLED: "cancelled_at",
}

RESTAURANT_TARGETS = frozenset({
    OrderStatus.CONFIRMED,
    OrderStatus.PREPARING,
    OrderStatus.READY,
    OrderStatus.CANCELLED,
})
RIDER_TARGETS = frozenset({OrderStatus.PICKED_UP, OrderStatus.DELIVERED})
ALL_STATUSES = frozenset(OrderStatus)

CUSTOMER_CANCELLABLE = frozenset({OrderStatus.PENDING, OrderStatus.CONFIRMED})


def is_restaurant_owner(user, order) -> bool:
    return user.role == "restaurant" and order.restaurant.owner_id == user.id


def is_assigned_rider(user, order) -> bool:
    return user.role == "rider" and order.rider_id is not None and order.rider_id == user.id


def is_customer(user, order) -> bool:
    return user.role == "customer" and order.customer_id == user.id


def allowed_targets(user, order) -> FrozenSet[OrderStatus]:
    """
    Statuses the caller may request for this order.

    Args:
        user: Authenticated caller (needs ``id`` and ``role``)
        order: Order ORM object with its restaurant loaded

    Returns:
        Set of target statuses; empty when the caller has no say over the order
    """
    if user.role == "admin":
        return ALL_STATUSES
    if is_restaurant_owner(user, order):
        return RESTAURANT_TARGETS
    if is_assigned_rider(user, order):
        return RIDER_TARGETS
    return frozenset()


def can_view_order(user, order) -> bool:
    return (
        user.role == "admin"
        or is_customer(user, order)
        or is_restaurant_owner(user, order)
        or is_assigned_rider(user, order)
    )


def validate_status_transition(old_status: str, new_status: str, has_rider: bool = False) -> Tuple[bool, str]:
    """
    Validate that a status transition is allowed.

    Args:
        old_status: Current order status
        new_status: Requested order status
        has_rider: Whether a rider is assigned to the order

    Returns:
        Tuple of (is_valid, error_message)
    """
    try:
        current = OrderStatus(old_status)
        target = OrderStatus(new_status)
    except ValueError:
        return False, f"Unknown status transition: {old_status} -> {new_status}"

    if current == target:
        return False, f"Order is already {current.value}"

    if target not in TRANSITIONS[current]:
        return False, f"Invalid status transition: {current.value} -> {target.value}"

    if target == OrderStatus.PICKED_UP and not has_rider:
        return False, "Order has no rider assigned"

    return True, ""


def can_customer_cancel(order, now: Optional[datetime] = None) -> Tuple[bool, str]:
    """
    Check the customer cancellation rules.

    Pending orders can always be cancelled. Confirmed orders only within
    CANCELLATION_WINDOW_MINUTES of creation.

    Returns:
        Tuple of (is_allowed, error_message)
    """
    now = now or datetime.utcnow()
    if order.status not in {s.value for s in CUSTOMER_CANCELLABLE}:
        return False, "Order cannot be cancelled at this stage"

    elapsed = now - order.created_at
    if order.status == OrderStatus.CONFIRMED.value and elapsed > timedelta(minutes=CANCELLATION_WINDOW_MINUTES):
        return False, f"Order cannot be cancelled after {CANCELLATION_WINDOW_MINUTES} minutes of placement"

    return True, ""


def timestamp_updates(order, target: OrderStatus, now: datetime) -> Dict[str, object]:
    """
    Column values to write when entering ``target``.

    Only the timestamp belonging to the new status is set, and never over a
    value that is already present. Delivery also records the elapsed minutes.
    """
    values: Dict[str, object] = {"status": target.value}
    field = TIMESTAMP_FIELDS.get(target)
    if field and getattr(order, field) is None:
        values[field] = now
    if target == OrderStatus.DELIVERED:
        values["actual_time"] = int((now - order.created_at).total_seconds() // 60)
    return values

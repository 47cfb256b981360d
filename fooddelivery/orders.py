"""
Order lifecycle operations.

Every operation looks up and checks all of its preconditions before the
first write, then commits the state change together with its tracking
entry, and only then publishes notifications.
"""
import logging
import random
import time
from datetime import date, datetime
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy.orm import Session

from . import crud, lifecycle, models, schemas, validators
from .errors import ConflictError, ForbiddenError, InvalidInputError, InvalidStateError, NotFoundError
from .lifecycle import OrderStatus
from .notifications import (
    Notifier,
    notify_new_order,
    notify_order_cancelled,
    notify_status_changed,
)

logger = logging.getLogger(__name__)

ORDER_NUMBER_ATTEMPTS = 5


def generate_order_number() -> str:
    """
    Human-readable order number: "FF" + last 6 digits of epoch millis + 3 random digits.

    Uniqueness is best-effort only. The timestamp part wraps roughly every
    16 minutes, so numbers are not globally sortable; ``created_at`` is the
    authoritative ordering.
    """
    timestamp = str(int(time.time() * 1000))
    suffix = str(random.randint(0, 999)).zfill(3)
    return f"FF{timestamp[-6:]}{suffix}"


def _unique_order_number(db: Session) -> str:
    number = generate_order_number()
    for _ in range(ORDER_NUMBER_ATTEMPTS - 1):
        if not crud.order_number_exists(db, number):
            break
        number = generate_order_number()
    # A collision that survives the retries is rejected by the unique index
    return number


def apply_transition(
    db: Session,
    order: models.Order,
    target: OrderStatus,
    message: str,
    extra_values: Optional[Dict[str, Any]] = None,
) -> Tuple[models.Order, models.OrderTracking]:
    """
    Move an order to ``target`` and append its tracking entry in one commit.

    The write is conditional on the status read by the caller, so a
    concurrent transition makes this one fail instead of overwriting it.

    Args:
        db: Database session
        order: Order as read by the caller (preconditions already checked)
        target: New status
        message: Tracking message
        extra_values: Additional columns to set with the status

    Returns:
        Tuple of (refreshed order, tracking entry)

    Raises:
        ConflictError: if the order's status changed since it was read
    """
    now = datetime.utcnow()
    order_id = order.id
    previous = order.status
    rider_id = order.rider_id

    values = lifecycle.timestamp_updates(order, target, now)
    if extra_values:
        values.update(extra_values)

    if not crud.update_order_if_status(db, order_id, previous, values):
        db.rollback()
        logger.warning(f"Lost status race on order {order_id} ({previous} -> {target.value})")
        raise ConflictError("Order status was changed by another request")

    if target == OrderStatus.DELIVERED and rider_id is not None:
        crud.increment_rider_deliveries(db, rider_id)

    entry = crud.add_tracking_entry(db, order.id, target.value, message, now)
    db.commit()
    db.refresh(order)
    db.refresh(entry)

    logger.info(f"Order {order.id} moved from '{previous}' to '{target.value}'")
    return order, entry


def create_order(db: Session, notifier: Notifier, user, payload: schemas.OrderCreate) -> models.Order:
    """
    Place a new order for the calling customer.

    Prices are read from the catalog and frozen into the order; the caller
    never supplies money amounts.

    Raises:
        InvalidInputError: if the item list is empty, too long or has duplicates
        NotFoundError: if the restaurant or address does not exist
        ForbiddenError: if the address belongs to someone else
        InvalidStateError: if the restaurant is closed, an item is unavailable,
            or the subtotal is below the restaurant's minimum order
    """
    is_valid, error_message = validators.validate_order_items(payload.items)
    if not is_valid:
        raise InvalidInputError(error_message)

    restaurant = crud.get_restaurant(db, payload.restaurant_id)
    if restaurant is None:
        raise NotFoundError("Restaurant not found")
    if restaurant.status != "active" or not restaurant.is_open:
        raise InvalidStateError("Restaurant is not available for orders")

    address = crud.get_address(db, payload.address_id)
    if address is None:
        raise NotFoundError("Address not found")
    if address.user_id != user.id:
        raise ForbiddenError("Invalid delivery address")

    menu_item_ids = [item.menu_item_id for item in payload.items]
    menu_items = crud.get_available_menu_items(db, restaurant.id, menu_item_ids)
    if len(menu_items) != len(payload.items):
        raise InvalidStateError("Some menu items are not available")

    catalog = {menu_item.id: menu_item for menu_item in menu_items}
    lines = [(catalog[item.menu_item_id].price, item.quantity) for item in payload.items]
    totals = validators.calculate_order_totals(lines, restaurant.delivery_fee)

    is_valid, error_message = validators.validate_minimum_order(totals["subtotal"], restaurant.minimum_order)
    if not is_valid:
        raise InvalidStateError(error_message)

    now = datetime.utcnow()
    db_order = models.Order(
        order_number=_unique_order_number(db),
        customer_id=user.id,
        restaurant_id=restaurant.id,
        address_id=address.id,
        payment_method=payload.payment_method,
        special_instructions=payload.special_instructions,
        status=OrderStatus.PENDING.value,
        estimated_time=validators.parse_estimated_time(restaurant.delivery_time),
        created_at=now,
        **totals,
    )
    db_order.items = [
        models.OrderItem(
            menu_item_id=item.menu_item_id,
            name=catalog[item.menu_item_id].name,
            quantity=item.quantity,
            price=catalog[item.menu_item_id].price,
            notes=item.notes,
        )
        for item in payload.items
    ]
    db.add(db_order)
    db.flush()
    crud.add_tracking_entry(db, db_order.id, OrderStatus.PENDING.value, "Order placed successfully", now)
    db.commit()
    db.refresh(db_order)

    logger.info(f"Order {db_order.order_number} placed by user {user.id} at restaurant {restaurant.id}")

    customer = crud.get_user(db, user.id)
    notify_new_order(notifier, db_order, customer.name if customer else None)
    return db_order


def get_order_for_user(db: Session, user, order_id: str) -> models.Order:
    """
    Fetch an order the caller is allowed to see.

    Raises:
        NotFoundError: if the order does not exist
        ForbiddenError: if the caller is not its customer, restaurant owner, rider or an admin
    """
    order = crud.get_order(db, order_id)
    if order is None:
        raise NotFoundError("Order not found")
    if not lifecycle.can_view_order(user, order):
        raise ForbiddenError("Not authorized to view this order")
    return order


def get_order_tracking(db: Session, user, order_id: str) -> List[models.OrderTracking]:
    order = get_order_for_user(db, user, order_id)
    return crud.get_tracking(db, order.id)


def list_orders_for_customer(
    db: Session,
    user,
    status: Optional[str] = None,
    skip: int = 0,
    limit: int = 10,
) -> List[models.Order]:
    return crud.get_orders_for_customer(db, user.id, status=status, skip=skip, limit=limit)


def list_orders_for_restaurant(
    db: Session,
    user,
    status: Optional[str] = None,
    day: Optional[date] = None,
    skip: int = 0,
    limit: int = 10,
) -> List[models.Order]:
    restaurant = crud.get_restaurant_by_owner(db, user.id)
    if restaurant is None:
        raise NotFoundError("Restaurant not found")
    return crud.get_orders_for_restaurant(db, restaurant.id, status=status, day=day, skip=skip, limit=limit)


def update_order_status(
    db: Session,
    notifier: Notifier,
    user,
    order_id: str,
    target: OrderStatus,
    message: Optional[str] = None,
) -> models.Order:
    """
    Move an order to a new status on behalf of its restaurant, rider or an admin.

    Raises:
        NotFoundError: if the order does not exist
        ForbiddenError: if the caller may not request ``target`` for this order
        InvalidStateError: if the transition table does not allow the move
        ConflictError: if a concurrent request changed the status first
    """
    order = crud.get_order(db, order_id)
    if order is None:
        raise NotFoundError("Order not found")

    if target not in lifecycle.allowed_targets(user, order):
        raise ForbiddenError("Not authorized to update this order status")

    is_valid, error_message = lifecycle.validate_status_transition(
        order.status, target.value, has_rider=order.rider_id is not None
    )
    if not is_valid:
        raise InvalidStateError(error_message)

    message = message or f"Order {target.value}"
    extra_values = {"cancellation_reason": message} if target == OrderStatus.CANCELLED else None
    order, entry = apply_transition(db, order, target, message, extra_values)

    notify_status_changed(notifier, order, target.value, message, entry.timestamp)
    return order


def cancel_order(db: Session, notifier: Notifier, user, order_id: str, reason: Optional[str] = None) -> models.Order:
    """
    Cancel an order on behalf of its customer.

    Pending orders can always be cancelled; confirmed orders only within the
    cancellation window after creation.

    Raises:
        NotFoundError: if the order does not exist
        ForbiddenError: if the caller is not the order's customer
        InvalidStateError: if the status or the elapsed time forbids cancellation
        ConflictError: if a concurrent request changed the status first
    """
    order = crud.get_order(db, order_id)
    if order is None:
        raise NotFoundError("Order not found")

    if not lifecycle.is_customer(user, order):
        raise ForbiddenError("Not authorized to cancel this order")

    is_allowed, error_message = lifecycle.can_customer_cancel(order)
    if not is_allowed:
        raise InvalidStateError(error_message)

    reason = reason or "No reason provided"
    order, _ = apply_transition(
        db,
        order,
        OrderStatus.CANCELLED,
        f"Order cancelled by customer. Reason: {reason}",
        {"cancellation_reason": reason},
    )

    notify_order_cancelled(notifier, order, reason)
    return order


def confirm_after_payment(db: Session, notifier: Notifier, order: models.Order) -> models.Order:
    """Confirm a pending order whose payment succeeded."""
    message = "Payment completed successfully"
    order, entry = apply_transition(db, order, OrderStatus.CONFIRMED, message)
    notify_status_changed(notifier, order, OrderStatus.CONFIRMED.value, message, entry.timestamp)
    return order

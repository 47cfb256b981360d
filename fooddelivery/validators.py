"""
Business validation and pricing for new orders.

Provides the checks that run before an order is written and the one place
where an order's money breakdown is computed.
"""
from decimal import Decimal, ROUND_HALF_UP
from typing import Dict, List, Optional, Tuple

from . import schemas
from .config import DEFAULT_DELIVERY_FEE, PLATFORM_FEE_RATE, TAX_RATE, DEFAULT_ESTIMATED_TIME

MAX_ORDER_LINES = 100
WHOLE_UNIT = Decimal("1")


def validate_order_items(items: List[schemas.OrderItemCreate]) -> Tuple[bool, str]:
    """
    Validate requested order items for business rules.

    Args:
        items: List of requested order items

    Returns:
        Tuple of (is_valid, error_message)
    """
    if not items:
        return False, "Order must contain at least one item"

    if len(items) > MAX_ORDER_LINES:
        return False, f"Order cannot contain more than {MAX_ORDER_LINES} items"

    menu_item_ids = [item.menu_item_id for item in items]
    if len(menu_item_ids) != len(set(menu_item_ids)):
        return False, "Order contains duplicate menu items"

    for item in items:
        if item.quantity < 1:
            return False, f"Item {item.menu_item_id}: quantity must be at least 1"

    return True, ""


def round_currency(amount: Decimal) -> Decimal:
    """Round to a whole currency unit, halves away from zero."""
    return amount.quantize(WHOLE_UNIT, rounding=ROUND_HALF_UP)


def calculate_order_totals(lines: List[Tuple[Decimal, int]], delivery_fee: Optional[Decimal]) -> Dict[str, Decimal]:
    """
    Compute the frozen price breakdown of an order.

    Args:
        lines: (unit price, quantity) pairs taken from the catalog
        delivery_fee: Restaurant's configured fee; None falls back to the platform default

    Returns:
        Dict with subtotal, delivery_fee, platform_fee, taxes and total

    Example:
        >>> calculate_order_totals([(Decimal("100"), 2), (Decimal("50"), 1)], Decimal("40"))["total"]
        Decimal('308')
    """
    subtotal = sum((Decimal(str(price)) * quantity for price, quantity in lines), Decimal("0"))
    fee = DEFAULT_DELIVERY_FEE if delivery_fee is None else Decimal(str(delivery_fee))
    platform_fee = round_currency(subtotal * PLATFORM_FEE_RATE)
    taxes = round_currency(subtotal * TAX_RATE)
    total = subtotal + fee + platform_fee + taxes

    return {
        "subtotal": subtotal,
        "delivery_fee": fee,
        "platform_fee": platform_fee,
        "taxes": taxes,
        "total": total,
    }


def validate_minimum_order(subtotal: Decimal, minimum_order: Optional[Decimal]) -> Tuple[bool, str]:
    """
    Validate that the subtotal reaches the restaurant's minimum order value.

    Returns:
        Tuple of (is_valid, error_message)
    """
    minimum = Decimal(str(minimum_order or 0))
    if subtotal < minimum:
        return False, f"Minimum order value is {minimum}"
    return True, ""


def parse_estimated_time(delivery_time: Optional[str]) -> int:
    """
    Upper bound of an advertised delivery window such as "30-40".

    Falls back to DEFAULT_ESTIMATED_TIME when the value is missing or malformed.
    """
    if not delivery_time:
        return DEFAULT_ESTIMATED_TIME
    upper = delivery_time.split("-")[-1].strip()
    try:
        minutes = int(upper)
    except ValueError:
        return DEFAULT_ESTIMATED_TIME
    return minutes if minutes > 0 else DEFAULT_ESTIMATED_TIME

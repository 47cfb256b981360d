"""
Payment operations for orders.

The processor is treated as an opaque intent/confirm/webhook/refund
service; this module only records its outcome on the order and, on
success, confirms a pending order through the lifecycle engine.
"""
import logging
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, List, Optional

import httpx
import stripe
from sqlalchemy.orm import Session

from . import config, crud, models, orders
from .clients import payment_client
from .errors import ForbiddenError, InvalidInputError, InvalidStateError, NotFoundError, UpstreamServiceError
from .lifecycle import OrderStatus, is_customer
from .notifications import Notifier, notify_payment_completed

logger = logging.getLogger(__name__)


def to_minor_units(amount: Decimal) -> int:
    return int((Decimal(str(amount)) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def _get_customer_order(db: Session, user, order_id: str, action: str) -> models.Order:
    order = crud.get_order(db, order_id)
    if order is None:
        raise NotFoundError("Order not found")
    if not is_customer(user, order):
        raise ForbiddenError(f"Not authorized to {action} for this order")
    return order


async def create_payment_intent(db: Session, user, order_id: str) -> Dict[str, str]:
    """
    Open a payment intent for the order's stored total.

    Raises:
        NotFoundError / ForbiddenError: unknown order or not the caller's
        InvalidStateError: if the order is already paid or cancelled
        UpstreamServiceError: if the processor cannot be reached
    """
    order = _get_customer_order(db, user, order_id, "pay")
    if order.payment_status == "completed":
        raise InvalidStateError("Order has already been paid")
    if order.status == OrderStatus.CANCELLED.value:
        raise InvalidStateError("Cannot pay for a cancelled order")

    try:
        intent = await payment_client.create_payment_intent(
            amount=to_minor_units(order.total),
            currency=config.PAYMENT_CURRENCY,
            metadata={"order_id": order.id, "customer_id": str(user.id)},
            description=f"Payment for order {order.order_number}",
        )
    except httpx.HTTPError as e:
        logger.error(f"Failed to create payment intent for order {order.id}: {e}")
        raise UpstreamServiceError(f"Service communication error: {str(e)}")

    crud.set_payment_fields(db, order.id, {"payment_id": intent["id"]})
    db.commit()
    logger.info(f"Payment intent {intent['id']} created for order {order.id}")

    return {"client_secret": intent["client_secret"], "payment_intent_id": intent["id"]}


def record_payment_success(db: Session, notifier: Notifier, order: models.Order) -> models.Order:
    """
    Mark an order's payment completed; confirm it if it is still pending.

    Idempotent: an already completed payment is left untouched.
    """
    if order.payment_status == "completed":
        return order

    crud.set_payment_fields(db, order.id, {"payment_status": "completed"})
    if order.status == OrderStatus.PENDING.value:
        order = orders.confirm_after_payment(db, notifier, order)
    else:
        db.commit()
        db.refresh(order)

    logger.info(f"Payment completed for order {order.id}")
    notify_payment_completed(notifier, order)
    return order


async def confirm_payment(db: Session, notifier: Notifier, user, order_id: str, payment_intent_id: str) -> Dict[str, str]:
    """
    Check the processor for the intent's outcome and record it.

    Raises:
        InvalidStateError: if the intent belongs to another order or has not succeeded
        UpstreamServiceError: if the processor cannot be reached
    """
    order = _get_customer_order(db, user, order_id, "confirm payment")
    if order.payment_id and order.payment_id != payment_intent_id:
        raise InvalidStateError("Payment intent does not belong to this order")

    try:
        intent = await payment_client.retrieve_payment_intent(payment_intent_id)
    except httpx.HTTPError as e:
        logger.error(f"Failed to retrieve payment intent {payment_intent_id}: {e}")
        raise UpstreamServiceError(f"Service communication error: {str(e)}")

    if intent.get("status") != "succeeded":
        raise InvalidStateError(f"Payment not completed (status: {intent.get('status')})")

    order = record_payment_success(db, notifier, order)
    return {"payment_status": order.payment_status, "order_status": order.status}


def handle_webhook(db: Session, notifier: Notifier, payload: bytes, signature: Optional[str]) -> Dict[str, Any]:
    """
    Process a signed processor event.

    Raises:
        InvalidInputError: if the signature does not verify or the body is not JSON
    """
    try:
        event = payment_client.construct_event(payload, signature, config.STRIPE_WEBHOOK_SECRET)
    except (stripe.SignatureVerificationError, ValueError) as e:
        logger.error(f"Webhook signature verification failed: {e}")
        raise InvalidInputError(f"Webhook Error: {str(e)}")

    event_type = event.get("type")
    intent = event.get("data", {}).get("object", {})
    order_id = intent.get("metadata", {}).get("order_id")

    if event_type not in ("payment_intent.succeeded", "payment_intent.payment_failed"):
        logger.info(f"Unhandled event type {event_type}")
        return {"received": True}

    order = crud.get_order(db, order_id) if order_id else None
    if order is None:
        logger.warning(f"Webhook {event_type} references unknown order {order_id}")
        return {"received": True}

    if event_type == "payment_intent.succeeded":
        record_payment_success(db, notifier, order)
    elif order.payment_status != "completed":
        crud.set_payment_fields(db, order.id, {"payment_status": "failed"})
        db.commit()
        logger.info(f"Payment failed for order {order.id}")

    return {"received": True}


def payment_history(db: Session, user, skip: int = 0, limit: int = 10) -> List[models.Order]:
    return crud.get_payment_history(db, user.id, skip=skip, limit=limit)


async def refund_payment(db: Session, order_id: str, amount: Optional[Decimal] = None,
                         reason: Optional[str] = None) -> Dict[str, Any]:
    """
    Refund an order's completed payment (admin only).

    Raises:
        NotFoundError: if the order does not exist
        InvalidStateError: if the order has no completed payment or the amount exceeds the total
        UpstreamServiceError: if the processor cannot be reached
    """
    order = crud.get_order(db, order_id)
    if order is None:
        raise NotFoundError("Order not found")
    if not order.payment_id:
        raise InvalidStateError("No payment found for this order")
    if order.payment_status != "completed":
        raise InvalidStateError("Only completed payments can be refunded")
    if amount is not None and amount > order.total:
        raise InvalidStateError("Refund amount exceeds order total")

    try:
        refund = await payment_client.create_refund(
            order.payment_id,
            amount=to_minor_units(amount) if amount is not None else None,
            reason=reason,
        )
    except httpx.HTTPError as e:
        logger.error(f"Refund failed for order {order.id}: {e}")
        raise UpstreamServiceError(f"Service communication error: {str(e)}")

    crud.set_payment_fields(db, order.id, {"payment_status": "refunded"})
    db.commit()
    logger.info(f"Refund {refund['id']} issued for order {order.id}")

    return {
        "refund_id": refund["id"],
        "amount": Decimal(refund["amount"]) / 100,
        "status": refund["status"],
    }

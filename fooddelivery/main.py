"""
Orders Service API

This module implements the FastAPI application for the food-delivery
order lifecycle: placing orders, moving them through their statuses,
dispatching riders and recording payments.

Endpoints:
    POST /orders: Place an order (customer)
    GET /orders/my-orders: Customer's orders
    GET /orders/restaurant-orders: Orders of the caller's restaurant
    GET /orders/{order_id}: Order with items and tracking
    PATCH /orders/{order_id}/status: Status transition (restaurant, rider, admin)
    PATCH /orders/{order_id}/cancel: Customer cancellation
    GET /orders/{order_id}/tracking: Tracking log
    /riders/...: Rider profile, availability, location, dispatch and stats
    /payments/...: Payment intents, confirmation, webhook, history and refunds
    GET /healthz: Health check endpoint for orchestration systems

Attributes:
    app (FastAPI): The FastAPI application instance configured with the title "orders-service"
"""
import logging
from datetime import date
from typing import List, Optional

from fastapi import FastAPI, Depends, Header, Query, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from . import auth, models, orders, payments, riders, schemas
from .config import LOG_LEVEL
from .database import engine, get_db
from .errors import ServiceError
from .notifications import Notifier, get_notifier

logging.basicConfig(level=LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
logger = logging.getLogger(__name__)

# Create database tables
models.Base.metadata.create_all(bind=engine)

app = FastAPI(title="orders-service")


@app.exception_handler(ServiceError)
async def service_error_handler(request: Request, exc: ServiceError):
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message, "error": exc.kind})


@app.exception_handler(SQLAlchemyError)
async def storage_error_handler(request: Request, exc: SQLAlchemyError):
    logger.exception(f"Storage error on {request.method} {request.url.path}")
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"detail": "Internal server error", "error": "internal_error"},
    )


@app.get("/healthz", response_model=dict)
def health():
    """
    Health check endpoint for the orders service.

    Returns:
        dict: {"status": "healthy"} when the service is operational.
    """
    return {"status": "healthy"}


# ---------------------------------------------------------------------------
# Orders
# ---------------------------------------------------------------------------

@app.post("/orders", response_model=schemas.OrderDetail, status_code=status.HTTP_201_CREATED)
def create_order(
    order: schemas.OrderCreate,
    db: Session = Depends(get_db),
    notifier: Notifier = Depends(get_notifier),
    current_user: auth.CurrentUser = Depends(auth.require_roles("customer"))
):
    """
    Place a new order (customers only).

    Prices come from the restaurant's current catalog and are frozen into
    the order together with delivery fee, platform fee and taxes.

    Raises:
        404 if the restaurant or address does not exist
        403 if the address belongs to another user
        400 if the restaurant is closed, items are unavailable or the minimum order is not met
    """
    return orders.create_order(db, notifier, current_user, order)


@app.get("/orders/my-orders", response_model=List[schemas.Order])
def list_my_orders(
    status_filter: Optional[str] = Query(None, alias="status"),
    skip: int = Query(0, ge=0),
    limit: int = Query(10, ge=1, le=100),
    db: Session = Depends(get_db),
    current_user: auth.CurrentUser = Depends(auth.require_roles("customer"))
):
    """List the caller's orders, newest first."""
    return orders.list_orders_for_customer(db, current_user, status=status_filter, skip=skip, limit=limit)


@app.get("/orders/restaurant-orders", response_model=List[schemas.Order])
def list_restaurant_orders(
    status_filter: Optional[str] = Query(None, alias="status"),
    day: Optional[date] = Query(None, alias="date"),
    skip: int = Query(0, ge=0),
    limit: int = Query(10, ge=1, le=100),
    db: Session = Depends(get_db),
    current_user: auth.CurrentUser = Depends(auth.require_roles("restaurant"))
):
    """List orders of the restaurant owned by the caller, optionally for one day."""
    return orders.list_orders_for_restaurant(
        db, current_user, status=status_filter, day=day, skip=skip, limit=limit
    )


@app.get("/orders/{order_id}", response_model=schemas.OrderDetail)
def get_order(
    order_id: str,
    db: Session = Depends(get_db),
    current_user: auth.CurrentUser = Depends(auth.get_current_user)
):
    """
    Get a single order (customer, restaurant owner, assigned rider or admin).

    Raises:
        404 if order not found
        403 if not authorized
    """
    return orders.get_order_for_user(db, current_user, order_id)


@app.patch("/orders/{order_id}/status", response_model=schemas.Order)
def update_order_status(
    order_id: str,
    update: schemas.OrderStatusUpdate,
    db: Session = Depends(get_db),
    notifier: Notifier = Depends(get_notifier),
    current_user: auth.CurrentUser = Depends(auth.get_current_user)
):
    """
    Move an order to its next status.

    Restaurant owners may confirm, prepare, mark ready or cancel; the
    assigned rider may mark picked up or delivered; admins may request any
    status the transition table allows.

    Raises:
        404 if order not found
        403 if the caller may not request this status
        400 if the transition is not allowed from the current status
        409 if another request changed the status first
    """
    return orders.update_order_status(db, notifier, current_user, order_id, update.status, update.message)


@app.patch("/orders/{order_id}/cancel", response_model=schemas.Order)
def cancel_order(
    order_id: str,
    cancel: schemas.OrderCancel,
    db: Session = Depends(get_db),
    notifier: Notifier = Depends(get_notifier),
    current_user: auth.CurrentUser = Depends(auth.require_roles("customer"))
):
    """
    Cancel an order (its customer only).

    Pending orders can always be cancelled; confirmed orders only within the
    cancellation window after placement.
    """
    return orders.cancel_order(db, notifier, current_user, order_id, cancel.reason)


@app.get("/orders/{order_id}/tracking", response_model=List[schemas.OrderTrackingEntry])
def get_order_tracking(
    order_id: str,
    db: Session = Depends(get_db),
    current_user: auth.CurrentUser = Depends(auth.get_current_user)
):
    """Tracking log of an order, oldest entry first."""
    return orders.get_order_tracking(db, current_user, order_id)


# ---------------------------------------------------------------------------
# Riders
# ---------------------------------------------------------------------------

@app.post("/riders", response_model=schemas.RiderProfile, status_code=status.HTTP_201_CREATED)
def create_rider_profile(
    rider: schemas.RiderCreate,
    db: Session = Depends(get_db),
    current_user: auth.CurrentUser = Depends(auth.require_roles("rider"))
):
    return riders.create_rider_profile(db, current_user, rider)


@app.get("/riders/profile", response_model=schemas.RiderProfile)
def get_rider_profile(
    db: Session = Depends(get_db),
    current_user: auth.CurrentUser = Depends(auth.require_roles("rider"))
):
    return riders.get_rider_profile(db, current_user)


@app.put("/riders/profile", response_model=schemas.RiderProfile)
def update_rider_profile(
    rider: schemas.RiderUpdate,
    db: Session = Depends(get_db),
    current_user: auth.CurrentUser = Depends(auth.require_roles("rider"))
):
    """
    Replace the caller's vehicle type, vehicle number and license number.

    Raises:
        404 if the caller has no rider profile
    """
    return riders.update_rider_profile(db, current_user, rider)


@app.patch("/riders/toggle-availability", response_model=schemas.RiderProfile)
def toggle_rider_availability(
    db: Session = Depends(get_db),
    current_user: auth.CurrentUser = Depends(auth.require_roles("rider"))
):
    return riders.toggle_availability(db, current_user)


@app.patch("/riders/location", response_model=schemas.RiderProfile)
def update_rider_location(
    location: schemas.RiderLocationUpdate,
    db: Session = Depends(get_db),
    current_user: auth.CurrentUser = Depends(auth.require_roles("rider"))
):
    return riders.update_location(db, current_user, location.latitude, location.longitude)


@app.get("/riders/orders", response_model=List[schemas.Order])
def list_rider_orders(
    status_filter: Optional[str] = Query(None, alias="status"),
    skip: int = Query(0, ge=0),
    limit: int = Query(10, ge=1, le=100),
    db: Session = Depends(get_db),
    current_user: auth.CurrentUser = Depends(auth.require_roles("rider"))
):
    """Orders assigned to the calling rider, newest first."""
    return riders.list_rider_orders(db, current_user, status=status_filter, skip=skip, limit=limit)


@app.get("/riders/available-orders", response_model=List[schemas.AvailableOrder])
def list_available_orders(
    latitude: Optional[float] = Query(None, ge=-90, le=90),
    longitude: Optional[float] = Query(None, ge=-180, le=180),
    radius: Optional[float] = Query(None, gt=0, description="Search radius in km"),
    db: Session = Depends(get_db),
    current_user: auth.CurrentUser = Depends(auth.require_roles("rider"))
):
    """
    Ready orders without a rider, oldest-ready first.

    With a location, orders whose restaurant is farther than ``radius`` km
    are left out; restaurants without coordinates are always included.
    """
    return riders.list_available_orders(db, current_user, latitude, longitude, radius)


@app.post("/riders/accept-order/{order_id}", response_model=schemas.Order)
def accept_order(
    order_id: str,
    db: Session = Depends(get_db),
    notifier: Notifier = Depends(get_notifier),
    current_user: auth.CurrentUser = Depends(auth.require_roles("rider"))
):
    """
    Claim a ready order. Exactly one rider can win a given order.

    Raises:
        404 if the rider profile or order does not exist
        400 if the rider is unavailable or the order is not ready
        409 if the order is already claimed
    """
    return riders.accept_order(db, notifier, current_user, order_id)


@app.get("/riders/stats", response_model=schemas.RiderStats)
def get_rider_stats(
    period: str = "7d",
    db: Session = Depends(get_db),
    current_user: auth.CurrentUser = Depends(auth.require_roles("rider"))
):
    """Delivery statistics for period 1d, 7d or 30d."""
    return riders.get_rider_stats(db, current_user, period)


# ---------------------------------------------------------------------------
# Payments
# ---------------------------------------------------------------------------

@app.post("/payments/create-intent", response_model=schemas.PaymentIntent)
async def create_payment_intent(
    request_data: schemas.PaymentIntentCreate,
    db: Session = Depends(get_db),
    current_user: auth.CurrentUser = Depends(auth.require_roles("customer"))
):
    """Open a payment intent for the order's total."""
    return await payments.create_payment_intent(db, current_user, request_data.order_id)


@app.post("/payments/confirm-payment", response_model=schemas.PaymentConfirmation)
async def confirm_payment(
    request_data: schemas.PaymentConfirm,
    db: Session = Depends(get_db),
    notifier: Notifier = Depends(get_notifier),
    current_user: auth.CurrentUser = Depends(auth.require_roles("customer"))
):
    """Record a succeeded payment; a pending order becomes confirmed."""
    return await payments.confirm_payment(
        db, notifier, current_user, request_data.order_id, request_data.payment_intent_id
    )


@app.post("/payments/webhook")
async def payment_webhook(
    request: Request,
    stripe_signature: Optional[str] = Header(None, alias="Stripe-Signature"),
    db: Session = Depends(get_db),
    notifier: Notifier = Depends(get_notifier)
):
    """Signed event callback from the payment processor."""
    payload = await request.body()
    return payments.handle_webhook(db, notifier, payload, stripe_signature)


@app.get("/payments/history", response_model=List[schemas.PaymentHistoryEntry])
def payment_history(
    skip: int = Query(0, ge=0),
    limit: int = Query(10, ge=1, le=100),
    db: Session = Depends(get_db),
    current_user: auth.CurrentUser = Depends(auth.require_roles("customer"))
):
    return payments.payment_history(db, current_user, skip=skip, limit=limit)


@app.post("/payments/refund", response_model=schemas.Refund)
async def refund_payment(
    request_data: schemas.RefundCreate,
    db: Session = Depends(get_db),
    current_user: auth.CurrentUser = Depends(auth.require_admin)
):
    """Refund an order's payment, fully or partially (admins only)."""
    return await payments.refund_payment(db, request_data.order_id, request_data.amount, request_data.reason)

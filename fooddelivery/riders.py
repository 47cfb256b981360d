"""
Rider profile and dispatch operations.

Riders discover ready orders near them and claim one with an atomic
conditional write; the order row is the only place a claim is recorded.
"""
import logging
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from . import crud, models, schemas
from .config import AVAILABLE_ORDERS_LIMIT, RIDER_SEARCH_RADIUS_KM
from .errors import ConflictError, InvalidStateError, NotFoundError
from .geo import haversine_km
from .lifecycle import OrderStatus
from .notifications import Notifier, notify_rider_assigned

logger = logging.getLogger(__name__)

STATS_PERIODS = {
    "1d": timedelta(days=1),
    "7d": timedelta(days=7),
    "30d": timedelta(days=30),
}


def _get_profile(db: Session, user) -> models.Rider:
    rider = crud.get_rider(db, user.id)
    if rider is None:
        raise NotFoundError("Rider profile not found")
    return rider


def _get_available_profile(db: Session, user) -> models.Rider:
    rider = _get_profile(db, user)
    if not rider.is_available:
        raise InvalidStateError("Rider is not available")
    return rider


def create_rider_profile(db: Session, user, payload: schemas.RiderCreate) -> models.Rider:
    """
    Create the calling user's rider profile. New riders start unavailable.

    Raises:
        InvalidStateError: if the user already has a profile
    """
    if crud.get_rider(db, user.id) is not None:
        raise InvalidStateError("Rider profile already exists")

    rider = models.Rider(user_id=user.id, **payload.model_dump())
    db.add(rider)
    db.commit()
    db.refresh(rider)
    logger.info(f"Rider profile created for user {user.id}")
    return rider


def get_rider_profile(db: Session, user) -> models.Rider:
    return _get_profile(db, user)


def update_rider_profile(db: Session, user, payload: schemas.RiderUpdate) -> models.Rider:
    """
    Replace the vehicle details of the calling rider's profile.

    Raises:
        NotFoundError: if the user has no rider profile
    """
    rider = _get_profile(db, user)
    for field, value in payload.model_dump().items():
        setattr(rider, field, value)
    db.commit()
    db.refresh(rider)
    logger.info(f"Rider profile updated for user {user.id}")
    return rider


def toggle_availability(db: Session, user) -> models.Rider:
    rider = _get_profile(db, user)
    rider.is_available = not rider.is_available
    db.commit()
    db.refresh(rider)
    logger.info(f"Rider {user.id} is now {'available' if rider.is_available else 'unavailable'}")
    return rider


def update_location(db: Session, user, latitude: float, longitude: float) -> models.Rider:
    rider = _get_profile(db, user)
    rider.current_lat = latitude
    rider.current_lng = longitude
    db.commit()
    db.refresh(rider)
    return rider


def list_rider_orders(
    db: Session,
    user,
    status: Optional[str] = None,
    skip: int = 0,
    limit: int = 10,
) -> List[models.Order]:
    rider = _get_profile(db, user)
    return crud.get_orders_for_rider(db, rider.user_id, status=status, skip=skip, limit=limit)


def list_available_orders(
    db: Session,
    user,
    latitude: Optional[float] = None,
    longitude: Optional[float] = None,
    radius: Optional[float] = None,
) -> List[Dict[str, Any]]:
    """
    Ready, unassigned orders a rider can pick up, oldest-ready first.

    When the rider's location is given, orders whose restaurant lies farther
    than ``radius`` km are dropped. Restaurants without coordinates are kept.

    Args:
        db: Database session
        user: Calling rider
        latitude: Rider's current latitude (optional)
        longitude: Rider's current longitude (optional)
        radius: Search radius in km, defaults to RIDER_SEARCH_RADIUS_KM

    Returns:
        List of dicts with ``order``, ``restaurant`` and ``distance_km``, at most AVAILABLE_ORDERS_LIMIT

    Raises:
        NotFoundError: if the caller has no rider profile
        InvalidStateError: if the rider is not available
    """
    _get_available_profile(db, user)
    max_radius = RIDER_SEARCH_RADIUS_KM if radius is None else radius
    has_location = latitude is not None and longitude is not None

    candidates = []
    for order in crud.get_ready_unassigned_orders(db):
        restaurant = order.restaurant
        distance = None
        if has_location and restaurant.latitude is not None and restaurant.longitude is not None:
            distance = haversine_km(latitude, longitude, restaurant.latitude, restaurant.longitude)
            if distance > max_radius:
                continue

        candidates.append({
            "order": schemas.Order.model_validate(order),
            "restaurant": schemas.RestaurantSummary.model_validate(restaurant),
            "distance_km": round(distance, 2) if distance is not None else None,
        })
        if len(candidates) >= AVAILABLE_ORDERS_LIMIT:
            break

    return candidates


def accept_order(db: Session, notifier: Notifier, user, order_id: str) -> models.Order:
    """
    Claim a ready order for the calling rider.

    Raises:
        NotFoundError: if the rider profile or the order does not exist
        InvalidStateError: if the rider is unavailable or the order is not ready
        ConflictError: if another rider already holds or just won the claim
    """
    rider = _get_available_profile(db, user)

    order = crud.get_order(db, order_id)
    if order is None:
        raise NotFoundError("Order not found")

    if order.status != OrderStatus.READY.value:
        raise InvalidStateError("Order is not ready for pickup")

    if order.rider_id is not None:
        raise ConflictError("Order has already been accepted by another rider")

    rider_id = rider.user_id
    if not crud.claim_order(db, order.id, rider_id):
        db.rollback()
        logger.warning(f"Rider {rider_id} lost the claim on order {order_id}")
        raise ConflictError("Order has already been accepted by another rider")

    rider_user = crud.get_user(db, rider.user_id)
    rider_name = rider_user.name if rider_user else f"#{rider.user_id}"
    rider_phone = rider_user.phone if rider_user else None

    crud.add_tracking_entry(db, order.id, OrderStatus.READY.value, f"Order accepted by rider {rider_name}")
    db.commit()
    db.refresh(order)

    logger.info(f"Order {order.id} accepted by rider {rider.user_id}")
    notify_rider_assigned(notifier, order, rider_name, rider_phone)
    return order


def get_rider_stats(db: Session, user, period: str = "7d") -> Dict[str, Any]:
    """Delivery statistics for the last day, week or month (unknown periods fall back to a week)."""
    rider = _get_profile(db, user)
    if period not in STATS_PERIODS:
        period = "7d"
    since = datetime.utcnow() - STATS_PERIODS[period]

    stats = crud.get_rider_stats(db, rider.user_id, since)
    stats.update({
        "period": period,
        "rating": rider.rating,
        "total_lifetime_deliveries": rider.total_deliveries,
    })
    return stats

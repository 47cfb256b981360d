"""
Database operations for the Orders service.

Lookups return ``None`` (or empty lists) when nothing matches; the
operation layers turn that into typed errors. Writes that race with other
requests are expressed as conditional ``UPDATE ... WHERE`` statements whose
affected row count tells the caller whether it won.
"""
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from sqlalchemy import func, update
from sqlalchemy.orm import Session

from . import models


def get_user(db: Session, user_id: int) -> Optional[models.User]:
    return db.query(models.User).filter(models.User.id == user_id).first()


def get_restaurant(db: Session, restaurant_id: str) -> Optional[models.Restaurant]:
    return db.query(models.Restaurant).filter(models.Restaurant.id == restaurant_id).first()


def get_restaurant_by_owner(db: Session, owner_id: int) -> Optional[models.Restaurant]:
    return db.query(models.Restaurant).filter(models.Restaurant.owner_id == owner_id).first()


def get_address(db: Session, address_id: str) -> Optional[models.Address]:
    return db.query(models.Address).filter(models.Address.id == address_id).first()


def get_available_menu_items(db: Session, restaurant_id: str, menu_item_ids: List[str]) -> List[models.MenuItem]:
    """
    Retrieve the requested menu items that belong to the restaurant and are available.

    Args:
        db: Database session
        restaurant_id: Restaurant the items must belong to
        menu_item_ids: Requested menu item IDs

    Returns:
        Matching MenuItem objects; shorter than ``menu_item_ids`` if any is missing
    """
    return (
        db.query(models.MenuItem)
        .filter(
            models.MenuItem.id.in_(menu_item_ids),
            models.MenuItem.restaurant_id == restaurant_id,
            models.MenuItem.is_available.is_(True),
        )
        .all()
    )


def get_order(db: Session, order_id: str) -> Optional[models.Order]:
    """
    Retrieve a single order by ID.

    Args:
        db: Database session
        order_id: ID of the order to retrieve

    Returns:
        Order object or None if not found
    """
    return db.query(models.Order).filter(models.Order.id == order_id).first()


def order_number_exists(db: Session, order_number: str) -> bool:
    return db.query(models.Order.id).filter(models.Order.order_number == order_number).first() is not None


def get_orders_for_customer(
    db: Session,
    customer_id: int,
    status: Optional[str] = None,
    skip: int = 0,
    limit: int = 10,
) -> List[models.Order]:
    query = db.query(models.Order).filter(models.Order.customer_id == customer_id)
    if status:
        query = query.filter(models.Order.status == status)
    return query.order_by(models.Order.created_at.desc()).offset(skip).limit(limit).all()


def get_orders_for_restaurant(
    db: Session,
    restaurant_id: str,
    status: Optional[str] = None,
    day: Optional[datetime] = None,
    skip: int = 0,
    limit: int = 10,
) -> List[models.Order]:
    """
    Retrieve a restaurant's orders, newest first.

    Args:
        db: Database session
        restaurant_id: Restaurant whose orders to list
        status: Optional status filter
        day: Optional day (UTC) the orders were created on
        skip: Number of records to skip (offset)
        limit: Maximum number of records to return

    Returns:
        List of Order objects
    """
    query = db.query(models.Order).filter(models.Order.restaurant_id == restaurant_id)
    if status:
        query = query.filter(models.Order.status == status)
    if day:
        start = datetime(day.year, day.month, day.day)
        query = query.filter(models.Order.created_at >= start, models.Order.created_at < start + timedelta(days=1))
    return query.order_by(models.Order.created_at.desc()).offset(skip).limit(limit).all()


def get_orders_for_rider(
    db: Session,
    rider_id: int,
    status: Optional[str] = None,
    skip: int = 0,
    limit: int = 10,
) -> List[models.Order]:
    query = db.query(models.Order).filter(models.Order.rider_id == rider_id)
    if status:
        query = query.filter(models.Order.status == status)
    return query.order_by(models.Order.created_at.desc()).offset(skip).limit(limit).all()


def get_ready_unassigned_orders(db: Session) -> List[models.Order]:
    """Orders waiting for a rider, oldest-ready first."""
    return (
        db.query(models.Order)
        .filter(models.Order.status == "ready", models.Order.rider_id.is_(None))
        .order_by(models.Order.ready_at.asc(), models.Order.created_at.asc())
        .all()
    )


def get_tracking(db: Session, order_id: str) -> List[models.OrderTracking]:
    return (
        db.query(models.OrderTracking)
        .filter(models.OrderTracking.order_id == order_id)
        .order_by(models.OrderTracking.timestamp.asc(), models.OrderTracking.id.asc())
        .all()
    )


def add_tracking_entry(
    db: Session,
    order_id: str,
    status: str,
    message: str,
    now: Optional[datetime] = None,
) -> models.OrderTracking:
    """
    Append a tracking entry without committing.

    The timestamp is nudged forward by a microsecond when the clock has not
    advanced past the order's latest entry, so entries stay strictly ordered.

    Args:
        db: Database session
        order_id: Order identifier
        status: Status label to record
        message: Human-readable description
        now: Server time of the transition (defaults to utcnow)

    Returns:
        The pending OrderTracking object
    """
    timestamp = now or datetime.utcnow()
    latest = (
        db.query(func.max(models.OrderTracking.timestamp))
        .filter(models.OrderTracking.order_id == order_id)
        .scalar()
    )
    if latest is not None and timestamp <= latest:
        timestamp = latest + timedelta(microseconds=1)

    entry = models.OrderTracking(order_id=order_id, status=status, message=message, timestamp=timestamp)
    db.add(entry)
    db.flush()
    return entry


def update_order_if_status(db: Session, order_id: str, expected_status: str, values: Dict[str, Any]) -> bool:
    """
    Update an order only if its status is still ``expected_status``.

    Returns:
        True if the row was updated, False if another write changed the status first
    """
    result = db.execute(
        update(models.Order)
        .where(models.Order.id == order_id, models.Order.status == expected_status)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


def claim_order(db: Session, order_id: str, rider_id: int) -> bool:
    """
    Assign a rider to a ready order if nobody has claimed it yet.

    This is a single compare-and-set statement; two concurrent claims can
    never both report success.

    Returns:
        True if this rider won the claim, False otherwise
    """
    result = db.execute(
        update(models.Order)
        .where(
            models.Order.id == order_id,
            models.Order.rider_id.is_(None),
            models.Order.status == "ready",
        )
        .values(rider_id=rider_id)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


def get_rider(db: Session, user_id: int) -> Optional[models.Rider]:
    return db.query(models.Rider).filter(models.Rider.user_id == user_id).first()


def increment_rider_deliveries(db: Session, user_id: int) -> None:
    db.execute(
        update(models.Rider)
        .where(models.Rider.user_id == user_id)
        .values(total_deliveries=models.Rider.total_deliveries + 1)
        .execution_options(synchronize_session=False)
    )


def get_rider_stats(db: Session, rider_id: int, since: datetime) -> Dict[str, Any]:
    """
    Aggregate a rider's deliveries since ``since``.

    Returns:
        dict with total_deliveries, completed_deliveries, total_earnings, avg_delivery_time
    """
    base = db.query(models.Order).filter(models.Order.rider_id == rider_id, models.Order.created_at >= since)
    delivered = base.filter(models.Order.status == "delivered")

    total_deliveries = base.count()
    completed_deliveries = delivered.count()
    total_earnings = delivered.with_entities(func.sum(models.Order.delivery_fee)).scalar()
    avg_delivery_time = (
        delivered.filter(models.Order.actual_time.isnot(None))
        .with_entities(func.avg(models.Order.actual_time))
        .scalar()
    )

    return {
        "total_deliveries": total_deliveries,
        "completed_deliveries": completed_deliveries,
        "total_earnings": total_earnings or 0,
        "avg_delivery_time": float(avg_delivery_time or 0),
    }


def get_payment_history(db: Session, customer_id: int, skip: int = 0, limit: int = 10) -> List[models.Order]:
    return (
        db.query(models.Order)
        .filter(models.Order.customer_id == customer_id, models.Order.payment_status != "pending")
        .order_by(models.Order.created_at.desc())
        .offset(skip)
        .limit(limit)
        .all()
    )


def set_payment_fields(db: Session, order_id: str, values: Dict[str, Any]) -> None:
    db.execute(
        update(models.Order)
        .where(models.Order.id == order_id)
        .values(**values)
        .execution_options(synchronize_session=False)
    )

"""
SQLAlchemy ORM models for the Orders service.

Defines the database schema for order-related tables. Users, restaurants,
addresses and menu items are owned by other parts of the marketplace; they
are mapped here read-only so orders can be validated and priced.
"""
import uuid
from datetime import datetime
from sqlalchemy import Column, Integer, String, DateTime, Numeric, ForeignKey, Text, Boolean, Float
from sqlalchemy.orm import relationship
from .database import Base


def generate_uuid() -> str:
    return str(uuid.uuid4())


class User(Base):
    """
    Marketplace user account.

    Attributes:
        id (int): Primary key, matches the ``sub`` claim of issued tokens
        name (str): Display name
        email (str): Email address
        phone (str): Contact number shared with riders/customers
        role (str): One of customer, restaurant, rider, admin
    """
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, nullable=False)
    email = Column(String, unique=True, index=True, nullable=False)
    phone = Column(String, nullable=True)
    role = Column(String, default="customer", nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)


class Restaurant(Base):
    """
    Restaurant accepting orders.

    Attributes:
        id (str): Primary key (UUID)
        owner_id (int): User who manages the restaurant
        status (str): active, inactive or suspended
        is_open (bool): Whether the restaurant currently accepts orders
        delivery_fee (Decimal): Configured delivery fee, NULL means platform default
        minimum_order (Decimal): Minimum subtotal for an order
        delivery_time (str): Advertised delivery window, e.g. "30-40"
        latitude/longitude (float): Pickup location, optional
    """
    __tablename__ = "restaurants"

    id = Column(String, primary_key=True, index=True, default=generate_uuid)
    owner_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    name = Column(String, nullable=False)
    phone = Column(String, nullable=True)
    address = Column(Text, nullable=True)
    status = Column(String, nullable=False, default="active")
    is_open = Column(Boolean, nullable=False, default=True)
    delivery_fee = Column(Numeric(10, 2), nullable=True)
    minimum_order = Column(Numeric(10, 2), nullable=False, default=0)
    delivery_time = Column(String, nullable=True, default="30-40")
    latitude = Column(Float, nullable=True)
    longitude = Column(Float, nullable=True)

    owner = relationship("User")


class Address(Base):
    """Delivery address belonging to a customer."""
    __tablename__ = "addresses"

    id = Column(String, primary_key=True, index=True, default=generate_uuid)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    label = Column(String, nullable=True)
    line1 = Column(Text, nullable=False)
    city = Column(String, nullable=True)
    latitude = Column(Float, nullable=True)
    longitude = Column(Float, nullable=True)


class MenuItem(Base):
    """Catalog entry of a restaurant. Prices here may change after an order is placed."""
    __tablename__ = "menu_items"

    id = Column(String, primary_key=True, index=True, default=generate_uuid)
    restaurant_id = Column(String, ForeignKey("restaurants.id"), nullable=False, index=True)
    name = Column(String, nullable=False)
    price = Column(Numeric(10, 2), nullable=False)
    is_available = Column(Boolean, nullable=False, default=True)


class Rider(Base):
    """
    Rider profile, keyed by the rider's user id.

    Attributes:
        user_id (int): Primary key and reference to the rider's user account
        is_available (bool): Whether the rider is taking new deliveries
        current_lat/current_lng (float): Last reported location
        total_deliveries (int): Lifetime delivered orders
        rating (float): Average rating
    """
    __tablename__ = "riders"

    user_id = Column(Integer, ForeignKey("users.id"), primary_key=True)
    vehicle_type = Column(String, nullable=False)
    vehicle_number = Column(String, nullable=False)
    license_number = Column(String, nullable=False)
    is_available = Column(Boolean, nullable=False, default=False)
    current_lat = Column(Float, nullable=True)
    current_lng = Column(Float, nullable=True)
    total_deliveries = Column(Integer, nullable=False, default=0)
    rating = Column(Float, nullable=False, default=0.0)
    created_at = Column(DateTime, default=datetime.utcnow)

    user = relationship("User")


class Order(Base):
    """
    Order placed by a customer at a restaurant.

    Money fields are computed once at creation and never recalculated.
    Each lifecycle timestamp is set at most once, when the order enters
    the matching status.

    Attributes:
        id (str): Primary key (UUID)
        order_number (str): Human-readable number, e.g. "FF123456789"
        rider_id (int): User id of the assigned rider, NULL until claimed
        status (str): pending, confirmed, preparing, ready, picked_up, delivered, cancelled
        payment_status (str): pending, completed, failed, refunded
        estimated_time (int): Estimated delivery time in minutes
        actual_time (int): Minutes from creation to delivery, set on delivery
    """
    __tablename__ = "orders"

    id = Column(String, primary_key=True, index=True, default=generate_uuid)
    order_number = Column(String, unique=True, index=True, nullable=False)
    customer_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    restaurant_id = Column(String, ForeignKey("restaurants.id"), nullable=False, index=True)
    address_id = Column(String, ForeignKey("addresses.id"), nullable=False)
    rider_id = Column(Integer, ForeignKey("riders.user_id"), nullable=True, index=True)

    payment_method = Column(String, nullable=False)
    payment_status = Column(String, nullable=False, default="pending")
    payment_id = Column(String, nullable=True)

    subtotal = Column(Numeric(10, 2), nullable=False)
    delivery_fee = Column(Numeric(10, 2), nullable=False)
    platform_fee = Column(Numeric(10, 2), nullable=False)
    taxes = Column(Numeric(10, 2), nullable=False)
    total = Column(Numeric(10, 2), nullable=False)

    special_instructions = Column(Text, nullable=True)
    status = Column(String, nullable=False, default="pending", index=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    confirmed_at = Column(DateTime, nullable=True)
    preparing_at = Column(DateTime, nullable=True)
    ready_at = Column(DateTime, nullable=True)
    picked_up_at = Column(DateTime, nullable=True)
    delivered_at = Column(DateTime, nullable=True)
    cancelled_at = Column(DateTime, nullable=True)
    cancellation_reason = Column(Text, nullable=True)

    estimated_time = Column(Integer, nullable=True)
    actual_time = Column(Integer, nullable=True)

    customer = relationship("User", foreign_keys=[customer_id])
    restaurant = relationship("Restaurant")
    address = relationship("Address")
    rider = relationship("Rider")
    items = relationship("OrderItem", back_populates="order", order_by="OrderItem.id")
    tracking = relationship("OrderTracking", back_populates="order", order_by="OrderTracking.timestamp")


class OrderItem(Base):
    """Line item with the menu item's name and unit price frozen at order time."""
    __tablename__ = "order_items"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    order_id = Column(String, ForeignKey("orders.id"), nullable=False, index=True)
    menu_item_id = Column(String, ForeignKey("menu_items.id"), nullable=False)
    name = Column(String, nullable=False)
    quantity = Column(Integer, nullable=False)
    price = Column(Numeric(10, 2), nullable=False)
    notes = Column(Text, nullable=True)

    order = relationship("Order", back_populates="items")


class OrderTracking(Base):
    """
    Append-only record of one lifecycle step of an order.

    Attributes:
        id (int): Primary key, auto-incrementing
        order_id (str): Foreign key to the order
        status (str): Status label at the time of the entry
        message (str): Human-readable description
        timestamp (datetime): Server time, strictly increasing per order
    """
    __tablename__ = "order_tracking"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    order_id = Column(String, ForeignKey("orders.id"), nullable=False, index=True)
    status = Column(String, nullable=False)
    message = Column(Text, nullable=False)
    timestamp = Column(DateTime, default=datetime.utcnow, nullable=False)

    order = relationship("Order", back_populates="tracking")

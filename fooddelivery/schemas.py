"""
Pydantic schemas for request/response validation in the Orders service.

These schemas define the structure of data for API requests and responses.
"""
from datetime import datetime
from typing import Optional, List, Literal
from decimal import Decimal
from pydantic import BaseModel, Field

from .lifecycle import OrderStatus


class OrderItemCreate(BaseModel):
    """Schema for a requested order line item."""
    menu_item_id: str = Field(..., description="Menu item of the target restaurant")
    quantity: int = Field(..., ge=1, description="Quantity ordered")
    notes: Optional[str] = Field(None, max_length=200, description="Per-item note for the kitchen")


class OrderCreate(BaseModel):
    """Schema for placing a new order. Prices are never accepted from the caller."""
    restaurant_id: str
    address_id: str
    items: List[OrderItemCreate] = Field(..., min_length=1, description="Order line items")
    payment_method: Literal["card", "upi", "cod"]
    special_instructions: Optional[str] = Field(None, max_length=500)


class OrderStatusUpdate(BaseModel):
    """Schema for a status transition request."""
    status: OrderStatus
    message: Optional[str] = Field(None, max_length=500)


class OrderCancel(BaseModel):
    """Schema for a customer cancellation."""
    reason: Optional[str] = Field(None, max_length=500)


class OrderItem(BaseModel):
    """Line item as stored on the order, with the price captured at order time."""
    id: int
    menu_item_id: str
    name: str
    quantity: int
    price: Decimal
    notes: Optional[str] = None

    class Config:
        from_attributes = True


class OrderTrackingEntry(BaseModel):
    """
    Schema for an order tracking entry.

    Attributes:
        id (int): Entry ID
        order_id (str): Order identifier
        status (str): Status label recorded with the entry
        message (str): Human-readable description
        timestamp (datetime): When the entry was written
    """
    id: int
    order_id: str
    status: str
    message: str
    timestamp: datetime

    class Config:
        from_attributes = True


class Order(BaseModel):
    """
    Schema for order responses, includes all database fields.

    Attributes:
        id (str): Order's unique identifier
        order_number (str): Human-readable order number
        status (str): Current lifecycle status
        rider_id (int): Assigned rider's user id, if any
        subtotal/delivery_fee/platform_fee/taxes/total (Decimal): Frozen price breakdown
        items (List[OrderItem]): Order line items
    """
    id: str
    order_number: str
    customer_id: int
    restaurant_id: str
    address_id: str
    rider_id: Optional[int] = None
    payment_method: str
    payment_status: str
    subtotal: Decimal
    delivery_fee: Decimal
    platform_fee: Decimal
    taxes: Decimal
    total: Decimal
    special_instructions: Optional[str] = None
    status: str
    created_at: datetime
    confirmed_at: Optional[datetime] = None
    preparing_at: Optional[datetime] = None
    ready_at: Optional[datetime] = None
    picked_up_at: Optional[datetime] = None
    delivered_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    cancellation_reason: Optional[str] = None
    estimated_time: Optional[int] = None
    actual_time: Optional[int] = None
    items: List[OrderItem] = Field(default_factory=list)

    class Config:
        from_attributes = True


class OrderDetail(Order):
    """Order with its full tracking log."""
    tracking: List[OrderTrackingEntry] = Field(default_factory=list)


class RestaurantSummary(BaseModel):
    id: str
    name: str
    phone: Optional[str] = None
    address: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None

    class Config:
        from_attributes = True


class AvailableOrder(BaseModel):
    """A ready, unassigned order offered to a rider."""
    order: Order
    restaurant: RestaurantSummary
    distance_km: Optional[float] = Field(None, description="Rider to restaurant distance, null when unknown")


class RiderCreate(BaseModel):
    vehicle_type: Literal["bike", "scooter", "bicycle"]
    vehicle_number: str = Field(..., min_length=1)
    license_number: str = Field(..., min_length=1)


class RiderUpdate(RiderCreate):
    """Replacement vehicle details for an existing rider profile."""


class RiderLocationUpdate(BaseModel):
    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)


class RiderProfile(BaseModel):
    user_id: int
    vehicle_type: str
    vehicle_number: str
    license_number: str
    is_available: bool
    current_lat: Optional[float] = None
    current_lng: Optional[float] = None
    total_deliveries: int
    rating: float

    class Config:
        from_attributes = True


class RiderStats(BaseModel):
    period: str
    total_deliveries: int
    completed_deliveries: int
    total_earnings: Decimal
    avg_delivery_time: float
    rating: float
    total_lifetime_deliveries: int


class PaymentIntentCreate(BaseModel):
    order_id: str


class PaymentIntent(BaseModel):
    client_secret: str
    payment_intent_id: str


class PaymentConfirm(BaseModel):
    payment_intent_id: str
    order_id: str


class PaymentConfirmation(BaseModel):
    payment_status: str
    order_status: str


class PaymentHistoryEntry(BaseModel):
    id: str
    order_number: str
    total: Decimal
    payment_status: str
    payment_method: str
    created_at: datetime

    class Config:
        from_attributes = True


class RefundCreate(BaseModel):
    order_id: str
    amount: Optional[Decimal] = Field(None, gt=0, description="Partial refund amount, full refund if omitted")
    reason: Optional[str] = None


class Refund(BaseModel):
    refund_id: str
    amount: Decimal
    status: str

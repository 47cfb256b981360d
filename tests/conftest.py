import os
import uuid

os.environ["DATABASE_URL"] = "sqlite://"
os.environ["STRIPE_WEBHOOK_SECRET"] = "whsec_test"

from datetime import datetime, timedelta
from decimal import Decimal
from types import SimpleNamespace

import pytest
from fastapi.testclient import TestClient
from jose import jwt

from fooddelivery import config, models
from fooddelivery.auth import CurrentUser
from fooddelivery.database import Base, SessionLocal, engine
from fooddelivery.main import app
from fooddelivery.notifications import Notifier, get_notifier


class RecordingNotifier(Notifier):
    """Keeps every published event in memory."""

    def __init__(self):
        self.events = []

    def send(self, topic, event, data):
        self.events.append((topic, event, data))

    def events_named(self, event):
        return [(topic, data) for topic, name, data in self.events if name == event]


class BrokenNotifier(Notifier):
    def send(self, topic, event, data):
        raise ConnectionError("redis is down")


@pytest.fixture(autouse=True)
def reset_database():
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield


@pytest.fixture
def db():
    session = SessionLocal()
    yield session
    session.close()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def client(notifier):
    app.dependency_overrides[get_notifier] = lambda: notifier
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


def make_token(user):
    return jwt.encode(
        {"sub": str(user.id), "email": user.email, "role": user.role},
        config.SECRET_KEY,
        algorithm=config.ALGORITHM,
    )


def auth_headers(user):
    return {"Authorization": f"Bearer {make_token(user)}"}


def as_current_user(user):
    return CurrentUser(id=user.id, email=user.email, role=user.role, token=make_token(user))


@pytest.fixture
def marketplace(db):
    """Users, one open restaurant with a small menu, and a customer address."""
    customer = models.User(id=1, name="Asha", email="asha@example.com", phone="9000000001", role="customer")
    owner = models.User(id=2, name="Ravi", email="ravi@example.com", phone="9000000002", role="restaurant")
    rider_user = models.User(id=3, name="Kiran", email="kiran@example.com", phone="9000000003", role="rider")
    admin = models.User(id=4, name="Admin", email="admin@example.com", role="admin")
    other_customer = models.User(id=5, name="Meera", email="meera@example.com", role="customer")
    second_rider_user = models.User(id=6, name="Dev", email="dev@example.com", phone="9000000006", role="rider")
    other_owner = models.User(id=7, name="Sunil", email="sunil@example.com", role="restaurant")
    db.add_all([customer, owner, rider_user, admin, other_customer, second_rider_user, other_owner])
    db.flush()

    restaurant = models.Restaurant(
        id="rest-1",
        owner_id=owner.id,
        name="Spice Route",
        phone="080-1234",
        address="MG Road, Bengaluru",
        status="active",
        is_open=True,
        delivery_fee=Decimal("40"),
        minimum_order=Decimal("100"),
        delivery_time="30-45",
        latitude=12.9716,
        longitude=77.5946,
    )
    other_restaurant = models.Restaurant(
        id="rest-2",
        owner_id=other_owner.id,
        name="Dosa Corner",
        status="active",
        is_open=True,
        minimum_order=Decimal("0"),
    )
    db.add_all([restaurant, other_restaurant])
    db.flush()

    burger = models.MenuItem(id="item-burger", restaurant_id=restaurant.id, name="Burger", price=Decimal("100"))
    fries = models.MenuItem(id="item-fries", restaurant_id=restaurant.id, name="Fries", price=Decimal("50"))
    soldout = models.MenuItem(
        id="item-soldout", restaurant_id=restaurant.id, name="Biryani", price=Decimal("200"), is_available=False
    )
    dosa = models.MenuItem(id="item-dosa", restaurant_id=other_restaurant.id, name="Dosa", price=Decimal("80"))
    address = models.Address(id="addr-1", user_id=customer.id, label="Home", line1="12 Park Street", city="Bengaluru")
    other_address = models.Address(id="addr-2", user_id=other_customer.id, line1="5 Lake View", city="Bengaluru")
    rider = models.Rider(
        user_id=rider_user.id,
        vehicle_type="bike",
        vehicle_number="KA01AB1234",
        license_number="DL-1",
        is_available=True,
    )
    second_rider = models.Rider(
        user_id=second_rider_user.id,
        vehicle_type="scooter",
        vehicle_number="KA01CD5678",
        license_number="DL-2",
        is_available=True,
    )
    db.add_all([burger, fries, soldout, dosa, address, other_address, rider, second_rider])
    db.commit()

    return SimpleNamespace(
        customer=customer,
        owner=owner,
        rider_user=rider_user,
        admin=admin,
        other_customer=other_customer,
        second_rider_user=second_rider_user,
        other_owner=other_owner,
        restaurant=restaurant,
        other_restaurant=other_restaurant,
        burger=burger,
        fries=fries,
        soldout=soldout,
        dosa=dosa,
        address=address,
        other_address=other_address,
    )


def order_payload(**overrides):
    payload = {
        "restaurant_id": "rest-1",
        "address_id": "addr-1",
        "items": [
            {"menu_item_id": "item-burger", "quantity": 2},
            {"menu_item_id": "item-fries", "quantity": 1, "notes": "extra salt"},
        ],
        "payment_method": "card",
        "special_instructions": "Ring the bell",
    }
    payload.update(overrides)
    return payload


@pytest.fixture
def place_order(client, marketplace):
    """Place an order over HTTP as the marketplace customer and return its JSON."""
    def _place(**overrides):
        response = client.post("/orders", json=order_payload(**overrides), headers=auth_headers(marketplace.customer))
        assert response.status_code == 201, response.text
        return response.json()

    return _place


def force_order_state(db, order_id, **values):
    """Write order columns directly, bypassing the lifecycle (test setup only)."""
    order = db.query(models.Order).filter(models.Order.id == order_id).one()
    for key, value in values.items():
        setattr(order, key, value)
    db.commit()
    db.expire_all()
    return order


def make_ready_order(db, marketplace, restaurant_id="rest-1", ready_at=None, order_number=None):
    """Insert a ready, unassigned order without going through the API."""
    now = datetime.utcnow()
    order = models.Order(
        order_number=order_number or f"T{uuid.uuid4().hex[:10]}",
        customer_id=marketplace.customer.id,
        restaurant_id=restaurant_id,
        address_id=marketplace.address.id,
        payment_method="cod",
        subtotal=Decimal("200"),
        delivery_fee=Decimal("40"),
        platform_fee=Decimal("4"),
        taxes=Decimal("10"),
        total=Decimal("254"),
        status="ready",
        created_at=now - timedelta(minutes=30),
        ready_at=ready_at or now,
    )
    db.add(order)
    db.commit()
    db.refresh(order)
    return order

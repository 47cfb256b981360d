from datetime import datetime, timedelta
from decimal import Decimal

import pytest

from conftest import as_current_user, auth_headers, force_order_state, make_ready_order
from fooddelivery import crud, models, riders
from fooddelivery.database import SessionLocal
from fooddelivery.errors import ConflictError

BENGALURU = {"latitude": 12.9716, "longitude": 77.5946}
MYSURU = {"latitude": 12.2958, "longitude": 76.6394}


def available(client, user, **params):
    return client.get("/riders/available-orders", params=params, headers=auth_headers(user))


def accept(client, order_id, user):
    return client.post(f"/riders/accept-order/{order_id}", headers=auth_headers(user))


# ---------------------------------------------------------------------------
# listAvailableOrders
# ---------------------------------------------------------------------------

def test_only_ready_unassigned_orders_are_listed(client, db, marketplace, place_order):
    ready = make_ready_order(db, marketplace)
    claimed = make_ready_order(db, marketplace)
    force_order_state(db, claimed.id, rider_id=marketplace.second_rider_user.id)
    pending = place_order()

    response = available(client, marketplace.rider_user)

    assert response.status_code == 200
    ids = [entry["order"]["id"] for entry in response.json()]
    assert ids == [ready.id]
    assert claimed.id not in ids
    assert pending["id"] not in ids


def test_nearby_orders_carry_distance(client, db, marketplace):
    order = make_ready_order(db, marketplace)

    [entry] = available(client, marketplace.rider_user, **BENGALURU).json()

    assert entry["order"]["id"] == order.id
    assert entry["restaurant"]["name"] == "Spice Route"
    assert entry["distance_km"] == 0


def test_far_restaurants_are_filtered_out(client, db, marketplace):
    make_ready_order(db, marketplace, restaurant_id="rest-1")
    unknown_location = make_ready_order(db, marketplace, restaurant_id="rest-2")

    entries = available(client, marketplace.rider_user, **MYSURU).json()

    # rest-2 has no coordinates and is always offered
    assert [entry["order"]["id"] for entry in entries] == [unknown_location.id]
    assert entries[0]["distance_km"] is None


def test_radius_can_be_widened(client, db, marketplace):
    order = make_ready_order(db, marketplace)

    entries = available(client, marketplace.rider_user, radius=200, **MYSURU).json()

    assert [entry["order"]["id"] for entry in entries] == [order.id]
    assert 120 < entries[0]["distance_km"] < 135


def test_without_location_nothing_is_filtered(client, db, marketplace):
    make_ready_order(db, marketplace, restaurant_id="rest-1")
    make_ready_order(db, marketplace, restaurant_id="rest-2")

    entries = available(client, marketplace.rider_user).json()

    assert len(entries) == 2
    assert all(entry["distance_km"] is None for entry in entries)


def test_oldest_ready_first(client, db, marketplace):
    now = datetime.utcnow()
    newer = make_ready_order(db, marketplace, ready_at=now - timedelta(minutes=5))
    older = make_ready_order(db, marketplace, ready_at=now - timedelta(minutes=20))
    middle = make_ready_order(db, marketplace, ready_at=now - timedelta(minutes=10))

    entries = available(client, marketplace.rider_user).json()

    assert [entry["order"]["id"] for entry in entries] == [older.id, middle.id, newer.id]


def test_list_is_capped(client, db, marketplace):
    now = datetime.utcnow()
    created = [
        make_ready_order(db, marketplace, ready_at=now - timedelta(minutes=30 - i))
        for i in range(25)
    ]

    entries = available(client, marketplace.rider_user).json()

    assert len(entries) == 20
    assert [entry["order"]["id"] for entry in entries] == [order.id for order in created[:20]]


def test_cap_applies_after_distance_filter(client, db, marketplace):
    now = datetime.utcnow()
    for i in range(20):
        make_ready_order(db, marketplace, restaurant_id="rest-1", ready_at=now - timedelta(minutes=60 - i))
    nearby_fallback = make_ready_order(db, marketplace, restaurant_id="rest-2", ready_at=now)

    entries = available(client, marketplace.rider_user, **MYSURU).json()

    assert [entry["order"]["id"] for entry in entries] == [nearby_fallback.id]


def test_unavailable_rider_gets_nothing(client, db, marketplace):
    make_ready_order(db, marketplace)
    rider = crud.get_rider(db, marketplace.rider_user.id)
    rider.is_available = False
    db.commit()

    response = available(client, marketplace.rider_user)

    assert response.status_code == 400
    assert response.json()["detail"] == "Rider is not available"


def test_rider_without_profile(client, db, marketplace):
    newcomer = models.User(id=9, name="Nila", email="nila@example.com", role="rider")
    db.add(newcomer)
    db.commit()

    response = available(client, newcomer)

    assert response.status_code == 404
    assert response.json()["detail"] == "Rider profile not found"


def test_non_rider_cannot_list(client, marketplace):
    assert available(client, marketplace.customer).status_code == 403


# ---------------------------------------------------------------------------
# acceptOrder
# ---------------------------------------------------------------------------

def test_accept_assigns_rider_and_notifies(client, db, marketplace, notifier):
    order = make_ready_order(db, marketplace)

    response = accept(client, order.id, marketplace.rider_user)

    assert response.status_code == 200
    body = response.json()
    assert body["rider_id"] == marketplace.rider_user.id
    assert body["status"] == "ready"

    tracking = client.get(f"/orders/{order.id}/tracking", headers=auth_headers(marketplace.customer)).json()
    assert tracking[-1]["status"] == "ready"
    assert tracking[-1]["message"] == "Order accepted by rider Kiran"

    published = notifier.events_named("rider_assigned")
    topics = {topic: data for topic, data in published}
    assert set(topics) == {f"user_{marketplace.customer.id}", "restaurant_rest-1"}
    assert topics[f"user_{marketplace.customer.id}"]["rider_name"] == "Kiran"
    assert topics[f"user_{marketplace.customer.id}"]["rider_phone"] == "9000000003"
    assert "rider_phone" not in topics["restaurant_rest-1"]


def test_second_rider_gets_conflict(client, db, marketplace, notifier):
    order = make_ready_order(db, marketplace)
    assert accept(client, order.id, marketplace.rider_user).status_code == 200
    notifier.events.clear()

    response = accept(client, order.id, marketplace.second_rider_user)

    assert response.status_code == 409
    assert response.json()["error"] == "conflict"
    db.expire_all()
    assert crud.get_order(db, order.id).rider_id == marketplace.rider_user.id
    assert notifier.events == []


def test_order_not_ready(client, marketplace, place_order):
    order = place_order()

    response = accept(client, order["id"], marketplace.rider_user)

    assert response.status_code == 400
    assert response.json()["detail"] == "Order is not ready for pickup"


def test_accept_unknown_order(client, marketplace):
    assert accept(client, "missing", marketplace.rider_user).status_code == 404


def test_unavailable_rider_cannot_accept(client, db, marketplace):
    order = make_ready_order(db, marketplace)
    rider = crud.get_rider(db, marketplace.rider_user.id)
    rider.is_available = False
    db.commit()

    response = accept(client, order.id, marketplace.rider_user)

    assert response.status_code == 400
    db.expire_all()
    assert crud.get_order(db, order.id).rider_id is None


def test_claim_is_compare_and_set(db, marketplace):
    order = make_ready_order(db, marketplace)

    assert crud.claim_order(db, order.id, marketplace.rider_user.id) is True
    assert crud.claim_order(db, order.id, marketplace.second_rider_user.id) is False
    db.commit()

    db.expire_all()
    assert crud.get_order(db, order.id).rider_id == marketplace.rider_user.id


def test_claim_requires_ready_status(db, marketplace):
    order = make_ready_order(db, marketplace)
    force_order_state(db, order.id, status="preparing")

    assert crud.claim_order(db, order.id, marketplace.rider_user.id) is False


def test_claim_lost_after_stale_read(db, marketplace, notifier):
    order_id = make_ready_order(db, marketplace).id
    stale = crud.get_order(db, order_id)
    assert stale.rider_id is None

    other = SessionLocal()
    try:
        assert crud.claim_order(other, order_id, marketplace.second_rider_user.id)
        other.commit()
    finally:
        other.close()

    with pytest.raises(ConflictError):
        riders.accept_order(db, notifier, as_current_user(marketplace.rider_user), order_id)

    db.expire_all()
    assert crud.get_order(db, order_id).rider_id == marketplace.second_rider_user.id
    assert crud.get_tracking(db, order_id) == []
    assert notifier.events == []


# ---------------------------------------------------------------------------
# Profile, location and stats
# ---------------------------------------------------------------------------

def test_create_profile_starts_unavailable(client, db, marketplace):
    newcomer = models.User(id=9, name="Nila", email="nila@example.com", role="rider")
    db.add(newcomer)
    db.commit()
    payload = {"vehicle_type": "bicycle", "vehicle_number": "NA", "license_number": "DL-9"}

    response = client.post("/riders", json=payload, headers=auth_headers(newcomer))

    assert response.status_code == 201
    assert response.json()["is_available"] is False
    assert response.json()["total_deliveries"] == 0

    response = client.post("/riders", json=payload, headers=auth_headers(newcomer))
    assert response.status_code == 400
    assert response.json()["detail"] == "Rider profile already exists"


def test_create_profile_rejects_unknown_vehicle(client, marketplace):
    payload = {"vehicle_type": "truck", "vehicle_number": "X", "license_number": "Y"}

    response = client.post("/riders", json=payload, headers=auth_headers(marketplace.rider_user))

    assert response.status_code == 422


def test_update_profile_replaces_vehicle_details(client, db, marketplace):
    payload = {"vehicle_type": "scooter", "vehicle_number": "KA05ZZ0001", "license_number": "DL-77"}

    response = client.put("/riders/profile", json=payload, headers=auth_headers(marketplace.rider_user))

    assert response.status_code == 200
    body = response.json()
    assert body["vehicle_type"] == "scooter"
    assert body["vehicle_number"] == "KA05ZZ0001"
    assert body["license_number"] == "DL-77"
    assert body["is_available"] is True

    db.expire_all()
    assert crud.get_rider(db, marketplace.rider_user.id).vehicle_number == "KA05ZZ0001"


def test_update_profile_requires_existing_profile(client, db, marketplace):
    newcomer = models.User(id=9, name="Nila", email="nila@example.com", role="rider")
    db.add(newcomer)
    db.commit()
    payload = {"vehicle_type": "bike", "vehicle_number": "X1", "license_number": "Y1"}

    response = client.put("/riders/profile", json=payload, headers=auth_headers(newcomer))

    assert response.status_code == 404
    assert response.json()["detail"] == "Rider profile not found"


def test_update_profile_validates_input(client, marketplace):
    headers = auth_headers(marketplace.rider_user)

    response = client.put(
        "/riders/profile",
        json={"vehicle_type": "truck", "vehicle_number": "X", "license_number": "Y"},
        headers=headers,
    )
    assert response.status_code == 422

    response = client.put(
        "/riders/profile",
        json={"vehicle_type": "bike", "vehicle_number": "X", "license_number": "Y"},
        headers=auth_headers(marketplace.customer),
    )
    assert response.status_code == 403


def test_toggle_availability(client, marketplace):
    headers = auth_headers(marketplace.rider_user)

    assert client.patch("/riders/toggle-availability", headers=headers).json()["is_available"] is False
    assert client.patch("/riders/toggle-availability", headers=headers).json()["is_available"] is True


def test_update_location(client, marketplace):
    response = client.patch("/riders/location", json=BENGALURU, headers=auth_headers(marketplace.rider_user))

    assert response.status_code == 200
    assert response.json()["current_lat"] == pytest.approx(12.9716)
    assert response.json()["current_lng"] == pytest.approx(77.5946)

    response = client.patch(
        "/riders/location", json={"latitude": 91, "longitude": 0}, headers=auth_headers(marketplace.rider_user)
    )
    assert response.status_code == 422


def test_profile_lookup(client, marketplace):
    response = client.get("/riders/profile", headers=auth_headers(marketplace.rider_user))

    assert response.status_code == 200
    assert response.json()["vehicle_number"] == "KA01AB1234"


def test_rider_orders_and_stats(client, db, marketplace):
    delivered = make_ready_order(db, marketplace)
    force_order_state(
        db,
        delivered.id,
        rider_id=marketplace.rider_user.id,
        status="delivered",
        delivered_at=datetime.utcnow(),
        actual_time=30,
    )
    in_progress = make_ready_order(db, marketplace)
    force_order_state(db, in_progress.id, rider_id=marketplace.rider_user.id, status="picked_up")
    make_ready_order(db, marketplace)
    headers = auth_headers(marketplace.rider_user)

    response = client.get("/riders/orders", headers=headers)
    assert {order["id"] for order in response.json()} == {delivered.id, in_progress.id}

    response = client.get("/riders/orders?status=delivered", headers=headers)
    assert [order["id"] for order in response.json()] == [delivered.id]

    stats = client.get("/riders/stats?period=1d", headers=headers).json()
    assert stats["period"] == "1d"
    assert stats["total_deliveries"] == 2
    assert stats["completed_deliveries"] == 1
    assert Decimal(stats["total_earnings"]) == Decimal("40")
    assert stats["avg_delivery_time"] == 30


def test_stats_default_period(client, marketplace):
    stats = client.get("/riders/stats?period=forever", headers=auth_headers(marketplace.rider_user)).json()

    assert stats["period"] == "7d"
    assert stats["total_deliveries"] == 0
    assert Decimal(stats["total_earnings"]) == 0

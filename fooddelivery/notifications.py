"""
Real-time notification fan-out for order events.

Events are published to topics named after the audience (``user_<id>``,
``restaurant_<id>``, ``order_<id>``) on Redis pub/sub, where the socket
gateway relays them to connected clients. Publishing is fire-and-forget:
a topic without subscribers is a no-op and a failing sink is logged, never
raised to the order operation that triggered it.
"""
import json
import logging
from datetime import datetime
from typing import Any, Dict, Optional

import redis

from .config import REDIS_URL

logger = logging.getLogger(__name__)


def user_topic(user_id: int) -> str:
    return f"user_{user_id}"


def restaurant_topic(restaurant_id: str) -> str:
    return f"restaurant_{restaurant_id}"


def order_topic(order_id: str) -> str:
    return f"order_{order_id}"


class Notifier:
    """
    Publish-only sink keyed by topic string.

    Subclasses implement ``send``; ``publish`` guarantees that no exception
    escapes to the caller.
    """

    def publish(self, topic: str, event: str, data: Dict[str, Any]) -> None:
        try:
            self.send(topic, event, data)
        except Exception as e:
            logger.error(f"Failed to publish '{event}' to {topic}: {e}")

    def send(self, topic: str, event: str, data: Dict[str, Any]) -> None:
        raise NotImplementedError


class RedisNotifier(Notifier):
    """Publishes a JSON envelope on the Redis channel named after the topic."""

    def __init__(self, url: str = REDIS_URL):
        self.client = redis.from_url(
            url,
            decode_responses=True,
            socket_connect_timeout=1,
            socket_timeout=1,
        )

    def send(self, topic: str, event: str, data: Dict[str, Any]) -> None:
        envelope = {
            "event": event,
            "data": data,
            "timestamp": datetime.utcnow().isoformat(),
        }
        receivers = self.client.publish(topic, json.dumps(envelope, default=str))
        logger.debug(f"Published '{event}' to {topic} ({receivers} subscribers)")


_notifier: Optional[Notifier] = None


def get_notifier() -> Notifier:
    """
    FastAPI dependency returning the process-wide notifier.

    Tests override this dependency with an in-memory implementation.
    """
    global _notifier
    if _notifier is None:
        _notifier = RedisNotifier()
    return _notifier


def notify_new_order(notifier: Notifier, order, customer_name: Optional[str]) -> None:
    """
    Notify the restaurant that an order was placed.

    Args:
        notifier: Sink to publish on
        order: The created order
        customer_name: Name of the customer who placed it
    """
    notifier.publish(restaurant_topic(order.restaurant_id), "new_order", {
        "order_id": order.id,
        "order_number": order.order_number,
        "customer_name": customer_name,
        "total": str(order.total),
        "items": len(order.items),
    })


def notify_status_changed(notifier: Notifier, order, status: str, message: str, timestamp: datetime) -> None:
    """
    Notify the customer and everyone tracking the order about a new status.

    Args:
        notifier: Sink to publish on
        order: The updated order
        status: New status value
        message: Tracking message for the transition
        timestamp: When the transition was recorded
    """
    payload = {
        "order_id": order.id,
        "status": status,
        "message": message,
        "timestamp": timestamp.isoformat(),
    }
    notifier.publish(user_topic(order.customer_id), "order_status_update", payload)
    notifier.publish(order_topic(order.id), "status_update", payload)


def notify_order_cancelled(notifier: Notifier, order, reason: str) -> None:
    notifier.publish(restaurant_topic(order.restaurant_id), "order_cancelled", {
        "order_id": order.id,
        "order_number": order.order_number,
        "reason": reason,
    })


def notify_rider_assigned(notifier: Notifier, order, rider_name: str, rider_phone: Optional[str]) -> None:
    """Tell the customer (with contact details) and the restaurant which rider took the order."""
    notifier.publish(user_topic(order.customer_id), "rider_assigned", {
        "order_id": order.id,
        "rider_name": rider_name,
        "rider_phone": rider_phone,
    })
    notifier.publish(restaurant_topic(order.restaurant_id), "rider_assigned", {
        "order_id": order.id,
        "rider_name": rider_name,
    })


def notify_payment_completed(notifier: Notifier, order) -> None:
    notifier.publish(restaurant_topic(order.restaurant_id), "payment_completed", {
        "order_id": order.id,
        "order_number": order.order_number,
        "amount": str(order.total),
    })

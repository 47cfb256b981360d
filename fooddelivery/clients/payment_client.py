"""
HTTP client for the payment processor (Stripe REST API).

This module provides functions to create and retrieve payment intents,
issue refunds, and verify signed webhook payloads with the Stripe SDK.
"""
from typing import Dict, Optional

import httpx
import stripe

from ..config import STRIPE_API_URL, STRIPE_SECRET_KEY, PAYMENT_CLIENT_TIMEOUT

WEBHOOK_TOLERANCE = 300  # seconds


def _client() -> httpx.AsyncClient:
    return httpx.AsyncClient(timeout=PAYMENT_CLIENT_TIMEOUT, auth=(STRIPE_SECRET_KEY, ""))


async def create_payment_intent(amount: int, currency: str, metadata: Dict[str, str], description: str) -> dict:
    """
    Create a payment intent.

    Args:
        amount: Amount in the currency's minor unit
        currency: ISO currency code, e.g. "inr"
        metadata: Key/value pairs stored with the intent (order id, customer id)
        description: Statement description

    Returns:
        Payment intent data (``id``, ``client_secret``, ``status``)

    Raises:
        httpx.HTTPError: If there's a network error or the processor rejects the request
    """
    data = {"amount": amount, "currency": currency, "description": description}
    for key, value in metadata.items():
        data[f"metadata[{key}]"] = str(value)

    async with _client() as client:
        response = await client.post(f"{STRIPE_API_URL}/payment_intents", data=data)
        response.raise_for_status()
        return response.json()


async def retrieve_payment_intent(payment_intent_id: str) -> dict:
    """
    Retrieve a payment intent by ID.

    Raises:
        httpx.HTTPError: If there's a network error or the intent does not exist
    """
    async with _client() as client:
        response = await client.get(f"{STRIPE_API_URL}/payment_intents/{payment_intent_id}")
        response.raise_for_status()
        return response.json()


async def create_refund(payment_intent_id: str, amount: Optional[int] = None, reason: Optional[str] = None) -> dict:
    """
    Refund a payment, fully or partially.

    Args:
        payment_intent_id: Intent that captured the payment
        amount: Amount to refund in minor units; full refund when omitted
        reason: Free-text reason, stored as metadata

    Returns:
        Refund data (``id``, ``amount``, ``status``)
    """
    data = {"payment_intent": payment_intent_id}
    if amount is not None:
        data["amount"] = amount
    if reason:
        data["metadata[reason]"] = reason

    async with _client() as client:
        response = await client.post(f"{STRIPE_API_URL}/refunds", data=data)
        response.raise_for_status()
        return response.json()


def construct_event(payload: bytes, signature_header: Optional[str], secret: str,
                    tolerance: int = WEBHOOK_TOLERANCE) -> stripe.Event:
    """
    Verify a webhook's ``Stripe-Signature`` header and decode the event.

    Raises:
        stripe.SignatureVerificationError: if the header is missing, stale or does not match
        ValueError: if the payload is not valid JSON
    """
    if not signature_header or not secret:
        raise stripe.SignatureVerificationError("Missing signature or webhook secret", signature_header)
    return stripe.Webhook.construct_event(payload, signature_header, secret, tolerance=tolerance)

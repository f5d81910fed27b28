"""Stripe webhook signature validation and payload parsing.

Purpose:
- Validate webhook signature using Stripe-Signature header.
- Extract the minimal data needed to credit a purchase or subscription.
- Never log payload or signature.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

import stripe

from chatcanvas.domain.errors import ValidationError
from chatcanvas.observability.logging import get_logger

logger = get_logger(__name__)


class InvalidSignatureError(ValidationError):
    """Webhook signature validation failed."""


class InvalidPayloadError(ValidationError):
    """Payload structure is invalid or missing required fields."""


@dataclass
class StripeWebhookEvent:
    """Minimal extracted data from a Stripe webhook event."""

    event_id: str
    event_type: str
    object_id: str | None  # e.g., payment_intent.id, invoice.id, subscription.id
    metadata: dict[str, str] = field(default_factory=dict)
    subscription_id: str | None = None  # invoices only
    object_status: str | None = None


def verify_and_extract(
    payload_bytes: bytes,
    signature_header: str,
    webhook_secret: str,
) -> StripeWebhookEvent:
    """Validate Stripe webhook signature and extract minimal event data.

    Args:
        payload_bytes: Raw request body bytes.
        signature_header: Value of Stripe-Signature header.
        webhook_secret: Webhook endpoint secret from Stripe.

    Returns:
        StripeWebhookEvent with the event and object identifiers, metadata
        and, for invoices, the subscription ID.

    Raises:
        InvalidSignatureError: If signature validation fails.
        InvalidPayloadError: If event structure is invalid.
    """
    try:
        event = stripe.Webhook.construct_event(
            payload_bytes,
            signature_header,
            webhook_secret,
        )
    except stripe.SignatureVerificationError as e:
        # Do NOT log signature or payload
        logger.warning("stripe webhook signature verification failed")
        raise InvalidSignatureError("Invalid signature") from e
    except ValueError as e:
        logger.warning("stripe webhook payload parsing failed")
        raise InvalidPayloadError("Invalid payload") from e

    event_id = event.get("id")
    event_type = event.get("type")

    if not event_id or not event_type:
        raise InvalidPayloadError("Missing event id or type")

    obj = _extract_object(event)

    return StripeWebhookEvent(
        event_id=event_id,
        event_type=event_type,
        object_id=obj.get("id"),
        metadata={str(k): str(v) for k, v in (obj.get("metadata") or {}).items()},
        subscription_id=_extract_subscription_id(obj) if event_type.startswith("invoice.") else None,
        object_status=obj.get("status"),
    )


def _extract_object(event: Any) -> dict[str, Any]:
    data = event.get("data") or {}
    obj = data.get("object") or {}
    return obj if hasattr(obj, "get") else {}


def _extract_subscription_id(invoice: dict[str, Any]) -> str | None:
    # Older API versions put it on the invoice; newer ones under parent.subscription_details
    subscription = invoice.get("subscription")
    if not subscription:
        parent = invoice.get("parent") or {}
        details = parent.get("subscription_details") or {}
        subscription = details.get("subscription")
    if isinstance(subscription, str):
        return subscription
    if hasattr(subscription, "get"):
        return subscription.get("id")
    return None

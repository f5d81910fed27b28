"""Thin wrapper around Stripe SDK.

Purpose:
- Encapsulate Stripe API calls so routes don't import stripe.* directly.
- Accept idempotency_key for safe retries.
- Never log full Stripe payloads (only IDs + correlation metadata).
"""

from __future__ import annotations

from typing import Any

import stripe

from chatcanvas.domain.errors import UpstreamError
from chatcanvas.observability.logging import get_logger
from chatcanvas.observability.redaction import hash_identifier, id_prefix, safe_log_context

logger = get_logger(__name__)


class StripeClient:
    """Wrapper for Stripe customer, PaymentIntent and subscription operations.

    Usage:
        client = StripeClient(settings.require("stripe_secret_key"))
        customer_id = client.find_or_create_customer(whatsapp_number="5511999999999")
        intent = client.create_payment_intent(
            amount=999,
            currency="usd",
            customer_id=customer_id,
            metadata={"user_id": "...", "product_id": "...", "credits_amount": "10"},
            idempotency_key="intent:<user_id>:<product_id>:<nonce>",
        )
    """

    def __init__(self, api_key: str) -> None:
        self._client = stripe.StripeClient(api_key)

    def find_or_create_customer(
        self,
        *,
        whatsapp_number: str,
        email: str | None = None,
        name: str | None = None,
    ) -> str:
        """Return the customer tagged with this WhatsApp number, creating it if needed.

        Raises:
            UpstreamError: On Stripe API errors.
        """
        try:
            found = self._client.v1.customers.search(
                params={"query": f"metadata['whatsapp_number']:'{whatsapp_number}'", "limit": 1}
            )
            if found.data:
                return found.data[0].id

            params: dict[str, Any] = {"metadata": {"whatsapp_number": whatsapp_number}}
            if email:
                params["email"] = email
            if name:
                params["name"] = name
            customer = self._client.v1.customers.create(params=params)
        except stripe.StripeError as e:
            logger.error(
                "stripe customer lookup failed",
                extra={
                    "extra_fields": safe_log_context(
                        customer_hash=hash_identifier(whatsapp_number),
                        error_type=type(e).__name__,
                    )
                },
            )
            raise UpstreamError("stripe customer lookup failed", provider="stripe") from e

        logger.info(
            "stripe customer created",
            extra={"extra_fields": safe_log_context(customer_id_prefix=id_prefix(customer.id))},
        )
        return customer.id

    def create_payment_intent(
        self,
        *,
        amount: int,
        currency: str,
        customer_id: str,
        metadata: dict[str, str],
        idempotency_key: str,
        description: str | None = None,
    ) -> dict[str, Any]:
        """Create a PaymentIntent with automatic payment methods.

        Args:
            amount: Amount in minor units.
            currency: Currency code (e.g., 'usd').
            customer_id: Stripe customer ID.
            metadata: String metadata echoed back on webhook events.
            idempotency_key: Idempotency key for safe retries.
            description: Optional statement description.

        Returns:
            Dict with payment_intent_id, client_secret, amount and currency.

        Raises:
            UpstreamError: On Stripe API errors.
        """
        params: dict[str, Any] = {
            "amount": amount,
            "currency": currency.lower(),
            "customer": customer_id,
            "metadata": metadata,
            "automatic_payment_methods": {"enabled": True},
        }
        if description:
            params["description"] = description

        try:
            intent = self._client.v1.payment_intents.create(
                params=params,
                options={"idempotency_key": idempotency_key},
            )
        except stripe.StripeError as e:
            logger.error(
                "stripe payment intent creation failed",
                extra={"extra_fields": safe_log_context(error_type=type(e).__name__)},
            )
            raise UpstreamError("stripe payment intent creation failed", provider="stripe") from e

        # Log only IDs, never full payload
        logger.info(
            "stripe payment intent created",
            extra={"extra_fields": safe_log_context(payment_intent_id_prefix=id_prefix(intent.id))},
        )

        return {
            "payment_intent_id": intent.id,
            "client_secret": intent.client_secret,
            "amount": intent.amount,
            "currency": intent.currency,
        }

    def create_subscription(
        self,
        *,
        customer_id: str,
        price_id: str,
        metadata: dict[str, str],
        idempotency_key: str,
    ) -> dict[str, Any]:
        """Create an incomplete subscription whose first invoice is paid client-side.

        Args:
            customer_id: Stripe customer ID.
            price_id: Recurring Stripe price ID.
            metadata: String metadata echoed back on subscription events.
            idempotency_key: Idempotency key for safe retries.

        Returns:
            Dict with subscription_id, status and client_secret (None when the
            first invoice needs no payment).

        Raises:
            UpstreamError: On Stripe API errors.
        """
        params: dict[str, Any] = {
            "customer": customer_id,
            "items": [{"price": price_id}],
            "metadata": metadata,
            "payment_behavior": "default_incomplete",
            "payment_settings": {"save_default_payment_method": "on_subscription"},
            "expand": ["latest_invoice.confirmation_secret"],
        }

        try:
            subscription = self._client.v1.subscriptions.create(
                params=params,
                options={"idempotency_key": idempotency_key},
            )
        except stripe.StripeError as e:
            logger.error(
                "stripe subscription creation failed",
                extra={"extra_fields": safe_log_context(error_type=type(e).__name__)},
            )
            raise UpstreamError("stripe subscription creation failed", provider="stripe") from e

        logger.info(
            "stripe subscription created",
            extra={
                "extra_fields": safe_log_context(
                    subscription_id_prefix=id_prefix(subscription.id),
                    status=subscription.status,
                )
            },
        )

        invoice = getattr(subscription, "latest_invoice", None)
        confirmation = getattr(invoice, "confirmation_secret", None)
        return {
            "subscription_id": subscription.id,
            "status": subscription.status,
            "client_secret": getattr(confirmation, "client_secret", None),
        }

"""Payments endpoints for the storefront.

The storefront collects the buyer's WhatsApp number and the chosen credit
package, then confirms the returned PaymentIntent (one-time pack) or the first
subscription invoice (recurring pack) client-side. Credits are added by the
Stripe webhook, never here.
"""

from __future__ import annotations

import uuid

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel, Field

from chatcanvas.api import dependencies
from chatcanvas.domain.errors import ConfigurationError, PersistenceError, UpstreamError
from chatcanvas.domain.models import CreditProduct, User
from chatcanvas.infra.db import translate_errors, txn
from chatcanvas.infra.postgres_store import PostgresProductCatalog
from chatcanvas.infra.repositories.payments_repository import insert_pending_payment
from chatcanvas.infra.repositories.subscriptions_repository import insert_subscription
from chatcanvas.infra.repositories.users_repository import get_user_by_phone
from chatcanvas.observability.correlation import get_correlation_id
from chatcanvas.observability.logging import get_logger
from chatcanvas.observability.redaction import id_prefix, safe_log_context

router = APIRouter(prefix="/payments", tags=["payments"])

logger = get_logger(__name__)


class CreatePaymentIntentRequest(BaseModel):
    """Request body for creating a PaymentIntent."""

    phone_number: str = Field(min_length=5, max_length=32)
    product_id: str


def normalize_phone(raw: str) -> str:
    """Reduce a phone number to the digits-only form WhatsApp uses."""
    return "".join(ch for ch in raw if ch.isdigit())


def _lookup_user(phone_number: str) -> User | None:
    with translate_errors("lookup_user"), txn(dsn=dependencies.get_settings().database_url) as cur:
        return get_user_by_phone(cur, phone_number=phone_number)


def _lookup_product(product_id: str) -> CreditProduct | None:
    try:
        uuid.UUID(product_id)
    except ValueError:
        return None
    return PostgresProductCatalog(dependencies.get_settings().database_url).get_active_product(product_id)


def _record_pending(user: User, product: CreditProduct, payment_intent_id: str) -> str:
    with translate_errors("record_pending_payment"), txn(dsn=dependencies.get_settings().database_url) as cur:
        return insert_pending_payment(
            cur,
            user_id=user.id,
            product_id=product.id,
            payment_intent_id=payment_intent_id,
            amount=product.price,
            currency=product.currency,
            credits_amount=product.credits_amount,
        )


@router.post("/intents")
def create_payment_intent(body: CreatePaymentIntentRequest) -> dict:
    """Create a Stripe PaymentIntent for a credit package.

    Returns:
        {client_secret, payment_intent_id, amount, currency, credits_amount}

    Raises:
        HTTPException 404: Unknown WhatsApp user or inactive/unknown product.
        HTTPException 502: Stripe unavailable.
        HTTPException 500: Payments not configured or database failure.
    """
    correlation_id = get_correlation_id()
    phone_number = normalize_phone(body.phone_number)

    try:
        user = _lookup_user(phone_number)
        if user is None:
            raise HTTPException(status_code=404, detail="User not found")

        product = _lookup_product(body.product_id)
        if product is None:
            raise HTTPException(status_code=404, detail="Product not found")

        stripe_client = dependencies._get_stripe_client()
        customer_id = stripe_client.find_or_create_customer(
            whatsapp_number=phone_number,
            email=user.email,
            name=" ".join(p for p in (user.first_name, user.last_name) if p) or None,
        )
        intent = stripe_client.create_payment_intent(
            amount=product.price,
            currency=product.currency,
            customer_id=customer_id,
            metadata={
                "user_id": user.id,
                "product_id": product.id,
                "credits_amount": str(product.credits_amount),
            },
            idempotency_key=f"intent:{user.id}:{product.id}:{correlation_id}",
            description=product.name,
        )
        _record_pending(user, product, intent["payment_intent_id"])
    except UpstreamError:
        raise HTTPException(status_code=502, detail="payment provider unavailable") from None
    except (ConfigurationError, PersistenceError) as e:
        logger.error(
            "payment intent creation failed",
            extra={
                "extra_fields": safe_log_context(
                    correlationId=correlation_id,
                    error_type=type(e).__name__,
                )
            },
        )
        raise HTTPException(status_code=500, detail="internal error") from None

    logger.info(
        "payment intent created",
        extra={
            "extra_fields": safe_log_context(
                correlationId=correlation_id,
                user_id=user.id,
                product_id=product.id,
                payment_intent_id_prefix=id_prefix(intent["payment_intent_id"]),
            )
        },
    )

    return {
        "client_secret": intent["client_secret"],
        "payment_intent_id": intent["payment_intent_id"],
        "amount": intent["amount"],
        "currency": intent["currency"],
        "credits_amount": product.credits_amount,
    }


class CreateSubscriptionRequest(BaseModel):
    """Request body for subscribing to a recurring credit pack."""

    phone_number: str = Field(min_length=5, max_length=32)
    product_id: str


def _record_subscription(user: User, product: CreditProduct, subscription: dict) -> str:
    with translate_errors("record_subscription"), txn(dsn=dependencies.get_settings().database_url) as cur:
        return insert_subscription(
            cur,
            user_id=user.id,
            product_id=product.id,
            stripe_subscription_id=subscription["subscription_id"],
            credits_amount=product.credits_amount,
            status=subscription["status"],
        )


@router.post("/subscriptions")
def create_subscription(body: CreateSubscriptionRequest) -> dict:
    """Subscribe a WhatsApp user to a recurring credit pack.

    Each paid invoice adds the pack's credits (see the Stripe webhook).

    Returns:
        {subscription_id, client_secret, status, credits_amount}

    Raises:
        HTTPException 404: Unknown WhatsApp user, or product without a recurring price.
        HTTPException 502: Stripe unavailable.
        HTTPException 500: Payments not configured or database failure.
    """
    correlation_id = get_correlation_id()
    phone_number = normalize_phone(body.phone_number)

    try:
        user = _lookup_user(phone_number)
        if user is None:
            raise HTTPException(status_code=404, detail="User not found")

        product = _lookup_product(body.product_id)
        if product is None or not product.stripe_price_id:
            raise HTTPException(status_code=404, detail="Subscription plan not found")

        stripe_client = dependencies._get_stripe_client()
        customer_id = stripe_client.find_or_create_customer(
            whatsapp_number=phone_number,
            email=user.email,
            name=" ".join(p for p in (user.first_name, user.last_name) if p) or None,
        )
        subscription = stripe_client.create_subscription(
            customer_id=customer_id,
            price_id=product.stripe_price_id,
            metadata={
                "user_id": user.id,
                "product_id": product.id,
                "credits_amount": str(product.credits_amount),
            },
            idempotency_key=f"subscription:{user.id}:{product.id}:{correlation_id}",
        )
        _record_subscription(user, product, subscription)
    except UpstreamError:
        raise HTTPException(status_code=502, detail="payment provider unavailable") from None
    except (ConfigurationError, PersistenceError, ValueError) as e:
        logger.error(
            "subscription creation failed",
            extra={
                "extra_fields": safe_log_context(
                    correlationId=correlation_id,
                    error_type=type(e).__name__,
                )
            },
        )
        raise HTTPException(status_code=500, detail="internal error") from None

    logger.info(
        "subscription created",
        extra={
            "extra_fields": safe_log_context(
                correlationId=correlation_id,
                user_id=user.id,
                product_id=product.id,
                subscription_id_prefix=id_prefix(subscription["subscription_id"]),
            )
        },
    )

    return {
        "subscription_id": subscription["subscription_id"],
        "client_secret": subscription["client_secret"],
        "status": subscription["status"],
        "credits_amount": product.credits_amount,
    }

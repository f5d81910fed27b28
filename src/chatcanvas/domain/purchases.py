"""Credit purchases - apply Stripe payment and subscription outcomes to the ledger.

All writes for one event happen in a single transaction:
receipt (processed_events) + payment/subscription status + purchase credit.
A duplicate event id commits nothing and reports "duplicate".
"""

from __future__ import annotations

from typing import Any

from psycopg2.extensions import cursor as PgCursor

from chatcanvas.domain.models import IMAGE_GENERATION_PRODUCT, TransactionType
from chatcanvas.infra.db import translate_errors, txn
from chatcanvas.infra.repositories.credits_repository import insert_transaction, lock_account
from chatcanvas.infra.repositories.payments_repository import (
    get_payment_by_intent,
    mark_payment_status,
    record_processed_event,
)
from chatcanvas.infra.repositories.subscriptions_repository import (
    SUBSCRIPTION_STATUSES,
    get_subscription,
    set_subscription_status,
)
from chatcanvas.observability.logging import get_logger
from chatcanvas.observability.redaction import id_prefix, safe_log_context
from chatcanvas.stripe.webhook import StripeWebhookEvent

logger = get_logger(__name__)

# Source identifiers for processed_events dedupe
EVENT_SOURCE = "stripe"
# One credit per paid invoice, even if Stripe sends it under several event ids
INVOICE_SOURCE = "stripe_invoice"

PAYMENT_SUCCEEDED = "payment_intent.succeeded"
PAYMENT_FAILED = "payment_intent.payment_failed"
INVOICE_PAID = "invoice.paid"
SUBSCRIPTION_UPDATED = "customer.subscription.updated"
SUBSCRIPTION_DELETED = "customer.subscription.deleted"

HANDLED_EVENTS = frozenset(
    {PAYMENT_SUCCEEDED, PAYMENT_FAILED, INVOICE_PAID, SUBSCRIPTION_UPDATED, SUBSCRIPTION_DELETED}
)


def apply_payment_event(event: StripeWebhookEvent, *, dsn: str | None = None) -> dict:
    """Apply one verified Stripe event.

    Args:
        event: Verified webhook event.
        dsn: Database connection string (defaults to DATABASE_URL).

    Returns:
        Dict with:
        - status: "credited" | "failed" | "duplicate" | "ignored" |
          "unknown_payment" | "unknown_subscription" |
          "subscription_updated" | "subscription_canceled"
        - user_id: Credited user (only for "credited")
        - credits: Credits added (only for "credited")
        - subscription: True when the credit came from a subscription invoice

    Raises:
        PersistenceError: On database errors (transaction rolled back).
    """
    if event.event_type not in HANDLED_EVENTS:
        return {"status": "ignored"}

    log_ctx = safe_log_context(
        event_id_prefix=id_prefix(event.event_id),
        event_type=event.event_type,
        object_id_prefix=id_prefix(event.object_id),
    )

    with translate_errors("apply_payment_event"), txn(dsn=dsn) as cur:
        if not record_processed_event(cur, source=EVENT_SOURCE, external_id=event.event_id):
            logger.info("duplicate stripe event ignored", extra={"extra_fields": log_ctx})
            return {"status": "duplicate"}

        if event.event_type in (PAYMENT_SUCCEEDED, PAYMENT_FAILED):
            result = _apply_payment_intent(cur, event, log_ctx)
        elif event.event_type == INVOICE_PAID:
            result = _apply_invoice_paid(cur, event, log_ctx)
        else:
            result = _apply_subscription_change(cur, event, log_ctx)

    if result["status"] == "credited":
        logger.info(
            "purchase credited",
            extra={
                "extra_fields": safe_log_context(
                    **log_ctx,
                    user_id=result["user_id"],
                    credits=result["credits"],
                    subscription=result.get("subscription", False),
                )
            },
        )
    return result


def _apply_payment_intent(cur: PgCursor, event: StripeWebhookEvent, log_ctx: dict[str, str]) -> dict[str, Any]:
    payment = (
        get_payment_by_intent(cur, payment_intent_id=event.object_id)
        if event.object_id
        else None
    )
    if payment is None:
        # Includes the PaymentIntent behind a subscription invoice (credited on invoice.paid)
        logger.warning("stripe event for unknown payment", extra={"extra_fields": log_ctx})
        return {"status": "unknown_payment"}

    if event.event_type == PAYMENT_FAILED:
        mark_payment_status(cur, payment_id=payment["id"], status="failed")
        logger.info("payment marked failed", extra={"extra_fields": log_ctx})
        return {"status": "failed"}

    if not mark_payment_status(cur, payment_id=payment["id"], status="completed"):
        # Already final (e.g. a different event for the same intent)
        logger.info(
            "payment already finalized",
            extra={"extra_fields": safe_log_context(**log_ctx, payment_status=payment["status"])},
        )
        return {"status": "duplicate"}

    lock_account(cur, user_id=payment["user_id"])
    insert_transaction(
        cur,
        user_id=payment["user_id"],
        amount=payment["credits_amount"],
        transaction_type=TransactionType.PURCHASE,
        product_type=IMAGE_GENERATION_PRODUCT,
        metadata={
            "payment_intent_id": event.object_id,
            "product_id": payment["product_id"],
        },
    )
    return {
        "status": "credited",
        "user_id": payment["user_id"],
        "credits": payment["credits_amount"],
    }


def _apply_invoice_paid(cur: PgCursor, event: StripeWebhookEvent, log_ctx: dict[str, str]) -> dict[str, Any]:
    subscription = (
        get_subscription(cur, stripe_subscription_id=event.subscription_id)
        if event.subscription_id
        else None
    )
    if subscription is None:
        logger.warning("paid invoice for unknown subscription", extra={"extra_fields": log_ctx})
        return {"status": "unknown_subscription"}

    if event.object_id and not record_processed_event(
        cur, source=INVOICE_SOURCE, external_id=event.object_id
    ):
        logger.info("invoice already credited", extra={"extra_fields": log_ctx})
        return {"status": "duplicate"}

    # Subscription's own amount first, then the product's
    credits = subscription["credits_amount"] or subscription["product_credits_amount"]

    lock_account(cur, user_id=subscription["user_id"])
    insert_transaction(
        cur,
        user_id=subscription["user_id"],
        amount=credits,
        transaction_type=TransactionType.PURCHASE,
        product_type=IMAGE_GENERATION_PRODUCT,
        metadata={
            "invoice_id": event.object_id,
            "subscription_id": event.subscription_id,
            "product_id": subscription["product_id"],
        },
    )
    if subscription["status"] != "active":
        set_subscription_status(cur, stripe_subscription_id=event.subscription_id, status="active")

    return {
        "status": "credited",
        "user_id": subscription["user_id"],
        "credits": credits,
        "subscription": True,
    }


def _apply_subscription_change(
    cur: PgCursor, event: StripeWebhookEvent, log_ctx: dict[str, str]
) -> dict[str, Any]:
    deleted = event.event_type == SUBSCRIPTION_DELETED
    status = "canceled" if deleted else event.object_status
    if not event.object_id or status not in SUBSCRIPTION_STATUSES:
        logger.info("subscription change ignored", extra={"extra_fields": log_ctx})
        return {"status": "ignored"}

    if not set_subscription_status(cur, stripe_subscription_id=event.object_id, status=status):
        logger.warning("stripe event for unknown subscription", extra={"extra_fields": log_ctx})
        return {"status": "unknown_subscription"}

    logger.info(
        "subscription status updated",
        extra={"extra_fields": safe_log_context(**log_ctx, subscription_status=status)},
    )
    return {"status": "subscription_canceled" if deleted else "subscription_updated"}

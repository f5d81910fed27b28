"""Stripe webhook routes - public endpoint for Stripe events.

Security rules:
- Validate Stripe-Signature on every request.
- Never log payload or signature header.
- Return 5xx if the ledger write fails (so Stripe retries).
"""

from __future__ import annotations

from fastapi import APIRouter, Header, Request, Response
from fastapi.concurrency import run_in_threadpool

from chatcanvas.api import dependencies
from chatcanvas.domain.errors import ChatcanvasError, ConfigurationError
from chatcanvas.domain.purchases import apply_payment_event
from chatcanvas.observability.correlation import get_correlation_id
from chatcanvas.observability.logging import get_logger
from chatcanvas.observability.redaction import id_prefix, safe_log_context
from chatcanvas.stripe.webhook import (
    InvalidPayloadError,
    InvalidSignatureError,
    verify_and_extract,
)

router = APIRouter(tags=["webhooks"])

logger = get_logger(__name__)


def _notify_purchase(user_id: str, credits: int, template_key: str = "credits_purchased") -> None:
    """Tell the user their credits arrived. Failures are logged, never retried."""
    try:
        replies = dependencies._get_reply_sender()
        user = dependencies._get_store().get_user(user_id)
        if user is None:
            return
        replies.send_template(user, template_key, {"credits": credits})
    except ChatcanvasError as e:
        logger.warning(
            "purchase notification failed",
            extra={
                "extra_fields": safe_log_context(
                    user_id=user_id,
                    error_type=type(e).__name__,
                )
            },
        )


@router.post("/webhooks/stripe")
async def stripe_webhook(
    request: Request,
    stripe_signature: str = Header(..., alias="Stripe-Signature"),
) -> Response:
    """Receive Stripe webhook events.

    ACK 2xx only if:
    1. Signature validated
    2. Receipt, payment status and credit committed together (or duplicate)

    Returns:
        200 OK if processed, duplicate or irrelevant.
        400 Bad Request if signature or payload invalid.
        500 Internal Server Error if secret missing or the write fails.
    """
    correlation_id = get_correlation_id()

    try:
        payload_bytes = await request.body()
    except Exception:
        logger.warning(
            "failed to read request body",
            extra={"extra_fields": safe_log_context(correlationId=correlation_id)},
        )
        return Response(status_code=400, content="invalid body")

    settings = dependencies.get_settings()
    try:
        webhook_secret = settings.require("stripe_webhook_secret")
    except ConfigurationError:
        logger.error(
            "webhook secret not configured",
            extra={"extra_fields": safe_log_context(correlationId=correlation_id)},
        )
        return Response(status_code=500, content="server configuration error")

    try:
        event = verify_and_extract(payload_bytes, stripe_signature, webhook_secret)
    except InvalidSignatureError:
        logger.warning(
            "stripe signature validation failed",
            extra={"extra_fields": safe_log_context(correlationId=correlation_id)},
        )
        return Response(status_code=400, content="invalid signature")
    except InvalidPayloadError:
        logger.warning(
            "stripe payload invalid",
            extra={"extra_fields": safe_log_context(correlationId=correlation_id)},
        )
        return Response(status_code=400, content="invalid payload")

    # Log only safe metadata (no payload, no signature)
    logger.info(
        "stripe webhook received",
        extra={
            "extra_fields": safe_log_context(
                correlationId=correlation_id,
                event_id_prefix=id_prefix(event.event_id),
                event_type=event.event_type,
            )
        },
    )

    try:
        result = await run_in_threadpool(apply_payment_event, event, dsn=settings.database_url)
    except Exception:
        # Transaction rolled back - do NOT return 2xx
        logger.exception(
            "stripe webhook processing failed",
            extra={"extra_fields": safe_log_context(correlationId=correlation_id)},
        )
        return Response(status_code=500, content="processing failed")

    if result["status"] == "credited":
        template_key = "subscription_credits_added" if result.get("subscription") else "credits_purchased"
        await run_in_threadpool(_notify_purchase, result["user_id"], result["credits"], template_key)

    return Response(status_code=200, content=result["status"])

"""WhatsApp webhook routes - Meta Cloud API integration.

Response contract:
- Handshake: echo hub.challenge iff mode=subscribe and the token matches.
- Malformed JSON, unknown shapes and bad signatures: 200 (dropped, no retry).
- Persistence/configuration failures: 500 so Meta retries; intake is
  idempotent on the message ID, so a retry never produces duplicate replies.

Security: phone numbers, names and text exist only in memory; logs carry
prefixes and counts.
"""

from __future__ import annotations

import json
from typing import Any

from fastapi import APIRouter, Header, Query, Request, Response
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse

from chatcanvas.api import dependencies
from chatcanvas.domain.errors import ConfigurationError, PersistenceError
from chatcanvas.domain.router import MessageRouter
from chatcanvas.observability.correlation import get_correlation_id
from chatcanvas.observability.logging import get_logger
from chatcanvas.observability.redaction import safe_log_context
from chatcanvas.whatsapp.meta_adapter import (
    InvalidPayloadError,
    SignatureVerificationError,
    get_phone_number_id,
    parse_envelope,
    verify_signature,
)
from chatcanvas.whatsapp.models import WebhookEnvelope

router = APIRouter(tags=["webhooks"])

logger = get_logger(__name__)

INTERNAL_ERROR_BODY = {"error": "internal error"}


def _ok() -> Response:
    return Response(status_code=200, content="ok")


def _process_envelope(message_router: MessageRouter, envelope: WebhookEnvelope) -> dict[str, int]:
    """Run every message and status in the envelope through the router."""
    counts = {"messages": 0, "duplicates": 0, "statuses": 0}
    for inbound in envelope.messages:
        result = message_router.handle_inbound(inbound)
        counts["duplicates" if result.duplicate else "messages"] += 1
    for update in envelope.statuses:
        if message_router.handle_status(update):
            counts["statuses"] += 1
    return counts


@router.get("/webhooks/whatsapp")
async def whatsapp_webhook_verify(
    hub_mode: str = Query(None, alias="hub.mode"),
    hub_verify_token: str = Query(None, alias="hub.verify_token"),
    hub_challenge: str = Query(None, alias="hub.challenge"),
) -> Response:
    """Meta webhook verification endpoint.

    Meta sends GET request during webhook setup to verify ownership.
    We must return hub.challenge if hub.verify_token matches.

    Returns:
        200 with hub.challenge if valid.
        403 if invalid or no verify token is configured.
    """
    expected_token = dependencies.get_settings().whatsapp_verify_token or ""

    if expected_token and hub_mode == "subscribe" and hub_verify_token == expected_token:
        logger.info(
            "whatsapp webhook verification successful",
            extra={"extra_fields": safe_log_context(hub_mode=hub_mode)},
        )
        return Response(status_code=200, content=hub_challenge or "", media_type="text/plain")

    logger.warning(
        "whatsapp webhook verification failed",
        extra={
            "extra_fields": safe_log_context(
                hub_mode=hub_mode or "missing",
                token_match=hub_verify_token == expected_token if expected_token else "no_token_configured",
            )
        },
    )
    return Response(status_code=403, content="verification failed")


@router.post("/webhooks/whatsapp")
async def whatsapp_webhook(
    request: Request,
    x_hub_signature_256: str | None = Header(None, alias="X-Hub-Signature-256"),
) -> Response:
    """Receive Meta Cloud API webhook (messages and delivery statuses).

    Args:
        request: FastAPI request object.
        x_hub_signature_256: HMAC signature from Meta.

    Returns:
        200 once every inbound message is recorded (or the payload is dropped).
        500 with {"error": "internal error"} on persistence/configuration failure.
    """
    correlation_id = get_correlation_id()
    settings = dependencies.get_settings()

    # 1. Read raw body for signature verification
    try:
        body_bytes = await request.body()
    except Exception:
        logger.warning(
            "failed to read request body",
            extra={"extra_fields": safe_log_context(correlationId=correlation_id)},
        )
        return _ok()

    # 2. Verify signature (if WHATSAPP_APP_SECRET configured)
    if settings.whatsapp_app_secret:
        try:
            verify_signature(body_bytes, x_hub_signature_256 or "", settings.whatsapp_app_secret)
        except SignatureVerificationError as e:
            logger.warning(
                "whatsapp signature verification failed",
                extra={"extra_fields": safe_log_context(correlationId=correlation_id, error=str(e))},
            )
            # 200 so Meta does not retry a forged request
            return _ok()

    # 3. Parse JSON and extract the envelope
    try:
        payload: Any = json.loads(body_bytes)
        envelope = parse_envelope(payload)
    except (ValueError, InvalidPayloadError) as e:
        logger.info(
            "whatsapp webhook payload ignored",
            extra={
                "extra_fields": safe_log_context(
                    correlationId=correlation_id,
                    reason=type(e).__name__,
                )
            },
        )
        return _ok()

    if envelope.is_empty():
        return _ok()

    # 4. Drop events addressed to another business number sharing the app
    expected_phone_id = settings.whatsapp_phone_number_id
    if expected_phone_id and get_phone_number_id(payload) != expected_phone_id:
        logger.warning(
            "whatsapp webhook for another phone number ignored",
            extra={"extra_fields": safe_log_context(correlationId=correlation_id)},
        )
        return _ok()

    # 5. Route (blocking I/O runs on the worker thread pool)
    try:
        counts = await run_in_threadpool(
            _process_envelope,
            dependencies._get_message_router(),
            envelope,
        )
    except (PersistenceError, ConfigurationError) as e:
        logger.error(
            "whatsapp webhook processing failed",
            extra={
                "extra_fields": safe_log_context(
                    correlationId=correlation_id,
                    error_type=type(e).__name__,
                    error=str(e),
                )
            },
        )
        return JSONResponse(status_code=500, content=INTERNAL_ERROR_BODY)
    except Exception:
        logger.exception(
            "whatsapp webhook processing crashed",
            extra={"extra_fields": safe_log_context(correlationId=correlation_id)},
        )
        return JSONResponse(status_code=500, content=INTERNAL_ERROR_BODY)

    logger.info(
        "whatsapp webhook processed",
        extra={"extra_fields": safe_log_context(correlationId=correlation_id, **counts)},
    )
    return _ok()

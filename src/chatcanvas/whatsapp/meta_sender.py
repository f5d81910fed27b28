"""Outbound WhatsApp messaging via Meta Cloud API.

Security: NEVER log the recipient phone or message body. Only log hashes and lengths.
"""

from __future__ import annotations

import json
import time
import urllib.error
import urllib.request
from typing import Any

from chatcanvas.config import Settings
from chatcanvas.domain.errors import UpstreamError
from chatcanvas.domain.models import MessageKind
from chatcanvas.observability.correlation import get_correlation_id
from chatcanvas.observability.logging import get_logger
from chatcanvas.observability.redaction import hash_identifier, id_prefix, safe_log_context

logger = get_logger(__name__)

# Timeout for HTTP requests (seconds)
HTTP_TIMEOUT = 10

# Retry config
MAX_RETRIES = 1
RETRY_DELAY = 0.2

GRAPH_API_BASE = "https://graph.facebook.com"


def build_payload(to: str, kind: MessageKind, payload: dict[str, Any]) -> dict[str, Any]:
    """Build a Cloud API message body.

    Args:
        to: Recipient phone number in international format, no "+".
        kind: Message kind.
        payload: Kind-specific fields:
            text: {"body"}
            image: {"link", "caption"?}
            template: {"name", "language"?, "components"?}
            media: {"type" (audio|video|document|sticker), "link", "caption"?}

    Returns:
        JSON-serializable request body.

    Raises:
        ValueError: If required fields are missing.
    """
    body: dict[str, Any] = {
        "messaging_product": "whatsapp",
        "recipient_type": "individual",
        "to": to,
    }

    if kind == MessageKind.TEXT:
        if not payload.get("body"):
            raise ValueError("text message requires body")
        body["type"] = "text"
        body["text"] = {"preview_url": False, "body": payload["body"]}
    elif kind == MessageKind.IMAGE:
        if not payload.get("link"):
            raise ValueError("image message requires link")
        image: dict[str, Any] = {"link": payload["link"]}
        if payload.get("caption"):
            image["caption"] = payload["caption"]
        body["type"] = "image"
        body["image"] = image
    elif kind == MessageKind.TEMPLATE:
        if not payload.get("name"):
            raise ValueError("template message requires name")
        template: dict[str, Any] = {
            "name": payload["name"],
            "language": {"code": payload.get("language", "en_US")},
        }
        if payload.get("components"):
            template["components"] = payload["components"]
        body["type"] = "template"
        body["template"] = template
    else:
        media_type = payload.get("type", "document")
        if not payload.get("link"):
            raise ValueError("media message requires link")
        media: dict[str, Any] = {"link": payload["link"]}
        if payload.get("caption"):
            media["caption"] = payload["caption"]
        body["type"] = media_type
        body[media_type] = media

    return body


def _do_request(url: str, data: bytes, headers: dict[str, str]) -> dict[str, Any]:
    """Execute HTTP POST request. Raises on error."""
    req = urllib.request.Request(url, data=data, headers=headers, method="POST")
    with urllib.request.urlopen(req, timeout=HTTP_TIMEOUT) as resp:
        return json.loads(resp.read().decode())


def _extract_message_id(response: Any) -> str:
    try:
        message_id = response["messages"][0]["id"]
    except (KeyError, IndexError, TypeError):
        raise UpstreamError("meta response missing message id", provider="whatsapp") from None
    if not isinstance(message_id, str) or not message_id:
        raise UpstreamError("meta response missing message id", provider="whatsapp")
    return message_id


class MetaSender:
    """MessageSender backed by the Graph API /messages endpoint."""

    def __init__(self, settings: Settings) -> None:
        self._settings = settings

    def send(self, *, to: str, kind: MessageKind, payload: dict[str, Any]) -> str:
        """Send a message and return Meta's message ID (wamid).

        Raises:
            ConfigurationError: If access token or phone number ID is missing.
            UpstreamError: On network/HTTP errors after retry or a malformed response.
        """
        access_token = self._settings.require("whatsapp_access_token")
        phone_number_id = self._settings.require("whatsapp_phone_number_id")

        url = (
            f"{GRAPH_API_BASE}/{self._settings.whatsapp_graph_api_version}/"
            f"{phone_number_id}/messages"
        )
        headers = {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {access_token}",
        }
        data = json.dumps(build_payload(to, kind, payload)).encode("utf-8")

        # Safe logging context - NEVER include the phone or body
        log_ctx = safe_log_context(
            correlationId=get_correlation_id() or "",
            to_hash=hash_identifier(to),
            kind=kind.value,
            body_len=len(str(payload.get("body") or payload.get("caption") or "")),
            provider="meta",
        )

        logger.info("sending outbound message via meta", extra={"extra_fields": log_ctx})

        for attempt in range(MAX_RETRIES + 1):
            try:
                response = _do_request(url, data, headers)
            except (urllib.error.URLError, TimeoutError, ValueError) as e:
                is_5xx = isinstance(e, urllib.error.HTTPError) and 500 <= e.code < 600
                is_network = not isinstance(e, (urllib.error.HTTPError, ValueError))

                if attempt < MAX_RETRIES and (is_5xx or is_network):
                    logger.warning(
                        "outbound send via meta failed, retrying",
                        extra={
                            "extra_fields": safe_log_context(
                                **log_ctx, attempt=attempt, error_type=type(e).__name__
                            )
                        },
                    )
                    time.sleep(RETRY_DELAY)
                    continue

                logger.error(
                    "outbound send via meta failed",
                    extra={
                        "extra_fields": safe_log_context(
                            **log_ctx,
                            attempt=attempt,
                            error_type=type(e).__name__,
                            status_code=getattr(e, "code", None),
                        )
                    },
                )
                raise UpstreamError("whatsapp send failed", provider="whatsapp") from e

            message_id = _extract_message_id(response)
            logger.info(
                "outbound message sent via meta",
                extra={
                    "extra_fields": safe_log_context(
                        **log_ctx,
                        attempt=attempt,
                        message_id_prefix=id_prefix(message_id),
                    )
                },
            )
            return message_id

        # Loop always returns or raises
        raise UpstreamError("whatsapp send failed", provider="whatsapp")

"""Meta Cloud API adapter - verify and normalize webhook payloads.

Handles Meta WhatsApp Business API webhook payloads, including
signature verification and message/status extraction.
"""

from __future__ import annotations

import hashlib
import hmac
from datetime import datetime, timezone
from typing import Any, Iterator

from chatcanvas.domain.errors import ValidationError
from chatcanvas.domain.models import DeliveryStatus

from .models import NormalizedInbound, StatusUpdate, WebhookEnvelope

WHATSAPP_OBJECT = "whatsapp_business_account"

# Meta status values we track; anything else (e.g. "deleted") is ignored
_META_STATUSES: dict[str, DeliveryStatus] = {
    "sent": DeliveryStatus.SENT,
    "delivered": DeliveryStatus.DELIVERED,
    "read": DeliveryStatus.READ,
    "failed": DeliveryStatus.FAILED,
}


class InvalidPayloadError(ValidationError):
    """Raised when Meta payload has invalid shape."""


class SignatureVerificationError(ValidationError):
    """Raised when HMAC signature verification fails."""


def verify_signature(payload_bytes: bytes, signature_header: str, app_secret: str) -> None:
    """Verify Meta webhook signature (HMAC-SHA256).

    Meta signs webhooks with sha256=<hex_signature> format.

    Args:
        payload_bytes: Raw request body bytes.
        signature_header: X-Hub-Signature-256 header value (sha256=...).
        app_secret: Meta App Secret for HMAC verification.

    Raises:
        SignatureVerificationError: If signature is invalid or missing.
    """
    if not signature_header:
        raise SignatureVerificationError("missing signature header")

    if not signature_header.startswith("sha256="):
        raise SignatureVerificationError("invalid signature format")

    expected_sig = signature_header[len("sha256="):]

    computed_sig = hmac.new(
        key=app_secret.encode("utf-8"),
        msg=payload_bytes,
        digestmod=hashlib.sha256,
    ).hexdigest()

    if not hmac.compare_digest(computed_sig, expected_sig):
        raise SignatureVerificationError("signature mismatch")


def parse_envelope(payload: Any) -> WebhookEnvelope:
    """Extract inbound messages and status callbacks from a Meta payload.

    Payload structure:
    {
      "object": "whatsapp_business_account",
      "entry": [{
        "changes": [{
          "value": {
            "metadata": {"phone_number_id": "..."},
            "contacts": [{"profile": {"name": "..."}, "wa_id": "PHONE"}],
            "messages": [{"from": "PHONE", "id": "MSG_ID", "type": "text", "text": {"body": "..."}}],
            "statuses": [{"id": "MSG_ID", "status": "delivered", "timestamp": "..."}]
          },
          "field": "messages"
        }]
      }]
    }

    Individual messages or statuses with missing identifiers are skipped.

    Args:
        payload: Parsed JSON body.

    Returns:
        WebhookEnvelope (possibly empty).

    Raises:
        InvalidPayloadError: If the payload is not a WhatsApp business account event.
    """
    if not isinstance(payload, dict):
        raise InvalidPayloadError("payload is not an object")
    if payload.get("object") != WHATSAPP_OBJECT:
        raise InvalidPayloadError("not a whatsapp_business_account event")

    messages: list[NormalizedInbound] = []
    statuses: list[StatusUpdate] = []

    for value in _iter_change_values(payload):
        names = _contact_names(value.get("contacts"))
        for raw in _as_list(value.get("messages")):
            msg = _normalize_message(raw, names)
            if msg is not None:
                messages.append(msg)
        for raw in _as_list(value.get("statuses")):
            status = _normalize_status(raw)
            if status is not None:
                statuses.append(status)

    return WebhookEnvelope(messages=messages, statuses=statuses)


def get_phone_number_id(payload: dict[str, Any]) -> str | None:
    """Extract the receiving phone_number_id from the first change."""
    for value in _iter_change_values(payload):
        metadata = value.get("metadata")
        if isinstance(metadata, dict) and metadata.get("phone_number_id"):
            return str(metadata["phone_number_id"])
    return None


def _as_list(value: Any) -> list[Any]:
    return value if isinstance(value, list) else []


def _iter_change_values(payload: dict[str, Any]) -> Iterator[dict[str, Any]]:
    for entry in _as_list(payload.get("entry")):
        if not isinstance(entry, dict):
            continue
        for change in _as_list(entry.get("changes")):
            if not isinstance(change, dict):
                continue
            value = change.get("value")
            if isinstance(value, dict):
                yield value


def _contact_names(contacts: Any) -> dict[str, tuple[str | None, str | None]]:
    """Map wa_id -> (first_name, last_name) from the contacts block."""
    names: dict[str, tuple[str | None, str | None]] = {}
    for contact in _as_list(contacts):
        if not isinstance(contact, dict) or not contact.get("wa_id"):
            continue
        profile = contact.get("profile")
        full_name = profile.get("name") if isinstance(profile, dict) else None
        if not full_name or not isinstance(full_name, str):
            continue
        parts = full_name.strip().split(maxsplit=1)
        first = parts[0] if parts else None
        last = parts[1] if len(parts) > 1 else None
        names[str(contact["wa_id"])] = (first, last)
    return names


def _normalize_message(
    message: Any,
    names: dict[str, tuple[str | None, str | None]],
) -> NormalizedInbound | None:
    if not isinstance(message, dict):
        return None

    message_id = message.get("id")
    sender_phone = message.get("from")
    if not message_id or not isinstance(message_id, str) or not sender_phone:
        return None

    message_type = str(message.get("type", "unknown"))

    text = None
    content: dict[str, Any] = {}
    if message_type == "text":
        text_obj = message.get("text")
        text = _text_body(text_obj.get("body")) if isinstance(text_obj, dict) else None
        content = {"body": text or ""}
    else:
        media = message.get(message_type)
        content = dict(media) if isinstance(media, dict) else {}
        content["type"] = message_type

    first_name, last_name = names.get(str(sender_phone), (None, None))

    return NormalizedInbound(
        message_id=message_id,
        provider="meta",
        received_at=_parse_timestamp(message.get("timestamp")) or datetime.now(timezone.utc),
        kind=message_type,
        phone_number=str(sender_phone),
        text=text,
        first_name=first_name,
        last_name=last_name,
        content=content,
    )


def _text_body(body: Any) -> str | None:
    # Numbers are kept as typed ("5"); any other non-string body is dropped
    if isinstance(body, str):
        return body
    if isinstance(body, (int, float)) and not isinstance(body, bool):
        return str(body)
    return None


def _normalize_status(status: Any) -> StatusUpdate | None:
    if not isinstance(status, dict):
        return None
    message_id = status.get("id")
    mapped = _META_STATUSES.get(str(status.get("status", "")))
    if not message_id or not isinstance(message_id, str) or mapped is None:
        return None
    return StatusUpdate(
        message_id=message_id,
        status=mapped,
        timestamp=_parse_timestamp(status.get("timestamp")),
    )


def _parse_timestamp(raw: Any) -> datetime | None:
    """Meta timestamps are epoch seconds as strings."""
    try:
        return datetime.fromtimestamp(int(raw), tz=timezone.utc)
    except (TypeError, ValueError, OverflowError, OSError):
        return None

"""Shared test helper functions for ChatCanvas tests.

This module contains helper functions that can be imported by both conftest.py
and individual test files. These are NOT fixtures - they are regular functions.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from chatcanvas.domain.models import CreditProduct
from chatcanvas.whatsapp.models import NormalizedInbound

STOREFRONT_URL = "https://shop.example.com/credits"

STARTER_PRODUCT = CreditProduct(
    id="11111111-1111-1111-1111-111111111111",
    name="Starter",
    price=499,
    currency="usd",
    credits_amount=10,
)


class LogRecorder:
    """Simple recorder to capture log calls deterministically."""

    def __init__(self):
        self.calls: list[tuple[str, tuple, dict]] = []

    def _record(self, level: str, *args, **kwargs):
        self.calls.append((level, args, kwargs))

    def info(self, *args, **kwargs):
        self._record("info", *args, **kwargs)

    def warning(self, *args, **kwargs):
        self._record("warning", *args, **kwargs)

    def error(self, *args, **kwargs):
        self._record("error", *args, **kwargs)

    def exception(self, *args, **kwargs):
        self._record("exception", *args, **kwargs)

    def debug(self, *args, **kwargs):
        self._record("debug", *args, **kwargs)

    def get_all_logged_content(self) -> str:
        """Concatenate all args and kwargs from all calls into one string."""
        return " ".join(f"{args} {kwargs}" for _, args, kwargs in self.calls)

    def has_extra_field(self, key: str) -> bool:
        """Check if any call has the given key in extra_fields."""
        for _, _, kwargs in self.calls:
            extra_fields = kwargs.get("extra", {}).get("extra_fields", {})
            if key in extra_fields:
                return True
        return False


def inbound_text(
    text: str,
    *,
    message_id: str = "wamid.IN0001",
    phone_number: str = "15550001111",
    first_name: str | None = "Ada",
    last_name: str | None = "Lovelace",
) -> NormalizedInbound:
    """Build a normalized inbound text message."""
    return NormalizedInbound(
        message_id=message_id,
        provider="meta",
        received_at=datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc),
        kind="text",
        phone_number=phone_number,
        text=text,
        first_name=first_name,
        last_name=last_name,
        content={"body": text},
    )


def inbound_media(
    kind: str = "image",
    *,
    message_id: str = "wamid.IMG0001",
    phone_number: str = "15550001111",
) -> NormalizedInbound:
    return NormalizedInbound(
        message_id=message_id,
        provider="meta",
        received_at=datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc),
        kind=kind,
        phone_number=phone_number,
        text=None,
        content={"id": "media-1", "type": kind},
    )


def meta_payload(
    *,
    messages: list[dict[str, Any]] | None = None,
    statuses: list[dict[str, Any]] | None = None,
    contacts: list[dict[str, Any]] | None = None,
) -> dict[str, Any]:
    """Build a Meta webhook envelope around messages and/or statuses."""
    value: dict[str, Any] = {
        "messaging_product": "whatsapp",
        "metadata": {"display_phone_number": "15550009999", "phone_number_id": "123456789"},
    }
    if contacts is not None:
        value["contacts"] = contacts
    if messages is not None:
        value["messages"] = messages
    if statuses is not None:
        value["statuses"] = statuses
    return {
        "object": "whatsapp_business_account",
        "entry": [{"id": "WABA_ID", "changes": [{"value": value, "field": "messages"}]}],
    }


def meta_text_message(
    text: str,
    *,
    message_id: str = "wamid.IN0001",
    phone_number: str = "15550001111",
) -> dict[str, Any]:
    return {
        "from": phone_number,
        "id": message_id,
        "timestamp": "1767268800",
        "type": "text",
        "text": {"body": text},
    }

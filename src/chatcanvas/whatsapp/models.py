"""WhatsApp webhook event models."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Literal

from chatcanvas.domain.models import DeliveryStatus, MessageKind


@dataclass(frozen=True)
class NormalizedInbound:
    """Inbound message normalized from a Meta payload.

    ATTENTION PII:
    - `phone_number`, names and `text` are PII
    - Use in memory and in the store only, NEVER log
    """

    message_id: str
    provider: Literal["meta"]
    received_at: datetime
    kind: str  # Meta type: "text", "image", "audio", ...
    phone_number: str
    text: str | None
    first_name: str | None = None
    last_name: str | None = None
    content: dict[str, Any] = field(default_factory=dict)

    def message_kind(self) -> MessageKind:
        """Map the Meta message type onto the stored message kinds."""
        if self.kind == "text":
            return MessageKind.TEXT
        if self.kind == "image":
            return MessageKind.IMAGE
        if self.kind == "template":
            return MessageKind.TEMPLATE
        return MessageKind.MEDIA


@dataclass(frozen=True)
class StatusUpdate:
    """Delivery status callback for an outgoing message."""

    message_id: str
    status: DeliveryStatus
    timestamp: datetime | None = None


@dataclass(frozen=True)
class WebhookEnvelope:
    """Everything extracted from one webhook POST."""

    messages: list[NormalizedInbound] = field(default_factory=list)
    statuses: list[StatusUpdate] = field(default_factory=list)

    def is_empty(self) -> bool:
        return not self.messages and not self.statuses

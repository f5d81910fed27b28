"""Core records: users, messages, credit catalog.

Closed enums replace the free-form status strings stored in the database;
the enum values are exactly the stored column values.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any


def utc_now() -> datetime:
    """Return current UTC timestamp (timezone-aware)."""
    return datetime.now(timezone.utc)


class OnboardingPhase(str, Enum):
    NOT_STARTED = "not_started"
    AWAITING_EMAIL = "awaiting_email"
    COMPLETED = "completed"


class InteractionKind(str, Enum):
    NONE = "none"
    CONVERSATION = "conversation"
    IMAGE_GENERATION = "image_generation"


class Direction(str, Enum):
    INCOMING = "incoming"
    OUTGOING = "outgoing"


class MessageKind(str, Enum):
    TEXT = "text"
    IMAGE = "image"
    TEMPLATE = "template"
    MEDIA = "media"


class DeliveryStatus(str, Enum):
    RECEIVED = "received"
    SENT = "sent"
    DELIVERED = "delivered"
    READ = "read"
    FAILED = "failed"


class TransactionType(str, Enum):
    PURCHASE = "purchase"
    USE = "use"
    REFUND = "refund"


# Forward-only delivery transitions. Incoming messages stay at RECEIVED;
# READ and FAILED are terminal.
STATUS_TRANSITIONS: dict[DeliveryStatus, frozenset[DeliveryStatus]] = {
    DeliveryStatus.RECEIVED: frozenset(),
    DeliveryStatus.SENT: frozenset(
        {DeliveryStatus.DELIVERED, DeliveryStatus.READ, DeliveryStatus.FAILED}
    ),
    DeliveryStatus.DELIVERED: frozenset({DeliveryStatus.READ}),
    DeliveryStatus.READ: frozenset(),
    DeliveryStatus.FAILED: frozenset(),
}


def can_transition(current: DeliveryStatus, new: DeliveryStatus) -> bool:
    """Check whether a delivery status update moves forward."""
    return new in STATUS_TRANSITIONS[current]


def predecessors(status: DeliveryStatus) -> list[DeliveryStatus]:
    """Statuses from which `status` may be reached."""
    return [s for s, targets in STATUS_TRANSITIONS.items() if status in targets]


IMAGE_GENERATION_PRODUCT = "image_generation"


@dataclass(frozen=True)
class GenerationContext:
    """Last refined prompt, used to resolve "modify the previous image" turns."""

    refined_prompt: str
    created_at: datetime

    def to_json(self) -> dict[str, str]:
        return {
            "refined_prompt": self.refined_prompt,
            "created_at": self.created_at.isoformat(),
        }

    @classmethod
    def from_json(cls, data: dict[str, Any] | None) -> GenerationContext | None:
        if not data or not data.get("refined_prompt"):
            return None
        created_raw = data.get("created_at")
        try:
            created_at = datetime.fromisoformat(created_raw) if created_raw else utc_now()
        except (TypeError, ValueError):
            created_at = utc_now()
        return cls(refined_prompt=data["refined_prompt"], created_at=created_at)


@dataclass(frozen=True)
class User:
    """Per-user conversational state.

    Invariant: email is set iff onboarding_phase is COMPLETED.
    """

    id: str
    phone_number: str
    first_name: str | None = None
    last_name: str | None = None
    onboarding_phase: OnboardingPhase = OnboardingPhase.NOT_STARTED
    email: str | None = None
    last_interaction_kind: InteractionKind = InteractionKind.NONE
    last_generation_context: GenerationContext | None = None


@dataclass(frozen=True)
class Message:
    """Stored chat message. External ID is unique across both directions."""

    external_id: str
    user_id: str
    direction: Direction
    kind: MessageKind
    content: dict[str, Any]
    status: DeliveryStatus
    created_at: datetime = field(default_factory=utc_now)

    def text(self) -> str | None:
        """Return the text body for text messages, or the caption for media."""
        if self.kind == MessageKind.TEXT:
            return self.content.get("body")
        return self.content.get("caption")


@dataclass(frozen=True)
class CreditProduct:
    """Purchasable credit package. Price in minor currency units."""

    id: str
    name: str
    price: int
    currency: str
    credits_amount: int
    description: str | None = None
    # Recurring Stripe price; None when the product is one-time only
    stripe_price_id: str | None = None

    def formatted_price(self) -> str:
        return f"{self.price / 100:,.2f} {self.currency.upper()}"

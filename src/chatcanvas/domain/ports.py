"""Collaborator contracts used by the router and dispatcher.

Postgres implementations live in chatcanvas.infra; network implementations in
chatcanvas.whatsapp and chatcanvas.providers.
"""

from __future__ import annotations

from typing import Any, Protocol

from chatcanvas.domain.models import (
    CreditProduct,
    DeliveryStatus,
    GenerationContext,
    InteractionKind,
    Message,
    MessageKind,
    OnboardingPhase,
    TransactionType,
    User,
)

# Sentinel for update_user: distinguishes "leave unchanged" from "set to None".
UNSET: Any = object()


class ConversationStore(Protocol):
    """Users plus the append-only message log."""

    def upsert_user(
        self,
        phone_number: str,
        *,
        first_name: str | None = None,
        last_name: str | None = None,
    ) -> User: ...

    def get_user(self, user_id: str) -> User | None: ...

    def update_user(
        self,
        user_id: str,
        *,
        onboarding_phase: OnboardingPhase | None = None,
        email: str | None = None,
        last_interaction_kind: InteractionKind | None = None,
        last_generation_context: GenerationContext | None = UNSET,
    ) -> User: ...

    def append_message(self, message: Message) -> bool:
        """Store a message. Returns False if the external ID already exists."""
        ...

    def recent_messages(self, user_id: str, limit: int) -> list[Message]:
        """Last `limit` messages in chronological order."""
        ...

    def update_message_status(self, external_id: str, status: DeliveryStatus) -> bool:
        """Apply a forward-only status transition. Returns True if applied."""
        ...


class CreditLedger(Protocol):
    def try_debit(
        self,
        user_id: str,
        amount: int,
        product_type: str,
        metadata: dict[str, Any] | None = None,
    ) -> bool: ...

    def credit(
        self,
        user_id: str,
        amount: int,
        transaction_type: TransactionType,
        product_type: str,
        metadata: dict[str, Any] | None = None,
    ) -> None: ...

    def get_balance(self, user_id: str) -> int: ...


class ProductCatalog(Protocol):
    def cheapest_active_product(self) -> CreditProduct | None: ...

    def get_active_product(self, product_id: str) -> CreditProduct | None: ...


class MessageSender(Protocol):
    def send(self, *, to: str, kind: MessageKind, payload: dict[str, Any]) -> str:
        """Send a message and return the provider message ID."""
        ...


class ImageProvider(Protocol):
    def generate(self, prompt: str) -> list[str]:
        """Generate images and return their URLs."""
        ...


class ChatModel(Protocol):
    def complete(self, instruction: str, messages: list[dict[str, str]]) -> str:
        """Return generated text for a system instruction plus chat messages."""
        ...

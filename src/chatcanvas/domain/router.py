"""Message router - drives one inbound event through the pipeline.

Stages: intake -> onboarding gate -> classify -> act.

Failure semantics:
- Duplicate external message ID: no-op (no reply, no state change).
- UpstreamError after intake: logged, processing stops; the inbound message
  stays recorded so the webhook can still acknowledge it.
- PersistenceError / ConfigurationError: propagate to the webhook (5xx).

Security: NEVER log phone numbers, names, emails or message text.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable

from chatcanvas.domain.classifier import DEFAULT_KEYWORDS, KeywordConfig, classify
from chatcanvas.domain.errors import UpstreamError
from chatcanvas.domain.generation import GenerationDispatcher
from chatcanvas.domain.intents import Intent, IntentKind
from chatcanvas.domain.models import (
    DeliveryStatus,
    Direction,
    InteractionKind,
    Message,
    MessageKind,
    User,
)
from chatcanvas.domain.onboarding import run_gate
from chatcanvas.domain.ports import (
    ChatModel,
    ConversationStore,
    CreditLedger,
    ImageProvider,
    MessageSender,
    ProductCatalog,
)
from chatcanvas.domain.replies import ReplySender
from chatcanvas.observability.logging import get_logger
from chatcanvas.observability.redaction import id_prefix, safe_log_context
from chatcanvas.whatsapp.models import NormalizedInbound, StatusUpdate

logger = get_logger(__name__)

CHAT_INSTRUCTION = (
    "You are ChatCanvas, a friendly assistant inside WhatsApp that creates images "
    "from text descriptions. Answer briefly and conversationally in the user's "
    "language. You cannot see images the user sends. If the user seems to want an "
    "image, suggest they describe it starting with \"create\" or \"show me\"."
)


@dataclass(frozen=True)
class RouteResult:
    """What happened to one inbound message (for logging and tests)."""

    duplicate: bool = False
    intercepted: bool = False
    intent: IntentKind | None = None
    aborted: bool = False


class MessageRouter:
    """Consumes normalized inbound events and replies through the sender."""

    def __init__(
        self,
        *,
        store: ConversationStore,
        ledger: CreditLedger,
        catalog: ProductCatalog,
        sender: MessageSender,
        chat_model: ChatModel,
        image_provider: ImageProvider,
        storefront_url: str,
        history_limit: int = 10,
        keywords: KeywordConfig = DEFAULT_KEYWORDS,
    ) -> None:
        self._store = store
        self._ledger = ledger
        self._catalog = catalog
        self._chat_model = chat_model
        self._storefront_url = storefront_url
        self._history_limit = history_limit
        self._keywords = keywords
        self._replies = ReplySender(store, sender)
        self._dispatcher = GenerationDispatcher(
            store=store,
            ledger=ledger,
            chat_model=chat_model,
            image_provider=image_provider,
            replies=self._replies,
            keywords=keywords,
        )
        self._actions: dict[IntentKind, Callable[[User, Intent, NormalizedInbound], None]] = {
            IntentKind.GREETING: self._greet,
            IntentKind.CREDIT_BALANCE: self._report_balance,
            IntentKind.BUY_CREDITS: self._guide_purchase,
            IntentKind.IMAGE_GENERATE: self._generate,
            IntentKind.IMAGE_MODIFY: self._generate,
            IntentKind.FREEFORM_CHAT: self._chat,
        }

    def handle_inbound(self, inbound: NormalizedInbound) -> RouteResult:
        """Process one inbound message end to end.

        Args:
            inbound: Normalized message from the webhook adapter.

        Returns:
            RouteResult describing the path taken.

        Raises:
            PersistenceError: If the store fails.
            ConfigurationError: If a secret needed outside generation is missing.
        """
        log_ctx = safe_log_context(
            message_id_prefix=id_prefix(inbound.message_id),
            kind=inbound.kind,
            provider=inbound.provider,
        )

        # Intake
        user = self._store.upsert_user(
            inbound.phone_number,
            first_name=inbound.first_name,
            last_name=inbound.last_name,
        )
        stored = self._store.append_message(
            Message(
                external_id=inbound.message_id,
                user_id=user.id,
                direction=Direction.INCOMING,
                kind=inbound.message_kind(),
                content=inbound.content,
                status=DeliveryStatus.RECEIVED,
                created_at=inbound.received_at,
            )
        )
        if not stored:
            logger.info("duplicate inbound message ignored", extra={"extra_fields": log_ctx})
            return RouteResult(duplicate=True)

        try:
            return self._process(user, inbound, log_ctx)
        except UpstreamError as e:
            logger.warning(
                "inbound processing aborted by upstream failure",
                extra={
                    "extra_fields": safe_log_context(
                        **log_ctx,
                        user_id=user.id,
                        error_type=type(e).__name__,
                        upstream=e.provider,
                    )
                },
            )
            return RouteResult(aborted=True)

    def handle_status(self, update: StatusUpdate) -> bool:
        """Apply a delivery status callback. Unknown or stale updates are ignored."""
        applied = self._store.update_message_status(update.message_id, update.status)
        logger.info(
            "delivery status applied" if applied else "delivery status ignored",
            extra={
                "extra_fields": safe_log_context(
                    message_id_prefix=id_prefix(update.message_id),
                    status=update.status.value,
                )
            },
        )
        return applied

    def _process(self, user: User, inbound: NormalizedInbound, log_ctx: dict) -> RouteResult:
        # Onboard
        decision = run_gate(self._store, user, inbound.text)
        if decision.intercepted:
            for key in decision.reply_keys:
                self._replies.send_template(decision.user, key)
            logger.info(
                "inbound handled by onboarding",
                extra={
                    "extra_fields": safe_log_context(
                        **log_ctx,
                        user_id=user.id,
                        phase=decision.user.onboarding_phase.value,
                    )
                },
            )
            return RouteResult(intercepted=True)
        user = decision.user

        if inbound.message_kind() != MessageKind.TEXT or inbound.text is None:
            self._replies.send_template(user, "unsupported_message")
            logger.info(
                "non-text inbound answered",
                extra={"extra_fields": safe_log_context(**log_ctx, user_id=user.id)},
            )
            return RouteResult()

        # Classify against the freshest state
        intent = classify(
            inbound.text,
            user.last_interaction_kind,
            user.last_generation_context,
            self._keywords,
        )
        logger.info(
            "inbound classified",
            extra={
                "extra_fields": safe_log_context(
                    **log_ctx,
                    user_id=user.id,
                    intent=intent.kind.value,
                )
            },
        )

        # Act
        self._actions[intent.kind](user, intent, inbound)
        return RouteResult(intent=intent.kind)

    def _greet(self, user: User, intent: Intent, inbound: NormalizedInbound) -> None:
        self._replies.send_template(user, "greeting")

    def _report_balance(self, user: User, intent: Intent, inbound: NormalizedInbound) -> None:
        balance = self._ledger.get_balance(user.id)
        if balance > 0:
            self._replies.send_template(user, "credit_balance", {"balance": balance})
            return

        product = self._catalog.cheapest_active_product()
        if product is None:
            self._replies.send_template(user, "credit_balance_empty_no_offer")
            return
        self._replies.send_template(
            user,
            "credit_balance_empty",
            {"price": product.formatted_price(), "credits": product.credits_amount},
        )

    def _guide_purchase(self, user: User, intent: Intent, inbound: NormalizedInbound) -> None:
        self._replies.send_template(user, "buy_credits", {"storefront_url": self._storefront_url})

    def _generate(self, user: User, intent: Intent, inbound: NormalizedInbound) -> None:
        self._dispatcher.dispatch(user, intent, inbound.text or "", inbound.message_id)

    def _chat(self, user: User, intent: Intent, inbound: NormalizedInbound) -> None:
        # History already includes the inbound message appended at intake
        history = [
            {
                "role": "user" if m.direction == Direction.INCOMING else "assistant",
                "content": m.text(),
            }
            for m in self._store.recent_messages(user.id, self._history_limit)
            if m.text()
        ]

        try:
            answer = self._chat_model.complete(CHAT_INSTRUCTION, history).strip()
        except UpstreamError as e:
            logger.warning(
                "chat model failed",
                extra={
                    "extra_fields": safe_log_context(
                        user_id=user.id,
                        error_type=type(e).__name__,
                        upstream=e.provider,
                    )
                },
            )
            answer = ""

        if answer:
            self._replies.send_text(user, answer)
        else:
            self._replies.send_template(user, "chat_failed")
        self._replies.send_template(user, "image_nudge")

        # Drop a stale image context so a later "make it blue" is not a modify
        if user.last_interaction_kind == InteractionKind.IMAGE_GENERATION:
            self._store.update_user(
                user.id,
                last_interaction_kind=InteractionKind.CONVERSATION,
                last_generation_context=None,
            )

"""Credit-gated image generation.

Order of operations per request (do not reorder):
1. Resolve the working prompt (modify turns carry the previous prompt).
2. Debit one credit atomically. No credit -> reply and stop.
3. Refine the prompt through the chat model.
4. Persist the generation context BEFORE the provider call.
5. Send the interstitial reply, call the provider, validate the result.
6. Deliver the image, then record it.
Any failure after step 2 and before delivery issues exactly one refund for
the debit. Once the image is delivered the credit is consumed, even if
recording the outgoing message fails.
Provider calls never run inside a ledger transaction.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from urllib.parse import urlparse

from chatcanvas.domain.classifier import DEFAULT_KEYWORDS, KeywordConfig, strip_modification_prefix
from chatcanvas.domain.errors import ConfigurationError, UpstreamError
from chatcanvas.domain.intents import Intent, IntentKind
from chatcanvas.domain.models import (
    IMAGE_GENERATION_PRODUCT,
    GenerationContext,
    InteractionKind,
    TransactionType,
    User,
    utc_now,
)
from chatcanvas.domain.ports import ChatModel, ConversationStore, CreditLedger, ImageProvider
from chatcanvas.domain.replies import ReplySender
from chatcanvas.observability.logging import get_logger
from chatcanvas.observability.redaction import safe_log_context
from chatcanvas.whatsapp.templates import render

logger = get_logger(__name__)

GENERATION_COST = 1

MODIFY_TEMPLATE = "{modification} (maintaining style and context from previous image: {prior})"

REFINEMENT_INSTRUCTION = (
    "You rewrite image requests into a single prompt for an image generation model. "
    "Answer with the prompt only, no preamble, in this exact structure:\n"
    "<style>, <main subject and scene>, <background>, <lighting>.\n"
    "- style: the artistic medium or photographic style\n"
    "- scene: the subject and what it is doing, keeping every detail the user gave\n"
    "- background: the setting behind the subject\n"
    "- lighting: light source, time of day and mood\n"
    "Keep it under 80 words. If the request mentions maintaining a previous image, "
    "preserve that image's style and subject and apply only the requested change."
)


class GenerationOutcome(str, Enum):
    COMPLETED = "completed"
    INSUFFICIENT_CREDITS = "insufficient_credits"
    REFUNDED = "refunded"


@dataclass
class GenerationRequest:
    """Per-call unit threaded through the dispatcher. Not persisted."""

    raw_text: str
    prompt: str
    refined_prompt: str | None = None
    debited: bool = False
    delivered: bool = False
    outcome: GenerationOutcome | None = None
    image_url: str | None = None


def resolve_prompt(
    intent: Intent,
    raw_text: str,
    keywords: KeywordConfig = DEFAULT_KEYWORDS,
) -> str:
    """Build the working prompt for a generation intent."""
    if intent.kind == IntentKind.IMAGE_MODIFY and intent.prior_prompt:
        modification = strip_modification_prefix(raw_text, keywords)
        return MODIFY_TEMPLATE.format(modification=modification, prior=intent.prior_prompt)
    return raw_text.strip()


def validate_result(urls: object) -> str:
    """Return the first result URL or raise UpstreamError.

    The provider response must be a non-empty list whose first element is an
    https URL with a host.
    """
    if not isinstance(urls, list) or not urls:
        raise UpstreamError("generation returned no results", provider="generation")
    first = urls[0]
    if not isinstance(first, str):
        raise UpstreamError("generation result is not a URL", provider="generation")
    parsed = urlparse(first)
    if parsed.scheme != "https" or not parsed.netloc:
        raise UpstreamError("generation result is not a secure URL", provider="generation")
    return first


class GenerationDispatcher:
    """Runs one image generation request end to end."""

    def __init__(
        self,
        *,
        store: ConversationStore,
        ledger: CreditLedger,
        chat_model: ChatModel,
        image_provider: ImageProvider,
        replies: ReplySender,
        keywords: KeywordConfig = DEFAULT_KEYWORDS,
    ) -> None:
        self._store = store
        self._ledger = ledger
        self._chat_model = chat_model
        self._image_provider = image_provider
        self._replies = replies
        self._keywords = keywords

    def dispatch(self, user: User, intent: Intent, raw_text: str, message_id: str) -> GenerationRequest:
        """Handle an IMAGE_GENERATE or IMAGE_MODIFY intent.

        Args:
            user: Onboarded user.
            intent: Generation intent.
            raw_text: Original message text.
            message_id: Inbound external message ID (ledger metadata).

        Returns:
            The GenerationRequest with its outcome set.

        Raises:
            ValueError: If intent is not a generation intent.
            PersistenceError: If the store fails. The debit is refunded unless
                the image was already delivered.
        """
        if not intent.is_generation():
            raise ValueError(f"not a generation intent: {intent.kind}")

        request = GenerationRequest(raw_text=raw_text, prompt=resolve_prompt(intent, raw_text, self._keywords))

        request.debited = self._ledger.try_debit(
            user.id,
            GENERATION_COST,
            IMAGE_GENERATION_PRODUCT,
            {"message_id": message_id, "intent": intent.kind.value},
        )
        if not request.debited:
            logger.info(
                "generation blocked: insufficient credits",
                extra={"extra_fields": safe_log_context(user_id=user.id)},
            )
            self._replies.send_template(user, "insufficient_credits")
            request.outcome = GenerationOutcome.INSUFFICIENT_CREDITS
            return request

        stage = "refine"
        try:
            request.refined_prompt = self._refine(request.prompt)

            stage = "persist_context"
            self._store.update_user(
                user.id,
                last_interaction_kind=InteractionKind.IMAGE_GENERATION,
                last_generation_context=GenerationContext(request.refined_prompt, utc_now()),
            )

            stage = "notify"
            self._replies.send_template(user, "generation_started")

            stage = "generate"
            request.image_url = validate_result(self._image_provider.generate(request.refined_prompt))

            stage = "deliver"
            image_message = self._replies.send_image(user, request.image_url, render("generation_caption"))
            request.delivered = True

            stage = "record"
            self._replies.record(image_message)
        except (UpstreamError, ConfigurationError) as e:
            reason = "delivery_failed" if stage in ("notify", "deliver") else "generation_failed"
            logger.warning(
                "generation failed",
                extra={
                    "extra_fields": safe_log_context(
                        user_id=user.id,
                        stage=stage,
                        error_type=type(e).__name__,
                        provider=getattr(e, "provider", None),
                    )
                },
            )
            self._refund(user, message_id, reason)
            request.outcome = GenerationOutcome.REFUNDED
            self._apologize(user)
            return request
        except Exception:
            if request.delivered:
                # The user has the image: the credit is consumed
                request.outcome = GenerationOutcome.COMPLETED
                logger.exception(
                    "generation delivered but not recorded",
                    extra={"extra_fields": safe_log_context(user_id=user.id, stage=stage)},
                )
                raise
            # Unexpected (e.g. store failure): still pair the debit with a refund
            self._refund_after_crash(user, message_id, stage)
            raise

        request.outcome = GenerationOutcome.COMPLETED
        logger.info(
            "generation completed",
            extra={"extra_fields": safe_log_context(user_id=user.id, intent=intent.kind.value)},
        )
        return request

    def _refine(self, prompt: str) -> str:
        refined = self._chat_model.complete(
            REFINEMENT_INSTRUCTION,
            [{"role": "user", "content": prompt}],
        ).strip()
        if not refined:
            raise UpstreamError("prompt refinement returned empty text", provider="chat")
        return refined

    def _refund(self, user: User, message_id: str, reason: str) -> None:
        self._ledger.credit(
            user.id,
            GENERATION_COST,
            TransactionType.REFUND,
            IMAGE_GENERATION_PRODUCT,
            {"reason": reason, "message_id": message_id},
        )
        logger.info(
            "generation credit refunded",
            extra={"extra_fields": safe_log_context(user_id=user.id, reason=reason)},
        )

    def _refund_after_crash(self, user: User, message_id: str, stage: str) -> None:
        try:
            self._refund(user, message_id, "internal_error")
        except Exception:
            logger.exception(
                "refund failed after generation error",
                extra={"extra_fields": safe_log_context(user_id=user.id, stage=stage)},
            )

    def _apologize(self, user: User) -> None:
        try:
            self._replies.send_template(user, "generation_failed")
        except UpstreamError:
            logger.warning(
                "could not deliver generation apology",
                extra={"extra_fields": safe_log_context(user_id=user.id)},
            )

"""Onboarding gate - collects an email before any other processing.

State machine per user:
    not_started --any message--> awaiting_email
    awaiting_email --invalid email--> awaiting_email
    awaiting_email --valid email--> completed (terminal)

Every message received before completion is consumed by the gate, including
the message carrying the email itself. Only completed users reach the
classifier, so no credit-gated action can run for an unonboarded user.
Security: NEVER log the email or message text.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Callable

from chatcanvas.domain.models import OnboardingPhase, User
from chatcanvas.domain.ports import ConversationStore
from chatcanvas.observability.logging import get_logger
from chatcanvas.observability.redaction import safe_log_context

logger = get_logger(__name__)

_EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")


@dataclass(frozen=True)
class GateDecision:
    """Outcome of running the gate for one inbound message.

    Attributes:
        intercepted: True if the message was consumed by the gate.
        user: User state after the gate ran (refreshed on transitions).
        reply_keys: Template keys to send back, in order.
    """

    intercepted: bool
    user: User
    reply_keys: list[str] = field(default_factory=list)


def is_valid_email(text: str) -> bool:
    """Check for a local@domain.tld shape."""
    return bool(_EMAIL_PATTERN.match(text.strip()))


def _start(store: ConversationStore, user: User, text: str) -> GateDecision:
    updated = store.update_user(user.id, onboarding_phase=OnboardingPhase.AWAITING_EMAIL)
    logger.info(
        "onboarding started",
        extra={"extra_fields": safe_log_context(user_id=user.id)},
    )
    return GateDecision(True, updated, ["onboarding_prompt"])


def _collect_email(store: ConversationStore, user: User, text: str) -> GateDecision:
    if not is_valid_email(text):
        logger.info(
            "onboarding email rejected",
            extra={"extra_fields": safe_log_context(user_id=user.id, text_len=len(text))},
        )
        return GateDecision(True, user, ["onboarding_invalid_email"])

    updated = store.update_user(
        user.id,
        onboarding_phase=OnboardingPhase.COMPLETED,
        email=text.strip().lower(),
    )
    logger.info(
        "onboarding completed",
        extra={"extra_fields": safe_log_context(user_id=user.id)},
    )
    return GateDecision(True, updated, ["onboarding_complete"])


def _pass_through(store: ConversationStore, user: User, text: str) -> GateDecision:
    return GateDecision(False, user)


PHASE_HANDLERS: dict[OnboardingPhase, Callable[[ConversationStore, User, str], GateDecision]] = {
    OnboardingPhase.NOT_STARTED: _start,
    OnboardingPhase.AWAITING_EMAIL: _collect_email,
    OnboardingPhase.COMPLETED: _pass_through,
}


def run_gate(store: ConversationStore, user: User, text: str | None) -> GateDecision:
    """Run the onboarding gate for one inbound message.

    Args:
        store: Conversation store used to persist phase/email changes.
        user: Current user state.
        text: Inbound text (None for non-text messages).

    Returns:
        GateDecision. When intercepted, the router sends reply_keys and stops.
    """
    handler = PHASE_HANDLERS[user.onboarding_phase]
    return handler(store, user, text or "")

"""Deterministic intent classification from user messages.

NO LLM. Ordered keyword rules over normalized text plus the user's last
interaction. Keyword sets are immutable configuration passed in by the
caller, so the classifier has no ambient state.
Security: NEVER log raw text (PII).
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from functools import lru_cache

from chatcanvas.domain.intents import Intent, IntentKind
from chatcanvas.domain.models import GenerationContext, InteractionKind


@dataclass(frozen=True)
class KeywordConfig:
    """Phrase sets driving the classifier. All phrases lower-case."""

    greetings: tuple[str, ...]
    creation_phrases: tuple[str, ...]
    modification_phrases: tuple[str, ...]
    modification_prefixes: tuple[str, ...]
    continuation_words: tuple[str, ...]
    balance_phrases: tuple[str, ...]
    buy_credits_phrase: str = "buy credits"


DEFAULT_KEYWORDS = KeywordConfig(
    greetings=(
        "hi",
        "hello",
        "hey",
        "hiya",
        "howdy",
        "hola",
        "greetings",
        "good morning",
        "good afternoon",
        "good evening",
        "what's up",
        "whats up",
    ),
    creation_phrases=(
        "show",
        "generate",
        "create",
        "make",
        "want",
        "need",
        "give me",
        "draw",
        "paint",
        "sketch",
        "design",
        "picture",
        "photo",
        "image",
        "illustration",
    ),
    modification_phrases=(
        "make it",
        "change it",
        "turn it",
        "set it",
        "add",
        "remove",
        "replace",
        "without",
        "instead",
    ),
    # Leading phrases dropped when composing the modified prompt.
    modification_prefixes=(
        "make it",
        "change it to",
        "change it",
        "turn it into",
        "turn it",
        "set it to",
        "set it",
    ),
    continuation_words=("but", "and"),
    balance_phrases=(
        "balance",
        "credits",
        "my balance",
        "my credits",
        "check balance",
        "check credits",
        "check my balance",
        "check my credits",
        "credit balance",
        "how many credits",
        "what is my balance",
        "what's my balance",
    ),
)

# "make the sky purple", "turn the car red"
_TARGETED_EDIT = re.compile(r"\b(?:make|change|turn|set) the\b")


def normalize_text(text: str) -> str:
    """Trim, lower-case, collapse whitespace and drop trailing punctuation."""
    collapsed = " ".join(text.lower().split())
    return collapsed.rstrip("?!.").rstrip()


@lru_cache(maxsize=32)
def _phrase_pattern(phrases: tuple[str, ...], anchored: bool, whole_word: bool = True) -> re.Pattern[str]:
    # Longest first so "give me" wins over shorter overlaps
    ordered = sorted(phrases, key=len, reverse=True)
    body = "|".join(re.escape(p) for p in ordered)
    prefix = "^" if anchored else r"\b"
    suffix = r"\b" if whole_word else ""
    return re.compile(rf"{prefix}(?:{body}){suffix}")


def _starts_with_any(normalized: str, phrases: tuple[str, ...]) -> bool:
    return bool(phrases) and _phrase_pattern(phrases, True).search(normalized) is not None


def _contains_any(normalized: str, phrases: tuple[str, ...]) -> bool:
    return bool(phrases) and _phrase_pattern(phrases, False).search(normalized) is not None


def _contains_word_start(normalized: str, phrases: tuple[str, ...]) -> bool:
    """Match phrases at the start of a word, allowing inflections ("pictures", "showing")."""
    return bool(phrases) and _phrase_pattern(phrases, False, False).search(normalized) is not None


def _is_modification(normalized: str, keywords: KeywordConfig) -> bool:
    if _contains_any(normalized, keywords.modification_phrases):
        return True
    if _TARGETED_EDIT.search(normalized):
        return True
    return _starts_with_any(normalized, keywords.continuation_words)


def _is_balance_query(normalized: str, keywords: KeywordConfig) -> bool:
    for phrase in keywords.balance_phrases:
        if normalized == phrase or normalized.startswith(phrase + " "):
            return True
    return False


def classify(
    text: str,
    last_interaction_kind: InteractionKind,
    last_generation_context: GenerationContext | None,
    keywords: KeywordConfig = DEFAULT_KEYWORDS,
) -> Intent:
    """Classify an inbound message. First matching rule wins.

    Rule order:
    1. Greeting (text starts with a greeting)
    2. Image modify (only after an image generation with stored context)
    3. Image generate (a word starts with a creation phrase)
    4. Credit balance (exact or prefix match)
    5. Buy credits (exact)
    6. Freeform chat

    Modification is checked ahead of creation while an image context is
    active, since phrases like "make it blue" contain a creation verb.

    Args:
        text: Raw message text.
        last_interaction_kind: User's last interaction kind.
        last_generation_context: User's last generation context, if any.
        keywords: Phrase configuration.

    Returns:
        Classified Intent.
    """
    normalized = normalize_text(text)

    if _starts_with_any(normalized, keywords.greetings):
        return Intent(IntentKind.GREETING)

    in_image_context = (
        last_interaction_kind == InteractionKind.IMAGE_GENERATION
        and last_generation_context is not None
    )
    if in_image_context and _is_modification(normalized, keywords):
        return Intent(
            IntentKind.IMAGE_MODIFY,
            prior_prompt=last_generation_context.refined_prompt,
        )

    if _contains_word_start(normalized, keywords.creation_phrases):
        return Intent(IntentKind.IMAGE_GENERATE)

    if _is_balance_query(normalized, keywords):
        return Intent(IntentKind.CREDIT_BALANCE)

    if normalized == keywords.buy_credits_phrase:
        return Intent(IntentKind.BUY_CREDITS)

    return Intent(IntentKind.FREEFORM_CHAT)


def strip_modification_prefix(text: str, keywords: KeywordConfig = DEFAULT_KEYWORDS) -> str:
    """Drop a leading continuation word and modification phrase.

    "make it blue" -> "blue"; "but add a hat" -> "add a hat".
    Case of the remaining text is preserved. Falls back to the trimmed input
    if nothing would remain.
    """
    remaining = " ".join(text.split())
    for group in (keywords.continuation_words, keywords.modification_prefixes):
        if not group:
            continue
        match = _phrase_pattern(group, True).match(remaining.lower())
        if match:
            remaining = remaining[match.end():].lstrip(" ,")
    return remaining or text.strip()

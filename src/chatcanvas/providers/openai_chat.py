"""Chat model over an OpenAI-compatible /chat/completions endpoint.

Used for prompt refinement and freeform conversation.
Security: NEVER log prompts or completions.
"""

from __future__ import annotations

from typing import Any

import requests

from chatcanvas.config import Settings
from chatcanvas.domain.errors import UpstreamError
from chatcanvas.observability.logging import get_logger
from chatcanvas.observability.redaction import safe_log_context

logger = get_logger(__name__)

# Timeout for HTTP requests (seconds)
HTTP_TIMEOUT = 60

MAX_TOKENS = 500
TEMPERATURE = 0.7


class OpenAIChatModel:
    """ChatModel implementation. One POST per completion, no retries."""

    def __init__(self, settings: Settings, session: requests.Session | None = None) -> None:
        self._settings = settings
        self._session = session or requests.Session()

    def complete(self, instruction: str, messages: list[dict[str, str]]) -> str:
        """Return the assistant text for a system instruction plus chat messages.

        Args:
            instruction: System prompt.
            messages: Chat turns as {"role", "content"} dicts, oldest first.

        Returns:
            Completion text (may be empty if the model returned nothing).

        Raises:
            ConfigurationError: If CHAT_API_KEY is missing.
            UpstreamError: On network errors, timeouts, non-2xx or malformed responses.
        """
        api_key = self._settings.require("chat_api_key")

        payload: dict[str, Any] = {
            "model": self._settings.chat_model,
            "messages": [{"role": "system", "content": instruction}, *messages],
            "temperature": TEMPERATURE,
            "max_tokens": MAX_TOKENS,
        }

        try:
            response = self._session.post(
                self._settings.chat_api_url,
                json=payload,
                headers={"Authorization": f"Bearer {api_key}"},
                timeout=HTTP_TIMEOUT,
            )
            response.raise_for_status()
            data = response.json()
        except requests.RequestException as e:
            logger.error(
                "chat completion request failed",
                extra={
                    "extra_fields": safe_log_context(
                        model=self._settings.chat_model,
                        error_type=type(e).__name__,
                        status_code=getattr(e.response, "status_code", None),
                    )
                },
            )
            raise UpstreamError("chat completion failed", provider="chat") from e
        except ValueError as e:
            raise UpstreamError("chat completion returned invalid json", provider="chat") from e

        try:
            content = data["choices"][0]["message"].get("content") or ""
        except (KeyError, IndexError, TypeError, AttributeError):
            raise UpstreamError("chat completion response malformed", provider="chat") from None

        logger.info(
            "chat completion received",
            extra={
                "extra_fields": safe_log_context(
                    model=self._settings.chat_model,
                    turns=len(messages),
                    content_len=len(content),
                )
            },
        )
        return content

"""Image generation over an OpenAI-compatible /images/generations endpoint."""

from __future__ import annotations

import requests

from chatcanvas.config import Settings
from chatcanvas.domain.errors import UpstreamError
from chatcanvas.observability.logging import get_logger
from chatcanvas.observability.redaction import safe_log_context

logger = get_logger(__name__)

# Generation is slow; this is the ceiling, not the expectation
HTTP_TIMEOUT = 120

IMAGE_COUNT = 1


class OpenAIImageProvider:
    """ImageProvider returning hosted image URLs."""

    def __init__(self, settings: Settings, session: requests.Session | None = None) -> None:
        self._settings = settings
        self._session = session or requests.Session()

    def generate(self, prompt: str) -> list[str]:
        """Generate images for a prompt with the fixed size/model parameters.

        Returns:
            Result URLs as returned by the provider (validated by the caller).

        Raises:
            ConfigurationError: If GENERATION_API_KEY is missing.
            UpstreamError: On network errors, timeouts, non-2xx or malformed responses.
        """
        api_key = self._settings.require("generation_api_key")

        payload = {
            "model": self._settings.generation_model,
            "prompt": prompt,
            "n": IMAGE_COUNT,
            "size": self._settings.generation_image_size,
            "response_format": "url",
        }

        try:
            response = self._session.post(
                self._settings.generation_api_url,
                json=payload,
                headers={"Authorization": f"Bearer {api_key}"},
                timeout=HTTP_TIMEOUT,
            )
            response.raise_for_status()
            data = response.json()
        except requests.RequestException as e:
            logger.error(
                "image generation request failed",
                extra={
                    "extra_fields": safe_log_context(
                        model=self._settings.generation_model,
                        error_type=type(e).__name__,
                        status_code=getattr(e.response, "status_code", None),
                    )
                },
            )
            raise UpstreamError("image generation failed", provider="generation") from e
        except ValueError as e:
            raise UpstreamError("image generation returned invalid json", provider="generation") from e

        items = data.get("data") if isinstance(data, dict) else None
        if not isinstance(items, list):
            raise UpstreamError("image generation response malformed", provider="generation")

        urls = [item["url"] for item in items if isinstance(item, dict) and item.get("url")]
        logger.info(
            "image generation returned",
            extra={
                "extra_fields": safe_log_context(
                    model=self._settings.generation_model,
                    result_count=len(urls),
                )
            },
        )
        return urls

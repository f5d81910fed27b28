"""Process configuration.

Built once at startup via Settings.from_env() and passed into constructors.
Secrets are optional at load time: a missing secret only fails the request
path that needs it (see Settings.require).
"""

from __future__ import annotations

import os
from dataclasses import dataclass, fields
from typing import Mapping

from chatcanvas.domain.errors import ConfigurationError

DEFAULT_GRAPH_API_VERSION = "v18.0"
DEFAULT_GENERATION_API_URL = "https://api.openai.com/v1/images/generations"
DEFAULT_GENERATION_MODEL = "dall-e-3"
DEFAULT_GENERATION_IMAGE_SIZE = "1024x1024"
DEFAULT_CHAT_API_URL = "https://api.openai.com/v1/chat/completions"
DEFAULT_CHAT_MODEL = "gpt-4o-mini"
DEFAULT_CHAT_HISTORY_LIMIT = 10
DEFAULT_STOREFRONT_URL = "https://chatcanvas.app/pricing"

# Field name -> environment variable
ENV_VARS: dict[str, str] = {
    "database_url": "DATABASE_URL",
    "whatsapp_access_token": "WHATSAPP_ACCESS_TOKEN",
    "whatsapp_phone_number_id": "WHATSAPP_PHONE_NUMBER_ID",
    "whatsapp_verify_token": "WHATSAPP_VERIFY_TOKEN",
    "whatsapp_app_secret": "WHATSAPP_APP_SECRET",
    "whatsapp_graph_api_version": "WHATSAPP_GRAPH_API_VERSION",
    "generation_api_key": "GENERATION_API_KEY",
    "generation_api_url": "GENERATION_API_URL",
    "generation_model": "GENERATION_MODEL",
    "generation_image_size": "GENERATION_IMAGE_SIZE",
    "chat_api_key": "CHAT_API_KEY",
    "chat_api_url": "CHAT_API_URL",
    "chat_model": "CHAT_MODEL",
    "chat_history_limit": "CHAT_HISTORY_LIMIT",
    "stripe_secret_key": "STRIPE_SECRET_KEY",
    "stripe_webhook_secret": "STRIPE_WEBHOOK_SECRET",
    "storefront_url": "STOREFRONT_URL",
}


@dataclass(frozen=True)
class Settings:
    """Explicit configuration value for the whole process."""

    database_url: str | None = None
    whatsapp_access_token: str | None = None
    whatsapp_phone_number_id: str | None = None
    whatsapp_verify_token: str | None = None
    whatsapp_app_secret: str | None = None
    whatsapp_graph_api_version: str = DEFAULT_GRAPH_API_VERSION
    generation_api_key: str | None = None
    generation_api_url: str = DEFAULT_GENERATION_API_URL
    generation_model: str = DEFAULT_GENERATION_MODEL
    generation_image_size: str = DEFAULT_GENERATION_IMAGE_SIZE
    chat_api_key: str | None = None
    chat_api_url: str = DEFAULT_CHAT_API_URL
    chat_model: str = DEFAULT_CHAT_MODEL
    chat_history_limit: int = DEFAULT_CHAT_HISTORY_LIMIT
    stripe_secret_key: str | None = None
    stripe_webhook_secret: str | None = None
    storefront_url: str = DEFAULT_STOREFRONT_URL

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> Settings:
        """Load settings from environment variables.

        Empty strings count as unset so defaults apply.

        Args:
            environ: Mapping to read from (defaults to os.environ).

        Returns:
            Populated Settings.

        Raises:
            ValueError: If CHAT_HISTORY_LIMIT is not a positive integer.
        """
        env = os.environ if environ is None else environ
        values: dict[str, object] = {}
        for f in fields(cls):
            raw = env.get(ENV_VARS[f.name], "")
            if not raw:
                continue
            if f.name == "chat_history_limit":
                limit = int(raw)
                if limit <= 0:
                    raise ValueError("CHAT_HISTORY_LIMIT must be positive")
                values[f.name] = limit
            else:
                values[f.name] = raw
        return cls(**values)  # type: ignore[arg-type]

    def require(self, name: str) -> str:
        """Return a configured secret or fail the current request path.

        Raises:
            ConfigurationError: If the value is missing.
        """
        value = getattr(self, name)
        if not value:
            raise ConfigurationError(ENV_VARS[name])
        return value

"""Process-wide collaborators for the HTTP routes.

Built lazily from Settings on first use. Routes call the getters; tests
swap implementations through the setters.
"""

from __future__ import annotations

from chatcanvas.config import Settings
from chatcanvas.domain.ports import ConversationStore, MessageSender
from chatcanvas.domain.replies import ReplySender
from chatcanvas.domain.router import MessageRouter
from chatcanvas.infra.postgres_store import (
    PostgresConversationStore,
    PostgresCreditLedger,
    PostgresProductCatalog,
)
from chatcanvas.providers.image_generation import OpenAIImageProvider
from chatcanvas.providers.openai_chat import OpenAIChatModel
from chatcanvas.stripe.client import StripeClient
from chatcanvas.whatsapp.meta_sender import MetaSender

_settings: Settings | None = None
_store: ConversationStore | None = None
_sender: MessageSender | None = None
_message_router: MessageRouter | None = None
_stripe_client: StripeClient | None = None


def configure(settings: Settings) -> None:
    """Install settings and drop any collaborators built from older ones."""
    global _settings, _store, _sender, _message_router, _stripe_client
    _settings = settings
    _store = None
    _sender = None
    _message_router = None
    _stripe_client = None


def get_settings() -> Settings:
    global _settings
    if _settings is None:
        _settings = Settings.from_env()
    return _settings


def _get_store() -> ConversationStore:
    global _store
    if _store is None:
        _store = PostgresConversationStore(get_settings().database_url)
    return _store


def _get_sender() -> MessageSender:
    global _sender
    if _sender is None:
        _sender = MetaSender(get_settings())
    return _sender


def build_message_router(settings: Settings) -> MessageRouter:
    """Wire the production router from settings."""
    dsn = settings.database_url
    return MessageRouter(
        store=PostgresConversationStore(dsn),
        ledger=PostgresCreditLedger(dsn),
        catalog=PostgresProductCatalog(dsn),
        sender=MetaSender(settings),
        chat_model=OpenAIChatModel(settings),
        image_provider=OpenAIImageProvider(settings),
        storefront_url=settings.storefront_url,
        history_limit=settings.chat_history_limit,
    )


def _get_message_router() -> MessageRouter:
    """Get message router instance (allows test injection)."""
    global _message_router
    if _message_router is None:
        _message_router = build_message_router(get_settings())
    return _message_router


def _set_message_router(message_router: MessageRouter | None) -> None:
    global _message_router
    _message_router = message_router


def _get_reply_sender() -> ReplySender:
    """Reply sender for notifications outside the inbound pipeline."""
    return ReplySender(_get_store(), _get_sender())


def _set_reply_collaborators(store: ConversationStore | None, sender: MessageSender | None) -> None:
    global _store, _sender
    _store = store
    _sender = sender


def _get_stripe_client() -> StripeClient:
    """Get Stripe client instance (allows test injection).

    Raises:
        ConfigurationError: If STRIPE_SECRET_KEY is missing.
    """
    global _stripe_client
    if _stripe_client is None:
        _stripe_client = StripeClient(get_settings().require("stripe_secret_key"))
    return _stripe_client


def _set_stripe_client(client: StripeClient | None) -> None:
    global _stripe_client
    _stripe_client = client

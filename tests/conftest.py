"""Shared pytest fixtures for ChatCanvas tests."""
import sys
sys.dont_write_bytecode = True

import pytest  # noqa: E402

from chatcanvas.api import dependencies  # noqa: E402
from chatcanvas.domain.router import MessageRouter  # noqa: E402

from tests.fakes import (  # noqa: E402
    FakeCatalog,
    FakeChatModel,
    FakeImageProvider,
    FakeSender,
    InMemoryConversationStore,
    InMemoryCreditLedger,
)
from tests.helpers import STARTER_PRODUCT, STOREFRONT_URL  # noqa: E402


@pytest.fixture(autouse=True)
def _reset_dependencies():
    """Drop process-wide collaborators so tests never share wiring."""
    dependencies._settings = None
    dependencies._store = None
    dependencies._sender = None
    dependencies._message_router = None
    dependencies._stripe_client = None
    yield
    dependencies._settings = None
    dependencies._store = None
    dependencies._sender = None
    dependencies._message_router = None
    dependencies._stripe_client = None


@pytest.fixture
def store():
    return InMemoryConversationStore()


@pytest.fixture
def ledger():
    return InMemoryCreditLedger()


@pytest.fixture
def sender():
    return FakeSender()


@pytest.fixture
def chat_model():
    return FakeChatModel(reply="Sure! Here is a friendly answer.")


@pytest.fixture
def image_provider():
    return FakeImageProvider()


@pytest.fixture
def catalog():
    return FakeCatalog([STARTER_PRODUCT])


@pytest.fixture
def message_router(store, ledger, catalog, sender, chat_model, image_provider):
    return MessageRouter(
        store=store,
        ledger=ledger,
        catalog=catalog,
        sender=sender,
        chat_model=chat_model,
        image_provider=image_provider,
        storefront_url=STOREFRONT_URL,
        history_limit=10,
    )

"""Tests for the credit-gated generation dispatcher."""

from datetime import datetime, timezone

import pytest

from chatcanvas.domain.errors import ConfigurationError, PersistenceError, UpstreamError
from chatcanvas.domain.generation import (
    GENERATION_COST,
    REFINEMENT_INSTRUCTION,
    GenerationDispatcher,
    GenerationOutcome,
    resolve_prompt,
    validate_result,
)
from chatcanvas.domain.intents import Intent, IntentKind
from chatcanvas.domain.models import (
    GenerationContext,
    InteractionKind,
    MessageKind,
    TransactionType,
)
from chatcanvas.domain.replies import ReplySender
from chatcanvas.whatsapp.templates import render

from tests.fakes import FakeChatModel, FakeImageProvider, FakeSender

GENERATE = Intent(IntentKind.IMAGE_GENERATE)


def _dispatcher(store, ledger, sender, chat_model, image_provider):
    return GenerationDispatcher(
        store=store,
        ledger=ledger,
        chat_model=chat_model,
        image_provider=image_provider,
        replies=ReplySender(store, sender),
    )


@pytest.fixture
def refiner():
    return FakeChatModel(reply="watercolor, a sunset over the sea, open horizon, golden hour")


@pytest.fixture
def funded_user(store, ledger):
    user = store.add_onboarded_user()
    ledger.credit(user.id, 3, TransactionType.PURCHASE, "image_generation")
    return user


class TestResolvePrompt:
    def test_generate_uses_raw_text(self):
        assert resolve_prompt(GENERATE, "  show me a sunset ") == "show me a sunset"

    def test_modify_composes_with_prior_prompt(self):
        intent = Intent(IntentKind.IMAGE_MODIFY, prior_prompt="a red car")
        assert resolve_prompt(intent, "make it blue") == (
            "blue (maintaining style and context from previous image: a red car)"
        )


class TestValidateResult:
    def test_first_https_url(self):
        assert validate_result(["https://cdn.example.com/a.png", "x"]) == "https://cdn.example.com/a.png"

    @pytest.mark.parametrize(
        "urls",
        [[], None, "https://cdn.example.com/a.png", [None], ["http://cdn.example.com/a.png"], ["https://"]],
    )
    def test_rejects_bad_results(self, urls):
        with pytest.raises(UpstreamError):
            validate_result(urls)


class TestDispatch:
    def test_success_debits_once_and_delivers(self, store, ledger, sender, refiner, image_provider, funded_user):
        dispatcher = _dispatcher(store, ledger, sender, refiner, image_provider)

        request = dispatcher.dispatch(funded_user, GENERATE, "show me a sunset", "wamid.IN1")

        assert request.outcome == GenerationOutcome.COMPLETED
        assert ledger.get_balance(funded_user.id) == 3 - GENERATION_COST
        assert ledger.of_type(funded_user.id, TransactionType.REFUND) == []

        # Refinement used the structural instruction and the raw prompt
        instruction, messages = refiner.calls[0]
        assert instruction == REFINEMENT_INSTRUCTION
        assert messages == [{"role": "user", "content": "show me a sunset"}]
        assert image_provider.prompts == [refiner.reply]

        # Interstitial then image with caption
        assert [s["kind"] for s in sender.sent] == [MessageKind.TEXT, MessageKind.IMAGE]
        assert sender.sent[0]["payload"]["body"] == render("generation_started")
        assert sender.sent[1]["payload"] == {
            "link": "https://images.example.com/result.png",
            "caption": render("generation_caption"),
        }
        assert len(store.outgoing(funded_user.id)) == 2

        # Context persisted with the refined prompt
        user = store.get_user(funded_user.id)
        assert user.last_interaction_kind == InteractionKind.IMAGE_GENERATION
        assert user.last_generation_context.refined_prompt == refiner.reply

    def test_debit_metadata_references_message(self, store, ledger, sender, refiner, image_provider, funded_user):
        _dispatcher(store, ledger, sender, refiner, image_provider).dispatch(
            funded_user, GENERATE, "show me a sunset", "wamid.IN1"
        )

        (use,) = ledger.of_type(funded_user.id, TransactionType.USE)
        assert use["amount"] == -1
        assert use["product_type"] == "image_generation"
        assert use["metadata"]["message_id"] == "wamid.IN1"

    def test_insufficient_credits_stops_before_provider(self, store, ledger, sender, refiner, image_provider):
        user = store.add_onboarded_user()

        request = _dispatcher(store, ledger, sender, refiner, image_provider).dispatch(
            user, GENERATE, "show me a sunset", "wamid.IN1"
        )

        assert request.outcome == GenerationOutcome.INSUFFICIENT_CREDITS
        assert refiner.calls == []
        assert image_provider.prompts == []
        assert ledger.get_balance(user.id) == 0
        assert sender.bodies() == [render("insufficient_credits")]
        assert "balance" in sender.bodies()[0] and "buy credits" in sender.bodies()[0]
        assert store.get_user(user.id).last_generation_context is None

    def test_provider_failure_refunds_exactly_once(self, store, ledger, sender, refiner, funded_user):
        provider = FakeImageProvider(error=UpstreamError("boom", provider="generation"))

        request = _dispatcher(store, ledger, sender, refiner, provider).dispatch(
            funded_user, GENERATE, "show me a sunset", "wamid.IN1"
        )

        assert request.outcome == GenerationOutcome.REFUNDED
        assert ledger.get_balance(funded_user.id) == 3
        (refund,) = ledger.of_type(funded_user.id, TransactionType.REFUND)
        assert refund["amount"] == 1
        assert refund["metadata"]["reason"] == "generation_failed"
        assert sender.bodies()[-1] == render("generation_failed")

    def test_invalid_provider_result_refunds(self, store, ledger, sender, refiner, funded_user):
        provider = FakeImageProvider(urls=["http://insecure.example.com/a.png"])

        request = _dispatcher(store, ledger, sender, refiner, provider).dispatch(
            funded_user, GENERATE, "show me a sunset", "wamid.IN1"
        )

        assert request.outcome == GenerationOutcome.REFUNDED
        assert ledger.get_balance(funded_user.id) == 3

    def test_context_persisted_before_provider_call(self, store, ledger, sender, refiner, funded_user):
        provider = FakeImageProvider(error=UpstreamError("timeout", provider="generation"))

        _dispatcher(store, ledger, sender, refiner, provider).dispatch(
            funded_user, GENERATE, "show me a sunset", "wamid.IN1"
        )

        user = store.get_user(funded_user.id)
        assert user.last_interaction_kind == InteractionKind.IMAGE_GENERATION
        assert user.last_generation_context.refined_prompt == refiner.reply

    def test_refinement_failure_refunds_without_provider_call(self, store, ledger, sender, image_provider, funded_user):
        refiner = FakeChatModel(error=UpstreamError("down", provider="chat"))

        request = _dispatcher(store, ledger, sender, refiner, image_provider).dispatch(
            funded_user, GENERATE, "show me a sunset", "wamid.IN1"
        )

        assert request.outcome == GenerationOutcome.REFUNDED
        assert image_provider.prompts == []
        assert ledger.get_balance(funded_user.id) == 3

    def test_empty_refinement_is_a_failure(self, store, ledger, sender, image_provider, funded_user):
        request = _dispatcher(store, ledger, sender, FakeChatModel(reply="   "), image_provider).dispatch(
            funded_user, GENERATE, "show me a sunset", "wamid.IN1"
        )

        assert request.outcome == GenerationOutcome.REFUNDED

    def test_missing_provider_key_refunds(self, store, ledger, sender, refiner, funded_user):
        provider = FakeImageProvider(error=ConfigurationError("GENERATION_API_KEY"))

        request = _dispatcher(store, ledger, sender, refiner, provider).dispatch(
            funded_user, GENERATE, "show me a sunset", "wamid.IN1"
        )

        assert request.outcome == GenerationOutcome.REFUNDED
        assert ledger.get_balance(funded_user.id) == 3

    def test_image_delivery_failure_refunds(self, store, ledger, refiner, image_provider, funded_user):
        sender = FakeSender(fail_on={2})  # 1: interstitial, 2: image

        request = _dispatcher(store, ledger, sender, refiner, image_provider).dispatch(
            funded_user, GENERATE, "show me a sunset", "wamid.IN1"
        )

        assert request.outcome == GenerationOutcome.REFUNDED
        (refund,) = ledger.of_type(funded_user.id, TransactionType.REFUND)
        assert refund["metadata"]["reason"] == "delivery_failed"
        assert sender.bodies()[-1] == render("generation_failed")

    def test_apology_failure_is_swallowed(self, store, ledger, refiner, funded_user):
        sender = FakeSender(fail_on={2})  # interstitial ok, apology fails
        provider = FakeImageProvider(error=UpstreamError("boom", provider="generation"))

        request = _dispatcher(store, ledger, sender, refiner, provider).dispatch(
            funded_user, GENERATE, "show me a sunset", "wamid.IN1"
        )

        assert request.outcome == GenerationOutcome.REFUNDED
        assert ledger.get_balance(funded_user.id) == 3

    def test_store_failure_refunds_and_propagates(self, store, ledger, sender, refiner, image_provider, funded_user, monkeypatch):
        def broken_update(*args, **kwargs):
            raise PersistenceError("update_user failed")

        monkeypatch.setattr(store, "update_user", broken_update)

        with pytest.raises(PersistenceError):
            _dispatcher(store, ledger, sender, refiner, image_provider).dispatch(
                funded_user, GENERATE, "show me a sunset", "wamid.IN1"
            )

        (refund,) = ledger.of_type(funded_user.id, TransactionType.REFUND)
        assert refund["metadata"]["reason"] == "internal_error"
        assert ledger.get_balance(funded_user.id) == 3

    def test_delivered_image_is_not_refunded_when_recording_fails(
        self, store, ledger, sender, refiner, image_provider, funded_user, monkeypatch
    ):
        """Once the image reaches the user the credit stays consumed."""
        original_append = store.append_message

        def append_text_only(message):
            if message.kind == MessageKind.IMAGE:
                raise PersistenceError("append_message failed")
            return original_append(message)

        monkeypatch.setattr(store, "append_message", append_text_only)

        with pytest.raises(PersistenceError):
            _dispatcher(store, ledger, sender, refiner, image_provider).dispatch(
                funded_user, GENERATE, "show me a sunset", "wamid.IN1"
            )

        assert [m["kind"] for m in sender.sent] == [MessageKind.TEXT, MessageKind.IMAGE]
        assert ledger.of_type(funded_user.id, TransactionType.REFUND) == []
        assert ledger.get_balance(funded_user.id) == 2

    def test_modify_sends_composed_prompt_to_refiner(self, store, ledger, sender, refiner, image_provider, funded_user):
        store.update_user(
            funded_user.id,
            last_interaction_kind=InteractionKind.IMAGE_GENERATION,
            last_generation_context=GenerationContext("a red car", datetime(2026, 1, 1, tzinfo=timezone.utc)),
        )
        intent = Intent(IntentKind.IMAGE_MODIFY, prior_prompt="a red car")

        _dispatcher(store, ledger, sender, refiner, image_provider).dispatch(
            funded_user, intent, "make it blue", "wamid.IN2"
        )

        _, messages = refiner.calls[0]
        assert messages[0]["content"] == "blue (maintaining style and context from previous image: a red car)"
        assert ledger.get_balance(funded_user.id) == 2

    def test_rejects_non_generation_intent(self, store, ledger, sender, refiner, image_provider, funded_user):
        with pytest.raises(ValueError):
            _dispatcher(store, ledger, sender, refiner, image_provider).dispatch(
                funded_user, Intent(IntentKind.GREETING), "hi", "wamid.IN1"
            )

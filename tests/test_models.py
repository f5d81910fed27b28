"""Tests for domain value types and reply templates."""

from datetime import datetime, timezone

import pytest

from chatcanvas.domain.models import (
    CreditProduct,
    DeliveryStatus,
    Direction,
    GenerationContext,
    Message,
    MessageKind,
    can_transition,
    predecessors,
)
from chatcanvas.whatsapp.templates import TEMPLATES, render


class TestDeliveryStatusTransitions:
    @pytest.mark.parametrize(
        "current,new",
        [
            (DeliveryStatus.SENT, DeliveryStatus.DELIVERED),
            (DeliveryStatus.SENT, DeliveryStatus.READ),
            (DeliveryStatus.SENT, DeliveryStatus.FAILED),
            (DeliveryStatus.DELIVERED, DeliveryStatus.READ),
        ],
    )
    def test_forward(self, current, new):
        assert can_transition(current, new)

    @pytest.mark.parametrize(
        "current,new",
        [
            (DeliveryStatus.DELIVERED, DeliveryStatus.DELIVERED),
            (DeliveryStatus.READ, DeliveryStatus.DELIVERED),
            (DeliveryStatus.DELIVERED, DeliveryStatus.SENT),
            (DeliveryStatus.FAILED, DeliveryStatus.DELIVERED),
            (DeliveryStatus.RECEIVED, DeliveryStatus.READ),
        ],
    )
    def test_backward_or_repeat(self, current, new):
        assert not can_transition(current, new)

    def test_predecessors(self):
        assert set(predecessors(DeliveryStatus.READ)) == {DeliveryStatus.SENT, DeliveryStatus.DELIVERED}
        assert predecessors(DeliveryStatus.DELIVERED) == [DeliveryStatus.SENT]
        assert predecessors(DeliveryStatus.SENT) == []


class TestGenerationContext:
    def test_json_shape(self):
        created = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)
        ctx = GenerationContext("a red car", created)

        assert ctx.to_json() == {
            "refined_prompt": "a red car",
            "created_at": "2026-01-01T12:00:00+00:00",
        }
        assert GenerationContext.from_json(ctx.to_json()) == ctx

    @pytest.mark.parametrize("data", [None, {}, {"refined_prompt": ""}])
    def test_empty_is_none(self, data):
        assert GenerationContext.from_json(data) is None

    def test_bad_timestamp_defaults_to_now(self):
        ctx = GenerationContext.from_json({"refined_prompt": "x", "created_at": "garbage"})
        assert ctx.refined_prompt == "x"
        assert ctx.created_at.tzinfo is not None


class TestMessageText:
    def test_text_body(self):
        msg = Message("m1", "u1", Direction.INCOMING, MessageKind.TEXT, {"body": "hi"}, DeliveryStatus.RECEIVED)
        assert msg.text() == "hi"

    def test_image_caption(self):
        msg = Message(
            "m2", "u1", Direction.OUTGOING, MessageKind.IMAGE,
            {"link": "https://x.example.com/a.png", "caption": "done"}, DeliveryStatus.SENT,
        )
        assert msg.text() == "done"

    def test_media_without_caption(self):
        msg = Message("m3", "u1", Direction.INCOMING, MessageKind.MEDIA, {"id": "a"}, DeliveryStatus.RECEIVED)
        assert msg.text() is None


class TestCreditProduct:
    def test_formatted_price(self):
        product = CreditProduct(id="p", name="Studio", price=123456, currency="eur", credits_amount=500)
        assert product.formatted_price() == "1,234.56 EUR"


class TestTemplates:
    def test_every_template_renders_with_its_params(self):
        for key, template in TEMPLATES.items():
            params = {name: "X" for name in template["allowed_params"]}
            assert render(key, params)

    def test_unknown_template(self):
        with pytest.raises(ValueError):
            render("nope")

    def test_disallowed_param(self):
        with pytest.raises(ValueError):
            render("greeting", {"phone": "15550001111"})

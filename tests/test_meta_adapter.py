"""Tests for Meta webhook payload parsing and signature verification."""

import hashlib
import hmac
from datetime import datetime, timezone

import pytest

from chatcanvas.domain.models import DeliveryStatus, MessageKind
from chatcanvas.whatsapp.meta_adapter import (
    InvalidPayloadError,
    SignatureVerificationError,
    get_phone_number_id,
    parse_envelope,
    verify_signature,
)

from tests.helpers import meta_payload, meta_text_message

APP_SECRET = "test_app_secret"


def _sign(body: bytes, secret: str = APP_SECRET) -> str:
    return "sha256=" + hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()


class TestVerifySignature:
    def test_valid_signature(self):
        body = b'{"object":"whatsapp_business_account"}'
        verify_signature(body, _sign(body), APP_SECRET)

    def test_missing_header(self):
        with pytest.raises(SignatureVerificationError):
            verify_signature(b"{}", "", APP_SECRET)

    def test_wrong_prefix(self):
        body = b"{}"
        digest = _sign(body).split("=", 1)[1]
        with pytest.raises(SignatureVerificationError):
            verify_signature(body, f"sha1={digest}", APP_SECRET)

    def test_tampered_body(self):
        signature = _sign(b'{"a":1}')
        with pytest.raises(SignatureVerificationError):
            verify_signature(b'{"a":2}', signature, APP_SECRET)

    def test_wrong_secret(self):
        body = b"{}"
        with pytest.raises(SignatureVerificationError):
            verify_signature(body, _sign(body, "other"), APP_SECRET)


class TestParseEnvelope:
    def test_text_message(self):
        envelope = parse_envelope(meta_payload(messages=[meta_text_message("hello there")]))

        (msg,) = envelope.messages
        assert msg.message_id == "wamid.IN0001"
        assert msg.provider == "meta"
        assert msg.kind == "text"
        assert msg.message_kind() == MessageKind.TEXT
        assert msg.phone_number == "15550001111"
        assert msg.text == "hello there"
        assert msg.content == {"body": "hello there"}
        assert msg.received_at == datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)

    def test_contact_names_split(self):
        contacts = [{"profile": {"name": "Ada King Lovelace"}, "wa_id": "15550001111"}]

        envelope = parse_envelope(
            meta_payload(messages=[meta_text_message("hi")], contacts=contacts)
        )

        (msg,) = envelope.messages
        assert msg.first_name == "Ada"
        assert msg.last_name == "King Lovelace"

    def test_single_name_contact(self):
        contacts = [{"profile": {"name": "Ada"}, "wa_id": "15550001111"}]

        (msg,) = parse_envelope(
            meta_payload(messages=[meta_text_message("hi")], contacts=contacts)
        ).messages

        assert msg.first_name == "Ada"
        assert msg.last_name is None

    def test_names_absent_without_contacts(self):
        (msg,) = parse_envelope(meta_payload(messages=[meta_text_message("hi")])).messages
        assert msg.first_name is None
        assert msg.last_name is None

    def test_media_message(self):
        image = {
            "from": "15550001111",
            "id": "wamid.IMG1",
            "timestamp": "1767268800",
            "type": "image",
            "image": {"id": "media-1", "mime_type": "image/jpeg", "caption": "my cat"},
        }

        (msg,) = parse_envelope(meta_payload(messages=[image])).messages

        assert msg.text is None
        assert msg.message_kind() == MessageKind.IMAGE
        assert msg.content == {
            "id": "media-1",
            "mime_type": "image/jpeg",
            "caption": "my cat",
            "type": "image",
        }

    def test_audio_maps_to_media(self):
        audio = {"from": "15550001111", "id": "wamid.AUD1", "type": "audio", "audio": {"id": "a1"}}

        (msg,) = parse_envelope(meta_payload(messages=[audio])).messages

        assert msg.message_kind() == MessageKind.MEDIA

    def test_missing_timestamp_falls_back_to_now(self):
        raw = meta_text_message("hi")
        del raw["timestamp"]

        (msg,) = parse_envelope(meta_payload(messages=[raw])).messages

        assert msg.received_at.tzinfo is not None

    def test_numeric_body_becomes_text(self):
        raw = meta_text_message("placeholder")
        raw["text"]["body"] = 5

        (msg,) = parse_envelope(meta_payload(messages=[raw])).messages

        assert msg.text == "5"
        assert msg.content == {"body": "5"}

    @pytest.mark.parametrize("body", [None, True, {"nested": "x"}, ["a"]])
    def test_non_string_body_is_dropped(self, body):
        raw = meta_text_message("placeholder")
        raw["text"]["body"] = body

        (msg,) = parse_envelope(meta_payload(messages=[raw])).messages

        assert msg.text is None
        assert msg.content == {"body": ""}

    def test_skips_messages_without_identifiers(self):
        no_id = meta_text_message("hi")
        del no_id["id"]
        no_from = meta_text_message("hi", message_id="wamid.2")
        del no_from["from"]
        valid = meta_text_message("hi", message_id="wamid.3")

        envelope = parse_envelope(meta_payload(messages=[no_id, no_from, "junk", valid]))

        assert [m.message_id for m in envelope.messages] == ["wamid.3"]

    def test_statuses(self):
        statuses = [
            {"id": "wamid.OUT1", "status": "delivered", "timestamp": "1767268800"},
            {"id": "wamid.OUT2", "status": "read"},
            {"id": "wamid.OUT3", "status": "failed"},
            {"id": "wamid.OUT4", "status": "deleted"},
            {"status": "read"},
        ]

        envelope = parse_envelope(meta_payload(statuses=statuses))

        assert [(s.message_id, s.status) for s in envelope.statuses] == [
            ("wamid.OUT1", DeliveryStatus.DELIVERED),
            ("wamid.OUT2", DeliveryStatus.READ),
            ("wamid.OUT3", DeliveryStatus.FAILED),
        ]
        assert envelope.statuses[0].timestamp == datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)
        assert envelope.messages == []

    def test_empty_change_is_empty_envelope(self):
        envelope = parse_envelope(meta_payload())
        assert envelope.is_empty()

    @pytest.mark.parametrize(
        "payload",
        [None, [], "text", {"object": "page", "entry": []}, {"entry": []}],
    )
    def test_rejects_non_whatsapp_payloads(self, payload):
        with pytest.raises(InvalidPayloadError):
            parse_envelope(payload)

    def test_tolerates_malformed_entries(self):
        payload = {
            "object": "whatsapp_business_account",
            "entry": ["junk", {"changes": "junk"}, {"changes": [{"value": None}]}],
        }
        assert parse_envelope(payload).is_empty()


class TestGetPhoneNumberId:
    def test_extracts_from_metadata(self):
        assert get_phone_number_id(meta_payload()) == "123456789"

    def test_missing(self):
        assert get_phone_number_id({"object": "whatsapp_business_account", "entry": []}) is None

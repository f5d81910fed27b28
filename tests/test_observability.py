"""Tests for observability utilities."""

import json
import logging

from fastapi.testclient import TestClient

from chatcanvas.api.factory import create_app
from chatcanvas.config import Settings
from chatcanvas.observability.correlation import (
    correlation_scope,
    get_correlation_id,
    resolve_correlation_id,
)
from chatcanvas.observability.logging import JsonFormatter
from chatcanvas.observability.redaction import (
    hash_identifier,
    id_prefix,
    redact_string,
    redact_value,
    safe_log_context,
)


class TestRedaction:
    """Tests for redaction helpers."""

    def test_redact_phone_number(self):
        result = redact_string("Call me at +1 555 000 1111")
        assert "000 1111" not in result
        assert "[REDACTED]" in result

    def test_redact_email(self):
        result = redact_string("Email: user@example.com")
        assert "user@example.com" not in result
        assert "[REDACTED]" in result

    def test_redact_signed_url_query(self):
        result = redact_string("https://cdn.example.com/img.png?sig=secret&exp=1")
        assert result == "https://cdn.example.com/img.png?[REDACTED]"

    def test_redact_value_dict_only_keys(self):
        result = redact_value({"password": "secret123", "user": "john"})
        assert "secret123" not in result
        assert "john" not in result
        assert "password" in result

    def test_redact_value_list_only_len(self):
        result = redact_value(["a", "b", "c"])
        assert "len=3" in result

    def test_redact_value_scalars(self):
        assert redact_value(None) == "null"
        assert redact_value(True) == "true"
        assert redact_value(3) == "3"

    def test_safe_log_context(self):
        ctx = safe_log_context(phone="+15550001111", count=42)
        assert "[REDACTED]" in ctx["phone"]
        assert ctx["count"] == "42"

    def test_hash_identifier_is_stable_and_short(self):
        assert hash_identifier("15550001111") == hash_identifier("15550001111")
        assert len(hash_identifier("15550001111")) == 12
        assert "15550001111" not in hash_identifier("15550001111")

    def test_id_prefix(self):
        assert id_prefix("wamid.HBgLMTU1NTAwMDExMTEVAgASGBQz") == "wamid.HB"
        assert id_prefix(None) is None


class TestCorrelation:
    def test_prefers_correlation_header(self):
        assert resolve_correlation_id({"X-Correlation-ID": "a", "X-Request-ID": "b"}) == "a"

    def test_falls_back_to_request_id(self):
        assert resolve_correlation_id({"X-Request-ID": "b"}) == "b"

    def test_generates_when_absent(self):
        assert len(resolve_correlation_id({})) == 36

    def test_scope_binds_and_resets(self):
        before = get_correlation_id()
        with correlation_scope("cid-1") as cid:
            assert cid == "cid-1"
            assert get_correlation_id() == "cid-1"
        assert get_correlation_id() == before

    def test_middleware_generates_header(self):
        client = TestClient(create_app(Settings()))
        response = client.get("/health")
        assert len(response.headers["X-Correlation-ID"]) == 36

    def test_middleware_echoes_request_id(self):
        client = TestClient(create_app(Settings()))
        response = client.get("/health", headers={"X-Request-ID": "req-9"})
        assert response.headers["X-Correlation-ID"] == "req-9"


class TestJsonFormatter:
    def _record(self, **extra):
        record = logging.LogRecord("chatcanvas.test", logging.INFO, __file__, 1, "hello", None, None)
        for key, value in extra.items():
            setattr(record, key, value)
        return record

    def test_emits_json_with_extra_fields(self):
        record = self._record(extra_fields={"user_id": "u-1", "intent": "greeting"})

        with correlation_scope("cid-42"):
            line = JsonFormatter().format(record)

        data = json.loads(line)
        assert data["message"] == "hello"
        assert data["level"] == "INFO"
        assert data["logger"] == "chatcanvas.test"
        assert data["correlationId"] == "cid-42"
        assert data["user_id"] == "u-1"
        assert data["intent"] == "greeting"

    def test_omits_empty_correlation_id(self):
        data = json.loads(JsonFormatter().format(self._record()))
        assert "correlationId" not in data

"""Correlation ID management for request tracing."""

from __future__ import annotations

import uuid
from contextlib import contextmanager
from contextvars import ContextVar, Token
from typing import Iterator, Mapping

# Accessible across async calls and copied into threadpool workers
correlation_id_var: ContextVar[str] = ContextVar("correlation_id", default="")

CORRELATION_ID_HEADER = "X-Correlation-ID"

# Checked in order when resolving an inbound request's correlation ID
_INBOUND_HEADERS = (CORRELATION_ID_HEADER, "X-Request-ID")


def generate_correlation_id() -> str:
    return str(uuid.uuid4())


def get_correlation_id() -> str:
    return correlation_id_var.get()


def set_correlation_id(cid: str) -> Token[str]:
    return correlation_id_var.set(cid)


def reset_correlation_id(token: Token[str]) -> None:
    correlation_id_var.reset(token)


def resolve_correlation_id(headers: Mapping[str, str]) -> str:
    """Pick the caller-supplied correlation ID or generate a new one."""
    for name in _INBOUND_HEADERS:
        value = headers.get(name)
        if value:
            return value
    return generate_correlation_id()


@contextmanager
def correlation_scope(cid: str | None = None) -> Iterator[str]:
    """Bind a correlation ID for the duration of a block.

    The HTTP middleware binds one per request.
    """
    value = cid or generate_correlation_id()
    token = set_correlation_id(value)
    try:
        yield value
    finally:
        reset_correlation_id(token)

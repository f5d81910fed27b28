"""Error taxonomy for the message pipeline.

Adapters translate library exceptions into these at the boundary so the
router and routes only ever handle four failure kinds.
"""


class ChatcanvasError(Exception):
    """Base class for all pipeline errors."""


class ValidationError(ChatcanvasError):
    """Malformed webhook payload or invalid user answer. Recovered locally."""


class UpstreamError(ChatcanvasError):
    """Messaging send, generation provider or chat model failure."""

    def __init__(self, message: str, *, provider: str = "unknown") -> None:
        super().__init__(message)
        self.provider = provider


class PersistenceError(ChatcanvasError):
    """Store read/write failure. Surfaced to the platform so it may retry."""


class ConfigurationError(ChatcanvasError):
    """A secret required by the current request path is missing."""

    def __init__(self, env_var: str) -> None:
        super().__init__(f"{env_var} not configured")
        self.env_var = env_var

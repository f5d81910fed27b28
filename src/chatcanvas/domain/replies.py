"""Outbound replies: send through the platform, then append to the message log."""

from __future__ import annotations

from typing import Any

from chatcanvas.domain.models import (
    DeliveryStatus,
    Direction,
    Message,
    MessageKind,
    User,
)
from chatcanvas.domain.ports import ConversationStore, MessageSender
from chatcanvas.observability.logging import get_logger
from chatcanvas.observability.redaction import id_prefix, safe_log_context
from chatcanvas.whatsapp.templates import render

logger = get_logger(__name__)


class ReplySender:
    """Sends replies to one user and records each as an outgoing Message.

    Send failures surface as UpstreamError (raised by the MessageSender);
    store failures surface as PersistenceError.
    """

    def __init__(self, store: ConversationStore, sender: MessageSender) -> None:
        self._store = store
        self._sender = sender

    def send_template(
        self,
        user: User,
        template_key: str,
        params: dict[str, Any] | None = None,
    ) -> Message:
        return self.send_text(user, render(template_key, params), template_key=template_key)

    def send_text(self, user: User, body: str, *, template_key: str | None = None) -> Message:
        message = self._deliver(user, MessageKind.TEXT, {"body": body})
        logger.info(
            "reply sent",
            extra={
                "extra_fields": safe_log_context(
                    user_id=user.id,
                    template_key=template_key or "freeform",
                    message_id_prefix=id_prefix(message.external_id),
                )
            },
        )
        return message

    def send_image(self, user: User, url: str, caption: str) -> Message:
        """Send an image without recording it.

        Callers pair the send with record() once they have accounted for the
        delivery, so a store failure can be told apart from a send failure.
        """
        message = self._send(user, MessageKind.IMAGE, {"link": url, "caption": caption})
        logger.info(
            "image reply sent",
            extra={
                "extra_fields": safe_log_context(
                    user_id=user.id,
                    message_id_prefix=id_prefix(message.external_id),
                )
            },
        )
        return message

    def record(self, message: Message) -> None:
        self._store.append_message(message)

    def _deliver(self, user: User, kind: MessageKind, payload: dict[str, Any]) -> Message:
        message = self._send(user, kind, payload)
        self.record(message)
        return message

    def _send(self, user: User, kind: MessageKind, payload: dict[str, Any]) -> Message:
        external_id = self._sender.send(to=user.phone_number, kind=kind, payload=payload)
        return Message(
            external_id=external_id,
            user_id=user.id,
            direction=Direction.OUTGOING,
            kind=kind,
            content=payload,
            status=DeliveryStatus.SENT,
        )

"""Messages repository - append-only message log.

Uses raw SQL with psycopg2 (no ORM).
"""

from typing import Any

from psycopg2.extensions import cursor as PgCursor
from psycopg2.extras import Json

from chatcanvas.domain.models import (
    DeliveryStatus,
    Direction,
    Message,
    MessageKind,
    predecessors,
)


def insert_message(cur: PgCursor, message: Message) -> bool:
    """Insert a message keyed by external ID.

    Returns:
        True if inserted, False if the external ID already exists.
    """
    cur.execute(
        """
        INSERT INTO messages
            (external_id, user_id, direction, kind, content, delivery_status, created_at)
        VALUES (%s, %s, %s, %s, %s, %s, %s)
        ON CONFLICT (external_id) DO NOTHING
        """,
        (
            message.external_id,
            message.user_id,
            message.direction.value,
            message.kind.value,
            Json(message.content),
            message.status.value,
            message.created_at,
        ),
    )
    return cur.rowcount == 1


def list_recent_messages(cur: PgCursor, *, user_id: str, limit: int) -> list[Message]:
    """Return the last `limit` messages for a user, oldest first."""
    cur.execute(
        """
        SELECT external_id, user_id, direction, kind, content, delivery_status, created_at
        FROM messages
        WHERE user_id = %s
        ORDER BY created_at DESC, id DESC
        LIMIT %s
        """,
        (user_id, limit),
    )
    rows = cur.fetchall()
    return [_row_to_message(row) for row in reversed(rows)]


def advance_status(cur: PgCursor, *, external_id: str, status: DeliveryStatus) -> bool:
    """Move a message's delivery status forward.

    The WHERE clause only matches rows in a predecessor state, so unknown IDs,
    replays and backward moves are no-ops.

    Returns:
        True if a row was updated.
    """
    allowed_from = [s.value for s in predecessors(status)]
    if not allowed_from:
        return False

    cur.execute(
        """
        UPDATE messages
        SET delivery_status = %s, updated_at = now()
        WHERE external_id = %s AND delivery_status = ANY(%s)
        """,
        (status.value, external_id, allowed_from),
    )
    return cur.rowcount == 1


def _row_to_message(row: tuple[Any, ...]) -> Message:
    return Message(
        external_id=row[0],
        user_id=str(row[1]),
        direction=Direction(row[2]),
        kind=MessageKind(row[3]),
        content=row[4] or {},
        status=DeliveryStatus(row[5]),
        created_at=row[6],
    )

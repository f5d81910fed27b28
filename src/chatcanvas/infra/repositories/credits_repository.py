"""Credits repository - account lock rows and the transaction journal.

Balance is always SUM(amount) over credit_transactions; there is no counter.
Uses raw SQL with psycopg2 (no ORM).
"""

from typing import Any

from psycopg2.extensions import cursor as PgCursor
from psycopg2.extras import Json

from chatcanvas.domain.models import TransactionType
from chatcanvas.infra.db import for_update


def lock_account(cur: PgCursor, *, user_id: str) -> None:
    """Create the account row if needed and lock it until commit.

    Concurrent callers for the same user serialize on this lock.
    """
    cur.execute(
        """
        INSERT INTO credit_accounts (user_id)
        VALUES (%s)
        ON CONFLICT (user_id) DO NOTHING
        """,
        (user_id,),
    )
    for_update(
        cur,
        "SELECT user_id FROM credit_accounts WHERE user_id = %s",
        (user_id,),
    )


def compute_balance(cur: PgCursor, *, user_id: str) -> int:
    cur.execute(
        "SELECT COALESCE(SUM(amount), 0) FROM credit_transactions WHERE user_id = %s",
        (user_id,),
    )
    row = cur.fetchone()
    return int(row[0]) if row else 0


def insert_transaction(
    cur: PgCursor,
    *,
    user_id: str,
    amount: int,
    transaction_type: TransactionType,
    product_type: str,
    metadata: dict[str, Any] | None = None,
) -> str:
    """Append a journal entry. Amount is signed (negative for use).

    Returns:
        Transaction UUID.
    """
    cur.execute(
        """
        INSERT INTO credit_transactions (user_id, amount, type, product_type, metadata)
        VALUES (%s, %s, %s, %s, %s)
        RETURNING id
        """,
        (user_id, amount, transaction_type.value, product_type, Json(metadata or {})),
    )
    return str(cur.fetchone()[0])

"""Payments repository - Stripe payment records and webhook receipts.

Uses raw SQL with psycopg2 (no ORM).
"""

from typing import Any

from psycopg2.extensions import cursor as PgCursor

# Valid status transitions
VALID_STATUSES = {"pending", "completed", "failed"}


def insert_pending_payment(
    cur: PgCursor,
    *,
    user_id: str,
    product_id: str,
    payment_intent_id: str,
    amount: int,
    currency: str,
    credits_amount: int,
) -> str:
    """Record a freshly created PaymentIntent.

    Returns:
        Payment transaction UUID.
    """
    cur.execute(
        """
        INSERT INTO payment_transactions
            (user_id, product_id, stripe_payment_intent_id, amount, currency,
             credits_amount, status)
        VALUES (%s, %s, %s, %s, %s, %s, 'pending')
        ON CONFLICT (stripe_payment_intent_id) DO UPDATE
        SET updated_at = now()
        RETURNING id
        """,
        (user_id, product_id, payment_intent_id, amount, currency, credits_amount),
    )
    return str(cur.fetchone()[0])


def get_payment_by_intent(cur: PgCursor, *, payment_intent_id: str) -> dict[str, Any] | None:
    """Get a payment by Stripe PaymentIntent ID.

    Returns:
        Dict with id, user_id, product_id, amount, currency, credits_amount,
        status or None if not found.
    """
    cur.execute(
        """
        SELECT id, user_id, product_id, amount, currency, credits_amount, status
        FROM payment_transactions
        WHERE stripe_payment_intent_id = %s
        """,
        (payment_intent_id,),
    )
    row = cur.fetchone()

    if row is None:
        return None

    return {
        "id": str(row[0]),
        "user_id": str(row[1]),
        "product_id": str(row[2]),
        "amount": row[3],
        "currency": row[4],
        "credits_amount": row[5],
        "status": row[6],
    }


def mark_payment_status(cur: PgCursor, *, payment_id: str, status: str) -> bool:
    """Move a pending payment to a final status.

    Returns:
        True if the row was pending and is now updated.

    Raises:
        ValueError: If status is not in VALID_STATUSES.
    """
    if status not in VALID_STATUSES:
        raise ValueError(f"Invalid status: {status}. Must be one of {VALID_STATUSES}")

    cur.execute(
        """
        UPDATE payment_transactions
        SET status = %s, updated_at = now()
        WHERE id = %s AND status = 'pending'
        """,
        (status, payment_id),
    )
    return cur.rowcount == 1


def record_processed_event(cur: PgCursor, *, source: str, external_id: str) -> bool:
    """Insert a webhook receipt.

    Returns:
        True if new, False if this event was already processed.
    """
    cur.execute(
        """
        INSERT INTO processed_events (source, external_id)
        VALUES (%s, %s)
        ON CONFLICT (source, external_id) DO NOTHING
        """,
        (source, external_id),
    )
    return cur.rowcount == 1

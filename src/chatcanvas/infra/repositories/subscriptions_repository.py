"""Subscriptions repository - recurring credit packs billed through Stripe.

Uses raw SQL with psycopg2 (no ORM).
"""

from typing import Any

from psycopg2.extensions import cursor as PgCursor

# Mirrors Stripe's subscription statuses
SUBSCRIPTION_STATUSES = {
    "incomplete",
    "incomplete_expired",
    "trialing",
    "active",
    "past_due",
    "canceled",
    "unpaid",
    "paused",
}


def insert_subscription(
    cur: PgCursor,
    *,
    user_id: str,
    product_id: str,
    stripe_subscription_id: str,
    credits_amount: int | None,
    status: str,
) -> str:
    """Record a freshly created Stripe subscription.

    Returns:
        Subscription UUID.

    Raises:
        ValueError: If status is not in SUBSCRIPTION_STATUSES.
    """
    if status not in SUBSCRIPTION_STATUSES:
        raise ValueError(f"Invalid status: {status}. Must be one of {SUBSCRIPTION_STATUSES}")

    cur.execute(
        """
        INSERT INTO subscriptions
            (user_id, product_id, stripe_subscription_id, credits_amount, status)
        VALUES (%s, %s, %s, %s, %s)
        ON CONFLICT (stripe_subscription_id) DO UPDATE
        SET updated_at = now()
        RETURNING id
        """,
        (user_id, product_id, stripe_subscription_id, credits_amount, status),
    )
    return str(cur.fetchone()[0])


def get_subscription(cur: PgCursor, *, stripe_subscription_id: str) -> dict[str, Any] | None:
    """Get a subscription with its product's current credits.

    Returns:
        Dict with id, user_id, product_id, credits_amount (subscription,
        may be None), product_credits_amount and status, or None.
    """
    cur.execute(
        """
        SELECT s.id, s.user_id, s.product_id, s.credits_amount,
               p.credits_amount, s.status
        FROM subscriptions s
        JOIN credit_products p ON p.id = s.product_id
        WHERE s.stripe_subscription_id = %s
        """,
        (stripe_subscription_id,),
    )
    row = cur.fetchone()

    if row is None:
        return None

    return {
        "id": str(row[0]),
        "user_id": str(row[1]),
        "product_id": str(row[2]),
        "credits_amount": row[3],
        "product_credits_amount": row[4],
        "status": row[5],
    }


def set_subscription_status(cur: PgCursor, *, stripe_subscription_id: str, status: str) -> bool:
    """Overwrite the status with the one Stripe reports.

    Returns:
        True if the subscription exists.

    Raises:
        ValueError: If status is not in SUBSCRIPTION_STATUSES.
    """
    if status not in SUBSCRIPTION_STATUSES:
        raise ValueError(f"Invalid status: {status}. Must be one of {SUBSCRIPTION_STATUSES}")

    cur.execute(
        """
        UPDATE subscriptions
        SET status = %s, updated_at = now()
        WHERE stripe_subscription_id = %s
        """,
        (status, stripe_subscription_id),
    )
    return cur.rowcount == 1

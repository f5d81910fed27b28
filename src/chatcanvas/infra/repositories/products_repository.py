"""Credit products repository - the purchasable catalog."""

from typing import Any

from psycopg2.extensions import cursor as PgCursor

from chatcanvas.domain.models import CreditProduct

_PRODUCT_COLUMNS = "id, name, price, currency, credits_amount, description, stripe_price_id"


def _row_to_product(row: tuple[Any, ...]) -> CreditProduct:
    return CreditProduct(
        id=str(row[0]),
        name=row[1],
        price=int(row[2]),
        currency=row[3],
        credits_amount=int(row[4]),
        description=row[5],
        stripe_price_id=row[6],
    )


def get_cheapest_active(cur: PgCursor) -> CreditProduct | None:
    cur.execute(
        f"""
        SELECT {_PRODUCT_COLUMNS}
        FROM credit_products
        WHERE is_active
        ORDER BY price ASC, credits_amount DESC
        LIMIT 1
        """
    )
    row = cur.fetchone()
    return _row_to_product(row) if row else None


def get_active_product(cur: PgCursor, *, product_id: str) -> CreditProduct | None:
    cur.execute(
        f"SELECT {_PRODUCT_COLUMNS} FROM credit_products WHERE id = %s AND is_active",
        (product_id,),
    )
    row = cur.fetchone()
    return _row_to_product(row) if row else None


def upsert_product(
    cur: PgCursor,
    *,
    name: str,
    price: int,
    currency: str,
    credits_amount: int,
    description: str | None = None,
    stripe_price_id: str | None = None,
) -> str:
    """Insert a product, or update the active product with the same name.

    A None stripe_price_id keeps the price already on file.

    Returns:
        Product UUID.
    """
    cur.execute(
        "SELECT id FROM credit_products WHERE name = %s AND is_active",
        (name,),
    )
    row = cur.fetchone()
    if row:
        cur.execute(
            """
            UPDATE credit_products
            SET price = %s, currency = %s, credits_amount = %s, description = %s,
                stripe_price_id = COALESCE(%s, stripe_price_id)
            WHERE id = %s
            """,
            (price, currency, credits_amount, description, stripe_price_id, row[0]),
        )
        return str(row[0])

    cur.execute(
        """
        INSERT INTO credit_products
            (name, price, currency, credits_amount, description, stripe_price_id)
        VALUES (%s, %s, %s, %s, %s, %s)
        RETURNING id
        """,
        (name, price, currency, credits_amount, description, stripe_price_id),
    )
    return str(cur.fetchone()[0])

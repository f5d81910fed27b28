"""Subscriptions and recurring product prices (SQL-only).

Revision ID: 002_subscriptions
Revises: 001_initial_schema
Create Date: 2026-10-19
"""

from __future__ import annotations

from pathlib import Path

from alembic import op


# revision identifiers, used by Alembic.
revision = "002_subscriptions"
down_revision = "001_initial_schema"
branch_labels = None
depends_on = None


def _read_sql() -> str:
    sql_path = Path(__file__).resolve().parents[1] / "sql" / "002_subscriptions.sql"
    return sql_path.read_text(encoding="utf-8")


def upgrade() -> None:
    conn = op.get_bind()
    conn.exec_driver_sql(_read_sql())


def downgrade() -> None:
    op.execute(
        """
        DROP TABLE IF EXISTS subscriptions;
        ALTER TABLE credit_products DROP COLUMN IF EXISTS stripe_price_id;
        """
    )

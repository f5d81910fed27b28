"""Initial chatcanvas schema (SQL-only).

Revision ID: 001_initial_schema
Revises:
Create Date: 2026-10-19
"""

from __future__ import annotations

from pathlib import Path

from alembic import op


# revision identifiers, used by Alembic.
revision = "001_initial_schema"
down_revision = None
branch_labels = None
depends_on = None


def _read_sql() -> str:
    sql_path = Path(__file__).resolve().parents[1] / "sql" / "001_initial.sql"
    return sql_path.read_text(encoding="utf-8")


def upgrade() -> None:
    # Raw execution keeps multi-statement SQL files intact.
    conn = op.get_bind()
    conn.exec_driver_sql(_read_sql())


def downgrade() -> None:
    op.execute(
        """
        DROP TABLE IF EXISTS processed_events;
        DROP TABLE IF EXISTS payment_transactions;
        DROP TABLE IF EXISTS messages;
        DROP TABLE IF EXISTS credit_products;
        DROP TABLE IF EXISTS credit_transactions;
        DROP TABLE IF EXISTS credit_accounts;
        DROP TABLE IF EXISTS users;
        """
    )

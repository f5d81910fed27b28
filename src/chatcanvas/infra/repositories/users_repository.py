"""Users repository - per-user conversational state.

Uses raw SQL with psycopg2 (no ORM).
"""

from typing import Any

from psycopg2.extensions import cursor as PgCursor
from psycopg2.extras import Json

from chatcanvas.domain.models import (
    GenerationContext,
    InteractionKind,
    OnboardingPhase,
    User,
)

_USER_COLUMNS = """
    id, phone_number, first_name, last_name, onboarding_phase, email,
    last_interaction_kind, last_generation_context
"""


def _row_to_user(row: tuple[Any, ...]) -> User:
    return User(
        id=str(row[0]),
        phone_number=row[1],
        first_name=row[2],
        last_name=row[3],
        onboarding_phase=OnboardingPhase(row[4]),
        email=row[5],
        last_interaction_kind=InteractionKind(row[6]),
        last_generation_context=GenerationContext.from_json(row[7]),
    )


def upsert_user(
    cur: PgCursor,
    *,
    phone_number: str,
    first_name: str | None = None,
    last_name: str | None = None,
) -> User:
    """Insert a user by phone number or refresh the profile name hints.

    Existing names are only overwritten by non-null values.

    Returns:
        The stored user.
    """
    cur.execute(
        f"""
        INSERT INTO users (phone_number, first_name, last_name)
        VALUES (%s, %s, %s)
        ON CONFLICT (phone_number) DO UPDATE
        SET first_name = COALESCE(EXCLUDED.first_name, users.first_name),
            last_name = COALESCE(EXCLUDED.last_name, users.last_name),
            updated_at = now()
        RETURNING {_USER_COLUMNS}
        """,
        (phone_number, first_name, last_name),
    )
    return _row_to_user(cur.fetchone())


def get_user(cur: PgCursor, *, user_id: str) -> User | None:
    cur.execute(
        f"SELECT {_USER_COLUMNS} FROM users WHERE id = %s",
        (user_id,),
    )
    row = cur.fetchone()
    return _row_to_user(row) if row else None


def get_user_by_phone(cur: PgCursor, *, phone_number: str) -> User | None:
    cur.execute(
        f"SELECT {_USER_COLUMNS} FROM users WHERE phone_number = %s",
        (phone_number,),
    )
    row = cur.fetchone()
    return _row_to_user(row) if row else None


def update_user(
    cur: PgCursor,
    *,
    user_id: str,
    changes: dict[str, Any],
) -> User | None:
    """Apply column changes to a user.

    Args:
        cur: Database cursor.
        user_id: User UUID.
        changes: Column -> new value. Keys must be updatable columns.

    Returns:
        Updated user, or None if not found.

    Raises:
        ValueError: If a key is not an updatable column.
    """
    allowed = {
        "onboarding_phase",
        "email",
        "last_interaction_kind",
        "last_generation_context",
    }
    unknown = set(changes) - allowed
    if unknown:
        raise ValueError(f"Cannot update columns: {unknown}")

    assignments = []
    params: list[Any] = []
    for column, value in changes.items():
        assignments.append(f"{column} = %s")
        if isinstance(value, GenerationContext):
            params.append(Json(value.to_json()))
        elif hasattr(value, "value"):
            params.append(value.value)
        else:
            params.append(value)

    assignments.append("updated_at = now()")
    params.append(user_id)

    cur.execute(
        f"""
        UPDATE users SET {", ".join(assignments)}
        WHERE id = %s
        RETURNING {_USER_COLUMNS}
        """,
        params,
    )
    row = cur.fetchone()
    return _row_to_user(row) if row else None

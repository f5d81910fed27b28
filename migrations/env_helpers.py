"""Database URL helpers for Alembic migrations.

Kept apart from env.py so they can be tested without an alembic context.
DATABASE_URL may be a URL or a libpq key=value DSN (psycopg2 accepts both,
SQLAlchemy only the former).
"""

from __future__ import annotations

import os

from psycopg2.extensions import parse_dsn
from sqlalchemy.engine import URL, make_url

DRIVER = "postgresql+psycopg2"


def dsn_to_url(dsn: str) -> URL:
    """Convert a libpq DSN into a SQLAlchemy URL.

    Unix-socket hosts (leading "/") go in the query string, as SQLAlchemy
    expects for psycopg2.
    """
    params = parse_dsn(dsn)
    host = params.get("host")
    query = {}
    if host and host.startswith("/"):
        query["host"] = host
        host = None
    return URL.create(
        DRIVER,
        username=params.get("user"),
        password=params.get("password"),
        host=host,
        port=int(params["port"]) if params.get("port") else None,
        database=params.get("dbname"),
        query=query,
    )


def get_database_url() -> str:
    raw = os.environ.get("DATABASE_URL")
    if not raw:
        raise RuntimeError("DATABASE_URL is required to run migrations")

    if "://" not in raw:
        url = dsn_to_url(raw)
    else:
        # SQLAlchemy 2 dropped the "postgres://" alias
        if raw.startswith("postgres://"):
            raw = "postgresql://" + raw[len("postgres://"):]
        url = make_url(raw)
        if url.drivername == "postgresql":
            url = url.set(drivername=DRIVER)

    return url.render_as_string(hide_password=False)

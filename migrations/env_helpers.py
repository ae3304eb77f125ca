"""Database URL helpers for Alembic migrations.

Kept apart from env.py so they can be tested without triggering
alembic.context at import time.
"""

from __future__ import annotations

import os
from urllib.parse import quote_plus, urlparse, urlunparse

_DRIVER_PREFIX = "postgresql+psycopg2://"


def normalize_database_url(url: str, db_password: str = "") -> str:
    """Return a SQLAlchemy URL that uses the psycopg2 driver.

    Accepts postgres://, postgresql:// or an already driver-qualified URL.
    If the URL carries no password and db_password is given, it is injected.
    """
    if url.startswith("postgres://"):
        url = "postgresql://" + url[len("postgres://"):]
    if url.startswith("postgresql://"):
        url = _DRIVER_PREFIX + url[len("postgresql://"):]
    if not url.startswith(_DRIVER_PREFIX):
        raise ValueError("DATABASE_URL must be a postgres:// or postgresql:// URL")

    if db_password:
        parsed = urlparse(url)
        if not parsed.password:
            netloc = f"{quote_plus(parsed.username or '')}:{quote_plus(db_password)}@{parsed.hostname}"
            if parsed.port:
                netloc += f":{parsed.port}"
            url = urlunparse(parsed._replace(netloc=netloc))
    return url


def get_database_url() -> str:
    url = os.environ.get("DATABASE_URL")
    if not url:
        raise RuntimeError("DATABASE_URL is required to run migrations")
    return normalize_database_url(url, os.environ.get("DB_PASSWORD", ""))

"""Postgres access for hotelcore (psycopg2, raw SQL).

Everything that touches inventory goes through txn(): one connection, one
transaction, commit on clean exit and rollback otherwise. Row locks taken with
for_update() live until that transaction ends. savepoint() lets a caller try
a step (an allocation attempt, say) and fall back without losing the rest of
the transaction.
"""

import os
import uuid
from contextlib import contextmanager
from typing import Any, Iterator, Sequence

import psycopg2
from psycopg2.extensions import connection as PgConnection, cursor as PgCursor

APPLICATION_NAME = "hotelcore"


def get_conn() -> PgConnection:
    """Open a connection to DATABASE_URL.

    Raises:
        RuntimeError: If DATABASE_URL is not set.
        psycopg2.Error: On connection failure.
    """
    dsn = os.environ.get("DATABASE_URL")
    if not dsn:
        raise RuntimeError("DATABASE_URL environment variable not set")
    return psycopg2.connect(dsn, application_name=APPLICATION_NAME)


@contextmanager
def txn(conn: PgConnection | None = None) -> Iterator[PgCursor]:
    """Run the block in one transaction and yield its cursor.

    A connection opened here is closed on exit; a passed-in one is left open
    for the caller.
    """
    owns_conn = conn is None
    if owns_conn:
        conn = get_conn()

    try:
        with conn.cursor() as cur:
            yield cur
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    finally:
        if owns_conn:
            conn.close()


@contextmanager
def savepoint(cur: PgCursor) -> Iterator[PgCursor]:
    """Undo the block's writes if it raises, then re-raise.

    The enclosing transaction stays usable after the rollback.
    """
    name = f"sp_{uuid.uuid4().hex[:12]}"
    cur.execute(f"SAVEPOINT {name}")
    try:
        yield cur
    except Exception:
        cur.execute(f"ROLLBACK TO SAVEPOINT {name}")
        raise
    else:
        cur.execute(f"RELEASE SAVEPOINT {name}")


def fetchone(
    cur: PgCursor,
    query: str,
    params: Sequence[Any] | None = None,
) -> tuple[Any, ...] | None:
    """Run a query and return its first row, or None."""
    cur.execute(query, params)
    return cur.fetchone()


def for_update(
    cur: PgCursor,
    query: str,
    params: Sequence[Any] | None = None,
    *,
    nowait: bool = False,
    skip_locked: bool = False,
) -> tuple[Any, ...] | None:
    """Lock and return the first row of a SELECT.

    Args:
        cur: Cursor of the transaction that will hold the lock.
        query: SELECT without a locking clause; a trailing ';' is dropped.
        params: Query parameters.
        nowait: Fail at once instead of waiting for a held lock.
        skip_locked: Ignore rows another transaction holds.

    Raises:
        ValueError: If both nowait and skip_locked are set.
    """
    if nowait and skip_locked:
        raise ValueError("nowait and skip_locked are mutually exclusive")

    clause = " FOR UPDATE"
    if nowait:
        clause += " NOWAIT"
    elif skip_locked:
        clause += " SKIP LOCKED"

    cur.execute(query.rstrip().rstrip(";") + clause, params)
    return cur.fetchone()

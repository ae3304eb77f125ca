"""Shared pytest fixtures for hotelcore tests."""
import sys
sys.dont_write_bytecode = True

from contextlib import contextmanager  # noqa: E402
from unittest.mock import MagicMock  # noqa: E402

import pytest  # noqa: E402


@pytest.fixture(autouse=True)
def _reset_worker_singletons():
    """Drop cached sweeper/publisher instances so each test builds its own."""
    from hotelcore.api import deps

    deps.get_sweeper.cache_clear()
    deps.get_publisher.cache_clear()
    yield
    deps.get_sweeper.cache_clear()
    deps.get_publisher.cache_clear()


@pytest.fixture
def mock_cur():
    """A psycopg2-like cursor whose fetch results tests configure."""
    cur = MagicMock()
    cur.fetchone.return_value = None
    cur.fetchall.return_value = []
    return cur


@pytest.fixture
def fake_txn(mock_cur):
    """Replacement for infra.db.txn that yields mock_cur."""

    @contextmanager
    def _txn():
        yield mock_cur

    return _txn

"""
Shared fixtures for adversarial tests.

The in-memory stores come from the top-level conftest; tests that need
database-level guarantees use the PostgreSQL pool, which skips when the
database is not reachable.
"""

from collections.abc import Generator

import pytest
from psycopg_pool import ConnectionPool

from tests.helpers import clean_tables, open_test_pool


@pytest.fixture(scope="module")
def pool() -> Generator[ConnectionPool, None, None]:
    """Create connection pool for adversarial tests."""
    pool = open_test_pool()
    yield pool
    pool.close()


@pytest.fixture
def clean_pool(pool: ConnectionPool) -> ConnectionPool:
    """Pool with all tables emptied."""
    clean_tables(pool)
    return pool

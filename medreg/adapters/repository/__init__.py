"""Repository adapters - Database and in-process implementations."""

from .memory import InMemoryRegistry, InMemoryRequestStore
from .postgres import PostgresRegistry, PostgresRequestStore, run_migrations

__all__ = [
    "InMemoryRegistry",
    "InMemoryRequestStore",
    "PostgresRegistry",
    "PostgresRequestStore",
    "run_migrations",
]

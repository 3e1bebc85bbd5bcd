"""Storage layer: asyncpg pool management and schema bootstrap."""

from src.storage.database import Database, PersistenceUnavailableError
from src.storage.schema import create_tables

__all__ = ["Database", "PersistenceUnavailableError", "create_tables"]

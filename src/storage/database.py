"""
PostgreSQL database connection management.

Uses asyncpg for async database operations with connection pooling and
transaction management. Connection-level failures surface as
``PersistenceUnavailableError`` so the webhook layer can answer with a
5xx and let the alerting engine retry.
"""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from types import TracebackType
from typing import Any

import asyncpg

from src.config.settings import get_settings

logger = logging.getLogger(__name__)

# Errors that mean "the store is not reachable" rather than "this query is wrong"
_UNAVAILABLE_ERRORS: tuple[type[BaseException], ...] = (
    OSError,
    TimeoutError,
    asyncpg.exceptions.ConnectionDoesNotExistError,
    asyncpg.exceptions.CannotConnectNowError,
    asyncpg.exceptions.TooManyConnectionsError,
    asyncpg.exceptions.InterfaceError,
)


class PersistenceUnavailableError(Exception):
    """The relational store could not be reached or lost the connection."""


class Database:
    """
    Async PostgreSQL database connection manager.

    Uses asyncpg connection pool for efficient connection reuse.
    Provides transaction context managers and health checks.

    Usage:
        db = Database()
        await db.connect()

        async with db.transaction() as conn:
            await conn.execute("INSERT INTO ...")

        await db.close()
    """

    def __init__(
        self,
        database_url: str | None = None,
        min_size: int | None = None,
        max_size: int | None = None,
    ):
        """
        Initialize database connection manager.

        Args:
            database_url: PostgreSQL connection URL
            min_size: Minimum pool size
            max_size: Maximum pool size
        """
        settings = get_settings()

        self._database_url = database_url or str(settings.database_url)
        self._min_size = min_size or settings.db_pool_min_size
        self._max_size = max_size or settings.db_pool_max_size
        self._command_timeout = settings.db_command_timeout

        self._pool: asyncpg.Pool | None = None

    @property
    def is_connected(self) -> bool:
        return self._pool is not None

    async def connect(self) -> None:
        """Establish the connection pool."""
        try:
            self._pool = await asyncpg.create_pool(
                self._database_url,
                min_size=self._min_size,
                max_size=self._max_size,
                command_timeout=self._command_timeout,
            )
            logger.info(
                "Database connected (pool: %d-%d)", self._min_size, self._max_size,
            )
        except _UNAVAILABLE_ERRORS as e:
            logger.error("Failed to connect to database: %s", e)
            raise PersistenceUnavailableError(str(e)) from e

    async def close(self) -> None:
        """Close database connection pool."""
        if self._pool:
            await self._pool.close()
            self._pool = None
            logger.info("Database connection closed")

    async def __aenter__(self) -> "Database":
        await self.connect()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        await self.close()

    @property
    def pool(self) -> asyncpg.Pool:
        """Get connection pool, raising if not connected."""
        if self._pool is None:
            raise PersistenceUnavailableError(
                "Database not connected. Call connect() first."
            )
        return self._pool

    @asynccontextmanager
    async def acquire(self) -> AsyncIterator[asyncpg.Connection]:
        """
        Acquire a connection from the pool.

        Usage:
            async with db.acquire() as conn:
                await conn.execute("...")
        """
        try:
            async with self.pool.acquire() as conn:
                yield conn
        except _UNAVAILABLE_ERRORS as e:
            logger.error("Database unavailable: %s", e)
            raise PersistenceUnavailableError(str(e)) from e

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[asyncpg.Connection]:
        """
        Start a transaction.

        Usage:
            async with db.transaction() as conn:
                await conn.execute("INSERT INTO ...")
                await conn.execute("UPDATE ...")
        """
        async with self.acquire() as conn:
            async with conn.transaction():
                yield conn

    async def execute(self, query: str, *args: Any) -> str:
        """Execute a query without returning results."""
        async with self.acquire() as conn:
            return await conn.execute(query, *args)

    async def fetch(self, query: str, *args: Any) -> list[asyncpg.Record]:
        """Execute a query and fetch all results."""
        async with self.acquire() as conn:
            return await conn.fetch(query, *args)

    async def fetchrow(self, query: str, *args: Any) -> asyncpg.Record | None:
        """Execute a query and fetch one result."""
        async with self.acquire() as conn:
            return await conn.fetchrow(query, *args)

    async def fetchval(self, query: str, *args: Any) -> Any:
        """Execute a query and fetch a single value."""
        async with self.acquire() as conn:
            return await conn.fetchval(query, *args)

    async def health_check(self) -> bool:
        """
        Check if database is healthy.

        Returns:
            True if database is accessible
        """
        try:
            result = await self.fetchval("SELECT 1")
            return result == 1
        except Exception:
            return False

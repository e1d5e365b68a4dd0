"""
Database connection management using asyncpg for neo-authz.
"""
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, List, Optional
import logging

import asyncpg
from asyncpg import Connection, Pool, Record

from ..config.settings import get_settings
from ..core.exceptions import StoreUnavailableError

logger = logging.getLogger(__name__)

# Errors meaning "the database could not answer", as opposed to a bad query
CONNECTIVITY_ERRORS = (
    asyncpg.PostgresConnectionError,
    asyncpg.InterfaceError,
    asyncpg.CannotConnectNowError,
    asyncpg.TooManyConnectionsError,
    OSError,
    TimeoutError,
)


class DatabaseManager:
    """Manages the asyncpg pool used by the permission store."""

    def __init__(
        self,
        database_url: Optional[str] = None,
        application_name: str = "neo-authz",
        **pool_config
    ):
        """Initialize DatabaseManager.

        Args:
            database_url: Database URL (defaults to NEO_AUTHZ_DATABASE_URL)
            application_name: Reported to Postgres as application_name
            **pool_config: Additional pool configuration options
        """
        self.pool: Optional[Pool] = None
        self.dsn = database_url or get_settings().database_url or ""
        if "+asyncpg" in self.dsn:
            self.dsn = self.dsn.replace("+asyncpg", "")
        self.application_name = application_name

        # Permission lookups are short reads; keep the pool small
        self.pool_config = {
            "min_size": 2,
            "max_size": 10,
            "max_inactive_connection_lifetime": 300,
            "command_timeout": 10,
            **pool_config
        }

    async def create_pool(self) -> Pool:
        """Create and return a connection pool."""
        if self.pool is None:
            if not self.dsn:
                raise StoreUnavailableError("No database URL configured")

            logger.info(f"Creating database pool with size {self.pool_config['max_size']}")
            try:
                self.pool = await asyncpg.create_pool(
                    self.dsn,
                    server_settings={"application_name": self.application_name},
                    **self.pool_config
                )
            except CONNECTIVITY_ERRORS as e:
                raise StoreUnavailableError(f"Failed to create database pool: {e}") from e
            logger.info("Database pool created successfully")
        return self.pool

    async def close_pool(self) -> None:
        """Close the connection pool."""
        if self.pool:
            await self.pool.close()
            self.pool = None
            logger.info("Database pool closed")

    @asynccontextmanager
    async def acquire(self) -> AsyncIterator[Connection]:
        """Acquire a connection from the pool."""
        if not self.pool:
            await self.create_pool()

        async with self.pool.acquire() as connection:
            yield connection

    async def fetch(self, query: str, *args, timeout: float = None) -> List[Record]:
        """Fetch multiple rows."""
        async with self.acquire() as connection:
            return await connection.fetch(query, *args, timeout=timeout)

    async def fetchrow(self, query: str, *args, timeout: float = None) -> Optional[Record]:
        """Fetch a single row."""
        async with self.acquire() as connection:
            return await connection.fetchrow(query, *args, timeout=timeout)

    async def fetchval(self, query: str, *args, column: int = 0, timeout: float = None) -> Any:
        """Fetch a single value."""
        async with self.acquire() as connection:
            return await connection.fetchval(query, *args, column=column, timeout=timeout)

    async def health_check(self) -> bool:
        """Check database health."""
        try:
            async with self.acquire() as connection:
                result = await connection.fetchval("SELECT 1")
                return result == 1
        except (StoreUnavailableError, *CONNECTIVITY_ERRORS) as e:
            logger.error(f"Database health check failed: {e}")
            return False

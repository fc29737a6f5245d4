"""PostgreSQL connection pool manager."""

from __future__ import annotations

import asyncio
from typing import Any

import asyncpg
from structlog import get_logger

from bulkflow.core.config import settings

logger = get_logger()


class Database:
    """Thin wrapper around an asyncpg pool shared by all services."""

    def __init__(self) -> None:
        self.pool: asyncpg.Pool | None = None

    async def connect(self, max_retries: int = 3) -> None:
        """
        Create the connection pool, retrying with exponential backoff.

        Raises:
            Exception: Last connection error once retries are exhausted
        """
        for attempt in range(1, max_retries + 1):
            try:
                self.pool = await asyncpg.create_pool(
                    settings.database_url,
                    min_size=2,
                    max_size=10,
                    command_timeout=60,
                )
                logger.info("database_connected", attempt=attempt)
                return
            except Exception as e:
                if attempt == max_retries:
                    logger.error("database_connection_failed", attempts=attempt, error=str(e))
                    raise
                delay = 2**attempt
                logger.warning(
                    "database_connection_retry", attempt=attempt, delay=delay, error=str(e)
                )
                await asyncio.sleep(delay)

    async def disconnect(self) -> None:
        """Close the pool if it was opened."""
        if self.pool:
            await self.pool.close()
            self.pool = None
            logger.info("database_disconnected")

    def _require_pool(self) -> asyncpg.Pool:
        if not self.pool:
            raise RuntimeError("Database pool not initialized")
        return self.pool

    async def execute(self, query: str, *args: Any) -> str:
        async with self._require_pool().acquire() as conn:
            return await conn.execute(query, *args)

    async def fetch(self, query: str, *args: Any) -> list[asyncpg.Record]:
        async with self._require_pool().acquire() as conn:
            return await conn.fetch(query, *args)

    async def fetchrow(self, query: str, *args: Any) -> asyncpg.Record | None:
        async with self._require_pool().acquire() as conn:
            return await conn.fetchrow(query, *args)

    async def fetchval(self, query: str, *args: Any) -> Any:
        async with self._require_pool().acquire() as conn:
            return await conn.fetchval(query, *args)


db = Database()

"""
Results database pool.

Thin asyncpg wrapper used by the Postgres results store. The pool is created
lazily on first use; a database that is still starting up (common when the
stack comes up together) is retried a few times before giving up.
"""

import asyncio
import logging
import random
import socket
from contextlib import asynccontextmanager
from typing import Any, Optional

import asyncpg
from asyncpg.exceptions import CannotConnectNowError, TooManyConnectionsError

from streamsender.config import settings

logger = logging.getLogger(__name__)

_RETRYABLE_CONNECT_ERRORS = (
    CannotConnectNowError,
    TooManyConnectionsError,
    socket.gaierror,
    OSError,
)


class PostgresConnectionPool:
    """
    Lazily created asyncpg pool for the stats tables.

    Args:
        dsn_kwargs: Keyword arguments passed to asyncpg.create_pool
            (host, port, database, user, password).
        min_size / max_size: Pool bounds.
        connect_attempts: Pool creation attempts before the last error is raised.
        retry_delay: Base delay between attempts; grows linearly, plus jitter.
    """

    def __init__(
        self,
        *,
        min_size: int = 1,
        max_size: int = 5,
        connect_attempts: int = 3,
        retry_delay: float = 1.0,
        command_timeout: float = 30.0,
        **dsn_kwargs: Any,
    ):
        self.min_size = min_size
        self.max_size = max_size
        self.connect_attempts = max(1, connect_attempts)
        self.retry_delay = retry_delay
        self.command_timeout = command_timeout
        self._dsn_kwargs = dsn_kwargs

        self._pool: Optional[asyncpg.Pool] = None
        self._init_lock = asyncio.Lock()

    @property
    def target(self) -> str:
        kw = self._dsn_kwargs
        return f"{kw.get('user')}@{kw.get('host')}:{kw.get('port')}/{kw.get('database')}"

    async def initialize(self) -> None:
        async with self._init_lock:
            if self._pool is not None:
                return

            attempt = 0
            while True:
                attempt += 1
                try:
                    self._pool = await asyncpg.create_pool(
                        min_size=self.min_size,
                        max_size=self.max_size,
                        command_timeout=self.command_timeout,
                        **self._dsn_kwargs,
                    )
                    break
                except _RETRYABLE_CONNECT_ERRORS as e:
                    if attempt >= self.connect_attempts:
                        logger.error(
                            "Results database %s unreachable after %d attempts: %s",
                            self.target,
                            attempt,
                            e,
                        )
                        raise
                    delay = self.retry_delay * attempt + random.uniform(0, 0.5)
                    logger.warning(
                        "Results database not ready (%s: %s), retrying in %.1fs",
                        type(e).__name__,
                        e,
                        delay,
                    )
                    await asyncio.sleep(delay)

            logger.info(
                "Results database pool ready: %s (size %d-%d)",
                self.target,
                self.min_size,
                self.max_size,
            )

    @asynccontextmanager
    async def _connection(self):
        if self._pool is None:
            await self.initialize()
        assert self._pool is not None
        async with self._pool.acquire() as conn:
            yield conn

    async def execute_query(self, query: str, *args: Any) -> str:
        """Run a statement without rows (DDL, INSERT); returns the status tag."""
        async with self._connection() as conn:
            return await conn.execute(query, *args)

    async def fetch_all(self, query: str, *args: Any) -> list[asyncpg.Record]:
        async with self._connection() as conn:
            return await conn.fetch(query, *args)

    async def fetch_one(self, query: str, *args: Any) -> Optional[asyncpg.Record]:
        async with self._connection() as conn:
            return await conn.fetchrow(query, *args)

    async def fetch_val(self, query: str, *args: Any) -> Any:
        async with self._connection() as conn:
            return await conn.fetchval(query, *args)

    async def is_healthy(self) -> bool:
        if self._pool is None:
            return False
        try:
            return await self.fetch_val("SELECT 1") == 1
        except Exception as e:
            logger.error("Results database health check failed: %s", e)
            return False

    async def get_pool_stats(self) -> dict[str, Any]:
        if self._pool is None:
            return {"initialized": False, "size": 0, "free": 0}
        size = self._pool.get_size()
        idle = self._pool.get_idle_size()
        return {
            "initialized": True,
            "min_size": self.min_size,
            "max_size": self.max_size,
            "size": size,
            "free": idle,
            "in_use": size - idle,
        }

    async def close(self) -> None:
        pool, self._pool = self._pool, None
        if pool is not None:
            await pool.close()
            logger.info("Results database pool closed")


_default_pool: Optional[PostgresConnectionPool] = None


def get_default_pool() -> PostgresConnectionPool:
    """Pool for the results database configured by the POSTGRES_* settings."""
    global _default_pool

    if _default_pool is None:
        _default_pool = PostgresConnectionPool(
            host=settings.POSTGRES_HOST,
            port=settings.POSTGRES_PORT,
            database=settings.POSTGRES_DATABASE,
            user=settings.POSTGRES_USER,
            password=settings.POSTGRES_PASSWORD,
            min_size=settings.POSTGRES_POOL_MIN_SIZE,
            max_size=settings.POSTGRES_POOL_MAX_SIZE,
        )
    return _default_pool

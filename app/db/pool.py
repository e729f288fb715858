"""
PostgreSQL connection pool for the enrichment service (psycopg_pool).

Each process (API, retry worker) opens its own pool at startup and closes it
on shutdown. Repositories borrow connections through ``db_pool.connection()``.
"""

import asyncio
import time
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Any

import psycopg
from psycopg import sql
from psycopg.rows import dict_row
from psycopg_pool import AsyncConnectionPool

from app.config import settings
from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

CLOSE_TIMEOUT_SECONDS = 30.0
STATEMENT_TIMEOUT = "30s"


class DatabasePoolManager:
    def __init__(self):
        self.pool: AsyncConnectionPool | None = None
        self._initialized = False
        self._closed = False

    async def initialize(self) -> None:
        """Open the pool and verify one round trip."""
        if self._initialized:
            logger.warning("Database pool already initialized")
            return
        if self._closed:
            raise RuntimeError("Cannot reinitialize closed pool")

        pool_config = settings.get_db_pool_config()
        logger.info("Initializing database connection pool", **pool_config)

        self.pool = AsyncConnectionPool(
            conninfo=settings.SUPABASE_DB_URL,
            open=False,
            check=AsyncConnectionPool.check_connection,
            configure=_configure_connection,
            **pool_config,
        )

        try:
            await self.pool.open(wait=True)
            self._initialized = True
            latency_ms = await self._ping()
        except Exception as e:
            logger.error("Failed to initialize database pool", error=str(e))
            self._initialized = False
            await self.pool.close()
            self.pool = None
            raise RuntimeError(f"Database pool initialization failed: {e}") from e

        logger.info("Database pool initialized", ping_ms=round(latency_ms, 2))

    async def _ping(self) -> float:
        start_time = time.monotonic()
        async with self.connection() as conn:
            cursor = await conn.execute("SELECT 1 AS ok")
            row = await cursor.fetchone()
        if not row or row.get("ok") != 1:
            raise RuntimeError(f"Unexpected ping result: {row!r}")
        return (time.monotonic() - start_time) * 1000

    async def close(self) -> None:
        if not self._initialized or self._closed:
            return

        logger.info("Closing database connection pool")
        try:
            await asyncio.wait_for(self.pool.close(), timeout=CLOSE_TIMEOUT_SECONDS)
        except TimeoutError:
            logger.warning("Database pool close timed out", timeout_seconds=CLOSE_TIMEOUT_SECONDS)
        finally:
            self._initialized = False
            self._closed = True

    @asynccontextmanager
    async def connection(self) -> AsyncGenerator[psycopg.AsyncConnection, None]:
        """
        Borrow a connection (dict rows, autocommit).

        Raises:
            RuntimeError: pool not open
        """
        if not self._initialized or self._closed:
            raise RuntimeError("Database pool is not open")

        async with self.pool.connection() as conn:
            yield conn

    async def health_check(self) -> dict[str, Any]:
        if not self._initialized or self._closed:
            return {"healthy": False, "service": "database_pool", "error": "Pool not open"}

        try:
            latency_ms = await self._ping()
        except Exception as e:
            logger.error("Database health check failed", error=str(e))
            return {
                "healthy": False,
                "service": "database_pool",
                "error": str(e),
                "error_type": type(e).__name__,
            }

        stats = self.pool.get_stats()
        return {
            "healthy": True,
            "service": "database_pool",
            "connection_time_ms": round(latency_ms, 2),
            "pool_stats": {
                "pool_size": stats.get("pool_size", 0),
                "pool_available": stats.get("pool_available", 0),
                "requests_waiting": stats.get("requests_waiting", 0),
            },
        }


async def _configure_connection(conn: psycopg.AsyncConnection) -> None:
    conn.row_factory = dict_row
    await conn.set_autocommit(True)
    app_name = f"enrichment-service-{settings.environment}"
    await conn.execute(sql.SQL("SET application_name = {}").format(sql.Literal(app_name)))
    await conn.execute("SET timezone = 'UTC'")
    await conn.execute(
        sql.SQL("SET statement_timeout = {}").format(sql.Literal(STATEMENT_TIMEOUT))
    )


# Global pool instance
db_pool = DatabasePoolManager()


async def db_health_check() -> dict[str, Any]:
    """Get database pool health status."""
    return await db_pool.health_check()

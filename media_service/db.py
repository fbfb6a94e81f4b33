"""Async Postgres connection pool shared by the index backend and job journal.

Connection string priority: explicit endpoint (MEDIA_INDEX_ENDPOINT) >
DATABASE_URL > Cloud Run managed instance > local dev defaults.
"""

from __future__ import annotations

import logging
import os
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import asyncpg

logger = logging.getLogger(__name__)

_pool: asyncpg.Pool | None = None


class DatabaseConfig:
    """Builds connection strings based on detected environment."""

    @staticmethod
    def get_connection_string(
        endpoint: str | None = None, credentials: str | None = None
    ) -> str:
        # Priority 1: explicit provider endpoint
        if endpoint:
            return endpoint

        # Priority 2: explicit override
        if url := os.environ.get("DATABASE_URL"):
            return url

        password = credentials

        # Priority 3: Cloud Run -> managed instance
        if os.environ.get("K_SERVICE") or os.environ.get("CLOUD_RUN_JOB"):
            host = os.environ.get("DB_HOST")
            db = os.environ.get("DB_NAME", "media")
            user = os.environ.get("DB_USER", "media")
            if password is None:
                password = os.environ.get("DB_PASSWORD", "")
            return f"postgresql://{user}:{password}@{host}/{db}"

        # Priority 4: local dev
        if password is None:
            password = os.environ.get("DB_PASSWORD", "media")
        sslmode = os.environ.get("DB_SSLMODE", "disable")
        return (
            f"postgresql://{os.environ.get('DB_USER', 'media')}:"
            f"{password}@"
            f"{os.environ.get('DB_HOST', 'localhost')}:"
            f"{os.environ.get('DB_PORT', '5432')}/"
            f"{os.environ.get('DB_NAME', 'media')}?sslmode={sslmode}"
        )


async def get_pool(
    endpoint: str | None = None, credentials: str | None = None
) -> asyncpg.Pool:
    """Return the singleton connection pool, creating it if necessary."""
    global _pool  # noqa: PLW0603
    if _pool is None:
        dsn = DatabaseConfig.get_connection_string(endpoint, credentials)
        logger.info("Creating database pool (host hidden for security)")
        _pool = await asyncpg.create_pool(
            dsn=dsn,
            min_size=1,
            max_size=int(os.environ.get("DB_POOL_MAX", "5")),
            command_timeout=30,
        )
    return _pool


async def close_pool() -> None:
    """Gracefully close the connection pool."""
    global _pool  # noqa: PLW0603
    if _pool is not None:
        await _pool.close()
        _pool = None
        logger.info("Database pool closed")


@asynccontextmanager
async def db_transaction(pool: asyncpg.Pool) -> AsyncIterator[asyncpg.Connection]:
    """Acquire a connection wrapped in a transaction."""
    async with pool.acquire() as conn, conn.transaction():
        yield conn

"""Supabase Postgres access with RLS context.

Every connection handed out by ``get_connection`` runs inside a transaction
where ``app.current_user_id`` is set via ``SET LOCAL``, so Postgres
Row-Level Security policies on ``health_data`` and
``health_integration_settings`` see the owning user.

Uses ``asyncpg`` for direct database access; the Supabase Python client
doesn't support SET LOCAL session variables.
"""

from __future__ import annotations

import logging
import uuid
from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator, Iterable, Sequence

import asyncpg

from src.config import Settings, get_settings

logger = logging.getLogger("forela.db")

# Module-level connection pool, initialized once at app startup
_pool: asyncpg.Pool | None = None


async def init_pool(settings: Settings | None = None) -> asyncpg.Pool:
    """Create the asyncpg connection pool. Call once at app startup."""
    global _pool
    s = settings or get_settings()
    _pool = await asyncpg.create_pool(
        s.supabase_db_url,
        min_size=s.db_pool_min_size,
        max_size=s.db_pool_max_size,
        command_timeout=30,
    )
    logger.info(
        "Database pool initialized (min=%d, max=%d)", s.db_pool_min_size, s.db_pool_max_size
    )
    return _pool


async def close_pool() -> None:
    """Drain the pool. Call at app shutdown."""
    global _pool
    if _pool:
        await _pool.close()
        _pool = None
        logger.info("Database pool closed")


def get_pool() -> asyncpg.Pool:
    if _pool is None:
        raise RuntimeError("Database pool not initialized, call init_pool() first")
    return _pool


@asynccontextmanager
async def get_connection(
    user_id: uuid.UUID | None = None,
) -> AsyncGenerator[asyncpg.Connection, None]:
    """Acquire a connection with the RLS user set.

    Usage::

        async with get_connection(user_id=user_id) as conn:
            rows = await conn.fetch("SELECT * FROM health_data WHERE user_id = $1", user_id)

    The ``SET LOCAL`` is scoped to the current transaction so it disappears
    automatically when the connection is returned to the pool.
    """
    pool = get_pool()
    async with pool.acquire() as conn:
        async with conn.transaction():
            if user_id:
                await conn.execute(
                    "SELECT set_config('app.current_user_id', $1, true)", str(user_id)
                )
            yield conn


async def execute(query: str, *args: Any, user_id: uuid.UUID | None = None) -> str:
    """Execute a single statement with RLS context and return status."""
    async with get_connection(user_id=user_id) as conn:
        return await conn.execute(query, *args)


async def executemany(
    query: str, rows: Iterable[Sequence[Any]], *, user_id: uuid.UUID | None = None
) -> None:
    """Execute one statement per argument tuple inside a single transaction."""
    async with get_connection(user_id=user_id) as conn:
        await conn.executemany(query, rows)


async def fetch(query: str, *args: Any, user_id: uuid.UUID | None = None) -> list[asyncpg.Record]:
    """Fetch rows with RLS context."""
    async with get_connection(user_id=user_id) as conn:
        return await conn.fetch(query, *args)


async def fetchrow(query: str, *args: Any, user_id: uuid.UUID | None = None) -> asyncpg.Record | None:
    """Fetch a single row with RLS context."""
    async with get_connection(user_id=user_id) as conn:
        return await conn.fetchrow(query, *args)

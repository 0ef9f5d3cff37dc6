"""
Database connection module for the calendar sync engine.

Provides an async PostgreSQL connection pool using asyncpg. The sync engine
owns the credential, mapping and audit tables; the ``assignments`` table
belongs to the host app and is only read.
"""

import json
import logging
import pathlib
from contextlib import asynccontextmanager
from typing import Optional

import asyncpg

from assignment_sync.config import get_settings

logger = logging.getLogger(__name__)

# Connection pool singleton
_pool: Optional[asyncpg.Pool] = None


async def _init_connection(conn: asyncpg.Connection) -> None:
    # sync_preferences / details columns are JSONB; hand dicts in and out
    await conn.set_type_codec(
        "jsonb",
        encoder=_json_dumps,
        decoder=_json_loads,
        schema="pg_catalog",
    )


def _json_dumps(value) -> str:
    return json.dumps(value, default=str)


def _json_loads(value: str):
    return json.loads(value)


async def init_db_pool(
    dsn: Optional[str] = None,
    min_size: int = 1,
    max_size: int = 5,
    command_timeout: float = 30.0,
) -> asyncpg.Pool:
    """
    Initialize the database connection pool.

    Should be called once at application startup.
    """
    global _pool

    if _pool is not None:
        logger.warning("Database pool already initialized")
        return _pool

    dsn = dsn or get_settings().database_url
    logger.info(f"Initializing database pool (min={min_size}, max={max_size})")

    try:
        _pool = await asyncpg.create_pool(
            dsn,
            min_size=min_size,
            max_size=max_size,
            command_timeout=command_timeout,
            init=_init_connection,
        )
    except (asyncpg.PostgresError, OSError) as e:
        logger.error(f"Failed to initialize database pool: {e}")
        raise

    logger.info("Database pool initialized successfully")
    return _pool


async def close_db_pool() -> None:
    """Close the connection pool at application shutdown."""
    global _pool

    if _pool is None:
        logger.warning("Database pool not initialized, nothing to close")
        return

    await _pool.close()
    _pool = None
    logger.info("Database pool closed")


def get_pool() -> asyncpg.Pool:
    """
    Get the database connection pool.

    Raises RuntimeError if pool is not initialized.
    """
    if _pool is None:
        raise RuntimeError(
            "Database pool not initialized. Call init_db_pool() first."
        )
    return _pool


@asynccontextmanager
async def get_connection():
    pool = get_pool()
    async with pool.acquire() as connection:
        yield connection


async def execute(query: str, *args) -> str:
    async with get_connection() as conn:
        return await conn.execute(query, *args)


async def fetch(query: str, *args) -> list:
    async with get_connection() as conn:
        return await conn.fetch(query, *args)


async def fetchrow(query: str, *args):
    async with get_connection() as conn:
        return await conn.fetchrow(query, *args)


async def fetchval(query: str, *args):
    async with get_connection() as conn:
        return await conn.fetchval(query, *args)


def affected_rows(status: str) -> int:
    """Parse asyncpg command status ("UPDATE 3") into a row count."""
    try:
        return int(status.split()[-1])
    except (ValueError, IndexError, AttributeError):
        return 0


async def init_schema() -> None:
    """Create the sync engine's tables from schema.sql (idempotent)."""
    schema_path = pathlib.Path(__file__).parent / "schema.sql"

    if not schema_path.exists():
        raise FileNotFoundError(f"Schema file not found: {schema_path}")

    logger.info(f"Initializing database schema from {schema_path}")
    async with get_connection() as conn:
        await conn.execute(schema_path.read_text())
    logger.info("Database schema initialized successfully")


async def health_check() -> dict:
    try:
        await fetchval("SELECT 1")
        return {
            "status": "healthy",
            "database": "connected",
            "pool_size": _pool.get_size() if _pool else 0,
            "pool_free": _pool.get_idle_size() if _pool else 0,
        }
    except (asyncpg.PostgresError, OSError, RuntimeError) as e:
        logger.error(f"Database health check failed: {e}")
        return {
            "status": "unhealthy",
            "database": "disconnected",
            "error": str(e),
        }

# sheet2chat/infra/db_async.py
"""
asyncpg pool for the promotion config store.

The pool is created once in the FastAPI lifespan (only when DATABASE_URL is
set) and every query borrows a connection through ``db_conn()``.
"""
from __future__ import annotations

import json
from contextlib import asynccontextmanager
from typing import AsyncIterator

import asyncpg

from sheet2chat.config import settings
from sheet2chat.infra.logging_config import get_logger

logger = get_logger(__name__)

_pool: asyncpg.Pool | None = None


async def _register_codecs(conn: asyncpg.Connection) -> None:
    # Config documents are stored as jsonb; hand them to callers as dicts
    await conn.set_type_codec(
        "jsonb",
        schema="pg_catalog",
        encoder=lambda doc: json.dumps(doc, ensure_ascii=False),
        decoder=json.loads,
    )


async def init_pool() -> None:
    global _pool
    if _pool is not None:
        return

    _pool = await asyncpg.create_pool(
        dsn=settings.database_url,
        min_size=settings.pg_pool_min,
        max_size=settings.pg_pool_max,
        command_timeout=30,
        init=_register_codecs,
        server_settings={"application_name": "sheet2chat"},
    )
    logger.info(f"asyncpg pool ready (min={settings.pg_pool_min}, max={settings.pg_pool_max})")


async def close_pool() -> None:
    global _pool
    pool, _pool = _pool, None
    if pool is not None:
        await pool.close()
        logger.info("asyncpg pool closed")


@asynccontextmanager
async def db_conn(autocommit: bool = True) -> AsyncIterator[asyncpg.Connection]:
    """
    Borrow a pooled connection.

        async with db_conn(autocommit=False) as conn:
            await conn.execute(...)

    With ``autocommit=False`` the block runs in one transaction that is rolled
    back if the block raises.
    """
    if _pool is None:
        raise RuntimeError("Database pool is not initialized (init_pool() was not awaited)")

    async with _pool.acquire() as conn:
        if autocommit:
            yield conn
        else:
            async with conn.transaction():
                yield conn

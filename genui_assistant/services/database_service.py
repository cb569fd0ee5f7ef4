from collections.abc import AsyncIterator, Sequence
from contextlib import asynccontextmanager
import logging
from typing import Any

import asyncpg

logger = logging.getLogger(__name__)

CHATS_SCHEMA = """
CREATE TABLE IF NOT EXISTS chats (
  id text PRIMARY KEY,
  owner_id text NOT NULL,
  title text NOT NULL,
  path text NOT NULL,
  messages jsonb NOT NULL DEFAULT '[]'::jsonb,
  created_at timestamptz NOT NULL,
  updated_at timestamptz NOT NULL DEFAULT NOW()
);
CREATE INDEX IF NOT EXISTS chats_owner_updated_idx ON chats (owner_id, updated_at DESC);
"""


class DatabaseService:
    """Thin asyncpg pool wrapper used by the chat repository."""

    def __init__(self, dsn: str, *, min_size: int = 1, max_size: int = 5) -> None:
        self._dsn = dsn
        self._min_size = min_size
        self._max_size = max_size
        self._pool: asyncpg.Pool | None = None

    async def connect(self) -> None:
        if self._pool is not None:
            return
        logger.info("creating database connection pool", extra={"max_size": self._max_size})
        self._pool = await asyncpg.create_pool(dsn=self._dsn, min_size=self._min_size, max_size=self._max_size)
        async with self._connection() as connection:
            await connection.execute(CHATS_SCHEMA)
        logger.info("chat schema ensured")

    async def disconnect(self) -> None:
        if self._pool is not None:
            logger.info("closing database connection pool")
            await self._pool.close()
            self._pool = None

    async def fetchrow(self, query: str, *args: Any) -> asyncpg.Record | None:
        logger.debug("executing fetchrow", extra={"args_count": len(args)})
        async with self._connection() as connection:
            return await connection.fetchrow(query, *args)

    async def fetch(self, query: str, *args: Any) -> Sequence[asyncpg.Record]:
        logger.debug("executing fetch", extra={"args_count": len(args)})
        async with self._connection() as connection:
            return await connection.fetch(query, *args)

    async def execute(self, query: str, *args: Any) -> str:
        logger.debug("executing statement", extra={"args_count": len(args)})
        async with self._connection() as connection:
            return await connection.execute(query, *args)

    @asynccontextmanager
    async def _connection(self) -> AsyncIterator[asyncpg.Connection]:
        if self._pool is None:
            raise RuntimeError("database service is not connected")
        async with self._pool.acquire() as connection:
            yield connection

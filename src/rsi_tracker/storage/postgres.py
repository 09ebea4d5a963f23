from __future__ import annotations

import asyncio
import logging
import re
import time
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Awaitable, Callable, Optional

import asyncpg

from ..config import Settings, get_settings
from ..models import CacheEntry
from .base import CacheStoreError

_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")
_DB_ERRORS = (asyncpg.PostgresError, asyncpg.InterfaceError, OSError, asyncio.TimeoutError)


class PostgresCacheStore:
    """
    Durable symbol -> (timestamp, JSON blob) table backed by an asyncpg pool.

    Writes rely on ``INSERT ... ON CONFLICT DO UPDATE`` so concurrent upserts to
    the same key are serialized by the database.
    """

    def __init__(
        self,
        *,
        dsn: str | None = None,
        table: str | None = None,
        pool_factory: Callable[..., Awaitable[Any]] | None = None,
        settings: Settings | None = None,
    ) -> None:
        settings = settings or get_settings()
        self._dsn = dsn or settings.db_url
        self._table = table or settings.cache_table
        if not _IDENTIFIER.match(self._table):
            raise ValueError(f"Invalid cache table name: {self._table!r}")
        self._pool_factory = pool_factory or asyncpg.create_pool
        self._pool: Any | None = None
        self._initialized = False
        self._init_lock = asyncio.Lock()
        self._logger = logging.getLogger("rsi_tracker.storage.postgres")

    async def init(self) -> None:
        if self._initialized:
            return
        async with self._init_lock:
            if self._initialized:
                return
            if not self._dsn:
                raise CacheStoreError("Database URL not configured; persistent cache unavailable")
            try:
                if self._pool is None:
                    self._pool = await self._pool_factory(
                        str(self._dsn),
                        min_size=1,
                        max_size=5,
                        statement_cache_size=0,
                    )
                async with self._pool.acquire() as conn:
                    await conn.execute(
                        f"""
                        CREATE TABLE IF NOT EXISTS {self._table} (
                            symbol TEXT PRIMARY KEY,
                            timestamp BIGINT NOT NULL,
                            data TEXT NOT NULL
                        )
                        """
                    )
            except _DB_ERRORS as exc:
                raise CacheStoreError(f"Cache store initialization failed: {exc}") from exc
            self._initialized = True
            self._logger.info("Cache table %s ready", self._table)

    async def get(self, key: str) -> CacheEntry | None:
        async with self._connection("read") as conn:
            row = await conn.fetchrow(
                f"SELECT symbol, timestamp, data FROM {self._table} WHERE symbol = $1",
                key,
            )
        if row is None:
            return None
        return CacheEntry(key=row["symbol"], timestamp_ms=int(row["timestamp"]), data=row["data"])

    async def put(self, entry: CacheEntry) -> None:
        async with self._connection("write") as conn:
            await conn.execute(
                f"""
                INSERT INTO {self._table} (symbol, timestamp, data)
                VALUES ($1, $2, $3)
                ON CONFLICT (symbol) DO UPDATE
                SET timestamp = EXCLUDED.timestamp, data = EXCLUDED.data
                """,
                entry.key,
                entry.timestamp_ms,
                entry.data,
            )

    async def delete(self, key: str) -> None:
        async with self._connection("delete") as conn:
            await conn.execute(f"DELETE FROM {self._table} WHERE symbol = $1", key)

    async def clear(self) -> None:
        async with self._connection("clear") as conn:
            await conn.execute(f"DELETE FROM {self._table}")
        self._logger.info("Cleared cache table %s", self._table)

    async def health_check(self) -> dict[str, Optional[float] | bool]:
        start = time.perf_counter()
        try:
            async with self._connection("health check") as conn:
                await conn.fetchval("SELECT 1")
        except CacheStoreError as exc:
            self._logger.warning("Cache store health check failed: %s", exc)
            return {"alive": False, "latency_ms": None}
        return {"alive": True, "latency_ms": (time.perf_counter() - start) * 1000}

    async def close(self) -> None:
        if self._pool is None:
            return
        try:
            await asyncio.wait_for(self._pool.close(), timeout=5.0)
        except asyncio.TimeoutError:
            self._pool.terminate()
        finally:
            self._pool = None
            self._initialized = False

    @asynccontextmanager
    async def _connection(self, action: str) -> AsyncIterator[Any]:
        await self.init()
        try:
            async with self._pool.acquire() as conn:
                yield conn
        except _DB_ERRORS as exc:
            raise CacheStoreError(f"Cache store {action} failed: {exc}") from exc

    @property
    def is_initialized(self) -> bool:
        return self._initialized


__all__ = ["PostgresCacheStore"]

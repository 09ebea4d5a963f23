from __future__ import annotations

import asyncio
import logging
import time
from contextlib import asynccontextmanager
from typing import AsyncIterator, Callable, Optional

import redis.asyncio as redis
from redis.exceptions import RedisError

from ..config import Settings, get_settings
from ..models import CacheEntry
from .base import CacheStoreError

_REDIS_ERRORS = (RedisError, OSError)


class RedisCacheStore:
    """Cache entries stored as ``{prefix}:{key}`` hashes with ``timestamp`` and ``data`` fields."""

    def __init__(
        self,
        *,
        url: str | None = None,
        key_prefix: str | None = None,
        factory: Callable[..., redis.Redis] | None = None,
        settings: Settings | None = None,
    ) -> None:
        settings = settings or get_settings()
        self._url = url or settings.redis_url
        self._prefix = key_prefix or settings.redis_key_prefix
        self._factory = factory or redis.from_url
        self._client: redis.Redis | None = None
        self._initialized = False
        self._init_lock = asyncio.Lock()
        self._logger = logging.getLogger("rsi_tracker.storage.redis")

    async def init(self) -> None:
        if self._initialized:
            return
        async with self._init_lock:
            if self._initialized:
                return
            if not self._url:
                raise CacheStoreError("REDIS_URL not configured; persistent cache unavailable")
            client = self._factory(self._url, encoding="utf-8", decode_responses=True)
            try:
                await client.ping()
            except _REDIS_ERRORS as exc:
                self._logger.exception("Failed to ping Redis: %s", exc)
                await client.aclose()
                raise CacheStoreError(f"Cache store initialization failed: {exc}") from exc
            self._client = client
            self._initialized = True
            self._logger.info("Redis cache store ready (prefix=%s)", self._prefix)

    async def get(self, key: str) -> CacheEntry | None:
        async with self._connection("read") as conn:
            payload = await conn.hgetall(self._name(key))
        if not payload or "data" not in payload:
            return None
        try:
            timestamp_ms = int(payload.get("timestamp", 0))
        except (TypeError, ValueError) as exc:
            raise CacheStoreError(f"Corrupt timestamp stored for {key}") from exc
        return CacheEntry(key=key, timestamp_ms=timestamp_ms, data=payload["data"])

    async def put(self, entry: CacheEntry) -> None:
        async with self._connection("write") as conn:
            await conn.hset(
                self._name(entry.key),
                mapping={"timestamp": str(entry.timestamp_ms), "data": entry.data},
            )

    async def delete(self, key: str) -> None:
        async with self._connection("delete") as conn:
            await conn.delete(self._name(key))

    async def clear(self) -> None:
        async with self._connection("clear") as conn:
            keys = [key async for key in conn.scan_iter(match=f"{self._prefix}:*")]
            if keys:
                await conn.delete(*keys)
        self._logger.info("Cleared %s cached keys", len(keys))

    async def health_check(self) -> dict[str, Optional[float] | bool]:
        start = time.perf_counter()
        try:
            async with self._connection("health check") as conn:
                await conn.ping()
        except CacheStoreError as exc:
            self._logger.warning("Redis health check failed: %s", exc)
            return {"alive": False, "latency_ms": None}
        return {"alive": True, "latency_ms": (time.perf_counter() - start) * 1000}

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None
            self._initialized = False

    def _name(self, key: str) -> str:
        return f"{self._prefix}:{key}"

    @asynccontextmanager
    async def _connection(self, action: str) -> AsyncIterator[redis.Redis]:
        await self.init()
        try:
            yield self._client
        except _REDIS_ERRORS as exc:
            raise CacheStoreError(f"Cache store {action} failed: {exc}") from exc

    @property
    def is_initialized(self) -> bool:
        return self._initialized


__all__ = ["RedisCacheStore"]

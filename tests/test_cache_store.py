from __future__ import annotations

import asyncio
import fnmatch
import json
from contextlib import asynccontextmanager

import asyncpg
import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from rsi_tracker.config import Settings
from rsi_tracker.models import CacheEntry
from rsi_tracker.storage import (
    ALL_ASSETS_KEY,
    CacheStoreError,
    PostgresCacheStore,
    RedisCacheStore,
    create_cache_store,
)


class FakeConnection:
    """Tiny in-memory stand-in for an asyncpg connection on the cache table."""

    def __init__(self, rows: dict[str, tuple[int, str]], statements: list[str]) -> None:
        self._rows = rows
        self._statements = statements
        self.fail_with: Exception | None = None

    async def execute(self, query: str, *args):
        self._statements.append(" ".join(query.split()))
        if self.fail_with is not None:
            raise self.fail_with
        normalized = " ".join(query.split())
        if normalized.startswith("INSERT INTO"):
            symbol, timestamp, data = args
            self._rows[symbol] = (timestamp, data)
        elif normalized.startswith("DELETE FROM") and args:
            self._rows.pop(args[0], None)
        elif normalized.startswith("DELETE FROM"):
            self._rows.clear()
        return "OK"

    async def fetchrow(self, query: str, *args):
        if self.fail_with is not None:
            raise self.fail_with
        row = self._rows.get(args[0])
        if row is None:
            return None
        return {"symbol": args[0], "timestamp": row[0], "data": row[1]}

    async def fetchval(self, query: str, *args):
        if self.fail_with is not None:
            raise self.fail_with
        return 1


class FakePool:
    def __init__(self) -> None:
        self.rows: dict[str, tuple[int, str]] = {}
        self.statements: list[str] = []
        self.connection = FakeConnection(self.rows, self.statements)
        self.closed = False

    @asynccontextmanager
    async def acquire(self):
        yield self.connection

    async def close(self) -> None:
        self.closed = True

    def terminate(self) -> None:  # pragma: no cover - only on close timeout
        self.closed = True


def _postgres_store() -> tuple[PostgresCacheStore, FakePool, list[dict]]:
    pool = FakePool()
    calls: list[dict] = []

    async def factory(dsn, **kwargs):
        calls.append({"dsn": dsn, **kwargs})
        return pool

    store = PostgresCacheStore(dsn="postgresql://cache/test", table="cached_assets", pool_factory=factory)
    return store, pool, calls


def test_postgres_round_trip_returns_identical_payload():
    store, pool, _ = _postgres_store()
    payload = json.dumps({"symbol": "GOLDBEES.NS", "rsi": "55.10", "note": "ünïcode ✓"})

    async def _run():
        await store.put(CacheEntry("GOLDBEES.NS", 1_715_000_000_000, payload))
        return await store.get("GOLDBEES.NS"), await store.get("MISSING.NS")

    entry, missing = asyncio.run(_run())
    assert entry == CacheEntry("GOLDBEES.NS", 1_715_000_000_000, payload)
    assert entry.data == payload
    assert missing is None


def test_postgres_init_is_idempotent():
    store, pool, calls = _postgres_store()

    async def _run():
        await store.init()
        await store.init()
        await asyncio.gather(store.init(), store.init())

    asyncio.run(_run())
    assert len(calls) == 1
    assert calls[0]["statement_cache_size"] == 0
    creates = [sql for sql in pool.statements if sql.startswith("CREATE TABLE")]
    assert len(creates) == 1
    assert "IF NOT EXISTS cached_assets" in creates[0]
    assert store.is_initialized


def test_postgres_put_overwrites_existing_key():
    store, pool, _ = _postgres_store()

    async def _run():
        await store.put(CacheEntry(ALL_ASSETS_KEY, 1, "[]"))
        await store.put(CacheEntry(ALL_ASSETS_KEY, 2, "[1]"))
        return await store.get(ALL_ASSETS_KEY)

    entry = asyncio.run(_run())
    assert entry.timestamp_ms == 2
    assert entry.data == "[1]"
    assert any("ON CONFLICT (symbol) DO UPDATE" in sql for sql in pool.statements)


def test_postgres_delete_and_clear():
    store, pool, _ = _postgres_store()

    async def _run():
        await store.put(CacheEntry("A.NS", 1, "{}"))
        await store.put(CacheEntry("B.NS", 1, "{}"))
        await store.delete("A.NS")
        after_delete = sorted(pool.rows)
        await store.clear()
        return after_delete

    assert asyncio.run(_run()) == ["B.NS"]
    assert pool.rows == {}


def test_postgres_errors_become_cache_store_errors():
    store, pool, _ = _postgres_store()

    async def _run():
        await store.init()
        pool.connection.fail_with = asyncpg.InterfaceError("connection is closed")
        await store.put(CacheEntry("A.NS", 1, "{}"))

    with pytest.raises(CacheStoreError, match="write failed"):
        asyncio.run(_run())


def test_postgres_without_dsn_is_unavailable():
    store = PostgresCacheStore(dsn=None, settings=Settings(db_url=None))

    async def _run():
        await store.get("A.NS")

    with pytest.raises(CacheStoreError, match="not configured"):
        asyncio.run(_run())


def test_postgres_rejects_unsafe_table_names():
    with pytest.raises(ValueError):
        PostgresCacheStore(dsn="postgresql://x", table="assets; DROP TABLE users")


def test_postgres_health_check_and_close():
    store, pool, _ = _postgres_store()

    async def _run():
        healthy = await store.health_check()
        await store.close()
        return healthy

    healthy = asyncio.run(_run())
    assert healthy["alive"] is True
    assert healthy["latency_ms"] is not None
    assert pool.closed
    assert not store.is_initialized


class DummyRedis:
    def __init__(self, *, fail_ping: bool = False) -> None:
        self.hashes: dict[str, dict[str, str]] = {}
        self.fail_ping = fail_ping
        self.closed = False

    async def ping(self) -> bool:
        if self.fail_ping:
            raise RedisConnectionError("refused")
        return True

    async def hset(self, name: str, mapping: dict[str, str]) -> int:
        self.hashes.setdefault(name, {}).update(mapping)
        return len(mapping)

    async def hgetall(self, name: str) -> dict[str, str]:
        return dict(self.hashes.get(name, {}))

    async def delete(self, *names: str) -> int:
        return sum(1 for name in names if self.hashes.pop(name, None) is not None)

    async def scan_iter(self, match: str):
        for name in list(self.hashes):
            if fnmatch.fnmatch(name, match):
                yield name

    async def aclose(self) -> None:
        self.closed = True


def _redis_store(redis: DummyRedis) -> tuple[RedisCacheStore, list[tuple]]:
    calls: list[tuple] = []

    def factory(url, **kwargs):
        calls.append((url, kwargs))
        return redis

    return RedisCacheStore(url="redis://fake", key_prefix="rsi:test", factory=factory), calls


def test_redis_round_trip_and_idempotent_init():
    redis = DummyRedis()
    store, calls = _redis_store(redis)
    payload = json.dumps([{"symbol": "ITBEES.NS"}])

    async def _run():
        await store.init()
        await store.init()
        await store.put(CacheEntry(ALL_ASSETS_KEY, 1_715_000_000_123, payload))
        return await store.get(ALL_ASSETS_KEY), await store.get("nope")

    entry, missing = asyncio.run(_run())
    assert len(calls) == 1
    assert calls[0][1]["decode_responses"] is True
    assert entry == CacheEntry(ALL_ASSETS_KEY, 1_715_000_000_123, payload)
    assert missing is None
    assert "rsi:test:all_assets_data" in redis.hashes


def test_redis_clear_only_touches_prefixed_keys():
    redis = DummyRedis()
    redis.hashes["other:key"] = {"timestamp": "1", "data": "{}"}
    store, _ = _redis_store(redis)

    async def _run():
        await store.put(CacheEntry("A.NS", 1, "{}"))
        await store.put(CacheEntry("B.NS", 1, "{}"))
        await store.delete("A.NS")
        remaining = sorted(redis.hashes)
        await store.clear()
        return remaining

    assert asyncio.run(_run()) == ["other:key", "rsi:test:B.NS"]
    assert list(redis.hashes) == ["other:key"]


def test_redis_init_failure_closes_client():
    redis = DummyRedis(fail_ping=True)
    store, _ = _redis_store(redis)

    with pytest.raises(CacheStoreError):
        asyncio.run(store.init())
    assert redis.closed
    assert not store.is_initialized


def test_create_cache_store_selects_backend():
    assert isinstance(create_cache_store(Settings(cache_backend="redis")), RedisCacheStore)
    assert isinstance(create_cache_store(Settings(cache_backend="postgres")), PostgresCacheStore)

from __future__ import annotations

from ..config import Settings
from .base import ALL_ASSETS_KEY, LAST_FETCH_KEY, CacheStore, CacheStoreError
from .postgres import PostgresCacheStore
from .redis_store import RedisCacheStore


def create_cache_store(settings: Settings) -> CacheStore:
    if settings.cache_backend == "redis":
        return RedisCacheStore(settings=settings)
    return PostgresCacheStore(settings=settings)


__all__ = [
    "ALL_ASSETS_KEY",
    "CacheStore",
    "CacheStoreError",
    "LAST_FETCH_KEY",
    "PostgresCacheStore",
    "RedisCacheStore",
    "create_cache_store",
]

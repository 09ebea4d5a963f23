from __future__ import annotations

from typing import Optional, Protocol

from ..models import CacheEntry

# Reserved keys for the batch-summary flow.
LAST_FETCH_KEY = "last_fetch_timestamp"
ALL_ASSETS_KEY = "all_assets_data"


class CacheStoreError(RuntimeError):
    """Raised when the durable cache cannot be reached or written."""


class CacheStore(Protocol):
    async def init(self) -> None:
        ...

    async def get(self, key: str) -> CacheEntry | None:
        ...

    async def put(self, entry: CacheEntry) -> None:
        ...

    async def delete(self, key: str) -> None:
        ...

    async def clear(self) -> None:
        ...

    async def health_check(self) -> dict[str, Optional[float] | bool]:
        ...

    async def close(self) -> None:
        ...


__all__ = ["ALL_ASSETS_KEY", "CacheStore", "CacheStoreError", "LAST_FETCH_KEY"]

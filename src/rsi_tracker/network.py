from __future__ import annotations

import logging
import time
from typing import Optional

import httpx

from .config import Settings, get_settings


class ReachabilityProbe:
    """HEAD request against a lightweight endpoint with its own short timeout."""

    def __init__(
        self,
        *,
        url: str | None = None,
        timeout_seconds: float | None = None,
        client: httpx.AsyncClient | None = None,
        settings: Settings | None = None,
    ) -> None:
        settings = settings or get_settings()
        self._url = url or settings.reachability_url
        self._timeout = timeout_seconds or settings.reachability_timeout_seconds
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=self._timeout)
        self._logger = logging.getLogger("rsi_tracker.network")

    async def is_connected(self) -> bool:
        try:
            response = await self._client.head(self._url, timeout=self._timeout)
        except httpx.HTTPError as exc:
            self._logger.info("No internet connection detected: %s", exc)
            return False
        return response.is_success

    async def network_info(self) -> dict[str, Optional[float] | bool | str]:
        start = time.perf_counter()
        connected = await self.is_connected()
        latency_ms = (time.perf_counter() - start) * 1000 if connected else None
        return {
            "is_connected": connected,
            "is_internet_reachable": connected,
            "probe_url": self._url,
            "latency_ms": latency_ms,
        }

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()


__all__ = ["ReachabilityProbe"]

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timezone

from .collection import AssetCollection
from .config import Settings, get_settings
from .services import AssetServiceError


@dataclass(slots=True)
class RefreshSchedulerStatus:
    last_run_at: datetime | None
    last_duration_seconds: float | None
    last_error: str | None
    successful_runs: int = 0
    consecutive_failures: int = 0
    last_from_cache: bool | None = None


class RefreshScheduler:
    """Periodically reloads the collection so the daily cache is warm before anyone asks."""

    def __init__(
        self,
        collection: AssetCollection,
        *,
        interval_seconds: float | None = None,
        settings: Settings | None = None,
    ) -> None:
        self.collection = collection
        self.settings = settings or get_settings()
        self.interval_seconds = (
            interval_seconds
            if interval_seconds is not None
            else self.settings.refresh_interval_minutes * 60
        )
        self.logger = logging.getLogger("rsi_tracker.scheduler")
        self._running = False
        self._task: asyncio.Task[None] | None = None
        self.status = RefreshSchedulerStatus(None, None, None)
        self._alert_threshold = 3

    @property
    def is_running(self) -> bool:
        return self._running

    async def start(self) -> None:
        if self._running:
            return
        self._running = True
        self._task = asyncio.create_task(self._run_loop(), name="asset-refresh-scheduler")
        self.logger.info("Asset refresh scheduler started (interval=%ss)", self.interval_seconds)

    async def stop(self) -> None:
        self._running = False
        if self._task and not self._task.done():
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        self._task = None
        self.logger.info("Asset refresh scheduler stopped")

    async def trigger_once(self) -> None:
        await self.run_cycle()

    async def _run_loop(self) -> None:
        while self._running:
            await self.run_cycle()
            await asyncio.sleep(self.interval_seconds)

    async def run_cycle(self) -> None:
        start = _utcnow()
        self.logger.debug("Asset refresh cycle started")
        try:
            view = await self.collection.load()
            self.status.last_error = None
            self.status.last_from_cache = view.from_cache
            self.status.successful_runs += 1
            self.status.consecutive_failures = 0
        except AssetServiceError as exc:
            self._record_failure(str(exc))
        except Exception as exc:
            self.logger.exception("Asset refresh cycle crashed: %s", exc)
            self._record_failure(str(exc))
        finally:
            duration = (_utcnow() - start).total_seconds()
            self.status.last_run_at = start
            self.status.last_duration_seconds = duration
            self.logger.info("Asset refresh cycle completed in %.2fs", duration)

    def _record_failure(self, message: str) -> None:
        self.status.last_error = message
        self.status.consecutive_failures += 1
        if self.status.consecutive_failures >= self._alert_threshold:
            self.logger.error(
                "Asset refresh scheduler failed %s consecutive times",
                self.status.consecutive_failures,
            )


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


__all__ = ["RefreshScheduler", "RefreshSchedulerStatus"]

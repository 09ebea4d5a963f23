from __future__ import annotations

import asyncio
import json
import logging
import math
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Awaitable, Callable, Hashable, Sequence

from ..indicators import IndicatorCalculations
from ..models import AssetRecord, AssetResult, CacheEntry, CacheStatus, PriceHistory
from ..network import ReachabilityProbe
from ..observability import record_cache_lookup, record_remote_fetch, record_store_failure
from ..providers.chart import PriceHistoryGateway
from ..providers.summary import SummaryGateway, SummaryProviderError
from ..storage import ALL_ASSETS_KEY, LAST_FETCH_KEY, CacheStore, CacheStoreError
from .records import (
    record_from_json,
    record_from_price_history,
    record_from_summary,
    records_from_json,
    records_to_json,
    unavailable_record,
)

PERSIST_WARNING = "Fresh data could not be saved to the local cache."

Clock = Callable[[], datetime]


class AssetServiceError(RuntimeError):
    """Base class for failures that leave the caller with no data at all."""


class NoNetworkNoCacheError(AssetServiceError):
    pass


class AssetFetchError(AssetServiceError):
    pass


def _local_now() -> datetime:
    return datetime.now().astimezone()


def _as_local(moment: datetime) -> datetime:
    if moment.tzinfo is None:
        return moment
    return moment.astimezone().replace(tzinfo=None)


def _to_millis(moment: datetime) -> int:
    return int(moment.timestamp() * 1000)


def _from_millis(timestamp_ms: int) -> datetime:
    return datetime.fromtimestamp(timestamp_ms / 1000).astimezone()


def is_same_calendar_day(timestamp_ms: int, now: datetime) -> bool:
    """Day-boundary validity: same local calendar date, regardless of elapsed hours."""
    fetched = datetime.fromtimestamp(timestamp_ms / 1000)
    return fetched.date() == _as_local(now).date()


def cache_age_hours(timestamp_ms: int, now: datetime) -> int:
    elapsed_hours = (_to_millis(now) - timestamp_ms) / 3_600_000
    return int(math.floor(elapsed_hours + 0.5))


@dataclass(slots=True)
class _CachedRecord:
    record: AssetRecord
    timestamp_ms: int


class OfflineDataService:
    """
    Offline-first orchestrator.

    Decides per request whether to serve from the persistent cache (same calendar
    day), fetch from the provider, or fall back to stale cache when the network or
    provider is unavailable. Supports the batch-summary flow and the per-symbol
    chart flow.
    """

    def __init__(
        self,
        *,
        store: CacheStore,
        summary_gateway: SummaryGateway,
        chart_gateway: PriceHistoryGateway,
        probe: ReachabilityProbe,
        calculations: IndicatorCalculations | None = None,
        clock: Clock | None = None,
    ) -> None:
        self._store = store
        self._summary = summary_gateway
        self._chart = chart_gateway
        self._probe = probe
        self._calculations = calculations or IndicatorCalculations()
        self._clock = clock or _local_now
        self._inflight: dict[Hashable, asyncio.Future[AssetResult]] = {}
        self._logger = logging.getLogger("rsi_tracker.services.offline_data")

    # -- public API -----------------------------------------------------------------

    async def fetch_assets(self, force_refresh: bool = False) -> AssetResult:
        return await self._run_once(("batch", force_refresh), lambda: self._fetch_batch(force_refresh))

    async def refresh_assets(self) -> AssetResult:
        return await self.fetch_assets(force_refresh=True)

    async def fetch_symbol_assets(self, symbols: Sequence[str], force_refresh: bool = False) -> AssetResult:
        key = ("per_symbol", force_refresh, tuple(symbols))
        return await self._run_once(key, lambda: self._fetch_per_symbol(list(symbols), force_refresh))

    async def clear_cache(self, *, full: bool = False) -> None:
        if full:
            await self._store.clear()
        else:
            await self._store.delete(ALL_ASSETS_KEY)
            await self._store.delete(LAST_FETCH_KEY)
        self._logger.info("Cache cleared successfully (full=%s)", full)

    async def get_cache_status(self) -> CacheStatus:
        try:
            last_fetch = await self._store.get(LAST_FETCH_KEY)
            collection = await self._store.get(ALL_ASSETS_KEY)
        except CacheStoreError as exc:
            self._logger.error("Error getting cache status: %s", exc)
            return CacheStatus(has_cache=False, is_valid=False)
        if last_fetch is None:
            return CacheStatus(has_cache=False, is_valid=False)

        item_count = 0
        if collection is not None:
            try:
                item_count = len(records_from_json(collection.data))
            except ValueError:
                self._logger.warning("Cached collection is unreadable")
        now = self._clock()
        return CacheStatus(
            has_cache=True,
            is_valid=is_same_calendar_day(last_fetch.timestamp_ms, now),
            last_fetch=_from_millis(last_fetch.timestamp_ms),
            cache_age=cache_age_hours(last_fetch.timestamp_ms, now),
            item_count=item_count,
        )

    # -- in-flight de-duplication ---------------------------------------------------

    async def _run_once(self, key: Hashable, factory: Callable[[], Awaitable[AssetResult]]) -> AssetResult:
        task = self._inflight.get(key)
        if task is None or task.done():
            task = asyncio.ensure_future(factory())
            self._inflight[key] = task

            def _release(finished: asyncio.Future[AssetResult]) -> None:
                if self._inflight.get(key) is finished:
                    self._inflight.pop(key, None)

            task.add_done_callback(_release)
        else:
            self._logger.debug("Joining in-flight request %s", key)
        return await asyncio.shield(task)

    # -- batch-summary flow ---------------------------------------------------------

    async def _fetch_batch(self, force_refresh: bool) -> AssetResult:
        now = self._clock()

        if not force_refresh:
            last_fetch = await self._read(LAST_FETCH_KEY)
            if last_fetch is not None and is_same_calendar_day(last_fetch.timestamp_ms, now):
                cached = await self._cached_collection()
                if cached is not None:
                    records, _ = cached
                    age = cache_age_hours(last_fetch.timestamp_ms, now)
                    self._logger.info("Data from today (%s hours ago) - using cache", age)
                    record_cache_lookup("hit")
                    return AssetResult(
                        records=records,
                        from_cache=True,
                        cache_age=age,
                        last_updated=_from_millis(last_fetch.timestamp_ms),
                    )
            record_cache_lookup("miss")

        if not await self._probe.is_connected():
            record_remote_fetch("batch", "unreachable")
            self._logger.warning("No internet connection, using cached data")
            return await self._stale_collection(
                now,
                reason="No internet connection",
                on_missing=NoNetworkNoCacheError("No internet connection and no cached data available"),
            )

        start = time.perf_counter()
        try:
            blocks = await self._summary.fetch_batch_summary()
        except SummaryProviderError as exc:
            record_remote_fetch("batch", "failure", time.perf_counter() - start)
            self._logger.error("Failed to fetch summary from provider: %s", exc)
            return await self._stale_collection(
                now,
                reason="API unavailable",
                on_missing=AssetFetchError(f"Failed to load assets: {exc}"),
                cause=exc,
            )
        record_remote_fetch("batch", "success", time.perf_counter() - start)

        records = [record_from_summary(block) for block in blocks]
        warning = await self._save_collection(records, now)
        return AssetResult(records=records, from_cache=False, warning=warning, last_updated=now)

    async def _stale_collection(
        self,
        now: datetime,
        *,
        reason: str,
        on_missing: AssetServiceError,
        cause: BaseException | None = None,
    ) -> AssetResult:
        cached = await self._cached_collection()
        if cached is None:
            raise on_missing from cause
        records, timestamp_ms = cached
        last_fetch = await self._read(LAST_FETCH_KEY)
        if last_fetch is not None:
            timestamp_ms = last_fetch.timestamp_ms
        age = cache_age_hours(timestamp_ms, now)
        record_cache_lookup("stale_fallback")
        self._logger.info("Falling back to cached data (%s): %s hours old", reason, age)
        return AssetResult(
            records=records,
            from_cache=True,
            cache_age=age,
            warning=f"{reason}. Using cached data from {age} hours ago.",
            last_updated=_from_millis(timestamp_ms),
        )

    async def _cached_collection(self) -> tuple[list[AssetRecord], int] | None:
        entry = await self._read(ALL_ASSETS_KEY)
        if entry is None:
            return None
        try:
            records = records_from_json(entry.data)
        except (TypeError, ValueError) as exc:
            self._logger.error("Error retrieving cached assets: %s", exc)
            return None
        if not records:
            return None
        self._logger.debug("Retrieved %s assets from cache", len(records))
        return records, entry.timestamp_ms

    async def _save_collection(self, records: list[AssetRecord], now: datetime) -> str | None:
        timestamp_ms = _to_millis(now)
        try:
            await self._store.put(CacheEntry(ALL_ASSETS_KEY, timestamp_ms, records_to_json(records)))
            await self._store.put(
                CacheEntry(LAST_FETCH_KEY, timestamp_ms, json.dumps({"lastFetch": timestamp_ms}))
            )
        except CacheStoreError as exc:
            record_store_failure("write")
            self._logger.warning("Error saving assets to cache: %s", exc)
            return PERSIST_WARNING
        self._logger.info("Saved %s assets to cache", len(records))
        return None

    # -- per-symbol flow ------------------------------------------------------------

    async def _fetch_per_symbol(self, symbols: list[str], force_refresh: bool) -> AssetResult:
        if not symbols:
            return AssetResult(records=[], from_cache=False)
        now = self._clock()

        entries = await asyncio.gather(*(self._read(symbol) for symbol in symbols))
        cached: dict[str, _CachedRecord] = {}
        for symbol, entry in zip(symbols, entries):
            if entry is None:
                continue
            try:
                cached[symbol] = _CachedRecord(record_from_json(entry.data), entry.timestamp_ms)
            except (TypeError, ValueError) as exc:
                self._logger.error("Failed to parse cached data for %s: %s", symbol, exc)

        results: dict[str, AssetRecord] = {}
        served_from_cache: list[_CachedRecord] = []
        stale: list[str] = []
        for symbol in symbols:
            hit = cached.get(symbol)
            if hit is not None and not force_refresh and is_same_calendar_day(hit.timestamp_ms, now):
                results[symbol] = hit.record
                served_from_cache.append(hit)
                record_cache_lookup("hit")
            else:
                stale.append(symbol)
                record_cache_lookup("miss")

        if not stale:
            return self._per_symbol_result(symbols, results, served_from_cache, now, fresh=False)

        if not await self._probe.is_connected():
            record_remote_fetch("per_symbol", "unreachable")
            if not results and not any(symbol in cached for symbol in stale):
                raise NoNetworkNoCacheError("No internet connection and no cached data available")
            for symbol in stale:
                hit = cached.get(symbol)
                if hit is not None:
                    results[symbol] = hit.record
                    served_from_cache.append(hit)
                    record_cache_lookup("stale_fallback")
                else:
                    results[symbol] = unavailable_record(symbol)
            result = self._per_symbol_result(symbols, results, served_from_cache, now, fresh=False)
            result.warning = f"No internet connection. Using cached data from {result.cache_age or 0} hours ago."
            return result

        start = time.perf_counter()
        histories = await asyncio.gather(
            *(self._chart.fetch_price_series(symbol) for symbol in stale),
            return_exceptions=True,
        )
        elapsed = time.perf_counter() - start

        fresh: list[AssetRecord] = []
        fallbacks: list[str] = []
        failed: list[str] = []
        for symbol, history in zip(stale, histories):
            if not isinstance(history, PriceHistory):
                self._logger.error("Failed to get asset data for %s: %s", symbol, history)
                history = PriceHistory.empty(symbol)
            if not history.is_empty:
                record = record_from_price_history(history, self._calculations)
                results[symbol] = record
                fresh.append(record)
                continue
            hit = cached.get(symbol)
            if hit is not None:
                results[symbol] = hit.record
                served_from_cache.append(hit)
                fallbacks.append(symbol)
                record_cache_lookup("stale_fallback")
            else:
                results[symbol] = unavailable_record(symbol)
                failed.append(symbol)
        record_remote_fetch("per_symbol", "success" if fresh else "failure", elapsed)

        warnings: list[str] = []
        persisted = await asyncio.gather(*(self._save_record(record, now) for record in fresh))
        if not all(persisted):
            warnings.append(PERSIST_WARNING)

        result = self._per_symbol_result(symbols, results, served_from_cache, now, fresh=bool(fresh))
        if fallbacks:
            warnings.insert(
                0,
                f"API unavailable for {', '.join(fallbacks)}. "
                f"Using cached data from {result.cache_age or 0} hours ago.",
            )
        if failed:
            warnings.insert(0, f"Failed to fetch data for {', '.join(failed)}.")
        result.warning = " ".join(warnings) or None
        return result

    def _per_symbol_result(
        self,
        symbols: list[str],
        results: dict[str, AssetRecord],
        served_from_cache: list[_CachedRecord],
        now: datetime,
        *,
        fresh: bool,
    ) -> AssetResult:
        ordered = [results.get(symbol) or unavailable_record(symbol) for symbol in symbols]
        cache_age = None
        last_updated = now if fresh else None
        if served_from_cache:
            oldest = min(hit.timestamp_ms for hit in served_from_cache)
            cache_age = cache_age_hours(oldest, now)
            if not fresh:
                last_updated = _from_millis(oldest)
        return AssetResult(
            records=ordered,
            from_cache=not fresh and bool(served_from_cache),
            cache_age=cache_age,
            last_updated=last_updated,
        )

    async def _save_record(self, record: AssetRecord, now: datetime) -> bool:
        try:
            await self._store.put(CacheEntry(record.symbol, _to_millis(now), json.dumps(record.to_dict())))
        except CacheStoreError as exc:
            record_store_failure("write")
            self._logger.warning("Error saving %s to cache: %s", record.symbol, exc)
            return False
        return True

    # -- store helpers --------------------------------------------------------------

    async def _read(self, key: str) -> CacheEntry | None:
        try:
            return await self._store.get(key)
        except CacheStoreError as exc:
            record_cache_lookup("error")
            record_store_failure("read")
            self._logger.warning("Cache read for %s failed; treating as miss: %s", key, exc)
            return None


__all__ = [
    "AssetFetchError",
    "AssetServiceError",
    "NoNetworkNoCacheError",
    "OfflineDataService",
    "PERSIST_WARNING",
    "cache_age_hours",
    "is_same_calendar_day",
]

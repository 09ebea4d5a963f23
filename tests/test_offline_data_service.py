from __future__ import annotations

import asyncio
import json
from datetime import datetime, timedelta

import httpx
import pytest

from rsi_tracker.indicators import UNAVAILABLE
from rsi_tracker.models import AssetRecord, CacheEntry, PriceHistory
from rsi_tracker.providers import SummaryGateway, SummaryProviderConfig, SummaryProviderError
from rsi_tracker.providers.schemas import SummaryBlock
from rsi_tracker.services import (
    PERSIST_WARNING,
    AssetFetchError,
    NoNetworkNoCacheError,
    OfflineDataService,
    cache_age_hours,
    is_same_calendar_day,
)
from rsi_tracker.services.records import records_to_json
from rsi_tracker.storage import ALL_ASSETS_KEY, LAST_FETCH_KEY, CacheStoreError

NOW = datetime(2024, 5, 11, 9, 0, 0)


def _ms(moment: datetime) -> int:
    return int(moment.timestamp() * 1000)


class FakeStore:
    def __init__(self) -> None:
        self.entries: dict[str, CacheEntry] = {}
        self.fail_reads = False
        self.fail_writes = False
        self.puts: list[str] = []

    async def init(self) -> None:
        return None

    async def get(self, key: str) -> CacheEntry | None:
        if self.fail_reads:
            raise CacheStoreError("read failed")
        return self.entries.get(key)

    async def put(self, entry: CacheEntry) -> None:
        if self.fail_writes:
            raise CacheStoreError("write failed")
        self.puts.append(entry.key)
        self.entries[entry.key] = entry

    async def delete(self, key: str) -> None:
        self.entries.pop(key, None)

    async def clear(self) -> None:
        self.entries.clear()

    async def health_check(self) -> dict:
        return {"alive": True, "latency_ms": 0.1}

    async def close(self) -> None:
        return None

    def seed_collection(self, records: list[AssetRecord], fetched_at: datetime) -> None:
        timestamp = _ms(fetched_at)
        self.entries[ALL_ASSETS_KEY] = CacheEntry(ALL_ASSETS_KEY, timestamp, records_to_json(records))
        self.entries[LAST_FETCH_KEY] = CacheEntry(LAST_FETCH_KEY, timestamp, json.dumps({"lastFetch": timestamp}))

    def seed_symbol(self, record: AssetRecord, fetched_at: datetime) -> None:
        self.entries[record.symbol] = CacheEntry(record.symbol, _ms(fetched_at), json.dumps(record.to_dict()))


class FakeSummary:
    def __init__(self, blocks: list[dict] | None = None, *, error: Exception | None = None, delay: float = 0) -> None:
        self.blocks = [SummaryBlock.model_validate(item) for item in blocks or []]
        self.error = error
        self.delay = delay
        self.calls = 0

    async def fetch_batch_summary(self) -> list[SummaryBlock]:
        self.calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return list(self.blocks)


class FakeChart:
    def __init__(self, histories: dict[str, PriceHistory], delays: dict[str, float] | None = None) -> None:
        self.histories = histories
        self.delays = delays or {}
        self.calls: list[str] = []

    async def fetch_price_series(self, symbol: str) -> PriceHistory:
        self.calls.append(symbol)
        await asyncio.sleep(self.delays.get(symbol, 0))
        return self.histories.get(symbol) or PriceHistory.empty(symbol)


class FakeProbe:
    def __init__(self, connected: bool = True) -> None:
        self.connected = connected
        self.calls = 0

    async def is_connected(self) -> bool:
        self.calls += 1
        return self.connected


def _history(symbol: str, start: float = 100.0) -> PriceHistory:
    prices = [start + i for i in range(40)]
    return PriceHistory(
        symbol=symbol,
        closing_prices=prices[-30:],
        all_prices=prices,
        current_price=prices[-1],
        one_day_return=(prices[-1] - prices[-2]) / prices[-2] * 100,
        fifty_two_week_high=prices[-1],
    )


def _service(store, *, summary=None, chart=None, probe=None, now=NOW) -> OfflineDataService:
    return OfflineDataService(
        store=store,
        summary_gateway=summary or FakeSummary(),
        chart_gateway=chart or FakeChart({}),
        probe=probe or FakeProbe(),
        clock=lambda: now,
    )


SUMMARY_BLOCKS = [
    {"symbol": "NIFTYBEES.NS", "details": {"lastClosePrice": 245.5, "dailyRSI": 41.2}},
    {"symbol": "GOLDBEES.NS", "details": {"lastClosePrice": 61.0, "dailyRSI": 68.9}},
]


def test_same_calendar_day_boundary():
    late = datetime(2024, 5, 10, 23, 59, 59)
    timestamp = _ms(late)

    assert is_same_calendar_day(timestamp, late)
    assert is_same_calendar_day(timestamp, datetime(2024, 5, 10, 0, 0, 0))
    assert not is_same_calendar_day(timestamp, datetime(2024, 5, 11, 0, 0, 1))


def test_cache_age_rounds_half_up():
    assert cache_age_hours(_ms(NOW - timedelta(hours=11, minutes=30)), NOW) == 12
    assert cache_age_hours(_ms(NOW - timedelta(hours=2, minutes=29)), NOW) == 2
    assert cache_age_hours(_ms(NOW), NOW) == 0


def test_fetch_assets_serves_same_day_cache_without_network():
    store = FakeStore()
    store.seed_collection([AssetRecord(symbol="ITBEES.NS", rsi="30.00", raw_rsi=30.0)], NOW - timedelta(hours=3))
    summary = FakeSummary(SUMMARY_BLOCKS)
    probe = FakeProbe()

    result = asyncio.run(_service(store, summary=summary, probe=probe).fetch_assets())

    assert result.from_cache is True
    assert result.cache_age == 3
    assert result.warning is None
    assert [record.symbol for record in result.records] == ["ITBEES.NS"]
    assert result.records[0].raw_rsi == 30.0
    assert summary.calls == 0
    assert probe.calls == 0


def test_cache_from_previous_day_is_refetched_and_persisted():
    store = FakeStore()
    store.seed_collection([AssetRecord(symbol="OLD.NS")], datetime(2024, 5, 10, 23, 59, 59))
    summary = FakeSummary(SUMMARY_BLOCKS)

    result = asyncio.run(_service(store, summary=summary, now=datetime(2024, 5, 11, 0, 0, 1)).fetch_assets())

    assert summary.calls == 1
    assert result.from_cache is False
    assert [record.symbol for record in result.records] == ["NIFTYBEES.NS", "GOLDBEES.NS"]
    assert result.records[0].rsi == "41.20"
    assert store.entries[LAST_FETCH_KEY].timestamp_ms == _ms(datetime(2024, 5, 11, 0, 0, 1))
    assert "GOLDBEES.NS" in store.entries[ALL_ASSETS_KEY].data


def test_provider_500_falls_back_to_cache_with_warning():
    store = FakeStore()
    cached = [AssetRecord(symbol="BANKBEES.NS", rsi="55.00", raw_rsi=55.0)]
    store.seed_collection(cached, NOW - timedelta(hours=11, minutes=30))

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(500, json={"error": "internal"})

    gateway = SummaryGateway(
        SummaryProviderConfig(summary_url="https://summary.test/api/summary"),
        httpx.AsyncClient(transport=httpx.MockTransport(handler)),
    )

    result = asyncio.run(_service(store, summary=gateway).fetch_assets())

    assert result.from_cache is True
    assert result.cache_age == 12
    assert result.warning == "API unavailable. Using cached data from 12 hours ago."
    assert [record.symbol for record in result.records] == ["BANKBEES.NS"]


def test_offline_with_stale_cache_returns_cache_with_warning():
    store = FakeStore()
    store.seed_collection([AssetRecord(symbol="BANKBEES.NS")], NOW - timedelta(days=2))

    result = asyncio.run(_service(store, probe=FakeProbe(connected=False)).fetch_assets())

    assert result.from_cache is True
    assert result.cache_age == 48
    assert result.warning.startswith("No internet connection.")


def test_offline_without_cache_raises_no_network_error():
    store = FakeStore()

    with pytest.raises(NoNetworkNoCacheError):
        asyncio.run(_service(store, probe=FakeProbe(connected=False)).fetch_assets())


def test_provider_failure_without_cache_raises_fetch_error():
    store = FakeStore()
    summary = FakeSummary(error=SummaryProviderError("status 502"))

    with pytest.raises(AssetFetchError) as excinfo:
        asyncio.run(_service(store, summary=summary).fetch_assets())
    assert isinstance(excinfo.value.__cause__, SummaryProviderError)


def test_force_refresh_skips_valid_cache():
    store = FakeStore()
    store.seed_collection([AssetRecord(symbol="ITBEES.NS")], NOW - timedelta(hours=1))
    summary = FakeSummary(SUMMARY_BLOCKS)

    result = asyncio.run(_service(store, summary=summary).refresh_assets())

    assert summary.calls == 1
    assert result.from_cache is False


def test_write_failure_keeps_fresh_data_and_warns():
    store = FakeStore()
    store.fail_writes = True

    result = asyncio.run(_service(store, summary=FakeSummary(SUMMARY_BLOCKS)).fetch_assets())

    assert result.from_cache is False
    assert len(result.records) == 2
    assert result.warning == PERSIST_WARNING


def test_read_failure_is_treated_as_miss():
    store = FakeStore()
    store.fail_reads = True
    summary = FakeSummary(SUMMARY_BLOCKS)

    result = asyncio.run(_service(store, summary=summary).fetch_assets())

    assert summary.calls == 1
    assert result.from_cache is False


def test_concurrent_identical_requests_share_one_fetch():
    store = FakeStore()
    summary = FakeSummary(SUMMARY_BLOCKS, delay=0.01)
    service = _service(store, summary=summary)

    async def _run():
        return await asyncio.gather(service.fetch_assets(), service.fetch_assets())

    first, second = asyncio.run(_run())
    assert summary.calls == 1
    assert first is second


def test_per_symbol_results_follow_input_order_not_completion_order():
    store = FakeStore()
    symbols = ["A.NS", "B.NS", "C.NS"]
    chart = FakeChart(
        {symbol: _history(symbol) for symbol in symbols},
        delays={"A.NS": 0.03, "B.NS": 0.0, "C.NS": 0.01},
    )
    probe = FakeProbe()

    result = asyncio.run(_service(store, chart=chart, probe=probe).fetch_symbol_assets(symbols))

    assert [record.symbol for record in result.records] == symbols
    assert result.from_cache is False
    assert probe.calls == 1
    assert sorted(store.puts) == symbols
    assert result.records[0].rsi != UNAVAILABLE


def test_per_symbol_failure_is_isolated_as_unavailable_record():
    store = FakeStore()
    chart = FakeChart({"A.NS": _history("A.NS"), "C.NS": _history("C.NS")})

    result = asyncio.run(_service(store, chart=chart).fetch_symbol_assets(["A.NS", "B.NS", "C.NS"]))

    assert len(result.records) == 3
    broken = result.records[1]
    assert broken.symbol == "B.NS"
    assert broken.current_price == UNAVAILABLE
    assert broken.raw_rsi is None
    assert not broken.is_available
    assert "B.NS" not in store.entries


def test_per_symbol_failure_falls_back_to_that_symbols_cache():
    store = FakeStore()
    store.seed_symbol(AssetRecord(symbol="B.NS", rsi="44.00", raw_rsi=44.0), NOW - timedelta(days=1))
    chart = FakeChart({"A.NS": _history("A.NS")})

    result = asyncio.run(_service(store, chart=chart).fetch_symbol_assets(["A.NS", "B.NS"]))

    assert result.records[1].raw_rsi == 44.0
    assert result.cache_age == 24
    assert result.warning == "API unavailable for B.NS. Using cached data from 24 hours ago."


def test_per_symbol_same_day_cache_skips_network():
    store = FakeStore()
    store.seed_symbol(AssetRecord(symbol="A.NS", raw_rsi=10.0), NOW - timedelta(hours=2))
    chart = FakeChart({})
    probe = FakeProbe()

    result = asyncio.run(_service(store, chart=chart, probe=probe).fetch_symbol_assets(["A.NS"]))

    assert result.from_cache is True
    assert result.cache_age == 2
    assert chart.calls == []
    assert probe.calls == 0


def test_per_symbol_offline_uses_cache_and_marks_missing_symbols():
    store = FakeStore()
    store.seed_symbol(AssetRecord(symbol="A.NS", raw_rsi=10.0), NOW - timedelta(hours=30))
    chart = FakeChart({"A.NS": _history("A.NS")})

    result = asyncio.run(
        _service(store, chart=chart, probe=FakeProbe(connected=False)).fetch_symbol_assets(["A.NS", "B.NS"])
    )

    assert chart.calls == []
    assert result.from_cache is True
    assert result.records[0].raw_rsi == 10.0
    assert result.records[1].symbol == "B.NS"
    assert not result.records[1].is_available
    assert result.warning == "No internet connection. Using cached data from 30 hours ago."


def test_per_symbol_offline_without_any_cache_raises():
    with pytest.raises(NoNetworkNoCacheError):
        asyncio.run(
            _service(FakeStore(), probe=FakeProbe(connected=False)).fetch_symbol_assets(["A.NS", "B.NS"])
        )


def test_cache_status_and_clear():
    store = FakeStore()
    store.seed_collection(
        [AssetRecord(symbol="A.NS"), AssetRecord(symbol="B.NS")],
        NOW - timedelta(hours=4),
    )
    store.seed_symbol(AssetRecord(symbol="C.NS"), NOW)
    service = _service(store)

    async def _run():
        before = await service.get_cache_status()
        await service.clear_cache()
        after = await service.get_cache_status()
        symbol_kept = "C.NS" in store.entries
        await service.clear_cache(full=True)
        return before, after, symbol_kept

    before, after, symbol_kept = asyncio.run(_run())
    assert before.has_cache is True
    assert before.is_valid is True
    assert before.cache_age == 4
    assert before.item_count == 2
    assert after.has_cache is False
    assert symbol_kept is True
    assert store.entries == {}


def test_per_symbol_all_fetches_failing_without_cache_is_not_reported_as_cached():
    store = FakeStore()
    probe = FakeProbe()

    result = asyncio.run(_service(store, chart=FakeChart({}), probe=probe).fetch_symbol_assets(["A.NS", "B.NS"]))

    assert [record.is_available for record in result.records] == [False, False]
    assert result.from_cache is False
    assert result.cache_age is None
    assert result.warning == "Failed to fetch data for A.NS, B.NS."
    assert probe.calls == 1


def test_per_symbol_cancelled_fetch_stays_isolated_to_that_symbol():
    class CancellingChart(FakeChart):
        async def fetch_price_series(self, symbol: str) -> PriceHistory:
            if symbol == "B.NS":
                raise asyncio.CancelledError()
            return await super().fetch_price_series(symbol)

    store = FakeStore()
    chart = CancellingChart({"A.NS": _history("A.NS")})

    result = asyncio.run(_service(store, chart=chart).fetch_symbol_assets(["A.NS", "B.NS"]))

    assert [record.symbol for record in result.records] == ["A.NS", "B.NS"]
    assert result.records[0].is_available
    assert not result.records[1].is_available
    assert result.from_cache is False
    assert result.warning == "Failed to fetch data for B.NS."
    assert "A.NS" in store.entries


def test_malformed_cached_collection_is_treated_as_missing():
    store = FakeStore()
    timestamp = _ms(NOW - timedelta(hours=1))
    store.entries[ALL_ASSETS_KEY] = CacheEntry(ALL_ASSETS_KEY, timestamp, json.dumps([{"rsi": "40.00"}]))

    with pytest.raises(NoNetworkNoCacheError):
        asyncio.run(_service(store, probe=FakeProbe(connected=False)).fetch_assets())


def test_malformed_cached_symbol_row_is_refetched():
    store = FakeStore()
    bad_row = json.dumps({"symbol": "A.NS", "price_ranges": {"yearly": {"min": 1, "max": 2, "span": 3}}})
    store.entries["A.NS"] = CacheEntry("A.NS", _ms(NOW), bad_row)
    chart = FakeChart({"A.NS": _history("A.NS")})

    result = asyncio.run(_service(store, chart=chart).fetch_symbol_assets(["A.NS"]))

    assert chart.calls == ["A.NS"]
    assert result.records[0].is_available
    assert result.from_cache is False

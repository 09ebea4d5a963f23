from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Iterable, Sequence

from .config import Settings, get_settings
from .indicators import UNAVAILABLE, price_range_position
from .models import SORT_FIELDS, AssetRecord, FetchStatus, SortDirection, SortSpec
from .observability import record_remote_fetch
from .providers.summary import SummaryGateway, SummaryProviderError
from .services import (
    AssetServiceError,
    OfflineDataService,
    align_to_symbols,
    apply_live_price,
    unavailable_record,
)

_CRYPTO_TOKENS = ("BTC", "ETH")
_DIRECTIONS: tuple[SortDirection, ...] = ("asc", "desc")


def normalize_symbol(raw: str, domestic_suffix: str = ".NS") -> str:
    """Uppercase a user-entered ticker and qualify bare domestic symbols with the exchange suffix."""
    symbol = (raw or "").strip().upper()
    if not symbol:
        return ""
    if "." in symbol or "-" in symbol:
        return symbol
    if symbol.endswith("USD") or any(token in symbol for token in _CRYPTO_TOKENS):
        return symbol
    return f"{symbol}{domestic_suffix}"


def _sort_value(record: AssetRecord, attribute: str) -> Any:
    value = getattr(record, attribute)
    if attribute == "record_date" and value == UNAVAILABLE:
        return None
    return value


def sort_records(records: Iterable[AssetRecord], spec: SortSpec) -> list[AssetRecord]:
    """Stable sort on the raw value behind ``spec.key``; records without a value always go last."""
    items = list(records)
    if spec.key is None:
        return items
    attribute = SORT_FIELDS.get(spec.key)
    if attribute is None:
        raise ValueError(f"Unknown sort key: {spec.key}")

    present = [record for record in items if _sort_value(record, attribute) is not None]
    missing = [record for record in items if _sort_value(record, attribute) is None]
    present.sort(key=lambda record: _sort_value(record, attribute), reverse=spec.direction == "desc")
    return present + missing


@dataclass(slots=True)
class CollectionView:
    records: list[AssetRecord]
    symbols: list[str]
    status: FetchStatus
    sort: SortSpec
    error: str | None = None
    from_cache: bool = False
    cache_age: int | None = None
    warning: str | None = None
    last_updated: datetime | None = None


@dataclass(slots=True)
class AssetDetail:
    record: AssetRecord
    range_positions: dict[str, float | None] = field(default_factory=dict)


class AssetCollection:
    """
    In-memory view of the tracked symbols and their latest sorted records.

    Never writes to the persistent cache; every fetch goes through the
    orchestrator. A monotonic request sequence keeps an older response from
    overwriting a newer one when loads overlap.
    """

    def __init__(
        self,
        service: OfflineDataService,
        *,
        summary_gateway: SummaryGateway | None = None,
        settings: Settings | None = None,
        symbols: Sequence[str] | None = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._service = service
        self._summary = summary_gateway
        self._suffix = self._settings.domestic_suffix
        self._flow = self._settings.fetch_flow
        self._live_prices_enabled = self._settings.live_prices_enabled and summary_gateway is not None
        self._logger = logging.getLogger("rsi_tracker.collection")

        self._symbols: list[str] = []
        initial = self._settings.default_symbols if symbols is None else symbols
        for raw in initial:
            symbol = normalize_symbol(raw, self._suffix)
            if symbol and symbol not in self._symbols:
                self._symbols.append(symbol)

        self._records: list[AssetRecord] = []
        self._sort = SortSpec(self._settings.default_sort_key, self._settings.default_sort_direction)
        self._status: FetchStatus = "idle"
        self._error: str | None = None
        self._from_cache = False
        self._cache_age: int | None = None
        self._warning: str | None = None
        self._last_updated: datetime | None = None
        self._issued_sequence = 0
        self._applied_sequence = 0

    @property
    def symbols(self) -> list[str]:
        return list(self._symbols)

    @property
    def records(self) -> list[AssetRecord]:
        return list(self._records)

    @property
    def sort_spec(self) -> SortSpec:
        return SortSpec(self._sort.key, self._sort.direction)

    @property
    def status(self) -> FetchStatus:
        return self._status

    def add_symbol(self, raw: str) -> bool:
        symbol = normalize_symbol(raw, self._suffix)
        if not symbol:
            raise ValueError("Symbol must not be empty")
        if symbol in self._symbols:
            self._logger.info("Symbol %s is already tracked", symbol)
            return False
        self._symbols.append(symbol)
        if self._status != "idle":
            # Placeholder until the next load brings real data.
            self._records = sort_records([*self._records, unavailable_record(symbol)], self._sort)
        self._logger.info("Tracking symbol %s", symbol)
        return True

    def remove_symbol(self, symbol: str) -> bool:
        target = (symbol or "").strip().upper()
        if target not in self._symbols:
            target = normalize_symbol(symbol, self._suffix)
        if target not in self._symbols:
            return False
        remaining_records = [record for record in self._records if record.symbol != target]
        self._symbols = [item for item in self._symbols if item != target]
        self._records = remaining_records
        self._logger.info("Stopped tracking symbol %s", target)
        return True

    def sort(self, key: str | None, direction: SortDirection = "asc") -> list[AssetRecord]:
        if key is not None and key not in SORT_FIELDS:
            raise ValueError(f"Unknown sort key: {key}")
        if direction not in _DIRECTIONS:
            raise ValueError(f"Unknown sort direction: {direction}")
        self._sort = SortSpec(key, direction)
        self._records = sort_records(self._records, self._sort)
        return self.records

    async def load(self, force_refresh: bool = False) -> CollectionView:
        self._issued_sequence += 1
        sequence = self._issued_sequence
        previous_status = self._status
        self._status = "loading"
        self._error = None

        try:
            if self._flow == "per_symbol":
                result = await self._service.fetch_symbol_assets(list(self._symbols), force_refresh)
            else:
                result = await self._service.fetch_assets(force_refresh)
        except Exception as exc:
            if sequence < self._applied_sequence:
                self._logger.debug("Discarding failure of superseded load #%s", sequence)
                return self.view()
            self._applied_sequence = sequence
            self._status = "failed"
            self._error = str(exc)
            if isinstance(exc, AssetServiceError):
                self._logger.error("Failed to load assets: %s", exc)
            else:
                self._logger.exception("Unexpected error while loading assets")
            raise
        except asyncio.CancelledError:
            if sequence == self._issued_sequence:
                self._status = previous_status
            raise

        if sequence < self._applied_sequence:
            self._logger.debug("Discarding superseded load #%s", sequence)
            return self.view()
        self._applied_sequence = sequence

        records = result.records
        if self._flow == "batch" and not self._symbols:
            self._symbols = [record.symbol for record in records]
        else:
            records = align_to_symbols(records, self._symbols)
        records = await self._overlay_live_prices(records)

        self._records = sort_records(records, self._sort)
        self._from_cache = result.from_cache
        self._cache_age = result.cache_age
        self._warning = result.warning
        self._last_updated = result.last_updated
        self._status = "succeeded"
        self._logger.info(
            "Loaded %s assets (from_cache=%s, cache_age=%s)",
            len(self._records),
            result.from_cache,
            result.cache_age,
        )
        return self.view()

    async def refresh(self) -> CollectionView:
        return await self.load(force_refresh=True)

    def view(self) -> CollectionView:
        return CollectionView(
            records=self.records,
            symbols=self.symbols,
            status=self._status,
            sort=self.sort_spec,
            error=self._error,
            from_cache=self._from_cache,
            cache_age=self._cache_age,
            warning=self._warning,
            last_updated=self._last_updated,
        )

    def detail(self, symbol: str) -> AssetDetail | None:
        target = (symbol or "").strip().upper()
        record = next((item for item in self._records if item.symbol == target), None)
        if record is None:
            normalized = normalize_symbol(symbol, self._suffix)
            record = next((item for item in self._records if item.symbol == normalized), None)
        if record is None:
            return None

        positions: dict[str, float | None] = {}
        for name, bounds in record.price_ranges.items():
            if bounds.min is None or bounds.max is None or bounds.current is None:
                positions[name] = None
                continue
            positions[name] = price_range_position(bounds.min, bounds.max, bounds.current)
        return AssetDetail(record=record, range_positions=positions)

    async def _overlay_live_prices(self, records: list[AssetRecord]) -> list[AssetRecord]:
        if not self._live_prices_enabled or self._summary is None:
            return records
        try:
            prices = await self._summary.fetch_live_prices()
        except SummaryProviderError as exc:
            record_remote_fetch("live_prices", "failure")
            self._logger.warning("Live prices unavailable: %s", exc)
            return records
        record_remote_fetch("live_prices", "success")
        return [apply_live_price(record, prices.get(record.symbol)) for record in records]


__all__ = [
    "AssetCollection",
    "AssetDetail",
    "CollectionView",
    "normalize_symbol",
    "sort_records",
]

from __future__ import annotations

from dataclasses import asdict, dataclass, field, fields
from datetime import datetime
from typing import Any, Literal

from .indicators import UNAVAILABLE

SortDirection = Literal["asc", "desc"]
FetchStatus = Literal["idle", "loading", "succeeded", "failed"]


@dataclass(slots=True)
class PriceRange:
    min: float | None = None
    max: float | None = None
    current: float | None = None


@dataclass(slots=True)
class PricePoint:
    date: str
    price: float


@dataclass(slots=True)
class PriceHistory:
    """Normalized chart payload for one symbol. Every field is optional except the symbol."""

    symbol: str
    closing_prices: list[float] = field(default_factory=list)
    all_prices: list[float] = field(default_factory=list)
    timestamps: list[int] = field(default_factory=list)
    current_price: float | None = None
    one_day_return: float | None = None
    one_week_return: float | None = None
    one_month_return: float | None = None
    three_month_return: float | None = None
    six_month_return: float | None = None
    fifty_two_week_high: float | None = None

    @classmethod
    def empty(cls, symbol: str) -> "PriceHistory":
        return cls(symbol=symbol)

    @property
    def is_empty(self) -> bool:
        return self.current_price is None


@dataclass(slots=True)
class LivePrice:
    symbol: str
    live_price: str
    change_percent: str
    raw_live_price: float | None
    raw_change_percent: float | None


@dataclass(slots=True)
class AssetRecord:
    """Canonical per-symbol snapshot.

    Display fields always hold a formatted string or ``UNAVAILABLE``; each has a
    ``raw_`` twin carrying the number used for sorting.
    """

    symbol: str
    record_date: str = UNAVAILABLE
    current_price: str = UNAVAILABLE
    rsi: str = UNAVAILABLE
    weekly_rsi: str = UNAVAILABLE
    monthly_rsi: str = UNAVAILABLE
    one_day_return: str = UNAVAILABLE
    one_week_return: str = UNAVAILABLE
    one_month_return: str = UNAVAILABLE
    three_month_return: str = UNAVAILABLE
    six_month_return: str = UNAVAILABLE
    one_year_return: str = UNAVAILABLE
    two_year_return: str = UNAVAILABLE
    two_year_nifty_return: str = UNAVAILABLE
    volatility: str = UNAVAILABLE
    discount: str = UNAVAILABLE
    price_to_earning: str = UNAVAILABLE
    nifty_price_to_earning: str = UNAVAILABLE
    last_day_volume: str = UNAVAILABLE
    live_price: str = UNAVAILABLE
    change_percent: str = UNAVAILABLE
    raw_current_price: float | None = None
    raw_rsi: float | None = None
    raw_weekly_rsi: float | None = None
    raw_monthly_rsi: float | None = None
    raw_one_day_return: float | None = None
    raw_one_week_return: float | None = None
    raw_one_month_return: float | None = None
    raw_three_month_return: float | None = None
    raw_six_month_return: float | None = None
    raw_one_year_return: float | None = None
    raw_two_year_return: float | None = None
    raw_two_year_nifty_return: float | None = None
    raw_volatility: float | None = None
    raw_discount: float | None = None
    raw_price_to_earning: float | None = None
    raw_nifty_price_to_earning: float | None = None
    raw_last_day_volume: float | None = None
    raw_live_price: float | None = None
    raw_change_percent: float | None = None
    fifty_two_week_high: float | None = None
    price_ranges: dict[str, PriceRange] = field(default_factory=dict)
    all_prices: list[PricePoint] = field(default_factory=list)

    @property
    def is_available(self) -> bool:
        return self.raw_current_price is not None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> "AssetRecord":
        known = {item.name for item in fields(cls)}
        values = {key: value for key, value in payload.items() if key in known}
        values["price_ranges"] = {
            name: PriceRange(**bounds)
            for name, bounds in (payload.get("price_ranges") or {}).items()
            if isinstance(bounds, dict)
        }
        values["all_prices"] = [
            PricePoint(date=str(point.get("date", "")), price=float(point.get("price", 0.0)))
            for point in payload.get("all_prices") or []
            if isinstance(point, dict)
        ]
        return cls(**values)


# Sort key -> attribute holding the comparable value.
SORT_FIELDS: dict[str, str] = {
    "symbol": "symbol",
    "current_price": "raw_current_price",
    "rsi": "raw_rsi",
    "weekly_rsi": "raw_weekly_rsi",
    "monthly_rsi": "raw_monthly_rsi",
    "one_day_return": "raw_one_day_return",
    "one_week_return": "raw_one_week_return",
    "one_month_return": "raw_one_month_return",
    "three_month_return": "raw_three_month_return",
    "six_month_return": "raw_six_month_return",
    "one_year_return": "raw_one_year_return",
    "two_year_return": "raw_two_year_return",
    "two_year_nifty_return": "raw_two_year_nifty_return",
    "volatility": "raw_volatility",
    "discount": "raw_discount",
    "price_to_earning": "raw_price_to_earning",
    "nifty_price_to_earning": "raw_nifty_price_to_earning",
    "last_day_volume": "raw_last_day_volume",
    "live_price": "raw_live_price",
    "change_percent": "raw_change_percent",
    "record_date": "record_date",
}


@dataclass(slots=True)
class SortSpec:
    key: str | None = "rsi"
    direction: SortDirection = "asc"


@dataclass(slots=True)
class CacheEntry:
    key: str
    timestamp_ms: int
    data: str


@dataclass(slots=True)
class AssetResult:
    records: list[AssetRecord]
    from_cache: bool
    cache_age: int | None = None
    warning: str | None = None
    last_updated: datetime | None = None


@dataclass(slots=True)
class CacheStatus:
    has_cache: bool
    is_valid: bool
    last_fetch: datetime | None = None
    cache_age: int | None = None
    item_count: int = 0


__all__ = [
    "AssetRecord",
    "AssetResult",
    "CacheEntry",
    "CacheStatus",
    "FetchStatus",
    "LivePrice",
    "PriceHistory",
    "PricePoint",
    "PriceRange",
    "SORT_FIELDS",
    "SortDirection",
    "SortSpec",
]

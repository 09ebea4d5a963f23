from __future__ import annotations

import math
from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


def _coerce_number(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, str):
        value = value.strip().rstrip("%")
        if not value:
            return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if math.isnan(number) or math.isinf(number):
        return None
    return number


class _Payload(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)


# Chart endpoint: {"chart": {"result": [{"meta": ..., "timestamp": [...], "indicators": {"quote": [{"close": [...]}]}}]}}


class ChartQuote(_Payload):
    close: Optional[List[Optional[float]]] = None

    @field_validator("close", mode="before")
    @classmethod
    def _clean_closes(cls, value: Any) -> Any:
        if not isinstance(value, list):
            return None
        return [_coerce_number(item) for item in value]


class ChartIndicators(_Payload):
    quote: Optional[List[Optional[ChartQuote]]] = None


class ChartMeta(_Payload):
    fifty_two_week_high: Optional[float] = Field(None, alias="fiftyTwoWeekHigh")
    regular_market_price: Optional[float] = Field(None, alias="regularMarketPrice")

    @field_validator("fifty_two_week_high", "regular_market_price", mode="before")
    @classmethod
    def _numbers(cls, value: Any) -> Optional[float]:
        return _coerce_number(value)


class ChartResult(_Payload):
    meta: Optional[ChartMeta] = None
    timestamp: Optional[List[Optional[int]]] = None
    indicators: Optional[ChartIndicators] = None

    @field_validator("timestamp", mode="before")
    @classmethod
    def _clean_timestamps(cls, value: Any) -> Any:
        if not isinstance(value, list):
            return None
        cleaned: list[int | None] = []
        for item in value:
            number = _coerce_number(item)
            cleaned.append(int(number) if number is not None else None)
        return cleaned

    def closes(self) -> list[float | None] | None:
        if self.indicators is None or not self.indicators.quote:
            return None
        quote = self.indicators.quote[0]
        if quote is None:
            return None
        return quote.close


class ChartBody(_Payload):
    result: Optional[List[Optional[ChartResult]]] = None
    error: Any = None


class ChartResponse(_Payload):
    chart: Optional[ChartBody] = None

    def first_result(self) -> ChartResult | None:
        if self.chart is None or not self.chart.result:
            return None
        return self.chart.result[0]


# Summary endpoint: a list of {"symbol": ..., "details": {...}} blocks.


class RangeBounds(_Payload):
    min: Optional[float] = None
    max: Optional[float] = None
    current: Optional[float] = None

    @field_validator("min", "max", "current", mode="before")
    @classmethod
    def _numbers(cls, value: Any) -> Optional[float]:
        return _coerce_number(value)


class PriceRanges(_Payload):
    weekly: Optional[RangeBounds] = Field(None, alias="weeklyRange")
    monthly: Optional[RangeBounds] = Field(None, alias="monthlyRange")
    yearly: Optional[RangeBounds] = Field(None, alias="yearlyRange")
    two_year: Optional[RangeBounds] = Field(None, alias="2yearlyRange")


class SummaryDetails(_Payload):
    record_date: Optional[str] = Field(None, alias="recordDate")
    last_close_price: Optional[float] = Field(None, alias="lastClosePrice")
    last_day_volume: Optional[float] = Field(None, alias="lastDayVolume")
    down_from_two_year_high: Optional[float] = Field(None, alias="downFrom2YearHigh")
    daily_rsi: Optional[float] = Field(None, alias="dailyRSI")
    weekly_rsi: Optional[float] = Field(None, alias="weeklyRSI")
    monthly_rsi: Optional[float] = Field(None, alias="monthlyRSI")
    one_week_returns: Optional[float] = Field(None, alias="1weekReturns")
    one_month_returns: Optional[float] = Field(None, alias="1monthReturns")
    one_year_returns: Optional[float] = Field(None, alias="1yearReturns")
    two_year_returns: Optional[float] = Field(None, alias="2yearReturns")
    two_year_nifty_returns: Optional[float] = Field(None, alias="2yNiftyReturns")
    price_to_earning: Optional[float] = Field(None, alias="priceToEarning")
    nifty_price_to_earning: Optional[float] = Field(None, alias="niftyPriceToEarning")
    price_range: Optional[PriceRanges] = Field(None, alias="priceRange")

    @field_validator(
        "last_close_price",
        "last_day_volume",
        "down_from_two_year_high",
        "daily_rsi",
        "weekly_rsi",
        "monthly_rsi",
        "one_week_returns",
        "one_month_returns",
        "one_year_returns",
        "two_year_returns",
        "two_year_nifty_returns",
        "price_to_earning",
        "nifty_price_to_earning",
        mode="before",
    )
    @classmethod
    def _numbers(cls, value: Any) -> Optional[float]:
        return _coerce_number(value)

    @field_validator("record_date", mode="before")
    @classmethod
    def _date_text(cls, value: Any) -> Optional[str]:
        if value is None or value == "":
            return None
        return str(value)

    @field_validator("price_range", mode="before")
    @classmethod
    def _range_object(cls, value: Any) -> Any:
        return value if isinstance(value, dict) else None


class SummaryBlock(_Payload):
    symbol: str
    details: SummaryDetails = Field(default_factory=SummaryDetails)

    @field_validator("symbol")
    @classmethod
    def validate_symbol(cls, value: str) -> str:
        if not value or not value.strip():
            raise ValueError("symbol must be non-empty")
        return value.strip().upper()

    @field_validator("details", mode="before")
    @classmethod
    def _details_object(cls, value: Any) -> Any:
        return value if isinstance(value, dict) else {}


class LivePricePayload(_Payload):
    key: str
    current_price: Optional[float] = Field(None, alias="currentPrice")
    change_percent: Optional[float] = Field(None, alias="changePercent")
    previous_close: Optional[float] = Field(None, alias="previousClose")
    volume: Optional[float] = None
    last_updated: Optional[str] = Field(None, alias="lastUpdated")

    @field_validator("current_price", "change_percent", "previous_close", "volume", mode="before")
    @classmethod
    def _numbers(cls, value: Any) -> Optional[float]:
        return _coerce_number(value)


__all__ = [
    "ChartResponse",
    "ChartResult",
    "LivePricePayload",
    "PriceRanges",
    "RangeBounds",
    "SummaryBlock",
    "SummaryDetails",
]

from __future__ import annotations

import json
from dataclasses import replace
from datetime import datetime, timezone
from typing import Iterable, Sequence

from ..formatting import format_number, format_percentage, format_price, format_return
from ..indicators import IndicatorCalculations, compute_discount
from ..models import AssetRecord, LivePrice, PriceHistory, PricePoint, PriceRange
from ..providers.schemas import RangeBounds, SummaryBlock

_RANGE_NAMES = ("weekly", "monthly", "yearly", "two_year")


def unavailable_record(symbol: str) -> AssetRecord:
    return AssetRecord(symbol=symbol)


def _iso_date(epoch_seconds: int) -> str:
    return datetime.fromtimestamp(epoch_seconds, tz=timezone.utc).date().isoformat()


def _format_volume(value: float | None) -> str:
    if value is None:
        return format_number(None)
    return f"{value:.0f}"


def record_from_price_history(
    history: PriceHistory,
    calculations: IndicatorCalculations | None = None,
) -> AssetRecord:
    if history.is_empty:
        return unavailable_record(history.symbol)

    calc = calculations or IndicatorCalculations()
    rsi = calc.rsi(history.closing_prices)
    volatility = calc.volatility(history.all_prices)
    discount = compute_discount(history.fifty_two_week_high, history.current_price)

    if history.timestamps and len(history.timestamps) == len(history.all_prices):
        points = [
            PricePoint(date=_iso_date(ts), price=price)
            for ts, price in zip(history.timestamps, history.all_prices)
        ]
        record_date = points[-1].date
    else:
        points = [PricePoint(date="", price=price) for price in history.all_prices]
        record_date = format_number(None)

    yearly = PriceRange(
        min=min(history.all_prices),
        max=max(history.all_prices),
        current=history.current_price,
    )

    return AssetRecord(
        symbol=history.symbol,
        record_date=record_date,
        current_price=format_price(history.current_price),
        rsi=format_number(rsi),
        one_day_return=format_return(history.one_day_return),
        one_week_return=format_return(history.one_week_return),
        one_month_return=format_return(history.one_month_return),
        three_month_return=format_return(history.three_month_return),
        six_month_return=format_return(history.six_month_return),
        volatility=format_percentage(volatility),
        discount=format_percentage(discount),
        raw_current_price=history.current_price,
        raw_rsi=rsi,
        raw_one_day_return=history.one_day_return,
        raw_one_week_return=history.one_week_return,
        raw_one_month_return=history.one_month_return,
        raw_three_month_return=history.three_month_return,
        raw_six_month_return=history.six_month_return,
        raw_volatility=volatility,
        raw_discount=discount,
        fifty_two_week_high=history.fifty_two_week_high,
        price_ranges={"yearly": yearly},
        all_prices=points,
    )


def _price_range(bounds: RangeBounds | None) -> PriceRange | None:
    if bounds is None:
        return None
    return PriceRange(min=bounds.min, max=bounds.max, current=bounds.current)


def record_from_summary(block: SummaryBlock) -> AssetRecord:
    details = block.details
    discount = details.down_from_two_year_high
    if discount is not None:
        discount = max(0.0, discount)

    ranges: dict[str, PriceRange] = {}
    if details.price_range is not None:
        for name in _RANGE_NAMES:
            bounds = _price_range(getattr(details.price_range, name))
            if bounds is not None:
                ranges[name] = bounds
    yearly = ranges.get("yearly")
    fifty_two_week_high = yearly.max if yearly and yearly.max and yearly.max > 0 else None

    points: list[PricePoint] = []
    if details.last_close_price is not None:
        points.append(
            PricePoint(
                date=details.record_date or datetime.now(timezone.utc).isoformat(),
                price=details.last_close_price,
            )
        )

    return AssetRecord(
        symbol=block.symbol,
        record_date=details.record_date or format_number(None),
        current_price=format_price(details.last_close_price),
        rsi=format_number(details.daily_rsi),
        weekly_rsi=format_number(details.weekly_rsi),
        monthly_rsi=format_number(details.monthly_rsi),
        one_week_return=format_return(details.one_week_returns),
        one_month_return=format_return(details.one_month_returns),
        one_year_return=format_return(details.one_year_returns),
        two_year_return=format_return(details.two_year_returns),
        two_year_nifty_return=format_return(details.two_year_nifty_returns),
        discount=format_percentage(discount),
        price_to_earning=format_number(details.price_to_earning),
        nifty_price_to_earning=format_number(details.nifty_price_to_earning),
        last_day_volume=_format_volume(details.last_day_volume),
        raw_current_price=details.last_close_price,
        raw_rsi=details.daily_rsi,
        raw_weekly_rsi=details.weekly_rsi,
        raw_monthly_rsi=details.monthly_rsi,
        raw_one_week_return=details.one_week_returns,
        raw_one_month_return=details.one_month_returns,
        raw_one_year_return=details.one_year_returns,
        raw_two_year_return=details.two_year_returns,
        raw_two_year_nifty_return=details.two_year_nifty_returns,
        raw_discount=discount,
        raw_price_to_earning=details.price_to_earning,
        raw_nifty_price_to_earning=details.nifty_price_to_earning,
        raw_last_day_volume=details.last_day_volume,
        fifty_two_week_high=fifty_two_week_high,
        price_ranges=ranges,
        all_prices=points,
    )


def apply_live_price(record: AssetRecord, live: LivePrice | None) -> AssetRecord:
    if live is None:
        return record
    return replace(
        record,
        live_price=live.live_price,
        change_percent=live.change_percent,
        raw_live_price=live.raw_live_price,
        raw_change_percent=live.raw_change_percent,
    )


def records_to_json(records: Iterable[AssetRecord]) -> str:
    return json.dumps([record.to_dict() for record in records])


def records_from_json(data: str) -> list[AssetRecord]:
    payload = json.loads(data)
    if not isinstance(payload, list):
        raise ValueError("Cached collection is not a JSON array")
    try:
        return [AssetRecord.from_dict(item) for item in payload if isinstance(item, dict)]
    except (TypeError, ValueError) as exc:
        raise ValueError(f"Malformed cached record: {exc}") from exc


def record_from_json(data: str) -> AssetRecord:
    payload = json.loads(data)
    if not isinstance(payload, dict) or "symbol" not in payload:
        raise ValueError("Cached record is missing a symbol")
    try:
        return AssetRecord.from_dict(payload)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"Malformed cached record: {exc}") from exc


def align_to_symbols(records: Sequence[AssetRecord], symbols: Sequence[str]) -> list[AssetRecord]:
    """Re-sequence records to ``symbols`` order, filling gaps with unavailable records."""
    by_symbol = {record.symbol: record for record in records}
    return [by_symbol.get(symbol) or unavailable_record(symbol) for symbol in symbols]


__all__ = [
    "align_to_symbols",
    "apply_live_price",
    "record_from_json",
    "record_from_price_history",
    "record_from_summary",
    "records_from_json",
    "records_to_json",
    "unavailable_record",
]

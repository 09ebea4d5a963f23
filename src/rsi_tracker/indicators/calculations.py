from __future__ import annotations

from math import sqrt
from typing import Iterable

import numpy as np
import pandas as pd

UNAVAILABLE = "N/A"

# Stand-in denominator when the average loss is exactly zero. RSI therefore
# tops out just below 100 (100 - 100 / (1 + avg_gain / 0.001)) instead of 100.
RSI_ZERO_LOSS_EPSILON = 0.001
TRADING_DAYS_PER_YEAR = 252


def _to_series(values: Iterable[float | None]) -> pd.Series:
    return pd.Series(list(values), dtype="float64").dropna().reset_index(drop=True)


def _rsi_point(avg_gain: float, avg_loss: float) -> float:
    rs = avg_gain / (avg_loss if avg_loss != 0 else RSI_ZERO_LOSS_EPSILON)
    return float(100 - (100 / (1 + rs)))


def compute_rsi(closing_prices: Iterable[float | None], period: int = 14) -> list[float]:
    """Wilder-smoothed RSI series.

    The first point is seeded with simple means of the first ``period`` gains
    and losses; every later point applies ``(avg * (period - 1) + current) / period``.
    Returns one value per difference from index ``period - 1`` onward, so the
    result has ``len(closing_prices) - period`` points, or is empty when there
    are fewer than ``period + 1`` prices.
    """
    closes = _to_series(closing_prices)
    if period <= 0 or len(closes) < period + 1:
        return []

    deltas = closes.diff().iloc[1:].to_numpy()
    gains = np.clip(deltas, 0.0, None)
    losses = np.abs(np.clip(deltas, None, 0.0))

    avg_gain = float(gains[:period].mean())
    avg_loss = float(losses[:period].mean())
    values = [_rsi_point(avg_gain, avg_loss)]
    for gain, loss in zip(gains[period:], losses[period:]):
        avg_gain = (avg_gain * (period - 1) + float(gain)) / period
        avg_loss = (avg_loss * (period - 1) + float(loss)) / period
        values.append(_rsi_point(avg_gain, avg_loss))
    return values


def latest_rsi(closing_prices: Iterable[float | None], period: int = 14) -> float | None:
    values = compute_rsi(closing_prices, period)
    if not values:
        return None
    return round(values[-1], 2)


def compute_volatility_value(prices: Iterable[float | None]) -> float | None:
    """Annualised volatility of simple daily returns, in percent."""
    series = _to_series(prices)
    if len(series) < 2:
        return None
    previous = series.iloc[:-1].to_numpy()
    if np.any(previous == 0):
        return None
    returns = np.diff(series.to_numpy()) / previous
    variance = float(np.mean((returns - returns.mean()) ** 2))
    return sqrt(variance) * sqrt(TRADING_DAYS_PER_YEAR) * 100


def compute_volatility(prices: Iterable[float | None]) -> str:
    value = compute_volatility_value(prices)
    if value is None:
        return UNAVAILABLE
    return f"{value:.2f}%"


def period_return(prices: Iterable[float | None], offset: int) -> float | None:
    """Percent change between the latest price and the one ``offset`` sessions earlier."""
    series = _to_series(prices)
    if offset <= 0 or len(series) <= offset:
        return None
    current = float(series.iloc[-1])
    prior = float(series.iloc[-1 - offset])
    if prior == 0:
        return None
    return (current - prior) / prior * 100


def compute_discount(high: float | None, current: float | None) -> float | None:
    """Percent below the high-water mark, floored at zero.

    A stale high lower than the current price is replaced by the current price.
    """
    if high is None or current is None:
        return None
    if high <= 0 or current <= 0:
        return None
    reference = max(high, current)
    discount = (reference - current) / reference * 100
    if np.isnan(discount):
        return None
    return max(0.0, float(discount))


def price_range_position(minimum: float, maximum: float, current: float) -> float:
    if maximum == minimum:
        return 50.0
    return (current - minimum) / (maximum - minimum) * 100


class IndicatorCalculations:
    rsi_period: int = 14

    def __init__(self, rsi_period: int | None = None) -> None:
        if rsi_period:
            self.rsi_period = rsi_period

    def rsi_series(self, closes: Iterable[float | None]) -> list[float]:
        return compute_rsi(closes, self.rsi_period)

    def rsi(self, closes: Iterable[float | None]) -> float | None:
        return latest_rsi(closes, self.rsi_period)

    def volatility(self, prices: Iterable[float | None]) -> float | None:
        return compute_volatility_value(prices)

    def discount(self, high: float | None, current: float | None) -> float | None:
        return compute_discount(high, current)


__all__ = [
    "IndicatorCalculations",
    "RSI_ZERO_LOSS_EPSILON",
    "UNAVAILABLE",
    "compute_discount",
    "compute_rsi",
    "compute_volatility",
    "compute_volatility_value",
    "latest_rsi",
    "period_return",
    "price_range_position",
]

from __future__ import annotations

import pytest

from rsi_tracker.formatting import format_percentage, format_return
from rsi_tracker.indicators import (
    RSI_ZERO_LOSS_EPSILON,
    UNAVAILABLE,
    IndicatorCalculations,
    compute_discount,
    compute_rsi,
    compute_volatility,
    compute_volatility_value,
    latest_rsi,
    period_return,
    price_range_position,
)


def test_rsi_requires_period_plus_one_prices() -> None:
    for length in range(0, 15):
        assert compute_rsi([100.0 + i for i in range(length)]) == []


def test_rsi_monotonic_increase_saturates_near_100() -> None:
    closes = [float(value) for value in range(1, 16)]

    values = compute_rsi(closes)

    assert len(values) == 1
    # avg gain 1.0 over a zero-loss epsilon
    expected = 100 - 100 / (1 + 1.0 / RSI_ZERO_LOSS_EPSILON)
    assert values[0] == pytest.approx(expected)
    assert values[0] == pytest.approx(100.0, abs=0.1)


def test_rsi_series_length_and_bounds() -> None:
    closes = [
        44.34, 44.09, 44.15, 43.61, 44.33, 44.83, 45.10, 45.42, 45.84, 46.08,
        45.89, 46.03, 45.61, 46.28, 46.28, 46.00, 46.03, 46.41, 46.22, 45.64,
    ]

    values = compute_rsi(closes)

    assert len(values) == len(closes) - 14
    assert all(0.0 <= value <= 100.0 for value in values)
    # Classic Wilder worked example
    assert values[0] == pytest.approx(70.46, abs=0.05)


def test_rsi_ignores_missing_closes() -> None:
    closes: list[float | None] = [float(value) for value in range(1, 16)]
    closes.insert(3, None)
    assert len(compute_rsi(closes)) == 1


def test_latest_rsi_rounds_or_returns_none() -> None:
    assert latest_rsi([1.0, 2.0]) is None
    assert latest_rsi([float(value) for value in range(1, 16)]) == pytest.approx(99.9, abs=0.01)


def test_volatility_unavailable_for_short_series() -> None:
    assert compute_volatility([]) == UNAVAILABLE
    assert compute_volatility([101.5]) == UNAVAILABLE
    assert compute_volatility_value([101.5]) is None


def test_volatility_constant_returns_is_zero() -> None:
    # 10% every day: no dispersion of returns
    prices = [100.0, 110.0, 121.0, 133.1]
    assert compute_volatility(prices) == "0.00%"


def test_volatility_is_annualised_population_stddev() -> None:
    prices = [100.0, 102.0, 100.98]
    # returns 0.02 and -0.01; population stddev 0.015
    expected = 0.015 * (252 ** 0.5) * 100
    assert compute_volatility_value(prices) == pytest.approx(expected)
    assert compute_volatility(prices) == f"{expected:.2f}%"


def test_volatility_zero_price_is_unavailable() -> None:
    assert compute_volatility([0.0, 10.0, 11.0]) == UNAVAILABLE


def test_period_return_offsets() -> None:
    prices = [100.0, 105.0, 110.0]
    assert period_return(prices, 1) == pytest.approx((110 - 105) / 105 * 100)
    assert period_return(prices, 2) == pytest.approx(10.0)
    assert period_return(prices, 3) is None
    assert period_return([0.0, 5.0], 1) is None


def test_discount_clamps_when_price_exceeds_stale_high() -> None:
    discount = compute_discount(100.0, 120.0)
    assert discount == 0.0
    assert format_percentage(discount) == "0.00%"


def test_discount_below_high() -> None:
    assert compute_discount(200.0, 150.0) == pytest.approx(25.0)


@pytest.mark.parametrize("high,current", [(None, 10.0), (10.0, None), (0.0, 10.0), (10.0, 0.0)])
def test_discount_unavailable_inputs(high, current) -> None:
    assert compute_discount(high, current) is None
    assert format_percentage(compute_discount(high, current)) == UNAVAILABLE


def test_price_range_position() -> None:
    assert price_range_position(10.0, 10.0, 10.0) == 50.0
    assert price_range_position(10.0, 20.0, 15.0) == pytest.approx(50.0)
    assert price_range_position(10.0, 20.0, 20.0) == pytest.approx(100.0)


def test_format_return_sign() -> None:
    assert format_return(3.123) == "+3.12%"
    assert format_return(-1.0) == "-1.00%"
    assert format_return(0.0) == "0.00%"
    assert format_return(None) == UNAVAILABLE


def test_indicator_calculations_uses_configured_period() -> None:
    calc = IndicatorCalculations(rsi_period=5)
    closes = [10.0, 11.0, 10.5, 11.5, 12.0, 11.0, 12.5]

    assert len(calc.rsi_series(closes)) == len(closes) - 5
    assert calc.rsi(closes) is not None
    assert calc.discount(10.0, 12.0) == 0.0

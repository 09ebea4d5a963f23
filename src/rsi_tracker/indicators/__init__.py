from .calculations import (
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

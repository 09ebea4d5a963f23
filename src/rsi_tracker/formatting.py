from __future__ import annotations

from .indicators import UNAVAILABLE


def format_number(value: float | None) -> str:
    if value is None:
        return UNAVAILABLE
    return f"{value:.2f}"


def format_price(value: float | None) -> str:
    return format_number(value)


def format_percentage(value: float | None) -> str:
    if value is None:
        return UNAVAILABLE
    return f"{value:.2f}%"


def format_return(value: float | None) -> str:
    """Signed percentage, e.g. ``+3.12%``; zero and negatives carry no plus sign."""
    if value is None:
        return UNAVAILABLE
    sign = "+" if value > 0 else ""
    return f"{sign}{value:.2f}%"


__all__ = [
    "format_number",
    "format_percentage",
    "format_price",
    "format_return",
]

from __future__ import annotations

from functools import lru_cache
from typing import Literal

from pydantic import Field

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="RSI_TRACKER_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="allow",
    )

    service_name: str = "rsi-tracker-service"
    service_port: int = 8086
    log_level: Literal["debug", "info", "warning", "error", "critical"] = "info"
    log_dir: str | None = "logs"

    # Remote providers
    chart_base_url: str = "https://query1.finance.yahoo.com/v8/finance/chart"
    chart_range: str = "1y"
    chart_interval: str = "1d"
    chart_timeout_seconds: float = 30.0
    summary_url: str = "https://etf-screener-backend-production.up.railway.app/api/summary"
    fetch_timeout_seconds: float = 8.0
    live_prices_url: str = "https://etf-screener-backend-production.up.railway.app/api/prices"
    live_prices_enabled: bool = False
    live_price_timeout_seconds: float = 10.0
    reachability_url: str = "https://httpbin.org/status/200"
    reachability_timeout_seconds: float = 5.0
    user_agent: str = "rsi-tracker-service/0.1"

    # Persistent cache
    cache_backend: Literal["postgres", "redis"] = "postgres"
    db_url: str | None = None
    redis_url: str | None = None
    cache_table: str = "cached_assets"
    redis_key_prefix: str = "rsi_tracker:cache"

    # Collection
    fetch_flow: Literal["batch", "per_symbol"] = "batch"
    default_symbols: list[str] = Field(
        default_factory=lambda: [
            "NIFTYBEES.NS",
            "BANKBEES.NS",
            "GOLDBEES.NS",
            "JUNIORBEES.NS",
            "ITBEES.NS",
        ]
    )
    domestic_suffix: str = ".NS"
    default_sort_key: str | None = "rsi"
    default_sort_direction: Literal["asc", "desc"] = "asc"
    rsi_period: int = 14

    # Background refresh
    scheduler_enabled: bool = False
    refresh_interval_minutes: float = 60.0

    cors_allow_origins: list[str] = Field(
        default_factory=lambda: [
            "http://localhost:8081",
            "http://localhost:19006",
        ]
    )


@lru_cache
def get_settings() -> Settings:
    return Settings()


__all__ = ["Settings", "get_settings"]

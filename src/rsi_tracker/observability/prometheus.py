from __future__ import annotations

from typing import Literal

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Histogram,
    generate_latest,
)

PROMETHEUS_CONTENT_TYPE = CONTENT_TYPE_LATEST

CacheOutcome = Literal["hit", "miss", "stale_fallback", "error"]
FetchFlow = Literal["batch", "per_symbol", "live_prices"]
FetchOutcome = Literal["success", "failure", "unreachable"]


def _build_registry() -> tuple[CollectorRegistry, Counter, Counter, Histogram, Counter]:
    registry = CollectorRegistry()
    cache_counter = Counter(
        "asset_cache_lookups_total",
        "Cache lookups grouped by outcome",
        labelnames=("outcome",),
        registry=registry,
    )
    fetch_counter = Counter(
        "asset_remote_fetches_total",
        "Remote data fetches grouped by flow and outcome",
        labelnames=("flow", "outcome"),
        registry=registry,
    )
    fetch_latency = Histogram(
        "asset_remote_fetch_seconds",
        "Latency of remote data fetches",
        labelnames=("flow",),
        buckets=(
            0.1,
            0.25,
            0.5,
            1.0,
            2.5,
            5.0,
            10.0,
            30.0,
        ),
        registry=registry,
    )
    store_failures = Counter(
        "asset_cache_store_failures_total",
        "Persistent cache store failures grouped by operation",
        labelnames=("operation",),
        registry=registry,
    )
    return registry, cache_counter, fetch_counter, fetch_latency, store_failures


_registry, _cache_counter, _fetch_counter, _fetch_latency, _store_failures = _build_registry()


def record_cache_lookup(outcome: CacheOutcome) -> None:
    _cache_counter.labels(outcome=outcome).inc()


def record_remote_fetch(flow: FetchFlow, outcome: FetchOutcome, latency_seconds: float | None = None) -> None:
    _fetch_counter.labels(flow=flow, outcome=outcome).inc()
    if latency_seconds is not None and latency_seconds >= 0:
        _fetch_latency.labels(flow=flow).observe(latency_seconds)


def record_store_failure(operation: str) -> None:
    _store_failures.labels(operation=operation).inc()


def generate_prometheus_metrics() -> bytes:
    return generate_latest(_registry)


def reset_prometheus_metrics() -> None:
    global _registry, _cache_counter, _fetch_counter, _fetch_latency, _store_failures
    _registry, _cache_counter, _fetch_counter, _fetch_latency, _store_failures = _build_registry()

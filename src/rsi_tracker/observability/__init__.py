"""
Observability helpers (metrics for cache and provider activity).
"""

from .prometheus import (
    PROMETHEUS_CONTENT_TYPE,
    generate_prometheus_metrics,
    record_cache_lookup,
    record_remote_fetch,
    record_store_failure,
    reset_prometheus_metrics,
)

__all__ = [
    "PROMETHEUS_CONTENT_TYPE",
    "generate_prometheus_metrics",
    "record_cache_lookup",
    "record_remote_fetch",
    "record_store_failure",
    "reset_prometheus_metrics",
]

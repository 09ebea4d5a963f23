from .offline_data import (
    PERSIST_WARNING,
    AssetFetchError,
    AssetServiceError,
    NoNetworkNoCacheError,
    OfflineDataService,
    cache_age_hours,
    is_same_calendar_day,
)
from .records import (
    align_to_symbols,
    apply_live_price,
    record_from_price_history,
    record_from_summary,
    unavailable_record,
)

__all__ = [
    "PERSIST_WARNING",
    "AssetFetchError",
    "AssetServiceError",
    "NoNetworkNoCacheError",
    "OfflineDataService",
    "align_to_symbols",
    "apply_live_price",
    "cache_age_hours",
    "is_same_calendar_day",
    "record_from_price_history",
    "record_from_summary",
    "unavailable_record",
]

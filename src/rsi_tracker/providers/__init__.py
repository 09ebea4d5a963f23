from .chart import ChartProviderConfig, PriceHistoryGateway
from .schemas import ChartResponse, SummaryBlock, SummaryDetails
from .summary import SummaryGateway, SummaryProviderConfig, SummaryProviderError

__all__ = [
    "ChartProviderConfig",
    "ChartResponse",
    "PriceHistoryGateway",
    "SummaryBlock",
    "SummaryDetails",
    "SummaryGateway",
    "SummaryProviderConfig",
    "SummaryProviderError",
]

from __future__ import annotations

import logging
from dataclasses import dataclass

import httpx

from ..config import Settings, get_settings
from ..indicators import period_return
from ..models import PriceHistory
from .schemas import ChartResponse

# Trading sessions back from the latest close for each period return.
RETURN_OFFSETS: dict[str, int] = {
    "one_day_return": 1,
    "one_week_return": 5,
    "one_month_return": 21,
    "three_month_return": 63,
    "six_month_return": 126,
}
CLOSING_WINDOW = 30


@dataclass(slots=True)
class ChartProviderConfig:
    base_url: str
    range: str = "1y"
    interval: str = "1d"
    timeout_seconds: float = 30.0
    user_agent: str = "rsi-tracker-service/0.1"

    @classmethod
    def from_settings(cls, settings: Settings) -> "ChartProviderConfig":
        return cls(
            base_url=settings.chart_base_url.rstrip("/"),
            range=settings.chart_range,
            interval=settings.chart_interval,
            timeout_seconds=settings.chart_timeout_seconds,
            user_agent=settings.user_agent,
        )


class PriceHistoryGateway:
    """
    Fetches one year of daily closes per symbol and normalizes them into a PriceHistory.

    Never raises for transport, status or payload problems: callers always get a
    well-shaped object, empty when nothing usable came back.
    """

    def __init__(
        self,
        config: ChartProviderConfig | None = None,
        client: httpx.AsyncClient | None = None,
        *,
        settings: Settings | None = None,
    ) -> None:
        self._config = config or ChartProviderConfig.from_settings(settings or get_settings())
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            timeout=self._config.timeout_seconds,
            headers={"User-Agent": self._config.user_agent},
        )
        self._logger = logging.getLogger("rsi_tracker.providers.chart")

    async def fetch_price_series(self, symbol: str) -> PriceHistory:
        url = f"{self._config.base_url}/{symbol}"
        params = {"range": self._config.range, "interval": self._config.interval}
        try:
            response = await self._client.get(url, params=params, timeout=self._config.timeout_seconds)
            if response.status_code >= 400:
                self._logger.warning("Chart request for %s failed with status %s", symbol, response.status_code)
                return PriceHistory.empty(symbol)
            payload = ChartResponse.model_validate(response.json())
        except httpx.HTTPError as exc:
            self._logger.warning("Chart request for %s failed: %s", symbol, exc)
            return PriceHistory.empty(symbol)
        except ValueError as exc:
            self._logger.warning("Unparseable chart payload for %s: %s", symbol, exc)
            return PriceHistory.empty(symbol)
        return self.normalize(symbol, payload)

    def normalize(self, symbol: str, payload: ChartResponse) -> PriceHistory:
        result = payload.first_result()
        closes = result.closes() if result is not None else None
        if closes is None:
            self._logger.warning("Invalid data structure for %s", symbol)
            return PriceHistory.empty(symbol)

        timestamps = result.timestamp or []
        valid_prices: list[float] = []
        valid_timestamps: list[int] = []
        for index, close in enumerate(closes):
            if close is None:
                continue
            valid_prices.append(close)
            if index < len(timestamps) and timestamps[index] is not None:
                valid_timestamps.append(timestamps[index])
        if not valid_prices:
            return PriceHistory.empty(symbol)

        current_price = valid_prices[-1]
        meta_high = result.meta.fifty_two_week_high if result.meta is not None else None
        returns = {name: period_return(valid_prices, offset) for name, offset in RETURN_OFFSETS.items()}

        return PriceHistory(
            symbol=symbol,
            closing_prices=valid_prices[-CLOSING_WINDOW:],
            all_prices=valid_prices,
            timestamps=valid_timestamps if len(valid_timestamps) == len(valid_prices) else [],
            current_price=current_price,
            fifty_two_week_high=self._resolve_high(symbol, meta_high, valid_prices, current_price),
            **returns,
        )

    def _resolve_high(
        self,
        symbol: str,
        meta_high: float | None,
        prices: list[float],
        current_price: float,
    ) -> float | None:
        high = meta_high if meta_high and meta_high > 0 else None
        if high is None and prices:
            self._logger.debug("Calculating 52-week high for %s from historical data", symbol)
            high = max(prices)
        if high is not None and high <= 0:
            high = None
        if high is None and current_price > 0:
            self._logger.debug("Using current price as 52-week high for %s", symbol)
            high = current_price
        return high

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()


__all__ = ["ChartProviderConfig", "PriceHistoryGateway", "RETURN_OFFSETS"]

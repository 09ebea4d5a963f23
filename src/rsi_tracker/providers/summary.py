from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

import httpx
from pydantic import ValidationError

from ..config import Settings, get_settings
from ..formatting import format_percentage, format_price
from ..models import LivePrice
from .schemas import LivePricePayload, SummaryBlock


class SummaryProviderError(RuntimeError):
    """Raised when the batch summary or live price endpoint cannot be used."""


@dataclass(slots=True)
class SummaryProviderConfig:
    summary_url: str
    live_prices_url: str | None = None
    timeout_seconds: float = 8.0
    live_price_timeout_seconds: float = 10.0
    user_agent: str = "rsi-tracker-service/0.1"

    @classmethod
    def from_settings(cls, settings: Settings) -> "SummaryProviderConfig":
        return cls(
            summary_url=settings.summary_url,
            live_prices_url=settings.live_prices_url,
            timeout_seconds=settings.fetch_timeout_seconds,
            live_price_timeout_seconds=settings.live_price_timeout_seconds,
            user_agent=settings.user_agent,
        )


class SummaryGateway:
    """
    Client for the aggregate summary endpoint (all instruments in one call).

    Unlike the chart gateway this one fails loudly: the batch is all-or-nothing
    and the fallback policy belongs to the caller.
    """

    def __init__(
        self,
        config: SummaryProviderConfig | None = None,
        client: httpx.AsyncClient | None = None,
        *,
        settings: Settings | None = None,
    ) -> None:
        self._config = config or SummaryProviderConfig.from_settings(settings or get_settings())
        if not self._config.summary_url:
            raise SummaryProviderError("Summary provider URL not configured")
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            timeout=self._config.timeout_seconds,
            headers={"User-Agent": self._config.user_agent, "Accept": "application/json"},
        )
        self._logger = logging.getLogger("rsi_tracker.providers.summary")

    async def fetch_batch_summary(self) -> list[SummaryBlock]:
        payload = await self._get_json(self._config.summary_url, self._config.timeout_seconds, "summary")
        if not isinstance(payload, list):
            raise SummaryProviderError("Summary response is not a JSON array")

        blocks: list[SummaryBlock] = []
        for index, item in enumerate(payload):
            try:
                blocks.append(SummaryBlock.model_validate(item))
            except ValidationError as exc:
                self._logger.warning("Skipping malformed summary block at index %s: %s", index, exc)
        self._logger.info("Fetched %s summary blocks", len(blocks))
        return blocks

    async def fetch_live_prices(self) -> dict[str, LivePrice]:
        if not self._config.live_prices_url:
            raise SummaryProviderError("Live price URL not configured")
        payload = await self._get_json(
            self._config.live_prices_url,
            self._config.live_price_timeout_seconds,
            "live prices",
        )
        if not isinstance(payload, list):
            raise SummaryProviderError("Live price response is not a JSON array")

        prices: dict[str, LivePrice] = {}
        for index, item in enumerate(payload):
            try:
                parsed = LivePricePayload.model_validate(item)
            except ValidationError:
                self._logger.warning("Invalid live price item at index %s", index)
                continue
            prices[parsed.key] = LivePrice(
                symbol=parsed.key,
                live_price=format_price(parsed.current_price),
                change_percent=format_percentage(parsed.change_percent),
                raw_live_price=parsed.current_price,
                raw_change_percent=parsed.change_percent,
            )
        self._logger.debug("Processed live prices for %s symbols", len(prices))
        return prices

    async def _get_json(self, url: str, timeout: float, label: str) -> Any:
        try:
            response = await self._client.get(url, timeout=timeout)
        except httpx.TimeoutException as exc:
            raise SummaryProviderError(f"Request timeout: {label} endpoint took too long to respond") from exc
        except httpx.HTTPError as exc:
            raise SummaryProviderError(f"Network error while fetching {label}: {exc}") from exc
        if response.status_code >= 400:
            raise SummaryProviderError(f"{label.capitalize()} request failed with status {response.status_code}")
        try:
            return response.json()
        except ValueError as exc:
            raise SummaryProviderError(f"Invalid JSON response from {label} endpoint") from exc

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()


__all__ = ["SummaryGateway", "SummaryProviderConfig", "SummaryProviderError"]

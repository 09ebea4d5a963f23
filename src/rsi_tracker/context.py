from __future__ import annotations

import logging
from dataclasses import dataclass

import httpx

from .collection import AssetCollection
from .config import Settings, get_settings
from .indicators import IndicatorCalculations
from .network import ReachabilityProbe
from .providers import PriceHistoryGateway, SummaryGateway
from .scheduler import RefreshScheduler
from .services import OfflineDataService
from .storage import CacheStore, CacheStoreError, create_cache_store


@dataclass(slots=True)
class AppContext:
    """Owns every long-lived handle of the service; built once at startup and passed down explicitly."""

    settings: Settings
    http_client: httpx.AsyncClient
    store: CacheStore
    summary_gateway: SummaryGateway
    chart_gateway: PriceHistoryGateway
    probe: ReachabilityProbe
    service: OfflineDataService
    collection: AssetCollection
    scheduler: RefreshScheduler

    @classmethod
    def create(
        cls,
        settings: Settings | None = None,
        *,
        store: CacheStore | None = None,
        http_client: httpx.AsyncClient | None = None,
    ) -> "AppContext":
        settings = settings or get_settings()
        client = http_client or httpx.AsyncClient(
            timeout=settings.fetch_timeout_seconds,
            headers={"User-Agent": settings.user_agent},
            follow_redirects=True,
        )
        store = store or create_cache_store(settings)
        summary_gateway = SummaryGateway(client=client, settings=settings)
        chart_gateway = PriceHistoryGateway(client=client, settings=settings)
        probe = ReachabilityProbe(client=client, settings=settings)
        service = OfflineDataService(
            store=store,
            summary_gateway=summary_gateway,
            chart_gateway=chart_gateway,
            probe=probe,
            calculations=IndicatorCalculations(settings.rsi_period),
        )
        collection = AssetCollection(service, summary_gateway=summary_gateway, settings=settings)
        scheduler = RefreshScheduler(collection, settings=settings)
        return cls(
            settings=settings,
            http_client=client,
            store=store,
            summary_gateway=summary_gateway,
            chart_gateway=chart_gateway,
            probe=probe,
            service=service,
            collection=collection,
            scheduler=scheduler,
        )

    async def start(self) -> None:
        logger = logging.getLogger("rsi_tracker.context")
        try:
            await self.store.init()
            logger.info("Cache store initialized (%s)", self.settings.cache_backend)
        except CacheStoreError as exc:
            logger.warning("Cache store unavailable; continuing without persistence: %s", exc)
        if self.settings.scheduler_enabled:
            await self.scheduler.start()

    async def close(self) -> None:
        await self.scheduler.stop()
        await self.store.close()
        await self.http_client.aclose()


__all__ = ["AppContext"]

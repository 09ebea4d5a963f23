from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from dataclasses import asdict, is_dataclass
from datetime import datetime
from pathlib import Path

from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware

from .api import api_router
from .config import get_settings
from .context import AppContext
from .observability import PROMETHEUS_CONTENT_TYPE, generate_prometheus_metrics


@asynccontextmanager
async def lifespan(app: FastAPI):  # pragma: no cover - exercised by the running service
    settings = get_settings()
    logger = logging.getLogger(settings.service_name)
    logger.info("Starting %s (flow=%s, cache=%s)", settings.service_name, settings.fetch_flow, settings.cache_backend)
    context = AppContext.create(settings)
    await context.start()
    app.state.context = context
    yield
    logger.info("Stopping %s", settings.service_name)
    await context.close()
    app.state.context = None
    logger.info("%s stopped successfully", settings.service_name)


settings = get_settings()

log_level = getattr(logging, settings.log_level.upper(), logging.INFO)
log_path = Path(settings.log_dir or "logs")
log_path.mkdir(parents=True, exist_ok=True)
file_handler = logging.FileHandler(log_path / "rsi_tracker.log")
file_handler.setFormatter(
    logging.Formatter("%(asctime)s %(levelname)s %(name)s %(message)s")
)
root_logger = logging.getLogger()
root_logger.setLevel(log_level)
root_logger.addHandler(file_handler)
app = FastAPI(title="RSI Tracker Service", lifespan=lifespan)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_allow_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.include_router(api_router, prefix="/api")


@app.get("/metrics")
async def prometheus_metrics() -> Response:
    payload = generate_prometheus_metrics()
    return Response(content=payload, media_type=PROMETHEUS_CONTENT_TYPE)


def _serialize_status(payload: object) -> dict[str, object]:
    if payload is None:
        return {}
    if isinstance(payload, dict):
        items = payload.items()
    elif is_dataclass(payload):
        items = asdict(payload).items()
    else:
        items = getattr(payload, "__dict__", {}).items()

    serialized: dict[str, object] = {}
    for key, value in items:
        if isinstance(value, datetime):
            serialized[key] = value.isoformat()
        else:
            serialized[key] = value
    return serialized


@app.get("/healthz")
async def healthz(request: Request) -> dict[str, object]:
    context: AppContext | None = getattr(request.app.state, "context", None)
    if context is None:
        return {"status": "starting", "store": {"alive": False}, "scheduler": {}}
    store_status = await context.store.health_check()
    overall = "ok" if store_status.get("alive") else "degraded"
    return {
        "status": overall,
        "store": {"backend": context.settings.cache_backend, **store_status},
        "scheduler": {
            "enabled": context.settings.scheduler_enabled,
            "running": context.scheduler.is_running,
            **_serialize_status(context.scheduler.status),
        },
    }

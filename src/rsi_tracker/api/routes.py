from __future__ import annotations

from dataclasses import asdict
from datetime import datetime, timezone
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Request, status
from pydantic import BaseModel, Field

from ..collection import CollectionView
from ..context import AppContext
from ..models import SortDirection
from ..services import AssetServiceError
from ..storage import CacheStoreError

router = APIRouter()


def _to_camel_case(snake_str: str) -> str:
    """Convert snake_case to camelCase."""
    components = snake_str.split("_")
    return components[0] + "".join(x.title() for x in components[1:])


def _convert_keys_to_camel(data: Any) -> Any:
    """Recursively convert dict keys from snake_case to camelCase."""
    if isinstance(data, dict):
        return {_to_camel_case(k): _convert_keys_to_camel(v) for k, v in data.items()}
    elif isinstance(data, list):
        return [_convert_keys_to_camel(item) for item in data]
    else:
        return data


def get_context(request: Request) -> AppContext:
    context = getattr(request.app.state, "context", None)
    if context is None:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Service not initialized")
    return context


def _view_payload(view: CollectionView) -> dict[str, Any]:
    return _convert_keys_to_camel(asdict(view))


class SortRequest(BaseModel):
    key: str | None = "rsi"
    direction: SortDirection = "asc"


class AddSymbolRequest(BaseModel):
    symbol: str = Field(..., min_length=1)
    load: bool = False


@router.get("/assets", summary="Load tracked assets (cache first)")
async def get_assets(context: AppContext = Depends(get_context)) -> dict:
    try:
        view = await context.collection.load()
    except AssetServiceError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    return _view_payload(view)


@router.post("/assets/refresh", summary="Force a refresh from the remote provider")
async def refresh_assets(context: AppContext = Depends(get_context)) -> dict:
    try:
        view = await context.collection.refresh()
    except AssetServiceError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    return _view_payload(view)


@router.post("/assets/sort", summary="Re-sort the current record set")
async def sort_assets(payload: SortRequest, context: AppContext = Depends(get_context)) -> dict:
    try:
        context.collection.sort(payload.key, payload.direction)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    return _view_payload(context.collection.view())


@router.get("/assets/{symbol}", summary="Detail view for one tracked asset")
async def get_asset_detail(symbol: str, context: AppContext = Depends(get_context)) -> dict:
    detail = context.collection.detail(symbol)
    if detail is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Asset {symbol} not found")
    return _convert_keys_to_camel(asdict(detail))


@router.get("/symbols", summary="List tracked symbols")
async def list_symbols(context: AppContext = Depends(get_context)) -> dict:
    return {"symbols": context.collection.symbols}


@router.post("/symbols", status_code=status.HTTP_201_CREATED, summary="Track a new symbol")
async def add_symbol(payload: AddSymbolRequest, context: AppContext = Depends(get_context)) -> dict:
    try:
        added = context.collection.add_symbol(payload.symbol)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    if not added:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Symbol already tracked")
    response: dict[str, Any] = {"symbols": context.collection.symbols}
    if payload.load:
        try:
            response["assets"] = _view_payload(await context.collection.load())
        except AssetServiceError as exc:
            raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    return response


@router.delete("/symbols/{symbol}", summary="Stop tracking a symbol")
async def remove_symbol(symbol: str, context: AppContext = Depends(get_context)) -> dict:
    if not context.collection.remove_symbol(symbol):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Symbol {symbol} is not tracked")
    return {"symbols": context.collection.symbols}


@router.get("/cache", summary="Persistent cache status")
async def cache_status(context: AppContext = Depends(get_context)) -> dict:
    return _convert_keys_to_camel(asdict(await context.service.get_cache_status()))


@router.delete("/cache", summary="Clear the persistent cache")
async def clear_cache(full: bool = False, context: AppContext = Depends(get_context)) -> dict:
    try:
        await context.service.clear_cache(full=full)
    except CacheStoreError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    return {"cleared": True, "full": full}


@router.get("/health", summary="Service health check")
async def health(context: AppContext = Depends(get_context)) -> dict:
    network = await context.probe.network_info()
    return {
        "service": context.settings.service_name,
        "status": "ok",
        "fetchFlow": context.settings.fetch_flow,
        "network": _convert_keys_to_camel(network),
        "checkedAt": datetime.now(timezone.utc).isoformat(),
    }

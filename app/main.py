"""
Usage Dashboard - data API
Usage, apps and keysets served through the hierarchical fetch cache
"""
import logging
from contextlib import asynccontextmanager
from datetime import date, timedelta
from typing import Optional, Tuple

from fastapi import Depends, FastAPI, HTTPException, Query
import requests

from app.cache import DataScope, FetchParams, PayloadCategory
from app.fetcher import FetchOptions, FetchOrchestrator, FetchResult, Session
from app.schemas import CacheMetricsSchema, FetchResponse, InvalidateResponse, ScopeSchema
from app.usage_client import UsageApiClient
from config.settings import settings

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("main")

# Version tracking
APP_VERSION = "v0.1.0"
APP_NAME = "Usage Dashboard"

# Global orchestrator instance
_orchestrator: Optional[FetchOrchestrator] = None


def get_orchestrator() -> FetchOrchestrator:
    """Get or create the process-wide orchestrator."""
    global _orchestrator
    if _orchestrator is None:
        _orchestrator = FetchOrchestrator(UsageApiClient())
    return _orchestrator


def shutdown_orchestrator() -> None:
    """Close the process-wide orchestrator, if one was created."""
    global _orchestrator
    if _orchestrator is not None:
        _orchestrator.close()
        _orchestrator = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    shutdown_orchestrator()


app = FastAPI(
    title=APP_NAME,
    description="Account, app and keyset usage with hierarchical caching",
    version=APP_VERSION,
    lifespan=lifespan,
)


def _resolve_window(start: Optional[str], end: Optional[str]) -> Tuple[str, str]:
    """Default window: default_lookback_days back to today."""
    end_date = end or date.today().isoformat()
    start_date = start or (date.today() - timedelta(days=settings.default_lookback_days)).isoformat()
    return start_date, end_date


def _build_params(start: Optional[str], end: Optional[str]) -> FetchParams:
    start_date, end_date = _resolve_window(start, end)
    try:
        return FetchParams(start_date, end_date)
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))


def _options(token: Optional[str], force: bool) -> FetchOptions:
    return FetchOptions(force=force, session=Session(token or settings.default_session_token))


async def _run_fetch(
    orchestrator: FetchOrchestrator,
    category: PayloadCategory,
    scope: DataScope,
    params: FetchParams,
    options: FetchOptions,
) -> FetchResponse:
    try:
        result: FetchResult = await orchestrator.fetch(category, scope, params, options)
    except requests.HTTPError as e:
        status = e.response.status_code if e.response is not None else 502
        logger.warning(f"Upstream {category.value} fetch failed: {e}")
        raise HTTPException(status_code=status, detail=f"Failed to fetch {category.value}")
    except requests.RequestException as e:
        logger.warning(f"Upstream {category.value} fetch failed: {e}")
        raise HTTPException(status_code=502, detail=f"Failed to fetch {category.value}")
    return FetchResponse.from_result(result)


@app.get("/health")
def health_check():
    """Health check endpoint."""
    return {"status": "ok"}


@app.get("/version")
def version_info():
    """Version information endpoint."""
    return {"name": APP_NAME, "version": APP_VERSION}


@app.get("/usage", response_model=FetchResponse)
async def usage(
    accountid: int = Query(..., description="Account id"),
    appid: Optional[int] = Query(default=None),
    keyid: Optional[int] = Query(default=None),
    start: Optional[str] = Query(default=None, description="YYYY-MM-DD"),
    end: Optional[str] = Query(default=None, description="YYYY-MM-DD"),
    token: Optional[str] = Query(default=None),
    force: bool = Query(default=False, description="Bypass cache and fetch fresh data"),
    orchestrator: FetchOrchestrator = Depends(get_orchestrator),
):
    """
    Usage time series for the narrowest scope given.

    keyid > appid > accountid.
    """
    if keyid is not None:
        scope = DataScope.keyset(accountid, keyid, app_id=appid)
    elif appid is not None:
        scope = DataScope.app(accountid, appid)
    else:
        scope = DataScope.account(accountid)

    return await _run_fetch(
        orchestrator, PayloadCategory.USAGE, scope, _build_params(start, end), _options(token, force)
    )


@app.get("/apps", response_model=FetchResponse)
async def apps(
    accountid: int = Query(...),
    appid: Optional[int] = Query(default=None),
    start: Optional[str] = Query(default=None),
    end: Optional[str] = Query(default=None),
    token: Optional[str] = Query(default=None),
    force: bool = Query(default=False),
    orchestrator: FetchOrchestrator = Depends(get_orchestrator),
):
    """Apps of an account, or a single app when appid is given."""
    scope = DataScope.app(accountid, appid) if appid is not None else DataScope.account(accountid)
    return await _run_fetch(
        orchestrator, PayloadCategory.APPS, scope, _build_params(start, end), _options(token, force)
    )


@app.get("/keys", response_model=FetchResponse)
async def keys(
    accountid: int = Query(...),
    appid: Optional[int] = Query(default=None),
    keyid: Optional[int] = Query(default=None),
    start: Optional[str] = Query(default=None),
    end: Optional[str] = Query(default=None),
    token: Optional[str] = Query(default=None),
    force: bool = Query(default=False),
    orchestrator: FetchOrchestrator = Depends(get_orchestrator),
):
    """Keysets of an account, an app, or a single keyset."""
    if keyid is not None:
        scope = DataScope.keyset(accountid, keyid, app_id=appid)
    elif appid is not None:
        scope = DataScope.app(accountid, appid)
    else:
        scope = DataScope.account(accountid)

    return await _run_fetch(
        orchestrator, PayloadCategory.KEYSETS, scope, _build_params(start, end), _options(token, force)
    )


@app.get("/cache/stats")
def cache_stats(orchestrator: FetchOrchestrator = Depends(get_orchestrator)):
    """Get cache statistics."""
    return orchestrator.get_stats()


@app.get("/cache/metrics")
def cache_metrics(orchestrator: FetchOrchestrator = Depends(get_orchestrator)):
    """Counters per payload category."""
    return {
        name: CacheMetricsSchema.from_metrics(metrics)
        for name, metrics in orchestrator.metrics().items()
    }


@app.get("/cache/hit-rates")
def cache_hit_rates(orchestrator: FetchOrchestrator = Depends(get_orchestrator)):
    """hits / (hits + misses) per payload category."""
    return orchestrator.hit_rates()


@app.post("/cache/invalidate", response_model=InvalidateResponse)
def cache_invalidate(
    scope: Optional[ScopeSchema] = None,
    orchestrator: FetchOrchestrator = Depends(get_orchestrator),
):
    """Invalidate a scope (and its cached ancestors), or everything."""
    try:
        data_scope = scope.to_scope() if scope is not None else None
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))
    removed = orchestrator.invalidate(data_scope)
    return InvalidateResponse(
        removed=removed,
        scope=data_scope.to_dict() if data_scope is not None else None,
    )


@app.post("/cache/clear")
def cache_clear(orchestrator: FetchOrchestrator = Depends(get_orchestrator)):
    """Clear every cache."""
    orchestrator.clear_all()
    return {"status": "cleared"}

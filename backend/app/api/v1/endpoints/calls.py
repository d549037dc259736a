"""
app/api/v1/endpoints/calls.py
──────────────────────────────
Call listing, analytics and cache-sync endpoints.

Routes
------
GET    /api/v1/calls/                     Filtered, sorted, paginated calls.
GET    /api/v1/calls/analytics            Totals, per-agent and time buckets.
GET    /api/v1/calls/cache                What the cache currently holds.
DELETE /api/v1/calls/cache                Drop every cached call.
POST   /api/v1/calls/sync                 Fetch a date window (cache-aware).
GET    /api/v1/calls/{call_id}/insights   AI insights for one call (fetched on a miss).

IMPORTANT: /analytics, /cache and /sync are registered BEFORE
/{call_id}/insights so FastAPI does not interpret the literals as IDs.

Error codes
-----------
404  Call not in the cache.
502  Aircall failed (rate limit outlasted retries, 4xx, bad payload).
503  Aircall credentials missing.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Response

from app.api.dependencies import get_app_settings, get_coordinator, get_fetcher, get_store
from core.config import Settings
from data_engine.coordinator import FetchCoordinator
from data_engine.errors import UpstreamError, UpstreamNotConfiguredError
from data_engine.fetcher import AircallFetcher
from data_engine.store import CallsStore
from schemas.analytics import Analytics, CallInsights
from schemas.calls import (
    CacheStatus,
    CallFilters,
    CallsPage,
    DateRange,
    Direction,
    Pagination,
    SortOrder,
    Sorting,
    Status,
    SyncRequest,
    SyncResponse,
    ViewType,
    YesNo,
)

logger = logging.getLogger(__name__)
router = APIRouter()


@router.get("/", response_model=CallsPage, summary="List cached calls")
def list_calls(
    direction: Optional[Direction] = Query(default=None),
    status: Optional[Status] = Query(default=None),
    user_id: Optional[str] = Query(default=None, description="Agent ID (user.id)."),
    recording: Optional[YesNo] = Query(default=None, description="Has a recording?"),
    answered: Optional[YesNo] = Query(default=None, description="Was it answered?"),
    order_by: str = Query(default="started_at", description="Field, dotted paths allowed."),
    order: SortOrder = Query(default="desc"),
    page: int = Query(default=1, ge=1),
    per_page: int = Query(default=20, ge=1, le=200),
    store: CallsStore = Depends(get_store),
) -> CallsPage:
    """
    Return one page of the calls cached for the current window.

    Nothing is fetched here; use ``POST /sync`` first to fill the cache.
    """
    return store.get_records(
        filters=CallFilters(
            direction=direction,
            status=status,
            user_id=user_id,
            recording=recording,
            answered=answered,
        ),
        sorting=Sorting(order_by=order_by, order=order),
        pagination=Pagination(page=page, per_page=per_page),
    )


@router.get("/analytics", response_model=Analytics, summary="Call analytics")
def call_analytics(
    user_id: Optional[str] = Query(default=None, description="Restrict to one agent."),
    view_type: ViewType = Query(default="daily"),
    store: CallsStore = Depends(get_store),
) -> Analytics:
    """Aggregate the cached window, bucketed per day or per week."""
    return store.get_analytics(user_id=user_id, view_type=view_type)


@router.get("/cache", response_model=CacheStatus, summary="Cache status")
def cache_status(store: CallsStore = Depends(get_store)) -> CacheStatus:
    return CacheStatus(
        date_range=store.current_date_range,
        last_fetched_at=store.last_fetched_at,
        cached_calls=len(store),
    )


@router.delete("/cache", status_code=204, summary="Clear the cache")
def clear_cache(store: CallsStore = Depends(get_store)) -> Response:
    store.clear()
    logger.info("Call cache cleared")
    return Response(status_code=204)


@router.post("/sync", response_model=SyncResponse, summary="Fetch a date window")
async def sync_calls(
    body: SyncRequest,
    coordinator: FetchCoordinator = Depends(get_coordinator),
    settings: Settings = Depends(get_app_settings),
) -> SyncResponse:
    """
    Make sure the cache holds ``[from, to]``, fetching from Aircall on a miss.

    Only an exact match of the cached window counts as a hit; ``force``
    refetches regardless.

    Raises:
        HTTPException 502: Aircall failed.
        HTTPException 503: Aircall credentials missing.
    """
    if body.from_ is None or body.to is None:
        date_range = DateRange.trailing_days(settings.DEFAULT_RANGE_DAYS, settings.TIMEZONE)
    else:
        date_range = DateRange(from_=body.from_, to=body.to)

    fetched = body.force or coordinator.store.needs_fetch(date_range)
    try:
        records = await coordinator.sync_range(date_range, force=body.force)
    except UpstreamNotConfiguredError as exc:
        raise HTTPException(status_code=503, detail=str(exc)) from exc
    except UpstreamError as exc:
        raise HTTPException(status_code=502, detail=str(exc)) from exc

    return SyncResponse(fetched=fetched, total=len(records), date_range=date_range)


@router.get(
    "/{call_id}/insights",
    response_model=CallInsights,
    summary="AI insights for a call",
)
async def call_insights(
    call_id: str,
    store: CallsStore = Depends(get_store),
    fetcher: Optional[AircallFetcher] = Depends(get_fetcher),
) -> CallInsights:
    """
    Return the transcription, sentiments, topics and summary of a cached call.

    Nothing is cached for the call yet and Aircall is configured: the four
    insight endpoints are queried once and the result is stored.

    Raises:
        HTTPException 404: The call is not in the cache.
        HTTPException 502: Aircall failed while loading the insights.
    """
    record = store.get_record(call_id)
    if record is None and call_id.isdigit():
        record = store.get_record(int(call_id))
    if record is None:
        raise HTTPException(status_code=404, detail=f"Call '{call_id}' is not cached.")

    available = store.has_ai_data(record.id)
    if fetcher is not None and not any(available.model_dump().values()):
        try:
            insights = await fetcher.fetch_insights(record.id)
        except UpstreamError as exc:
            raise HTTPException(status_code=502, detail=str(exc)) from exc
        for kind, payload in insights.items():
            store.update_ai_data(record.id, kind, payload)
        logger.info("Loaded %d AI insight kinds for call %s", len(insights), record.id)
        available = store.has_ai_data(record.id)

    data = {
        kind: store.get_ai_data(record.id, kind)
        for kind, present in available.model_dump().items()
        if present
    }
    return CallInsights(call_id=call_id, available=available, data=data)

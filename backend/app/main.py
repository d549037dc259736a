"""
app/main.py
────────────
FastAPI application factory.

All business logic lives in ``data_engine`` and ``analytics``; the route
handlers in ``app/api/v1/endpoints/`` only translate HTTP to store and
coordinator calls.  This file wires together middleware, routers, and
lifecycle events only.

API Layout
----------
GET    /                                 Health check
GET    /api/v1/calls/                    Filtered / sorted / paginated calls
GET    /api/v1/calls/analytics           Call analytics (daily or weekly)
GET    /api/v1/calls/cache               Cache status
DELETE /api/v1/calls/cache               Clear the cache
POST   /api/v1/calls/sync                Fetch a date window from Aircall
GET    /api/v1/calls/{call_id}/insights  AI insights for a call

OpenAPI docs
------------
- Swagger UI:  http://localhost:8000/docs
- ReDoc:       http://localhost:8000/redoc
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.api.v1.router import api_router
from core.config import Settings, get_settings
from core.http_client import build_aircall_client
from data_engine.coordinator import FetchCoordinator
from data_engine.fetcher import AircallFetcher
from data_engine.store import CallsStore

logger = logging.getLogger(__name__)


def build_coordinator(
    settings: Settings, store: CallsStore, fetcher: AircallFetcher
) -> FetchCoordinator:
    """
    Wire a coordinator to ``store`` using the paging settings.

    AI insights are only fetched during a sync when ``PREFETCH_INSIGHTS`` is
    on; otherwise ``GET /{call_id}/insights`` loads them per call.
    """
    return FetchCoordinator(
        fetcher.fetch_page,
        store,
        page_size=settings.PAGE_SIZE,
        throttle_delay=settings.THROTTLE_DELAY,
        retry_delay=settings.PAGE_RETRY_DELAY,
        max_page_retries=settings.MAX_PAGE_RETRIES,
        insights=fetcher.fetch_insights if settings.PREFETCH_INSIGHTS else None,
    )


# ── Lifespan ──────────────────────────────────────────────────────────────────


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    Application startup and shutdown logic.

    Startup:  Open the Aircall client and build the fetch coordinator.
              Without credentials the API still serves the (empty) cache
              and ``/sync`` answers 503.
    Shutdown: Close the Aircall client.
    """
    settings: Settings = app.state.settings
    logger.info(
        "Starting %s v%s (debug=%s)",
        settings.APP_TITLE,
        settings.APP_VERSION,
        settings.DEBUG,
    )

    client = None
    if settings.aircall_configured:
        client = build_aircall_client(settings)
        fetcher = AircallFetcher(
            client,
            max_attempts=settings.RATE_LIMIT_MAX_ATTEMPTS,
            base_delay=settings.RATE_LIMIT_BASE_DELAY,
        )
        app.state.fetcher = fetcher
        app.state.coordinator = build_coordinator(settings, app.state.store, fetcher)
    else:
        logger.warning("Aircall credentials missing; /sync is disabled")

    yield  # ← application runs here

    if client is not None:
        await client.aclose()
    logger.info("Shutting down %s", settings.APP_TITLE)


# ── App factory ───────────────────────────────────────────────────────────────


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    """
    Build a FastAPI app with its own call store.

    Args:
        settings: Settings to use (defaults to :func:`get_settings`).

    Returns:
        Configured ``FastAPI`` instance.
    """
    settings = settings or get_settings()
    logging.basicConfig(level=logging.DEBUG if settings.DEBUG else logging.INFO)

    application = FastAPI(
        title=settings.APP_TITLE,
        version=settings.APP_VERSION,
        description=settings.APP_DESCRIPTION,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )
    application.state.settings = settings
    application.state.store = CallsStore(tz=settings.TIMEZONE)
    application.state.coordinator = None
    application.state.fetcher = None

    application.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    application.include_router(api_router, prefix="/api/v1")

    @application.get("/", tags=["health"], summary="Health check")
    def health_check() -> dict:
        """
        Lightweight liveness probe.

        Returns:
            Status and current API version.
        """
        return {"status": "ok", "version": settings.APP_VERSION}

    return application


app = create_app()

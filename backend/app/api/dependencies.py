"""
app/api/dependencies.py
───────────────────────
FastAPI dependency functions shared across all endpoints.

The store and coordinator live on ``app.state`` (one pair per application
instance, see :func:`app.main.create_app`), so tests can build a fresh app
or override these dependencies without touching module globals.

Usage
-----
    from app.api.dependencies import get_store

    @router.get("/foo")
    def my_route(store: CallsStore = Depends(get_store)):
        ...
"""

from typing import Optional

from fastapi import HTTPException, Request

from core.config import Settings
from data_engine.coordinator import FetchCoordinator
from data_engine.fetcher import AircallFetcher
from data_engine.store import CallsStore


def get_app_settings(request: Request) -> Settings:
    """Settings the running application was built with."""
    return request.app.state.settings


def get_store(request: Request) -> CallsStore:
    """
    FastAPI dependency returning the application's call cache.

    Inject via ``Depends(get_store)`` in any route handler.
    """
    return request.app.state.store


def get_coordinator(request: Request) -> FetchCoordinator:
    """
    FastAPI dependency returning the application's fetch coordinator.

    Raises:
        HTTPException 503: Aircall credentials are not configured, so no
                           coordinator was built at startup.
    """
    coordinator = getattr(request.app.state, "coordinator", None)
    if coordinator is None:
        raise HTTPException(
            status_code=503,
            detail="Aircall is not configured. Set AIRCALL_API_ID and AIRCALL_API_TOKEN.",
        )
    return coordinator


def get_fetcher(request: Request) -> Optional[AircallFetcher]:
    """The Aircall fetcher, or ``None`` when credentials are not configured."""
    return getattr(request.app.state, "fetcher", None)

"""
core/http_client.py
───────────────────
Factory for the ``httpx.AsyncClient`` that talks to Aircall.

One client is created per application instance (in the FastAPI lifespan)
and closed on shutdown.  All Aircall traffic must go through a client
built here; never instantiate ``httpx.AsyncClient`` for Aircall elsewhere.

Usage
-----
    from core.http_client import build_aircall_client

    async with build_aircall_client(settings) as client:
        resp = await client.get("/calls", params={"per_page": 50})
"""

import logging
from typing import Optional

import httpx

from core.config import Settings, get_settings
from data_engine.errors import UpstreamNotConfiguredError

logger = logging.getLogger(__name__)


def build_aircall_client(
    settings: Optional[Settings] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> httpx.AsyncClient:
    """
    Return an authenticated async client rooted at ``AIRCALL_BASE_URL``.

    Args:
        settings:  Settings to use (defaults to :func:`get_settings`).
        transport: Optional transport override (``httpx.MockTransport`` in
                   tests).

    Returns:
        ``httpx.AsyncClient`` using HTTP basic auth with the Aircall API ID
        and token.

    Raises:
        UpstreamNotConfiguredError: If either credential is missing.
    """
    settings = settings or get_settings()
    if not settings.aircall_configured:
        raise UpstreamNotConfiguredError()

    client = httpx.AsyncClient(
        base_url=settings.AIRCALL_BASE_URL,
        auth=(settings.AIRCALL_API_ID, settings.AIRCALL_API_TOKEN),
        headers={"Accept": "application/json"},
        timeout=settings.REQUEST_TIMEOUT,
        transport=transport,
    )
    logger.info("Aircall client initialised (url=%s)", settings.AIRCALL_BASE_URL)
    return client

"""
tests/conftest.py
──────────────────
Shared pytest fixtures for the backend test suite.

Fixtures
--------
make_call
    Factory building ``CallRecord`` objects with sensible defaults.

store
    Fresh ``CallsStore`` (UTC, frozen clock) per test, no shared state.

recording_sleep
    Stand-in for ``asyncio.sleep`` that records delays instead of waiting.

app / app_client
    A FastAPI app built by ``create_app`` and an ``httpx.AsyncClient`` wired
    to it through ``ASGITransport`` (lifespan skipped, so no Aircall client
    is opened).

Usage
-----
    async def test_health(app_client):
        resp = await app_client.get("/")
        assert resp.status_code == 200
"""

from typing import Any, AsyncGenerator, Callable, List

import pytest
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient

from app.main import create_app
from core.config import Settings
from data_engine.store import CallsStore
from schemas.calls import CallRecord

# 2024-01-01 00:00:00 UTC, a Monday.
MONDAY = 1704067200
DAY = 86400


# ── Records ───────────────────────────────────────────────────────────────────


@pytest.fixture
def make_call() -> Callable[..., CallRecord]:
    """
    Return a factory for ``CallRecord``; any field can be overridden.

        call = make_call(id=7, direction="outbound", user={"id": 1, "name": "Ana"})
    """

    def _make(**overrides: Any) -> CallRecord:
        fields = {
            "id": 1,
            "started_at": MONDAY + 9 * 3600,
            "duration": 60,
            "direction": "inbound",
            "status": "done",
            "raw_digits": "+33 1 23 45 67 89",
        }
        fields.update(overrides)
        return CallRecord.model_validate(fields)

    return _make


@pytest.fixture
def store() -> CallsStore:
    """Empty store whose clock is frozen at ``MONDAY``."""
    return CallsStore(tz="UTC", clock=lambda: float(MONDAY))


# ── Async helpers ─────────────────────────────────────────────────────────────


class RecordingSleep:
    """Awaitable ``sleep`` replacement that remembers every delay."""

    def __init__(self) -> None:
        self.delays: List[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


@pytest.fixture
def recording_sleep() -> RecordingSleep:
    return RecordingSleep()


# ── App / HTTP client ─────────────────────────────────────────────────────────


@pytest.fixture
def settings() -> Settings:
    """Settings isolated from any developer ``.env`` credentials."""
    return Settings(AIRCALL_API_ID="", AIRCALL_API_TOKEN="", TIMEZONE="UTC")


@pytest.fixture
def app(settings: Settings) -> FastAPI:
    return create_app(settings)


@pytest.fixture
async def app_client(app: FastAPI) -> AsyncGenerator[AsyncClient, None]:
    """
    Async HTTPX client bound to ``app``.

    Startup lifespan is skipped, so ``app.state.coordinator`` stays ``None``
    unless a test installs one.
    """
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as client:
        yield client

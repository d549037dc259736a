"""
tests/test_coordinator.py
──────────────────────────
``FetchCoordinator`` against an in-memory fake upstream: paging, throttle,
page-level retry, failure propagation, single-flight and cache hits.
"""

import asyncio
from typing import Any, Dict, List, Optional

import pytest

from data_engine.coordinator import FetchCoordinator, FetchState
from data_engine.errors import (
    PermanentUpstreamError,
    RateLimitError,
    RetriesExhaustedError,
    TransientUpstreamError,
)
from schemas.calls import CallRecord, DateRange, FetchedPage, FetchParams
from tests.conftest import DAY, MONDAY

_WINDOW = DateRange(from_=MONDAY, to=MONDAY + 7 * DAY - 1)


class FakeUpstream:
    """
    Serves ``records`` page by page, like ``AircallFetcher.fetch_page``.

    ``failures`` maps a page number to the errors raised, one per request,
    before that page succeeds.  ``total`` overrides the reported total.
    """

    def __init__(
        self,
        records: List[CallRecord],
        failures: Optional[Dict[int, List[Exception]]] = None,
        total: Optional[int] = None,
        gate: Optional[asyncio.Event] = None,
    ) -> None:
        self.records = records
        self.failures = {page: list(errs) for page, errs in (failures or {}).items()}
        self.total = total
        self.gate = gate
        self.queries: List[Dict[str, Any]] = []

    @property
    def pages(self) -> List[int]:
        return [q["page"] for q in self.queries]

    async def __call__(self, query: Dict[str, Any]) -> FetchedPage:
        self.queries.append(query)
        if self.gate is not None:
            await self.gate.wait()
        errors = self.failures.get(query["page"])
        if errors:
            raise errors.pop(0)
        start = (query["page"] - 1) * query["per_page"]
        return FetchedPage(
            records=self.records[start:start + query["per_page"]],
            total=len(self.records) if self.total is None else self.total,
        )


@pytest.fixture
def calls(make_call) -> List[CallRecord]:
    return [make_call(id=i, started_at=MONDAY + i * 60) for i in range(1, 8)]


def _coordinator(upstream, store, sleep, **kwargs) -> FetchCoordinator:
    kwargs.setdefault("page_size", 3)
    kwargs.setdefault("throttle_delay", 1.0)
    kwargs.setdefault("retry_delay", 5.0)
    return FetchCoordinator(upstream, store, sleep=sleep, **kwargs)


# ── paging ────────────────────────────────────────────────────────────────────


class TestPaging:
    async def test_fetches_every_page_and_commits_once(
        self, store, calls, recording_sleep
    ) -> None:
        upstream = FakeUpstream(calls)
        progress: List[float] = []
        coordinator = _coordinator(upstream, store, recording_sleep, on_progress=progress.append)

        result = await coordinator.get_all(FetchParams(date_range=_WINDOW))

        assert [r.id for r in result] == [1, 2, 3, 4, 5, 6, 7]
        assert upstream.pages == [1, 2, 3]
        assert progress == [3 / 7, 6 / 7, 1.0]
        assert recording_sleep.delays == [1.0, 1.0]
        assert store.all_ids == [1, 2, 3, 4, 5, 6, 7]
        assert store.current_date_range == _WINDOW
        assert coordinator.state is FetchState.COMPLETED

    async def test_query_carries_window_and_paging(self, store, calls, recording_sleep) -> None:
        upstream = FakeUpstream(calls)
        coordinator = _coordinator(upstream, store, recording_sleep)

        await coordinator.get_all(
            FetchParams(date_range=_WINDOW, extra={"user_id": 7, "tags": ""}), page_size=10
        )

        assert upstream.queries == [
            {
                "from": _WINDOW.from_,
                "to": _WINDOW.to,
                "order": "asc",
                "page": 1,
                "per_page": 10,
                "user_id": 7,
            }
        ]

    async def test_zero_total_is_one_request(self, store, recording_sleep) -> None:
        upstream = FakeUpstream([])
        progress: List[float] = []
        coordinator = _coordinator(upstream, store, recording_sleep, on_progress=progress.append)

        assert await coordinator.get_all(FetchParams(date_range=_WINDOW)) == []
        assert upstream.pages == [1]
        assert progress == [1.0]
        assert store.needs_fetch(_WINDOW) is False

    async def test_empty_page_does_not_stop_the_loop(self, store, calls, recording_sleep) -> None:
        upstream = FakeUpstream(calls[:3], total=9)
        coordinator = _coordinator(upstream, store, recording_sleep)

        result = await coordinator.get_all(FetchParams(date_range=_WINDOW))

        assert upstream.pages == [1, 2, 3]
        assert len(result) == 3


# ── retries and failures ──────────────────────────────────────────────────────


class TestFailures:
    async def test_transient_page_failure_retries_same_page(
        self, store, calls, recording_sleep
    ) -> None:
        upstream = FakeUpstream(
            calls, failures={2: [TransientUpstreamError(), RateLimitError()]}
        )
        coordinator = _coordinator(upstream, store, recording_sleep)

        result = await coordinator.get_all(FetchParams(date_range=_WINDOW))

        assert upstream.pages == [1, 2, 2, 2, 3]
        assert recording_sleep.delays == [1.0, 5.0, 5.0, 1.0]
        assert len(result) == 7

    async def test_exhausted_retries_propagate_and_store_untouched(
        self, store, calls, recording_sleep
    ) -> None:
        exhausted = RetriesExhaustedError(3, RateLimitError())
        upstream = FakeUpstream(calls, failures={2: [exhausted]})
        coordinator = _coordinator(upstream, store, recording_sleep)

        with pytest.raises(RetriesExhaustedError) as info:
            await coordinator.get_all(FetchParams(date_range=_WINDOW))

        assert info.value is exhausted
        assert upstream.pages == [1, 2]
        assert len(store) == 0
        assert store.needs_fetch(_WINDOW) is True
        assert coordinator.state is FetchState.IDLE
        assert coordinator.last_error is exhausted
        assert coordinator.is_fetching is False

    async def test_permanent_error_is_not_retried(self, store, calls, recording_sleep) -> None:
        upstream = FakeUpstream(
            calls, failures={1: [PermanentUpstreamError("nope", status_code=403)]}
        )
        coordinator = _coordinator(upstream, store, recording_sleep)

        with pytest.raises(PermanentUpstreamError):
            await coordinator.get_all(FetchParams(date_range=_WINDOW))
        assert upstream.pages == [1]

    async def test_optional_page_retry_ceiling(self, store, calls, recording_sleep) -> None:
        upstream = FakeUpstream(
            calls, failures={1: [TransientUpstreamError(), TransientUpstreamError()]}
        )
        coordinator = _coordinator(upstream, store, recording_sleep, max_page_retries=1)

        with pytest.raises(TransientUpstreamError):
            await coordinator.get_all(FetchParams(date_range=_WINDOW))
        assert upstream.pages == [1, 1]

    async def test_accepts_new_fetch_after_failure(self, store, calls, recording_sleep) -> None:
        upstream = FakeUpstream(
            calls, failures={1: [PermanentUpstreamError("flaky auth", status_code=401)]}
        )
        coordinator = _coordinator(upstream, store, recording_sleep)

        with pytest.raises(PermanentUpstreamError):
            await coordinator.get_all(FetchParams(date_range=_WINDOW))
        result = await coordinator.get_all(FetchParams(date_range=_WINDOW))

        assert len(result) == 7
        assert coordinator.state is FetchState.COMPLETED
        assert coordinator.last_error is None


# ── single-flight and cache ───────────────────────────────────────────────────


async def test_concurrent_callers_share_one_fetch(store, calls, recording_sleep) -> None:
    gate = asyncio.Event()
    upstream = FakeUpstream(calls, gate=gate)
    coordinator = _coordinator(upstream, store, recording_sleep, page_size=10)

    first = asyncio.create_task(coordinator.get_all(FetchParams(date_range=_WINDOW)))
    await asyncio.sleep(0)
    assert coordinator.state is FetchState.FETCHING
    assert coordinator.is_fetching is True

    second = asyncio.create_task(coordinator.get_all(FetchParams(date_range=_WINDOW)))
    await asyncio.sleep(0)
    gate.set()

    a, b = await asyncio.gather(first, second)

    assert a == b
    assert upstream.pages == [1]
    assert coordinator.is_fetching is False


class TestSyncRange:
    async def test_exact_window_is_served_from_cache(self, store, calls, recording_sleep) -> None:
        upstream = FakeUpstream(calls)
        coordinator = _coordinator(upstream, store, recording_sleep, page_size=10)

        first = await coordinator.sync_range(_WINDOW)
        second = await coordinator.sync_range(_WINDOW)

        assert upstream.pages == [1]
        assert first == second

    async def test_different_window_refetches(self, store, calls, recording_sleep) -> None:
        upstream = FakeUpstream(calls)
        coordinator = _coordinator(upstream, store, recording_sleep, page_size=10)

        await coordinator.sync_range(_WINDOW)
        await coordinator.sync_range(DateRange(from_=_WINDOW.from_, to=_WINDOW.to - 1))

        assert upstream.pages == [1, 1]

    async def test_force_refetches(self, store, calls, recording_sleep) -> None:
        upstream = FakeUpstream(calls)
        coordinator = _coordinator(upstream, store, recording_sleep, page_size=10)

        await coordinator.sync_range(_WINDOW)
        await coordinator.sync_range(_WINDOW, force=True)

        assert upstream.pages == [1, 1]


async def test_insights_are_fanned_out_and_committed(store, calls, recording_sleep) -> None:
    seen: List[Any] = []

    async def insights(call_id):
        seen.append(call_id)
        return {"summary": {"content": f"call {call_id}"}} if call_id % 2 else {}

    coordinator = _coordinator(FakeUpstream(calls), store, recording_sleep, insights=insights)

    await coordinator.get_all(FetchParams(date_range=_WINDOW))

    assert sorted(seen) == [1, 2, 3, 4, 5, 6, 7]
    assert store.get_ai_data(3, "summary") == {"content": "call 3"}
    assert store.has_ai_data(4).summary is False


async def test_progress_callback_can_be_swapped(store, calls, recording_sleep) -> None:
    coordinator = _coordinator(FakeUpstream(calls), store, recording_sleep)
    progress: List[float] = []
    coordinator.set_progress_callback(progress.append)

    await coordinator.get_all(FetchParams(date_range=_WINDOW))
    coordinator.set_progress_callback(None)
    await coordinator.get_all(FetchParams(date_range=_WINDOW))

    assert len(progress) == 3


async def test_failed_insights_do_not_abort_the_sync(store, calls, recording_sleep) -> None:
    async def insights(call_id):
        if call_id == 2:
            return {"summary": {"content": "kept"}}
        raise PermanentUpstreamError("API Error: 403 AI add-on not enabled", status_code=403)

    coordinator = _coordinator(FakeUpstream(calls), store, recording_sleep, insights=insights)

    result = await coordinator.sync_range(_WINDOW)

    assert len(result) == 7
    assert store.needs_fetch(_WINDOW) is False
    assert store.get_ai_data(2, "summary") == {"content": "kept"}
    assert store.has_ai_data(3).summary is False
    assert coordinator.state is FetchState.COMPLETED


async def test_sync_joining_another_window_fetches_its_own(
    store, make_call, recording_sleep
) -> None:
    other = DateRange(from_=MONDAY + 14 * DAY, to=MONDAY + 15 * DAY - 1)
    gate = asyncio.Event()
    upstream = FakeUpstream(
        [make_call(id=1, started_at=MONDAY + 60), make_call(id=2, started_at=other.from_ + 60)],
        gate=gate,
    )
    coordinator = _coordinator(upstream, store, recording_sleep, page_size=10)

    first = asyncio.create_task(coordinator.sync_range(other))
    await asyncio.sleep(0)
    second = asyncio.create_task(coordinator.sync_range(_WINDOW))
    await asyncio.sleep(0)
    gate.set()

    other_calls, window_calls = await asyncio.gather(first, second)

    assert [r.id for r in other_calls] == [2]
    assert [r.id for r in window_calls] == [1]
    assert [q["from"] for q in upstream.queries] == [other.from_, _WINDOW.from_]
    assert store.current_date_range == _WINDOW

"""
data_engine/coordinator.py
───────────────────────────
Cache-aware fetch coordinator: the SINGLE writer of :class:`CallsStore`.

Workflow (per ``get_all`` call)
-------------------------------
1. Fetch page 1 with ``per_page = page_size`` and read the upstream total.
2. Fetch pages 2..N one after the other, pausing ``throttle_delay``
   seconds before each request so the upstream rate limit is respected.
3. A page failing with a transient error is re-requested (same page) after
   ``retry_delay`` seconds, indefinitely unless ``max_page_retries`` is set.
   The per-page primitive does its own bounded exponential backoff; when
   that gives up, the error propagates from here unchanged.
4. Report fractional progress after each page.
5. Commit the full result to the store in one ``update_records`` call.
   A failure anywhere leaves the store untouched.

Only one fetch runs at a time per coordinator: a ``get_all`` arriving while
one is in flight awaits that fetch's result instead of starting another.
"""

import asyncio
import enum
import logging
import math
from typing import Any, Awaitable, Callable, Dict, List, Optional

from data_engine.backoff import Sleep
from data_engine.errors import TransientUpstreamError, UpstreamError
from data_engine.store import CallsStore
from schemas.calls import CallId, CallRecord, DateRange, FetchedPage, FetchParams

logger = logging.getLogger(__name__)

PageFetcher = Callable[[Dict[str, Any]], Awaitable[FetchedPage]]
InsightsFetcher = Callable[[CallId], Awaitable[Dict[str, Any]]]
ProgressCallback = Callable[[float], None]


class FetchState(str, enum.Enum):
    """
    Coordinator lifecycle.

    A failed or cancelled fetch goes back to ``IDLE``; the cause of a
    failure is kept on ``FetchCoordinator.last_error``.
    """

    IDLE = "idle"
    FETCHING = "fetching"
    COMPLETED = "completed"


class FetchCoordinator:
    """
    Orchestrates paging through the upstream and filling the store.

    Args:
        fetch_page:       Per-page primitive, e.g. ``AircallFetcher.fetch_page``.
        store:            Cache the results are committed to.
        page_size:        Default ``per_page``.
        throttle_delay:   Seconds to wait before each page after the first.
        retry_delay:      Seconds to wait before re-requesting a failed page.
        max_page_retries: Page-level retry ceiling; ``None`` means unbounded.
        insights:         Optional per-call AI insight fetcher, fanned out
                          concurrently over each page's calls.  Best
                          effort: a call whose insights fail is skipped.
        on_progress:      Optional observer receiving a fraction in [0, 1].
        sleep:            Awaitable sleep (injected by tests).

    Example:
        >>> coordinator = FetchCoordinator(fetcher.fetch_page, CallsStore())
        >>> await coordinator.sync_range(DateRange(from_=1704067200, to=1704671999))
    """

    def __init__(
        self,
        fetch_page: PageFetcher,
        store: CallsStore,
        *,
        page_size: int = 50,
        throttle_delay: float = 1.0,
        retry_delay: float = 5.0,
        max_page_retries: Optional[int] = None,
        insights: Optional[InsightsFetcher] = None,
        on_progress: Optional[ProgressCallback] = None,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        if page_size < 1:
            raise ValueError("page_size must be at least 1")
        self._fetch_page = fetch_page
        self._store = store
        self._page_size = page_size
        self._throttle_delay = throttle_delay
        self._retry_delay = retry_delay
        self._max_page_retries = max_page_retries
        self._insights = insights
        self._on_progress = on_progress
        self._sleep = sleep

        self._state = FetchState.IDLE
        self._inflight: Optional["asyncio.Future[List[CallRecord]]"] = None
        self.last_error: Optional[BaseException] = None

    # ── public API ────────────────────────────────────────────────────────

    @property
    def state(self) -> FetchState:
        return self._state

    @property
    def store(self) -> CallsStore:
        return self._store

    @property
    def is_fetching(self) -> bool:
        return self._inflight is not None

    def set_progress_callback(self, callback: Optional[ProgressCallback]) -> None:
        """Register (or, with ``None``, remove) the progress observer."""
        self._on_progress = callback

    async def sync_range(
        self, date_range: DateRange, *, force: bool = False, **extra: Any
    ) -> List[CallRecord]:
        """
        Return the calls of ``date_range``, fetching only on a cache miss.

        Joining a fetch already in flight for another window does not count:
        once it settles, the store is checked again and ``date_range`` is
        fetched in its own right.

        Args:
            date_range: Window to load.
            force:      Refetch even when the store already holds this window.
            **extra:    Additional upstream query parameters.

        Returns:
            Calls inside ``date_range``, in cache insertion order.
        """
        if not force and not self._store.needs_fetch(date_range):
            logger.info(
                "Cache hit for %d..%d; skipping fetch", date_range.from_, date_range.to
            )
            return self._store.records_in_range()

        while force or self._store.needs_fetch(date_range):
            await self.get_all(FetchParams(date_range=date_range, extra=extra))
            force = False
        return self._store.records_in_range()

    async def get_all(
        self, params: FetchParams, page_size: Optional[int] = None
    ) -> List[CallRecord]:
        """
        Fetch every page for ``params`` and commit them to the store.

        Joins the in-flight fetch when one is already running.

        Args:
            params:    Date window and extra upstream parameters.
            page_size: Override the coordinator's default ``per_page``.

        Returns:
            All fetched calls, in upstream order.

        Raises:
            RetriesExhaustedError:  The per-page primitive gave up.
            PermanentUpstreamError: The upstream rejected a request.
        """
        if self._inflight is not None:
            logger.info("Fetch already in flight; awaiting its result")
            return await asyncio.shield(self._inflight)

        self._state = FetchState.FETCHING
        self.last_error = None
        task = asyncio.ensure_future(self._run(params, page_size or self._page_size))
        self._inflight = task
        task.add_done_callback(self._release)
        return await asyncio.shield(task)

    # ── private helpers ───────────────────────────────────────────────────

    def _release(self, task: "asyncio.Future[List[CallRecord]]") -> None:
        if self._inflight is task:
            self._inflight = None
        # Mark the exception as retrieved even if every awaiter went away.
        if not task.cancelled():
            task.exception()

    async def _run(self, params: FetchParams, page_size: int) -> List[CallRecord]:
        window = params.date_range
        logger.info(
            "Fetching calls for %d..%d (per_page=%d)", window.from_, window.to, page_size
        )
        try:
            records, insights = await self._collect(params, page_size)
            self._store.update_records(records, window)
            for call_id, kinds in insights.items():
                for kind, data in kinds.items():
                    self._store.update_ai_data(call_id, kind, data)
        except asyncio.CancelledError:
            self._state = FetchState.IDLE
            raise
        except Exception as exc:
            self._state = FetchState.IDLE
            self.last_error = exc
            logger.exception("Fetch failed for %d..%d", window.from_, window.to)
            raise

        self._state = FetchState.COMPLETED
        logger.info("Fetch complete: %d calls", len(records))
        return records

    async def _collect(self, params: FetchParams, page_size: int):
        insights: Dict[CallId, Dict[str, Any]] = {}

        first = await self._fetch_with_retry(params, 1, page_size)
        records: List[CallRecord] = list(first.records)
        await self._gather_insights(first.records, insights)

        total = first.total
        total_pages = math.ceil(total / page_size)
        self._report(min(page_size, total), total)

        for page in range(2, total_pages + 1):
            await self._sleep(self._throttle_delay)
            result = await self._fetch_with_retry(params, page, page_size)
            records.extend(result.records)
            await self._gather_insights(result.records, insights)
            self._report(min(page * page_size, total), total)

        return records, insights

    async def _fetch_with_retry(
        self, params: FetchParams, page: int, page_size: int
    ) -> FetchedPage:
        failures = 0
        while True:
            try:
                return await self._fetch_page(params.to_query(page=page, per_page=page_size))
            except TransientUpstreamError as exc:
                failures += 1
                if self._max_page_retries is not None and failures > self._max_page_retries:
                    raise
                logger.warning(
                    "Page %d failed (%s); retrying in %.1fs", page, exc, self._retry_delay
                )
                await self._sleep(self._retry_delay)

    async def _gather_insights(
        self, records: List[CallRecord], into: Dict[CallId, Dict[str, Any]]
    ) -> None:
        if self._insights is None or not records:
            return
        results = await asyncio.gather(*(self._insights_for(r.id) for r in records))
        for record, kinds in zip(records, results):
            if kinds:
                into[record.id] = kinds

    async def _insights_for(self, call_id: CallId) -> Dict[str, Any]:
        try:
            return await self._insights(call_id)
        except UpstreamError as exc:
            logger.warning("Skipping AI insights for call %s: %s", call_id, exc)
            return {}

    def _report(self, done: int, total: int) -> None:
        fraction = 1.0 if total <= 0 else done / total
        logger.debug("Fetch progress %.0f%%", fraction * 100)
        if self._on_progress is not None:
            self._on_progress(fraction)

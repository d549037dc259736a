"""
data_engine/store.py
─────────────────────
Normalised in-memory cache of call records.

Records are kept by ID (``by_id``) with a stable, insertion-ordered list
of known IDs (``all_ids``).  The store remembers the date window of the
last bulk update; listings and analytics only look at records inside that
window.  Records from earlier windows are retained, never evicted, just
excluded.

Only :class:`~data_engine.coordinator.FetchCoordinator` should call
:meth:`CallsStore.update_records`; everything else reads.  The store does
no I/O and is not safe to mutate from more than one coordinator.

Example:
    >>> store = CallsStore()
    >>> store.needs_fetch(DateRange(from_=10, to=20))
    True
"""

import logging
import time
from types import MappingProxyType
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Union

from analytics.call_stats import average_duration, summarize
from analytics.time_buckets import time_based_stats
from schemas.analytics import AI_KINDS, AIDataAvailability, AIKind, Analytics
from schemas.calls import (
    CallFilters,
    CallId,
    CallRecord,
    CallsPage,
    DateRange,
    PageMeta,
    Pagination,
    Sorting,
    ViewType,
)

logger = logging.getLogger(__name__)

RecordInput = Union[CallRecord, Mapping[str, Any]]


def resolve_field(record: Any, path: str) -> Any:
    """
    Follow a dotted ``path`` (e.g. ``"user.name"``) through ``record``.

    Missing segments resolve to ``None`` instead of raising.
    """
    value = record
    for part in path.split("."):
        if value is None:
            return None
        if isinstance(value, Mapping):
            value = value.get(part)
        else:
            value = getattr(value, part, None)
    return value


def _matches(record: CallRecord, key: str, expected: Any) -> bool:
    """Test one active filter against one record."""
    if key == "user_id":
        return record.user is not None and str(record.user.id) == str(expected)
    if key == "recording":
        return bool(record.recording) == (expected == "yes")
    if key == "answered":
        return bool(record.answered_at) == (expected == "yes")
    actual = resolve_field(record, key)
    return actual is not None and str(actual) == str(expected)


def filter_records(records: Iterable[CallRecord], filters: CallFilters) -> List[CallRecord]:
    """Keep records passing every active filter (logical AND)."""
    active = filters.active()
    return [
        record
        for record in records
        if all(_matches(record, key, value) for key, value in active.items())
    ]


def sort_records(records: List[CallRecord], sorting: Sorting) -> List[CallRecord]:
    """
    Stable sort on ``sorting.order_by``; ``None``/missing values always last.

    Values that cannot be compared with each other (mixed types) fall back
    to comparing their string form.
    """
    present = []
    missing = []
    for record in records:
        value = resolve_field(record, sorting.order_by)
        if value is None:
            missing.append(record)
        else:
            present.append((value, record))

    reverse = sorting.order == "desc"
    try:
        ordered = sorted(present, key=lambda pair: pair[0], reverse=reverse)
    except TypeError:
        ordered = sorted(present, key=lambda pair: str(pair[0]), reverse=reverse)
    return [record for _, record in ordered] + missing


def paginate_records(records: List[CallRecord], pagination: Pagination) -> CallsPage:
    """Slice out one 1-based page; out-of-range pages are simply empty."""
    start = (pagination.page - 1) * pagination.per_page
    end = start + pagination.per_page
    return CallsPage(
        records=records[start:end],
        meta=PageMeta.build(len(records), pagination),
    )


class CallsStore:
    """
    Cache of call records plus the analytics derived from them.

    Args:
        tz:    IANA zone used to bucket calls into calendar days.
        clock: Returns "now" in epoch seconds (patched by tests).
    """

    def __init__(self, tz: str = "UTC", clock: Callable[[], float] = time.time) -> None:
        self._tz = tz
        self._clock = clock
        self.clear()

    # ── state ─────────────────────────────────────────────────────────────

    @property
    def by_id(self) -> Mapping[CallId, CallRecord]:
        return MappingProxyType(self._by_id)

    @property
    def all_ids(self) -> List[CallId]:
        return list(self._all_ids)

    @property
    def current_date_range(self) -> Optional[DateRange]:
        return self._date_range

    @property
    def last_fetched_at(self) -> Optional[float]:
        return self._last_fetched_at

    def __len__(self) -> int:
        return len(self._all_ids)

    def get_record(self, call_id: CallId) -> Optional[CallRecord]:
        return self._by_id.get(call_id)

    # ── mutation ──────────────────────────────────────────────────────────

    def update_records(self, records: Iterable[RecordInput], date_range: DateRange) -> None:
        """
        Upsert ``records`` and mark ``date_range`` as the cached window.

        Every record is validated before anything changes, so one malformed
        record (e.g. without an ``id``) rejects the whole batch.  Colliding
        IDs are replaced wholesale (last write wins).

        Args:
            records:    ``CallRecord`` instances or raw mappings.
            date_range: Window the batch was fetched for.  Not checked for
                        ``from <= to``.

        Raises:
            pydantic.ValidationError: A raw mapping is not a valid call.
        """
        validated = [
            record if isinstance(record, CallRecord) else CallRecord.model_validate(record)
            for record in records
        ]

        added = 0
        for record in validated:
            if record.id not in self._by_id:
                self._all_ids.append(record.id)
                added += 1
            self._by_id[record.id] = record

        self._date_range = date_range
        self._last_fetched_at = self._clock()
        logger.info(
            "Cached %d calls (%d new, %d total) for %d..%d",
            len(validated),
            added,
            len(self._all_ids),
            date_range.from_,
            date_range.to,
        )

    def clear(self) -> None:
        """Drop every record, the cached window and all AI insights."""
        self._by_id: Dict[CallId, CallRecord] = {}
        self._all_ids: List[CallId] = []
        self._date_range: Optional[DateRange] = None
        self._last_fetched_at: Optional[float] = None
        self._ai_data: Dict[str, Dict[str, Any]] = {kind: {} for kind in AI_KINDS}

    # ── cache policy ──────────────────────────────────────────────────────

    def needs_fetch(self, candidate: DateRange) -> bool:
        """
        True unless ``candidate`` is exactly the cached window.

        Sub-ranges and super-ranges of the cached window are misses too.
        """
        if self._last_fetched_at is None or self._date_range is None:
            return True
        return (
            candidate.from_ != self._date_range.from_
            or candidate.to != self._date_range.to
        )

    # ── queries ───────────────────────────────────────────────────────────

    def records_in_range(self) -> List[CallRecord]:
        """Cached records inside the current window, in insertion order."""
        records = [self._by_id[call_id] for call_id in self._all_ids]
        if self._date_range is None:
            return records
        return [r for r in records if self._date_range.contains(r.started_at)]

    def get_records(
        self,
        filters: Optional[CallFilters] = None,
        sorting: Optional[Sorting] = None,
        pagination: Optional[Pagination] = None,
    ) -> CallsPage:
        """
        Filter → sort → paginate the calls of the current window.

        Never raises for odd query shapes: unknown filter or sort fields
        behave as if every record had ``None`` there.

        Returns:
            :class:`CallsPage` with the page's records and its metadata.
        """
        records = filter_records(self.records_in_range(), filters or CallFilters())
        records = sort_records(records, sorting or Sorting())
        return paginate_records(records, pagination or Pagination())

    def get_analytics(
        self, user_id: Optional[CallId] = None, view_type: ViewType = "daily"
    ) -> Analytics:
        """
        Aggregate the calls of the current window.

        Args:
            user_id:   Restrict to one agent (matched on ``user.id``).
            view_type: ``"daily"`` or ``"weekly"`` buckets.

        Returns:
            :class:`Analytics`; all zeros (and no buckets) before the first
            update.
        """
        records = self.records_in_range()
        if user_id not in (None, ""):
            records = [
                r for r in records if r.user is not None and str(r.user.id) == str(user_id)
            ]

        total_calls, by_direction, by_status, total_duration, user_stats = summarize(records)
        buckets = (
            time_based_stats(records, self._date_range, view_type, self._tz)
            if self._date_range is not None
            else []
        )
        return Analytics(
            view_type=view_type,
            user_id=None if user_id == "" else user_id,
            total_calls=total_calls,
            by_direction=by_direction,
            by_status=by_status,
            total_duration=total_duration,
            average_duration=average_duration(total_duration, total_calls),
            user_stats=user_stats,
            time_based_stats=buckets,
        )

    # ── AI insights ───────────────────────────────────────────────────────

    def update_ai_data(self, call_id: CallId, kind: AIKind, data: Any) -> None:
        """Store one AI insight payload (transcription, sentiments, …) for a call."""
        if kind not in self._ai_data:
            raise ValueError(f"Unknown AI data kind '{kind}'")
        self._ai_data[kind][str(call_id)] = data

    def get_ai_data(self, call_id: CallId, kind: AIKind) -> Optional[Any]:
        return self._ai_data.get(kind, {}).get(str(call_id))

    def has_ai_data(self, call_id: CallId) -> AIDataAvailability:
        key = str(call_id)
        return AIDataAvailability(
            **{kind: bool(self._ai_data[kind].get(key)) for kind in AI_KINDS}
        )

"""
schemas/calls.py
─────────────────
Pydantic models for call records and the queries run against the cache.

  ``CallRecord``   one normalised call event (immutable once stored)
  ``DateRange``    the ``{from, to}`` Unix-second window a fetch covers
  ``CallFilters``  conjunctive listing filters (then ``Sorting``, ``Pagination``)
  ``CallsPage``    one page of records plus pagination metadata
  ``FetchedPage``  what the per-page upstream fetch hands back
"""

import math
from typing import Any, Dict, List, Literal, Optional, Union

import pandas as pd
from pydantic import BaseModel, ConfigDict, Field, field_validator

Direction = Literal["inbound", "outbound"]
Status = Literal["done", "missed", "voicemail"]
SortOrder = Literal["asc", "desc"]
ViewType = Literal["daily", "weekly"]
YesNo = Literal["yes", "no"]

CallId = Union[int, str]


# ── Records ───────────────────────────────────────────────────────────────────


class CallUser(BaseModel):
    """The agent a call was routed to."""

    model_config = ConfigDict(frozen=True, extra="allow")

    id: CallId
    name: Optional[str] = None


class CallRecord(BaseModel):
    """
    One call event as cached by :class:`~data_engine.store.CallsStore`.

    Unknown upstream keys are kept as extra attributes so they remain
    available to dotted-path sorting and filtering.

    Attributes:
        id:          Unique call ID.
        started_at:  Unix seconds.
        duration:    Seconds (``null`` upstream becomes ``0``).
        direction:   ``inbound`` or ``outbound``.
        status:      ``done``, ``missed`` or ``voicemail``.
        user:        Optional agent reference.
        raw_digits:  Counterpart phone number.
        recording:   Optional recording URL.
        answered_at: Unix seconds, ``None`` if never answered.
        ended_at:    Unix seconds, ``None`` if unknown.
    """

    model_config = ConfigDict(frozen=True, extra="allow")

    id: CallId
    started_at: int
    duration: int = Field(default=0, ge=0)
    direction: Direction
    status: Status
    user: Optional[CallUser] = None
    raw_digits: str = ""
    recording: Optional[str] = None
    answered_at: Optional[int] = None
    ended_at: Optional[int] = None

    @field_validator("duration", mode="before")
    @classmethod
    def _null_duration_is_zero(cls, v: Any) -> Any:
        return 0 if v is None else v

    @field_validator("raw_digits", mode="before")
    @classmethod
    def _null_digits_is_empty(cls, v: Any) -> Any:
        return "" if v is None else v


# ── Date window ───────────────────────────────────────────────────────────────


class DateRange(BaseModel):
    """
    Inclusive ``[from, to]`` window in Unix seconds.

    ``from`` is a Python keyword, so the field is ``from_`` with the alias
    ``from``; both spellings are accepted on input.  No ordering check is
    made; callers are responsible for ``from <= to``.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    from_: int = Field(alias="from")
    to: int

    def contains(self, timestamp: int) -> bool:
        """True when ``timestamp`` lies inside the window (inclusive)."""
        return self.from_ <= timestamp <= self.to

    @classmethod
    def trailing_days(
        cls, days: int = 7, tz: str = "UTC", now: Optional[pd.Timestamp] = None
    ) -> "DateRange":
        """
        Window covering the last ``days`` calendar days, today included.

        Runs from 00:00:00 of the first day to 23:59:59 of today in ``tz``.

        Args:
            days: Number of calendar days, today included.
            tz:   IANA zone used to decide where days start.
            now:  Reference instant (defaults to the current time).

        Returns:
            The computed :class:`DateRange`.
        """
        current = pd.Timestamp.now(tz=tz) if now is None else now.tz_convert(tz)
        end = current.normalize() + pd.Timedelta(hours=23, minutes=59, seconds=59)
        start = current.normalize() - pd.Timedelta(days=days - 1)
        return cls(from_=int(start.timestamp()), to=int(end.timestamp()))


# ── Queries ───────────────────────────────────────────────────────────────────


class CallFilters(BaseModel):
    """
    Conjunctive filters for the call listing.

    Empty values impose no constraint.  Extra keys are accepted and treated
    as (possibly dotted) field paths compared for equality.
    """

    model_config = ConfigDict(extra="allow")

    direction: Optional[Direction] = None
    status: Optional[Status] = None
    user_id: Optional[CallId] = None
    recording: Optional[YesNo] = None
    answered: Optional[YesNo] = None

    @field_validator("direction", "status", "user_id", "recording", "answered", mode="before")
    @classmethod
    def _blank_is_none(cls, v: Any) -> Any:
        return None if v == "" else v

    def active(self) -> Dict[str, Any]:
        """Return only the filters that actually constrain the result."""
        return {
            key: value
            for key, value in self.model_dump().items()
            if value is not None and value != ""
        }


class Sorting(BaseModel):
    """Sort key (dotted paths allowed) and direction."""

    order_by: str = "started_at"
    order: SortOrder = "desc"


class Pagination(BaseModel):
    """1-based page selection."""

    page: int = Field(default=1, ge=1)
    per_page: int = Field(default=20, ge=1)


class PageMeta(BaseModel):
    """Pagination metadata returned with every listing."""

    total: int
    per_page: int
    current_page: int
    total_pages: int

    @classmethod
    def build(cls, total: int, pagination: Pagination) -> "PageMeta":
        return cls(
            total=total,
            per_page=pagination.per_page,
            current_page=pagination.page,
            total_pages=math.ceil(total / pagination.per_page),
        )


class CallsPage(BaseModel):
    """One page of the filtered, sorted listing."""

    records: List[CallRecord]
    meta: PageMeta


# ── Upstream paging ───────────────────────────────────────────────────────────


class FetchParams(BaseModel):
    """
    What to pull from the upstream source for one bulk fetch.

    Attributes:
        date_range: Window to fetch; also the window committed to the store.
        order:      Upstream ordering by ``started_at``.
        extra:      Additional query parameters forwarded verbatim.
    """

    date_range: DateRange
    order: SortOrder = "asc"
    extra: Dict[str, Any] = Field(default_factory=dict)

    def to_query(self, page: int, per_page: int) -> Dict[str, Any]:
        """Build the query-string mapping for a single page request."""
        query: Dict[str, Any] = {
            "from": self.date_range.from_,
            "to": self.date_range.to,
            "order": self.order,
            "page": page,
            "per_page": per_page,
        }
        query.update({k: v for k, v in self.extra.items() if v not in (None, "")})
        return query


class FetchedPage(BaseModel):
    """Records of one upstream page plus the upstream's overall total."""

    records: List[CallRecord] = Field(default_factory=list)
    total: int = Field(default=0, ge=0)


# ── REST payloads ─────────────────────────────────────────────────────────────


class SyncRequest(BaseModel):
    """
    Body of ``POST /api/v1/calls/sync``.

    When ``from``/``to`` are omitted the default trailing window (today and
    the previous ``DEFAULT_RANGE_DAYS - 1`` days) is used.
    """

    model_config = ConfigDict(populate_by_name=True)

    from_: Optional[int] = Field(default=None, alias="from")
    to: Optional[int] = None
    force: bool = False


class SyncResponse(BaseModel):
    """Outcome of a sync: whether the upstream was hit and what is cached."""

    fetched: bool
    total: int
    date_range: DateRange


class CacheStatus(BaseModel):
    """Snapshot of what the cache currently holds."""

    date_range: Optional[DateRange] = None
    last_fetched_at: Optional[float] = None
    cached_calls: int = 0

"""
analytics/time_buckets.py
──────────────────────────
Daily / weekly call-volume buckets.

Bucket boundaries come from the cached date window, never from the
records, so every day (or Monday-starting week) of the window gets a row
even when no call landed in it.  In weekly view the window is widened to
whole weeks: back to the Monday on/before ``from`` and forward to the
Sunday on/after ``to``.

Used by :meth:`data_engine.store.CallsStore.get_analytics` to build
``Analytics.time_based_stats``.
"""

import logging
from typing import Iterable, List, Tuple

import pandas as pd

from schemas.analytics import TimeBucket
from schemas.calls import CallRecord, DateRange, ViewType

logger = logging.getLogger(__name__)

COUNT_COLUMNS = ["total", "inbound", "outbound", "done", "missed", "voicemail"]


def local_day(timestamp: int, tz: str = "UTC") -> pd.Timestamp:
    """Midnight (tz-naive) of the calendar day ``timestamp`` falls on in ``tz``."""
    moment = pd.Timestamp(timestamp, unit="s", tz="UTC").tz_convert(tz)
    return moment.normalize().tz_localize(None).as_unit("ns")


def bucket_window(
    date_range: DateRange, view_type: ViewType = "daily", tz: str = "UTC"
) -> Tuple[pd.Timestamp, pd.Timestamp]:
    """
    First and last calendar day covered by the buckets.

    Args:
        date_range: Cached window in Unix seconds.
        view_type:  ``"daily"`` or ``"weekly"``.
        tz:         Zone used to turn instants into calendar days.

    Returns:
        ``(start, end)`` as tz-naive midnights, both inclusive.
    """
    start = local_day(date_range.from_, tz)
    end = local_day(date_range.to, tz)
    if view_type == "weekly":
        start = start - pd.Timedelta(days=start.weekday())
        end = end + pd.Timedelta(days=6 - end.weekday())
    return start, end


def bucket_keys(
    start: pd.Timestamp, end: pd.Timestamp, view_type: ViewType = "daily"
) -> pd.DatetimeIndex:
    """One key per day, or one per Monday, from ``start`` to ``end``."""
    freq = "W-MON" if view_type == "weekly" else "D"
    return pd.date_range(start, end, freq=freq).as_unit("ns")


def bucket_label(key: pd.Timestamp, view_type: ViewType = "daily") -> str:
    """``"Jan 3, 2024"`` for days, ``"Week of Jan 1, 2024"`` for weeks."""
    label = f"{key:%b} {key.day}, {key.year}"
    return f"Week of {label}" if view_type == "weekly" else label


def _records_frame(records: List[CallRecord], tz: str) -> pd.DataFrame:
    """Day / direction / status of every record, one row each."""
    stamps = pd.to_datetime(
        pd.Series([r.started_at for r in records], dtype="int64"), unit="s", utc=True
    )
    return pd.DataFrame(
        {
            "day": stamps.dt.tz_convert(tz).dt.normalize().dt.tz_localize(None).dt.as_unit("ns"),
            "direction": [r.direction for r in records],
            "status": [r.status for r in records],
        }
    )


def time_based_stats(
    records: Iterable[CallRecord],
    date_range: DateRange,
    view_type: ViewType = "daily",
    tz: str = "UTC",
) -> List[TimeBucket]:
    """
    Count calls per bucket over the (possibly widened) window.

    Records whose calendar day falls outside the window are skipped.  Each
    remaining record adds one to ``total``, one to its direction and one to
    its status in the bucket of its day (daily) or of its week's Monday
    (weekly).

    Args:
        records:    Calls to count.
        date_range: Cached window that defines the buckets.
        view_type:  ``"daily"`` or ``"weekly"``.
        tz:         Zone used to turn instants into calendar days.

    Returns:
        Buckets in ascending date order, empty ones included.
    """
    start, end = bucket_window(date_range, view_type, tz)
    keys = bucket_keys(start, end, view_type)
    counts = pd.DataFrame(0, index=keys, columns=COUNT_COLUMNS)

    records = list(records)
    if records and len(keys):
        frame = _records_frame(records, tz)
        frame = frame[(frame["day"] >= start) & (frame["day"] <= end)]
        if not frame.empty:
            if view_type == "weekly":
                frame = frame.assign(
                    bucket=frame["day"] - pd.to_timedelta(frame["day"].dt.weekday, unit="D")
                )
            else:
                frame = frame.assign(bucket=frame["day"])

            table = pd.concat(
                [
                    frame.groupby("bucket").size().rename("total"),
                    pd.crosstab(frame["bucket"], frame["direction"]),
                    pd.crosstab(frame["bucket"], frame["status"]),
                ],
                axis=1,
            )
            counts = (
                table.reindex(index=keys, columns=COUNT_COLUMNS)
                .fillna(0)
                .astype(int)
            )

    logger.debug(
        "Built %d %s buckets from %s to %s", len(counts), view_type, start.date(), end.date()
    )
    return [
        TimeBucket(
            start=key.date(),
            date=bucket_label(key, view_type),
            **{column: int(row[column]) for column in COUNT_COLUMNS},
        )
        for key, row in counts.iterrows()
    ]

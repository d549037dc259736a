"""
Pydantic schemas for request/response serialization.

Separate from the cache (data layer) and routes (HTTP layer).
"""

from schemas.analytics import Analytics, CallInsights, TimeBucket, UserStats
from schemas.calls import (
    CallFilters,
    CallRecord,
    CallsPage,
    DateRange,
    FetchParams,
    Pagination,
    Sorting,
)

__all__ = [
    "Analytics",
    "CallFilters",
    "CallInsights",
    "CallRecord",
    "CallsPage",
    "DateRange",
    "FetchParams",
    "Pagination",
    "Sorting",
    "TimeBucket",
    "UserStats",
]

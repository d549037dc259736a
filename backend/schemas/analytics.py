"""
schemas/analytics.py
─────────────────────
Typed result of :meth:`data_engine.store.CallsStore.get_analytics`.
"""

from datetime import date as Date
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, Field

from schemas.calls import CallId, ViewType

AIKind = Literal["transcription", "sentiments", "topics", "summary"]

AI_KINDS = ("transcription", "sentiments", "topics", "summary")


class DirectionCounts(BaseModel):
    inbound: int = 0
    outbound: int = 0


class StatusCounts(BaseModel):
    done: int = 0
    missed: int = 0
    voicemail: int = 0


class UserStats(BaseModel):
    """Per-agent breakdown, keyed by the agent's display name."""

    name: str
    total_calls: int = 0
    total_duration: int = 0
    inbound: int = 0
    outbound: int = 0
    done: int = 0
    missed: int = 0
    voicemail: int = 0
    average_duration: int = 0


class TimeBucket(BaseModel):
    """
    Call counts for one day or one Monday-starting week.

    Attributes:
        start: First calendar day of the bucket.
        date:  Display label (``"Jan 3, 2024"`` or ``"Week of Jan 1, 2024"``).
    """

    start: Date
    date: str
    total: int = 0
    inbound: int = 0
    outbound: int = 0
    done: int = 0
    missed: int = 0
    voicemail: int = 0


class Analytics(BaseModel):
    """Aggregates over the cached window, optionally for a single agent."""

    view_type: ViewType = "daily"
    user_id: Optional[CallId] = None
    total_calls: int = 0
    by_direction: DirectionCounts = Field(default_factory=DirectionCounts)
    by_status: StatusCounts = Field(default_factory=StatusCounts)
    total_duration: int = 0
    average_duration: int = 0
    user_stats: List[UserStats] = Field(default_factory=list)
    time_based_stats: List[TimeBucket] = Field(default_factory=list)


class AIDataAvailability(BaseModel):
    """Which AI insight kinds are cached for one call."""

    transcription: bool = False
    sentiments: bool = False
    topics: bool = False
    summary: bool = False


class CallInsights(BaseModel):
    """All cached AI insight payloads for one call."""

    call_id: str
    available: AIDataAvailability
    data: Dict[str, object] = Field(default_factory=dict)

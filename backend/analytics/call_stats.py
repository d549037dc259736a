"""
analytics/call_stats.py
────────────────────────
Headline call totals and the per-agent breakdown.
"""

from typing import Dict, Iterable, List, Tuple

from schemas.analytics import DirectionCounts, StatusCounts, UserStats
from schemas.calls import CallRecord


def average_duration(total_duration: int, total_calls: int) -> int:
    """Mean duration rounded half-up to whole seconds; 0 with no calls."""
    if total_calls <= 0:
        return 0
    return (2 * total_duration + total_calls) // (2 * total_calls)


def summarize(
    records: Iterable[CallRecord],
) -> Tuple[int, DirectionCounts, StatusCounts, int, List[UserStats]]:
    """
    Aggregate ``records`` in one pass.

    Calls without an agent name still count towards the totals but get no
    ``UserStats`` entry.  Agents appear in order of their first call.

    Returns:
        ``(total_calls, by_direction, by_status, total_duration, user_stats)``
    """
    total_calls = 0
    total_duration = 0
    directions = {"inbound": 0, "outbound": 0}
    statuses = {"done": 0, "missed": 0, "voicemail": 0}
    per_user: Dict[str, Dict[str, int]] = {}

    for record in records:
        total_calls += 1
        total_duration += record.duration
        directions[record.direction] += 1
        statuses[record.status] += 1

        name = record.user.name if record.user else None
        if not name:
            continue
        stats = per_user.setdefault(
            name,
            {
                "total_calls": 0,
                "total_duration": 0,
                "inbound": 0,
                "outbound": 0,
                "done": 0,
                "missed": 0,
                "voicemail": 0,
            },
        )
        stats["total_calls"] += 1
        stats["total_duration"] += record.duration
        stats[record.direction] += 1
        stats[record.status] += 1

    user_stats = [
        UserStats(
            name=name,
            average_duration=average_duration(stats["total_duration"], stats["total_calls"]),
            **stats,
        )
        for name, stats in per_user.items()
    ]
    return (
        total_calls,
        DirectionCounts(**directions),
        StatusCounts(**statuses),
        total_duration,
        user_stats,
    )

"""
Pull the default trailing window of Aircall calls and log the analytics.

Handy for checking credentials and rate-limit settings without the API:

    cd backend
    python scripts/pull_calls.py
"""
import asyncio
import logging
import os
import sys

# Add the parent directory to sys.path so we can import backend modules
sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from app.main import build_coordinator
from core.config import get_settings
from core.http_client import build_aircall_client
from data_engine.fetcher import AircallFetcher
from data_engine.store import CallsStore
from schemas.calls import DateRange

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


async def pull():
    settings = get_settings()
    store = CallsStore(tz=settings.TIMEZONE)
    date_range = DateRange.trailing_days(settings.DEFAULT_RANGE_DAYS, settings.TIMEZONE)

    async with build_aircall_client(settings) as client:
        fetcher = AircallFetcher(
            client,
            max_attempts=settings.RATE_LIMIT_MAX_ATTEMPTS,
            base_delay=settings.RATE_LIMIT_BASE_DELAY,
        )
        coordinator = build_coordinator(settings, store, fetcher)
        coordinator.set_progress_callback(
            lambda fraction: logger.info("Progress: %.0f%%", fraction * 100)
        )
        await coordinator.sync_range(date_range)

    for view_type in ("daily", "weekly"):
        analytics = store.get_analytics(view_type=view_type)
        logger.info(
            "%s: %d calls, avg %ss, %d inbound / %d outbound",
            view_type,
            analytics.total_calls,
            analytics.average_duration,
            analytics.by_direction.inbound,
            analytics.by_direction.outbound,
        )
        for bucket in analytics.time_based_stats:
            logger.info("  %-24s %4d", bucket.date, bucket.total)


if __name__ == "__main__":
    asyncio.run(pull())

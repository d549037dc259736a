"""
data_engine/backoff.py
───────────────────────
Bounded exponential backoff for a single upstream request.

The delay before retry ``n`` (0-based) is ``base_delay * 2 ** n``; a
``Retry-After`` hint from a 429 is honoured when it asks for longer.
No sleep follows the final attempt.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Optional, Tuple, Type, TypeVar

from data_engine.errors import RateLimitError, RetriesExhaustedError, TransientUpstreamError

logger = logging.getLogger(__name__)

T = TypeVar("T")

Sleep = Callable[[float], Awaitable[None]]


def backoff_delay(attempt: int, base_delay: float, error: Optional[Exception] = None) -> float:
    """Delay to wait after the failed ``attempt`` (0-based)."""
    delay = base_delay * 2 ** attempt
    if isinstance(error, RateLimitError) and error.retry_after:
        delay = max(delay, error.retry_after)
    return delay


async def call_with_backoff(
    operation: Callable[[], Awaitable[T]],
    *,
    max_attempts: int = 3,
    base_delay: float = 1.0,
    retry_on: Tuple[Type[Exception], ...] = (TransientUpstreamError,),
    sleep: Sleep = asyncio.sleep,
    description: str = "request",
) -> T:
    """
    Await ``operation()`` until it succeeds or ``max_attempts`` is used up.

    Args:
        operation:    Zero-argument coroutine factory; called once per attempt.
        max_attempts: Total attempts, the first one included.
        base_delay:   Delay after the first failure, doubled each time.
        retry_on:     Exception classes that trigger a retry.
        sleep:        Awaitable sleep (injected by tests).
        description:  Used in log messages.

    Returns:
        Whatever ``operation`` returns on its first successful attempt.

    Raises:
        RetriesExhaustedError: Every attempt failed with a retryable error.
        Exception:             Any non-retryable error, on first occurrence.
    """
    if max_attempts < 1:
        raise ValueError("max_attempts must be at least 1")

    last_error: Optional[Exception] = None
    for attempt in range(max_attempts):
        try:
            return await operation()
        except retry_on as exc:
            last_error = exc
            if attempt == max_attempts - 1:
                break
            delay = backoff_delay(attempt, base_delay, exc)
            logger.warning(
                "%s failed (attempt %d/%d): %s; retrying in %.2fs",
                description,
                attempt + 1,
                max_attempts,
                exc,
                delay,
            )
            await sleep(delay)

    logger.error("%s failed after %d attempts", description, max_attempts)
    raise RetriesExhaustedError(max_attempts, last_error) from last_error

"""
data_engine/errors.py
──────────────────────
Exception taxonomy for upstream fetches.

The retry layers key off these classes:

- :class:`TransientUpstreamError` (and its :class:`RateLimitError` subclass)
  is retried, with exponential backoff by the per-request primitive, and
  with a fixed delay by the page loop in :class:`FetchCoordinator`.
- Everything else propagates to the caller unchanged.
"""

from typing import Optional


class UpstreamError(Exception):
    """Base class for failures talking to the upstream call provider."""

    message = "The upstream call provider request failed."

    def __init__(self, message: Optional[str] = None, status_code: Optional[int] = None):
        super().__init__(message or self.message)
        self.status_code = status_code

    def to_dict(self) -> dict:
        return {"message": str(self), "status_code": self.status_code}


class TransientUpstreamError(UpstreamError):
    """5xx response or network failure; worth retrying."""

    message = "The upstream call provider is temporarily unavailable."


class RateLimitError(TransientUpstreamError):
    """HTTP 429 from the upstream."""

    message = "The upstream call provider rate limit was hit."

    def __init__(
        self,
        message: Optional[str] = None,
        retry_after: Optional[float] = None,
    ):
        super().__init__(message, status_code=429)
        self.retry_after = retry_after


class PermanentUpstreamError(UpstreamError):
    """4xx (other than 429) or a malformed response body; never retried."""

    message = "The upstream call provider rejected the request."


class RetriesExhaustedError(UpstreamError):
    """A transient failure persisted through every allowed attempt."""

    def __init__(self, attempts: int, last_error: Exception):
        super().__init__(
            f"Gave up after {attempts} attempts: {last_error}",
            status_code=getattr(last_error, "status_code", None),
        )
        self.attempts = attempts
        self.last_error = last_error


class UpstreamNotConfiguredError(UpstreamError):
    """Credentials for the upstream are missing."""

    message = (
        "Aircall API credentials are not configured. "
        "Set AIRCALL_API_ID and AIRCALL_API_TOKEN in backend/.env"
    )

"""
data_engine/fetcher.py
───────────────────────
Thin wrapper around the Aircall REST API, the ONLY place in the codebase
that turns Aircall HTTP responses into call records.

:class:`AircallFetcher` is the per-page fetch primitive handed to
:class:`~data_engine.coordinator.FetchCoordinator`.  Each request is retried
with bounded exponential backoff when the upstream rate-limits it, answers
5xx, or the network drops; 4xx and malformed payloads fail immediately.
"""

import asyncio
import logging
from typing import Any, Dict, Mapping, Optional

import httpx
from pydantic import ValidationError

from data_engine.backoff import Sleep, call_with_backoff
from data_engine.errors import (
    PermanentUpstreamError,
    RateLimitError,
    TransientUpstreamError,
)
from schemas.analytics import AI_KINDS
from schemas.calls import CallId, FetchedPage

logger = logging.getLogger(__name__)


def _retry_after(response: httpx.Response) -> Optional[float]:
    """Parse a numeric ``Retry-After`` header, ignoring anything else."""
    value = response.headers.get("Retry-After")
    try:
        return float(value) if value is not None else None
    except ValueError:
        return None


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text or response.reason_phrase
    if isinstance(body, Mapping):
        return str(body.get("message") or body.get("error") or body)
    return str(body)


class AircallFetcher:
    """
    Fetch pages of calls (and per-call AI insights) from Aircall.

    Args:
        client:       Client from :func:`core.http_client.build_aircall_client`.
        max_attempts: Attempts per request before ``RetriesExhaustedError``.
        base_delay:   First backoff delay in seconds; doubles per attempt.
        sleep:        Awaitable sleep (injected by tests).

    Example:
        >>> fetcher = AircallFetcher(client)
        >>> page = await fetcher.fetch_page({"from": 0, "to": 10, "page": 1, "per_page": 50})
        >>> page.total
        137
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        *,
        max_attempts: int = 3,
        base_delay: float = 1.0,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self._client = client
        self._max_attempts = max_attempts
        self._base_delay = base_delay
        self._sleep = sleep

    # ── public API ────────────────────────────────────────────────────────

    async def fetch_page(self, query: Dict[str, Any]) -> FetchedPage:
        """
        Fetch one page of ``GET /calls``.

        Args:
            query: Query-string parameters (``from``, ``to``, ``order``,
                   ``page``, ``per_page`` …).

        Returns:
            :class:`FetchedPage` with the page's calls and ``meta.total``.

        Raises:
            RetriesExhaustedError:  Transient failures outlasted every attempt.
            PermanentUpstreamError: 4xx, non-JSON body or invalid call data.
        """
        payload = await self._get_with_backoff("calls", query)
        if not isinstance(payload, Mapping):
            raise PermanentUpstreamError("Unexpected calls payload shape")

        try:
            page = FetchedPage(
                records=payload.get("calls") or [],
                total=(payload.get("meta") or {}).get("total", 0),
            )
        except ValidationError as exc:
            raise PermanentUpstreamError(f"Malformed calls payload: {exc}") from exc

        logger.debug(
            "Fetched page %s: %d calls (total=%d)",
            query.get("page"),
            len(page.records),
            page.total,
        )
        return page

    async def fetch_insights(self, call_id: CallId) -> Dict[str, Any]:
        """
        Fetch every AI insight kind for one call concurrently.

        A 404 means the insight does not exist for that call and is left
        out of the result; other failures propagate.

        Returns:
            Mapping of insight kind → payload, for the kinds that exist.
        """
        results = await asyncio.gather(
            *(self._get_optional(f"calls/{call_id}/{kind}") for kind in AI_KINDS)
        )
        return {kind: data for kind, data in zip(AI_KINDS, results) if data is not None}

    # ── private helpers ───────────────────────────────────────────────────

    async def _get_with_backoff(self, path: str, params: Optional[Dict[str, Any]] = None) -> Any:
        return await call_with_backoff(
            lambda: self._get(path, params),
            max_attempts=self._max_attempts,
            base_delay=self._base_delay,
            sleep=self._sleep,
            description=f"GET /{path}",
        )

    async def _get_optional(self, path: str) -> Optional[Any]:
        try:
            return await self._get_with_backoff(path)
        except PermanentUpstreamError as exc:
            if exc.status_code == 404:
                return None
            raise

    async def _get(self, path: str, params: Optional[Dict[str, Any]] = None) -> Any:
        """Single request with error classification; no retries here."""
        try:
            response = await self._client.get(f"/{path}", params=params)
        except httpx.TransportError as exc:
            raise TransientUpstreamError(f"Network error calling /{path}: {exc}") from exc

        if response.status_code == 429:
            raise RateLimitError(
                f"Rate limited on /{path}", retry_after=_retry_after(response)
            )
        if response.status_code >= 500:
            raise TransientUpstreamError(
                f"API Error: {response.status_code} {_error_message(response)}",
                status_code=response.status_code,
            )
        if not response.is_success:
            raise PermanentUpstreamError(
                f"API Error: {response.status_code} {_error_message(response)}",
                status_code=response.status_code,
            )

        try:
            return response.json()
        except ValueError as exc:
            raise PermanentUpstreamError(
                f"Invalid JSON response: {response.text[:200]}",
                status_code=response.status_code,
            ) from exc

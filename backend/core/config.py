"""
core/config.py
──────────────
Centralised application settings via ``pydantic-settings``.

All configuration is driven by environment variables (or a ``.env`` file
in the ``backend/`` directory).  ``pydantic-settings`` validates types at
startup, so a bad page size or an unknown timezone fails fast with a clear
error message.

Usage
-----
    from core.config import get_settings

    settings = get_settings()
    print(settings.AIRCALL_BASE_URL)
"""

from functools import lru_cache
from pathlib import Path
from typing import List, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Resolve the backend/ directory so relative .env paths work from any cwd.
_BACKEND_DIR = Path(__file__).resolve().parent.parent


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables / ``.env`` file.

    Attributes:
        APP_TITLE:               Human-readable API name shown in OpenAPI docs.
        APP_VERSION:             Semantic version string.
        APP_DESCRIPTION:         Short description shown in the OpenAPI UI.
        DEBUG:                   Enable verbose logging.
        FRONTEND_URL:            Optional deployed dashboard origin for CORS.
        AIRCALL_API_ID:          Aircall API ID (basic-auth user).
        AIRCALL_API_TOKEN:       Aircall API token (basic-auth password).
        AIRCALL_BASE_URL:        Root of the Aircall REST API.
        REQUEST_TIMEOUT:         Per-request timeout in seconds.
        PAGE_SIZE:               ``per_page`` used when paging through calls.
        THROTTLE_DELAY:          Pause between two page requests (seconds).
        PAGE_RETRY_DELAY:        Pause before re-requesting a failed page.
        MAX_PAGE_RETRIES:        Optional ceiling on page-level retries.
        RATE_LIMIT_MAX_ATTEMPTS: Attempts per request before giving up.
        RATE_LIMIT_BASE_DELAY:   First backoff delay; doubles per attempt.
        TIMEZONE:                IANA zone used to bucket calls into days.
        DEFAULT_RANGE_DAYS:      Size of the default trailing date window.
        PREFETCH_INSIGHTS:       Fetch every call's AI insights during a sync
                                 (four extra requests per call).
    """

    model_config = SettingsConfigDict(
        env_file=str(_BACKEND_DIR / ".env"),
        env_file_encoding="utf-8",
        case_sensitive=True,
        # Extra env vars are ignored; don't raise on unexpected keys.
        extra="ignore",
    )

    # ── API metadata ──────────────────────────────────────────────────────
    APP_TITLE: str = "Marketing Calls Analytics API"
    APP_VERSION: str = "0.3.0"
    APP_DESCRIPTION: str = (
        "Backend for the marketing dashboard. "
        "Caches Aircall call records and serves listings and call analytics."
    )

    # ── Feature flags ─────────────────────────────────────────────────────
    DEBUG: bool = False

    # ── CORS ──────────────────────────────────────────────────────────────
    FRONTEND_URL: str = ""

    # ── Aircall upstream ──────────────────────────────────────────────────
    # Credentials are optional at startup; the fetcher refuses to run
    # without them so the read-only endpoints still work.
    AIRCALL_API_ID: str = ""
    AIRCALL_API_TOKEN: str = ""
    AIRCALL_BASE_URL: str = "https://api.aircall.io/v1"
    REQUEST_TIMEOUT: float = Field(default=30.0, gt=0)

    # ── Paging / rate limiting ────────────────────────────────────────────
    PAGE_SIZE: int = Field(default=50, description="Aircall caps per_page at 50")
    THROTTLE_DELAY: float = Field(default=1.0, ge=0)
    PAGE_RETRY_DELAY: float = Field(default=5.0, ge=0)
    MAX_PAGE_RETRIES: Optional[int] = Field(default=None, ge=0)
    RATE_LIMIT_MAX_ATTEMPTS: int = Field(default=3, ge=1)
    RATE_LIMIT_BASE_DELAY: float = Field(default=1.0, ge=0)

    # ── Analytics ─────────────────────────────────────────────────────────
    TIMEZONE: str = "UTC"
    DEFAULT_RANGE_DAYS: int = Field(default=7, ge=1)

    # ── AI insights ───────────────────────────────────────────────────────
    PREFETCH_INSIGHTS: bool = False

    @property
    def CORS_ORIGINS(self) -> List[str]:
        """
        Build the full CORS allow-list.

        Hard-coded dev origins plus the optional ``FRONTEND_URL`` env var.

        Returns:
            List of allowed origin strings.
        """
        origins: List[str] = [
            "http://localhost:3000",   # Next.js dashboard dev server
            "http://127.0.0.1:3000",
        ]
        if self.FRONTEND_URL:
            origins.append(self.FRONTEND_URL)
        return origins

    @property
    def aircall_configured(self) -> bool:
        """True when both Aircall credentials are present."""
        return bool(self.AIRCALL_API_ID and self.AIRCALL_API_TOKEN)

    @field_validator("PAGE_SIZE")
    @classmethod
    def _page_size_positive(cls, v: int) -> int:
        """Reject page sizes the upstream cannot honour."""
        if v < 1:
            raise ValueError("PAGE_SIZE must be at least 1")
        return v

    @field_validator("TIMEZONE")
    @classmethod
    def _known_timezone(cls, v: str) -> str:
        """Raise if ``TIMEZONE`` is not an IANA zone name."""
        try:
            ZoneInfo(v)
        except (ZoneInfoNotFoundError, ValueError) as exc:
            raise ValueError(f"Unknown TIMEZONE '{v}'") from exc
        return v


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """
    Return a cached ``Settings`` singleton.

    The instance is created (and the ``.env`` file parsed) only once per
    process lifetime, courtesy of ``functools.lru_cache``.

    Returns:
        Settings: Validated application configuration.
    """
    return Settings()

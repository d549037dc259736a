"""
tests/test_config.py
─────────────────────
Settings validation and derived properties.
"""

import pytest
from pydantic import ValidationError

from core.config import Settings


def test_defaults_match_upstream_limits() -> None:
    settings = Settings(AIRCALL_API_ID="", AIRCALL_API_TOKEN="")
    assert settings.PAGE_SIZE == 50
    assert settings.THROTTLE_DELAY == 1.0
    assert settings.PAGE_RETRY_DELAY == 5.0
    assert settings.MAX_PAGE_RETRIES is None
    assert settings.aircall_configured is False


@pytest.mark.parametrize("tz", ["UTC", "Europe/Paris", "America/New_York"])
def test_known_timezones_accepted(tz) -> None:
    assert Settings(TIMEZONE=tz).TIMEZONE == tz


def test_unknown_timezone_rejected() -> None:
    with pytest.raises(ValidationError, match="Unknown TIMEZONE"):
        Settings(TIMEZONE="Mars/Olympus_Mons")


def test_page_size_must_be_positive() -> None:
    with pytest.raises(ValidationError):
        Settings(PAGE_SIZE=0)


def test_cors_includes_frontend_url() -> None:
    settings = Settings(FRONTEND_URL="https://dashboard.example.com")
    assert "https://dashboard.example.com" in settings.CORS_ORIGINS
    assert "http://localhost:3000" in settings.CORS_ORIGINS


def test_credentials_enable_upstream() -> None:
    assert Settings(AIRCALL_API_ID="id", AIRCALL_API_TOKEN="tok").aircall_configured is True


def test_insights_are_not_prefetched_by_default() -> None:
    assert Settings().PREFETCH_INSIGHTS is False

"""Configuration settings behaviour tests."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from app.config import Settings


def test_defaults() -> None:
    """Settings should provide working defaults without any environment."""

    settings = Settings(_env_file=None)

    assert settings.server_port == 3000
    assert str(settings.tmdb_api_url).startswith("https://api.themoviedb.org/3")
    assert settings.scheduler_enabled is True
    assert settings.scheduler_poll_seconds == 60
    assert settings.scheduler_retry_failed_day is False
    assert settings.admin_page_size == 10


def test_blank_api_keys_are_treated_as_missing() -> None:
    """Whitespace-only keys should not count as configured credentials."""

    settings = Settings(_env_file=None, TMDB_API_KEY="   ", GEMINI_API_KEY=" key ")

    assert settings.tmdb_api_key is None
    assert settings.gemini_api_key == "key"


def test_poll_interval_bounds() -> None:
    """Scheduler polling must stay within sensible limits."""

    with pytest.raises(ValidationError):
        Settings(_env_file=None, SCHEDULER_POLL_SECONDS=0)


def test_environment_variables_are_read(monkeypatch) -> None:
    """Settings should pick up values from the process environment."""

    monkeypatch.setenv("GEMINI_MODEL", "gemini-test")
    monkeypatch.setenv("SCHEDULER_ENABLED", "false")

    settings = Settings(_env_file=None)

    assert settings.gemini_model == "gemini-test"
    assert settings.scheduler_enabled is False

"""Application configuration models."""

from __future__ import annotations

from functools import lru_cache
from typing import Literal

from pydantic import Field, HttpUrl, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Settings loaded from environment variables or a .env file."""

    app_name: str = Field(default="CineCritic", alias="APP_NAME")
    server_host: str = Field(default="0.0.0.0", alias="HOST")
    server_port: int = Field(default=3000, alias="PORT")

    tmdb_api_url: HttpUrl = Field(
        default="https://api.themoviedb.org/3", alias="TMDB_API_URL"
    )
    tmdb_api_key: str | None = Field(default=None, alias="TMDB_API_KEY")

    gemini_api_url: HttpUrl = Field(
        default="https://generativelanguage.googleapis.com/v1beta",
        alias="GEMINI_API_URL",
    )
    gemini_api_key: str | None = Field(default=None, alias="GEMINI_API_KEY")
    gemini_model: str = Field(default="gemini-3-flash-preview", alias="GEMINI_MODEL")
    generation_temperature: float = Field(
        default=0.9, alias="GENERATION_TEMPERATURE", ge=0.0, le=2.0
    )
    generation_top_p: float = Field(
        default=0.95, alias="GENERATION_TOP_P", gt=0.0, le=1.0
    )

    scheduler_enabled: bool = Field(default=True, alias="SCHEDULER_ENABLED")
    scheduler_poll_seconds: int = Field(
        default=60, alias="SCHEDULER_POLL_SECONDS", ge=1, le=3_600
    )
    scheduler_retry_failed_day: bool = Field(
        default=False, alias="SCHEDULER_RETRY_FAILED_DAY"
    )

    admin_username: str = Field(default="admin", alias="ADMIN_USERNAME")
    admin_page_size: int = Field(default=10, alias="ADMIN_PAGE_SIZE", ge=1, le=200)

    database_url: str = Field(
        default="sqlite+aiosqlite:///./cinecritic.db", alias="DATABASE_URL"
    )

    environment: Literal["development", "production"] = Field(
        default="development", alias="ENVIRONMENT"
    )

    @field_validator("tmdb_api_key", "gemini_api_key", mode="before")
    @classmethod
    def _strip_blank(cls, value: object) -> object:
        if isinstance(value, str):
            stripped = value.strip()
            return stripped or None
        return value

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")


@lru_cache
def get_settings() -> Settings:
    """Return a cached settings instance."""

    return Settings()  # type: ignore[call-arg]


settings = get_settings()

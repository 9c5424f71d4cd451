"""Pydantic models describing reviews, configuration and the watchlist."""

from __future__ import annotations

import re
from datetime import datetime, timezone
from typing import Any, Literal

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    ValidationInfo,
    field_validator,
    model_validator,
)
from pydantic.alias_generators import to_camel

Language = Literal["en", "zh-TW", "zh-CN"]
AuthorStyle = Literal["humorous", "toxic", "sentimental"]
MediaType = Literal["movie", "tv"]

LANGUAGES: tuple[Language, ...] = ("en", "zh-TW", "zh-CN")
PRIMARY_LANGUAGE: Language = "en"

UPDATE_TIME_RE = re.compile(r"^([01]\d|2[0-3]):[0-5]\d$")
EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


class CamelModel(BaseModel):
    """Base model serialising to the camelCase layout used in storage."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_payload(self) -> dict[str, object]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)

    @classmethod
    def aliased(cls, data: dict[str, Any]) -> dict[str, Any]:
        """Rename snake_case field names in ``data`` to their camelCase aliases."""

        aliases = {
            name: field.alias or to_camel(name) for name, field in cls.model_fields.items()
        }
        return {aliases.get(key, key): value for key, value in data.items()}


def _require_all_languages(value: dict[str, str], field: str) -> dict[str, str]:
    missing = [language for language in LANGUAGES if language not in value]
    if missing:
        raise ValueError(f"{field} is missing locales: {', '.join(missing)}")
    return value


class AuthorProfile(CamelModel):
    """Display persona used to brand and steer generated reviews."""

    name: dict[Language, str]
    style: AuthorStyle

    @field_validator("name")
    @classmethod
    def _check_locales(cls, value: dict[str, str]) -> dict[str, str]:
        return _require_all_languages(value, "name")

    def display_name(self, language: Language) -> str:
        return self.name.get(language) or self.name[PRIMARY_LANGUAGE]


def default_authors() -> list[AuthorProfile]:
    return [
        AuthorProfile(
            name={"en": "Humor Bot", "zh-TW": "幽默大師", "zh-CN": "幽默大师"},
            style="humorous",
        ),
        AuthorProfile(
            name={"en": "Salty Critic", "zh-TW": "毒舌影評人", "zh-CN": "毒舌影评人"},
            style="toxic",
        ),
        AuthorProfile(
            name={"en": "Dreamy Soul", "zh-TW": "感性靈魂", "zh-CN": "感性灵魂"},
            style="sentimental",
        ),
    ]


class AppConfig(CamelModel):
    """Site-wide configuration edited through the admin console."""

    tmdb_api_key: str = ""
    gemini_api_key: str = ""
    update_time: str = "01:00"
    last_update_date: datetime = EPOCH
    site_name: str = "My AI Movie Review"
    authors: list[AuthorProfile] = Field(default_factory=default_authors)
    active_author_index: int = 0

    @field_validator("update_time")
    @classmethod
    def _check_update_time(cls, value: str) -> str:
        value = value.strip()
        if not UPDATE_TIME_RE.match(value):
            raise ValueError("updateTime must use the HH:MM 24-hour format")
        return value

    @field_validator("last_update_date")
    @classmethod
    def _assume_utc(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value

    @model_validator(mode="after")
    def _check_active_author(self) -> "AppConfig":
        if not self.authors:
            raise ValueError("At least one author profile is required")
        if not 0 <= self.active_author_index < len(self.authors):
            raise ValueError("activeAuthorIndex does not reference a configured author")
        return self

    @property
    def active_author(self) -> AuthorProfile:
        return self.authors[self.active_author_index]

    @property
    def update_hour_minute(self) -> tuple[int, int]:
        hour, minute = self.update_time.split(":")
        return int(hour), int(minute)

    def public_payload(self) -> dict[str, object]:
        """Return the configuration without any credentials."""

        return {
            "siteName": self.site_name,
            "authors": [author.to_payload() for author in self.authors],
            "activeAuthorIndex": self.active_author_index,
        }


class Ratings(CamelModel):
    tmdb: float = 0.0
    imdb: float = 0.0
    douban: float = 0.0


class ExternalIds(CamelModel):
    imdb: str | None = None
    tmdb: str | None = None
    douban: str | None = None


class ReviewMetadata(CamelModel):
    duration: str = ""
    director: str = "Various"
    director_id: int | None = None
    actors: list[str] = Field(default_factory=list)
    author_id: int = 0
    author_style: AuthorStyle = "humorous"


class Review(CamelModel):
    """A generated review covering a movie, a show, or one season of a show."""

    id: str
    tmdb_id: int
    media_type: MediaType
    season_number: int | None = None
    title: dict[Language, str]
    poster_path: str | None = None
    backdrop_paths: list[str] = Field(default_factory=list)
    content: dict[Language, str]
    created_at: datetime
    genres: list[str] = Field(default_factory=list)
    release_year: int | None = None
    region: str = "US"
    visible: bool = True
    ratings: Ratings = Field(default_factory=Ratings)
    external_ids: ExternalIds = Field(default_factory=ExternalIds)
    metadata: ReviewMetadata = Field(default_factory=ReviewMetadata)

    @field_validator("title", "content")
    @classmethod
    def _check_locales(
        cls, value: dict[str, str], info: ValidationInfo
    ) -> dict[str, str]:
        return _require_all_languages(value, info.field_name)

    def localized_title(self, language: Language) -> str:
        return self.title.get(language) or self.title[PRIMARY_LANGUAGE]


class ReviewUpdate(CamelModel):
    """Partial update applied by the admin edit form."""

    title: dict[Language, str] | None = None
    content: dict[Language, str] | None = None
    visible: bool | None = None
    genres: list[str] | None = None
    release_year: int | None = None
    region: str | None = None

    def apply(self, review: Review) -> Review:
        changes = {
            key: value
            for key, value in self.model_dump(exclude_unset=True).items()
            if value is not None or key == "release_year"
        }
        if not changes:
            return review
        merged = review.model_dump()
        for key in ("title", "content"):
            if key in changes:
                changes[key] = {**merged[key], **changes[key]}
        merged.update(changes)
        return Review.model_validate(merged)


class WatchlistItem(CamelModel):
    """Bookmark pointing at a catalog title rather than at a review."""

    id: str
    tmdb_id: int
    media_type: MediaType
    title: str
    poster_path: str | None = None
    watched: bool = False

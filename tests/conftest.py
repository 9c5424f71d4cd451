"""Pytest configuration and test helpers."""

from __future__ import annotations

import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Awaitable, Callable, cast

import pytest

# Ensure the application package is importable when running tests without an
# editable install. This mirrors the expected runtime layout where ``app`` sits
# at the project root.
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


from app.config import Settings  # noqa: E402
from app.database import Database  # noqa: E402
from app.models import AppConfig, Review  # noqa: E402
from app.services.gemini import GeminiClient  # noqa: E402
from app.services.review_generator import ReviewService  # noqa: E402
from app.services.tmdb import (  # noqa: E402
    MediaDetail,
    PersonCredit,
    TMDBClient,
    TrendingItem,
)
from app.storage import StateStore  # noqa: E402


class FakeTMDBClient:
    """In-memory stand-in for :class:`TMDBClient`."""

    def __init__(self) -> None:
        self.trending: dict[str, list[TrendingItem]] = {"movie": [], "tv": []}
        self.details: dict[tuple[int, str], MediaDetail | None] = {}
        self.person_credits: dict[int, list[PersonCredit]] = {}
        self.trending_error: Exception | None = None
        self.calls: list[tuple[str, Any]] = []

    def add_detail(self, payload: dict[str, Any], *languages: str) -> None:
        for language in languages or ("en", "zh-TW", "zh-CN"):
            localized = dict(payload)
            if language != "en":
                for key in ("title", "name"):
                    if localized.get(key):
                        localized[key] = f"{localized[key]} [{language}]"
            self.details[(payload["id"], language)] = MediaDetail.model_validate(
                localized
            )

    async def fetch_trending(self, api_key: str, media_type: str) -> list[TrendingItem]:
        self.calls.append(("trending", media_type))
        if self.trending_error is not None:
            raise self.trending_error
        return list(self.trending.get(media_type, []))

    async def fetch_details(
        self, api_key: str, media_type: str, tmdb_id: int, language: str = "en"
    ) -> MediaDetail | None:
        self.calls.append(("details", (tmdb_id, language)))
        return self.details.get((tmdb_id, language))

    async def fetch_person_credits(
        self, api_key: str, person_id: int
    ) -> list[PersonCredit]:
        self.calls.append(("person", person_id))
        return list(self.person_credits.get(person_id, []))


class FakeGeminiClient:
    """Records prompts and returns canned review text."""

    def __init__(self) -> None:
        self.calls: list[dict[str, Any]] = []
        self.fail_languages: dict[str, Exception] = {}

    async def generate_review(
        self,
        title: str,
        media_type: str,
        language: str,
        overview: str,
        style: str = "humorous",
        *,
        api_key: str | None = None,
        model: str | None = None,
    ) -> str:
        self.calls.append(
            {
                "title": title,
                "media_type": media_type,
                "language": language,
                "overview": overview,
                "style": style,
                "api_key": api_key,
            }
        )
        if language in self.fail_languages:
            raise self.fail_languages[language]
        return f"[{language}] {style} review of {title}"


def build_review(
    review_id: str,
    tmdb_id: int,
    *,
    media_type: str = "movie",
    season_number: int | None = None,
    genres: list[str] | None = None,
    region: str = "US",
    year: int | None = 2024,
    visible: bool = True,
) -> Review:
    title = {
        "en": f"Title {tmdb_id}",
        "zh-TW": f"標題 {tmdb_id}",
        "zh-CN": f"标题 {tmdb_id}",
    }
    return Review(
        id=review_id,
        tmdb_id=tmdb_id,
        media_type=media_type,  # type: ignore[arg-type]
        season_number=season_number,
        title=title,
        content={language: f"Body {tmdb_id}" for language in title},
        created_at=datetime(2024, 5, 1, tzinfo=timezone.utc),
        genres=genres if genres is not None else ["Drama"],
        release_year=year,
        region=region,
        visible=visible,
    )


@pytest.fixture
def fake_tmdb() -> FakeTMDBClient:
    return FakeTMDBClient()


@pytest.fixture
def fake_gemini() -> FakeGeminiClient:
    return FakeGeminiClient()


@pytest.fixture
def review_factory() -> Callable[..., Review]:
    return build_review


@pytest.fixture
def service_factory(
    tmp_path, fake_tmdb: FakeTMDBClient, fake_gemini: FakeGeminiClient
) -> Callable[..., Awaitable[tuple[ReviewService, Database]]]:
    """Return a coroutine factory building a service over a fresh database.

    The factory must be awaited inside the event loop that later uses the
    service so the async engine stays bound to a single loop. Callers dispose
    of the returned database when done.
    """

    async def factory(
        *,
        config: AppConfig | None = None,
        reviews: list[Review] | None = None,
        rng: Any = None,
        clock: Any = None,
        **overrides: Any,
    ) -> tuple[ReviewService, Database]:
        database = Database(f"sqlite+aiosqlite:///{tmp_path / 'service.db'}")
        await database.create_all()
        store = StateStore(database.session_factory)
        if config is not None:
            await store.set_config(config)
        if reviews is not None:
            await store.set_reviews(reviews)
        settings = Settings(_env_file=None, **overrides)  # type: ignore[arg-type]
        service = ReviewService(
            settings,
            store,
            cast(TMDBClient, fake_tmdb),
            cast(GeminiClient, fake_gemini),
            rng=rng,
            clock=clock,
        )
        return service, database

    return factory

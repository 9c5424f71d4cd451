"""High level orchestration for review generation."""

from __future__ import annotations

import asyncio
import logging
import random
import secrets
from contextlib import suppress
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Iterable, Sequence
from urllib.parse import quote

from ..config import Settings
from ..exceptions import (
    CredentialInvalidError,
    MissingCredentialError,
    ReviewGenerationError,
    UpstreamFetchError,
)
from ..models import (
    LANGUAGES,
    PRIMARY_LANGUAGE,
    AppConfig,
    AuthorStyle,
    ExternalIds,
    Language,
    MediaType,
    Ratings,
    Review,
    ReviewMetadata,
    WatchlistItem,
)
from ..storage import StateStore
from .gemini import GeminiClient
from .tmdb import (
    MediaDetail,
    PersonCredit,
    Season,
    TMDBClient,
    TMDBError,
    TrendingItem,
)

logger = logging.getLogger(__name__)

MAX_BACKDROPS = 5
MAX_ACTORS = 5
MAX_DIRECTOR_WORKS = 6
PLACEHOLDER_RATING_RANGE = (6.5, 9.0)
DOUBAN_SEARCH_URL = "https://movie.douban.com/subject_search?search_text="


@dataclass(slots=True)
class ReviewPlan:
    """Resolved inputs for one generation run before any text is produced."""

    target: TrendingItem
    media_type: MediaType
    details: dict[Language, MediaDetail]
    season: Season | None
    prompt_titles: dict[Language, str]
    display_titles: dict[Language, str]
    overviews: dict[Language, str]

    @property
    def primary(self) -> MediaDetail:
        return self.details[PRIMARY_LANGUAGE]


def select_target(
    trending: Sequence[TrendingItem], reviews: Iterable[Review]
) -> TrendingItem:
    """Pick the first trending title without a review, else the first title."""

    if not trending:
        raise ValueError("Trending list is empty")
    reviewed_ids = {review.tmdb_id for review in reviews}
    for item in trending:
        if item.id not in reviewed_ids:
            return item
    return trending[0]


def reviewed_seasons(tmdb_id: int, reviews: Iterable[Review]) -> set[int]:
    return {
        review.season_number
        for review in reviews
        if review.tmdb_id == tmdb_id and review.season_number is not None
    }


def next_unreviewed_season(
    detail: MediaDetail, reviews: Iterable[Review]
) -> Season | None:
    """Return the lowest-numbered regular season that has no review yet."""

    done = reviewed_seasons(detail.id, reviews)
    candidates = [
        season
        for season in detail.seasons
        if season.season_number > 0 and season.season_number not in done
    ]
    if not candidates:
        return None
    return min(candidates, key=lambda season: season.season_number)


def due_media_type(config: AppConfig, now: datetime) -> MediaType | None:
    """Return the media type to generate if the daily update is due."""

    if not config.tmdb_api_key.strip():
        return None
    if now.tzinfo is None:
        now = now.astimezone()
    last_update = config.last_update_date.astimezone(now.tzinfo)
    if last_update.date() == now.date():
        return None
    target_hour, target_minute = config.update_hour_minute
    if (now.hour, now.minute) < (target_hour, target_minute):
        return None
    return "tv" if now.day % 2 == 0 else "movie"


def _release_year(*dates: str | None) -> int | None:
    for value in dates:
        if isinstance(value, str) and len(value) >= 4 and value[:4].isdigit():
            return int(value[:4])
    return None


def _season_title(name: str, language: Language, season_number: int, *, prompt: bool) -> str:
    if language == "en":
        if prompt:
            return f"{name} Season {season_number}"
        return f"{name} S{season_number}"
    if prompt:
        return f"{name} 第 {season_number} 季"
    return f"{name} 第{season_number}季"


class ReviewService:
    """Coordinates TMDB lookups with Gemini generation and persists results."""

    def __init__(
        self,
        settings: Settings,
        store: StateStore,
        tmdb_client: TMDBClient,
        gemini_client: GeminiClient,
        *,
        rng: random.Random | None = None,
        clock: Callable[[], datetime] | None = None,
    ):
        self._settings = settings
        self._store = store
        self._tmdb = tmdb_client
        self._ai = gemini_client
        self._rng = rng or random.Random()
        self._clock = clock or (lambda: datetime.now().astimezone())
        # Serialises whole generation runs so overlapping triggers pick
        # distinct titles.
        self._generation_lock = asyncio.Lock()
        # Serialises read-modify-write cycles on the review collection.
        self._write_lock = asyncio.Lock()
        self._watchlist_lock = asyncio.Lock()
        self._config_lock = asyncio.Lock()
        self._scheduler_task: asyncio.Task[None] | None = None
        self._poll_seconds = settings.scheduler_poll_seconds

    @property
    def store(self) -> StateStore:
        return self._store

    @property
    def is_generating(self) -> bool:
        return self._generation_lock.locked()

    async def start(self) -> None:
        """Launch the daily update loop."""

        if not self._settings.scheduler_enabled:
            logger.info("Daily review scheduler disabled")
            return
        if self._scheduler_task is None:
            self._scheduler_task = asyncio.create_task(self._scheduler_loop())

    async def stop(self) -> None:
        """Stop the background scheduler loop."""

        if self._scheduler_task is None:
            return
        self._scheduler_task.cancel()
        with suppress(asyncio.CancelledError):
            await self._scheduler_task
        self._scheduler_task = None

    async def mutate_reviews(
        self, mutate: Callable[[list[Review]], list[Review]]
    ) -> list[Review]:
        """Apply ``mutate`` to the stored collection and persist the result."""

        async with self._write_lock:
            reviews = await self._store.get_reviews()
            updated = mutate(reviews)
            await self._store.set_reviews(updated)
            return updated

    async def mutate_watchlist(
        self, mutate: Callable[[list[WatchlistItem]], list[WatchlistItem]]
    ) -> list[WatchlistItem]:
        async with self._watchlist_lock:
            items = await self._store.get_watchlist()
            updated = mutate(items)
            await self._store.set_watchlist(updated)
            return updated

    async def update_config(self, changes: dict[str, Any]) -> AppConfig:
        """Merge admin-submitted settings over the stored configuration.

        Keys may be field names or camelCase aliases. The daily update marker
        belongs to the scheduler and is never taken from ``changes``.
        """

        changes = AppConfig.aliased(changes)
        changes.pop("lastUpdateDate", None)
        async with self._config_lock:
            current = await self._store.get_config()
            config = AppConfig.model_validate({**current.to_payload(), **changes})
            await self._store.set_config(config)
            return config

    async def generate_review(self, media_type: MediaType) -> Review:
        """Produce and persist exactly one new review, or raise.

        Failures raise a :class:`ReviewGenerationError` subclass and leave the
        stored collection untouched.
        """

        async with self._generation_lock:
            return await self._generate_review(media_type)

    async def check_daily_update(self, now: datetime | None = None) -> Review | None:
        """Run the daily generation if it is due and advance the marker."""

        now = now or self._clock()
        config = await self._store.get_config()
        media_type = due_media_type(config, now)
        if media_type is None:
            return None

        logger.info("Daily update due, generating a %s review", media_type)
        review: Review | None = None
        try:
            review = await self.generate_review(media_type)
        except ReviewGenerationError as exc:
            logger.warning("Daily %s review failed: %s", media_type, exc.message)

        if review is None and self._settings.scheduler_retry_failed_day:
            return None

        async with self._config_lock:
            latest = await self._store.get_config()
            await self._store.set_config(
                latest.model_copy(update={"last_update_date": now})
            )
        return review

    async def director_works(
        self, review: Review, limit: int = MAX_DIRECTOR_WORKS
    ) -> list[PersonCredit]:
        """Return other titles directed by the reviewed title's director."""

        director_id = review.metadata.director_id
        if director_id is None:
            return []
        config = await self._store.get_config()
        api_key = config.tmdb_api_key.strip()
        if not api_key:
            raise MissingCredentialError(
                "TMDB API key must be set. Configure it in the admin site settings."
            )
        try:
            credits = await self._tmdb.fetch_person_credits(api_key, director_id)
        except TMDBError as exc:
            raise UpstreamFetchError(f"Unable to load director credits: {exc}") from exc

        works: dict[int, PersonCredit] = {}
        for credit in credits:
            if credit.job != "Director" or credit.id == review.tmdb_id:
                continue
            works.setdefault(credit.id, credit)
        ranked = sorted(works.values(), key=lambda credit: credit.vote_average, reverse=True)
        return ranked[:limit]

    async def _scheduler_loop(self) -> None:
        while True:
            try:
                await self.check_daily_update()
            except Exception as exc:  # pragma: no cover - background safety net
                logger.exception("Scheduled review update failed: %s", exc)
            await asyncio.sleep(self._poll_seconds)

    async def _generate_review(self, media_type: MediaType) -> Review:
        config = await self._store.get_config()
        tmdb_key = config.tmdb_api_key.strip()
        if not tmdb_key:
            raise MissingCredentialError(
                "TMDB API key must be set. Configure it in the admin site settings."
            )
        gemini_key = config.gemini_api_key.strip() or self._settings.gemini_api_key
        if not gemini_key:
            raise MissingCredentialError(
                "Gemini API key must be set. Configure it in the admin site settings."
            )

        existing = await self._store.get_reviews()
        plan = await self._plan_review(tmdb_key, media_type, existing)
        author = config.active_author
        logger.info(
            "Generating %s review for TMDB %s%s as %s",
            media_type,
            plan.target.id,
            f" season {plan.season.season_number}" if plan.season else "",
            author.style,
        )
        contents = await self._generate_contents(plan, author.style, gemini_key)
        review = self._assemble_review(plan, contents, config)

        await self.mutate_reviews(lambda reviews: [review, *reviews])
        logger.info("Stored review %s (%s)", review.id, review.title[PRIMARY_LANGUAGE])
        return review

    async def _plan_review(
        self, api_key: str, media_type: MediaType, existing: list[Review]
    ) -> ReviewPlan:
        try:
            trending = await self._tmdb.fetch_trending(api_key, media_type)
        except TMDBError as exc:
            raise UpstreamFetchError(f"Unable to load trending titles: {exc}") from exc
        if not trending:
            raise UpstreamFetchError("TMDB returned no trending titles.")

        target = select_target(trending, existing)
        details = await self._fetch_localized_details(api_key, media_type, target.id)
        primary = details[PRIMARY_LANGUAGE]

        season: Season | None = None
        if media_type == "tv" and primary.seasons:
            season = next_unreviewed_season(primary, existing)

        prompt_titles: dict[Language, str] = {}
        display_titles: dict[Language, str] = {}
        overviews: dict[Language, str] = {}
        for language in LANGUAGES:
            detail = details[language]
            name = detail.display_title or primary.display_title
            overview = detail.overview or primary.overview or ""
            if season is None:
                prompt_titles[language] = name
                display_titles[language] = name
                overviews[language] = overview
                continue
            localized_season = detail.season(season.season_number) or season
            number = season.season_number
            prompt_titles[language] = _season_title(name, language, number, prompt=True)
            display_titles[language] = _season_title(name, language, number, prompt=False)
            overviews[language] = (
                localized_season.overview or season.overview or overview
            )

        return ReviewPlan(
            target=target,
            media_type=media_type,
            details=details,
            season=season,
            prompt_titles=prompt_titles,
            display_titles=display_titles,
            overviews=overviews,
        )

    async def _fetch_localized_details(
        self, api_key: str, media_type: MediaType, tmdb_id: int
    ) -> dict[Language, MediaDetail]:
        results = await asyncio.gather(
            *(
                self._tmdb.fetch_details(api_key, media_type, tmdb_id, language)
                for language in LANGUAGES
            ),
            return_exceptions=True,
        )
        fetched = dict(zip(LANGUAGES, results))
        primary = fetched[PRIMARY_LANGUAGE]
        if isinstance(primary, BaseException):
            raise UpstreamFetchError(
                f"Unable to load details for TMDB {tmdb_id}: {primary}"
            ) from primary
        if primary is None:
            raise UpstreamFetchError(f"TMDB has no usable details for {tmdb_id}.")

        details: dict[Language, MediaDetail] = {}
        for language, result in fetched.items():
            if isinstance(result, MediaDetail):
                details[language] = result
                continue
            logger.warning(
                "Falling back to English details for TMDB %s (%s): %s",
                tmdb_id,
                language,
                result,
            )
            details[language] = primary
        return details

    async def _generate_contents(
        self, plan: ReviewPlan, style: AuthorStyle, api_key: str
    ) -> dict[Language, str]:
        results = await asyncio.gather(
            *(
                self._ai.generate_review(
                    plan.prompt_titles[language],
                    plan.media_type,
                    language,
                    plan.overviews[language],
                    style,
                    api_key=api_key,
                )
                for language in LANGUAGES
            ),
            return_exceptions=True,
        )
        # A revoked key takes precedence over other failures.
        for result in results:
            if isinstance(result, CredentialInvalidError):
                raise result
        contents: dict[Language, str] = {}
        for language, result in zip(LANGUAGES, results):
            if isinstance(result, BaseException):
                raise result
            contents[language] = result
        return contents

    def _assemble_review(
        self, plan: ReviewPlan, contents: dict[Language, str], config: AppConfig
    ) -> Review:
        primary = plan.primary
        target = plan.target
        season = plan.season

        if season is not None:
            poster = season.poster_path or target.poster_path or primary.poster_path
            release_year = _release_year(season.air_date, primary.first_air_date)
            episodes = season.episode_count or primary.number_of_episodes or 0
            duration = f"{episodes} Episodes"
        else:
            poster = target.poster_path or primary.poster_path
            release_year = _release_year(primary.release_date, primary.first_air_date)
            if plan.media_type == "movie":
                duration = f"{primary.runtime or 0} min"
            else:
                duration = f"{primary.number_of_seasons or 0} Seasons"

        backdrops = [
            image.file_path
            for image in primary.images.backdrops
            if image.file_path != poster
        ][:MAX_BACKDROPS]
        if not backdrops and target.backdrop_path:
            backdrops = [target.backdrop_path]

        director = next(
            (
                member
                for member in primary.credits.crew
                if member.job in {"Director", "Producer"}
            ),
            None,
        )
        douban_title = plan.details["zh-CN"].display_title or primary.display_title
        low, high = PLACEHOLDER_RATING_RANGE

        return Review(
            id=secrets.token_hex(8),
            tmdb_id=target.id,
            media_type=plan.media_type,
            season_number=season.season_number if season else None,
            title=plan.display_titles,
            poster_path=poster,
            backdrop_paths=backdrops,
            content=contents,
            created_at=self._clock().astimezone(timezone.utc),
            genres=[genre.name for genre in primary.genres],
            release_year=release_year,
            region=(
                primary.production_countries[0].iso_3166_1
                if primary.production_countries
                else "US"
            ),
            visible=True,
            ratings=Ratings(
                tmdb=round(primary.vote_average, 1),
                imdb=round(self._rng.uniform(low, high), 1),
                douban=round(self._rng.uniform(low, high), 1),
            ),
            external_ids=ExternalIds(
                imdb=primary.external_ids.imdb_id,
                tmdb=str(target.id),
                douban=f"{DOUBAN_SEARCH_URL}{quote(douban_title)}",
            ),
            metadata=ReviewMetadata(
                duration=duration,
                director=director.name if director else "Various",
                director_id=director.id if director else None,
                actors=[member.name for member in primary.credits.cast[:MAX_ACTORS]],
                author_id=config.active_author_index,
                author_style=config.active_author.style,
            ),
        )

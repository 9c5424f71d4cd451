"""Client and response schemas for The Movie Database (TMDB)."""

from __future__ import annotations

import logging
from typing import Any

import httpx
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from ..models import MediaType

logger = logging.getLogger(__name__)

IMAGE_BASE_URL = "https://image.tmdb.org/t/p/"
PLACEHOLDER_IMAGE_URL = "https://picsum.photos/400/600"
LANGUAGE_CODES: dict[str, str] = {"en": "en-US", "zh-TW": "zh-TW", "zh-CN": "zh-CN"}
DETAIL_APPENDS = "credits,images,external_ids"


class TMDBError(RuntimeError):
    """Raised when TMDB cannot be reached or rejects a request."""


class TMDBModel(BaseModel):
    model_config = ConfigDict(extra="ignore")


class TrendingItem(TMDBModel):
    id: int
    title: str | None = None
    name: str | None = None
    poster_path: str | None = None
    backdrop_path: str | None = None


class Genre(TMDBModel):
    id: int | None = None
    name: str


class Country(TMDBModel):
    iso_3166_1: str
    name: str | None = None


class Season(TMDBModel):
    season_number: int
    name: str | None = None
    overview: str | None = None
    poster_path: str | None = None
    air_date: str | None = None
    episode_count: int | None = None


class CastMember(TMDBModel):
    name: str
    character: str | None = None


class CrewMember(TMDBModel):
    id: int | None = None
    name: str
    job: str | None = None


class Credits(TMDBModel):
    cast: list[CastMember] = Field(default_factory=list)
    crew: list[CrewMember] = Field(default_factory=list)


class ImageFile(TMDBModel):
    file_path: str


class ImageSet(TMDBModel):
    backdrops: list[ImageFile] = Field(default_factory=list)


class ExternalIds(TMDBModel):
    imdb_id: str | None = None


class MediaDetail(TMDBModel):
    """Detail record for a movie or TV show in one language."""

    id: int
    success: bool = True
    title: str | None = None
    name: str | None = None
    overview: str | None = None
    poster_path: str | None = None
    backdrop_path: str | None = None
    release_date: str | None = None
    first_air_date: str | None = None
    runtime: int | None = None
    number_of_seasons: int | None = None
    number_of_episodes: int | None = None
    vote_average: float = 0.0
    genres: list[Genre] = Field(default_factory=list)
    production_countries: list[Country] = Field(default_factory=list)
    seasons: list[Season] = Field(default_factory=list)
    credits: Credits = Field(default_factory=Credits)
    images: ImageSet = Field(default_factory=ImageSet)
    external_ids: ExternalIds = Field(default_factory=ExternalIds)

    @property
    def display_title(self) -> str:
        return self.title or self.name or ""

    def season(self, season_number: int) -> Season | None:
        for season in self.seasons:
            if season.season_number == season_number:
                return season
        return None


class PersonCredit(TMDBModel):
    id: int
    media_type: str | None = None
    title: str | None = None
    name: str | None = None
    poster_path: str | None = None
    job: str | None = None
    vote_average: float = 0.0


class TMDBClient:
    """Client responsible for trending lists and localized detail lookups."""

    def __init__(self, http_client: httpx.AsyncClient):
        self._client = http_client

    async def fetch_trending(
        self, api_key: str, media_type: MediaType
    ) -> list[TrendingItem]:
        """Return today's trending titles for the media type."""

        payload = await self._get_json(
            f"/trending/{media_type}/day", {"api_key": api_key}
        )
        results = payload.get("results") if isinstance(payload, dict) else None
        if not isinstance(results, list):
            return []

        items: list[TrendingItem] = []
        for entry in results:
            try:
                items.append(TrendingItem.model_validate(entry))
            except ValidationError:
                logger.debug("Ignoring malformed trending entry: %s", entry)
        return items

    async def fetch_details(
        self,
        api_key: str,
        media_type: MediaType,
        tmdb_id: int,
        language: str = "en",
    ) -> MediaDetail | None:
        """Return the localized detail record, or ``None`` when unusable."""

        params = {
            "api_key": api_key,
            "append_to_response": DETAIL_APPENDS,
            "language": LANGUAGE_CODES.get(language, language),
        }
        try:
            response = await self._client.get(
                f"/{media_type}/{tmdb_id}", params=params
            )
        except httpx.HTTPError as exc:
            raise TMDBError(f"TMDB detail fetch for {tmdb_id} failed: {exc}") from exc
        if response.status_code >= 400:
            logger.warning(
                "TMDB detail fetch for %s %s (%s) failed: %s",
                media_type,
                tmdb_id,
                language,
                response.text,
            )
            return None
        try:
            detail = MediaDetail.model_validate(response.json())
        except (ValueError, ValidationError) as exc:
            logger.warning(
                "TMDB detail payload for %s %s (%s) is invalid: %s",
                media_type,
                tmdb_id,
                language,
                exc,
            )
            return None
        if not detail.success:
            return None
        return detail

    async def fetch_person_credits(
        self, api_key: str, person_id: int
    ) -> list[PersonCredit]:
        """Return the combined credits a person worked on as crew."""

        payload = await self._get_json(
            f"/person/{person_id}/combined_credits", {"api_key": api_key}
        )
        crew = payload.get("crew") if isinstance(payload, dict) else None
        if not isinstance(crew, list):
            return []
        credits: list[PersonCredit] = []
        for entry in crew:
            try:
                credits.append(PersonCredit.model_validate(entry))
            except ValidationError:
                continue
        return credits

    async def _get_json(self, path: str, params: dict[str, Any]) -> Any:
        try:
            response = await self._client.get(path, params=params)
        except httpx.HTTPError as exc:
            raise TMDBError(f"TMDB request to {path} failed: {exc}") from exc
        if response.status_code >= 400:
            raise TMDBError(
                f"TMDB request to {path} returned {response.status_code}: {response.text}"
            )
        try:
            return response.json()
        except ValueError as exc:
            raise TMDBError(f"TMDB returned invalid JSON for {path}") from exc


def image_url(path: str | None, size: str = "original") -> str:
    """Return the absolute image URL for a TMDB file path."""

    if not path:
        return PLACEHOLDER_IMAGE_URL
    if path.startswith("http"):
        return path
    return f"{IMAGE_BASE_URL}{size}{path}"

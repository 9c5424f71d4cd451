"""Entry point for the FastAPI-powered review site."""

from __future__ import annotations

import logging
import secrets
from contextlib import AsyncExitStack, asynccontextmanager
from typing import Any

import httpx
from fastapi import Depends, FastAPI, HTTPException, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.security import HTTPBasic, HTTPBasicCredentials
from pydantic import BaseModel, Field, ValidationError

from .config import settings
from .database import Database
from .exceptions import (
    CredentialInvalidError,
    MissingCredentialError,
    ReviewGenerationError,
)
from .models import (
    PRIMARY_LANGUAGE,
    AppConfig,
    Language,
    MediaType,
    Review,
    ReviewUpdate,
    WatchlistItem,
)
from .services.gemini import GeminiClient
from .services.review_generator import ReviewService
from .services.tmdb import TMDBClient, image_url
from .storage import StateStore
from .views import (
    ReviewFilters,
    available_genres,
    available_regions,
    available_years,
    draw_lottery,
    filter_reviews,
    find_review,
    in_watchlist,
    paginate,
    related_by_genre,
    toggle_watched,
    toggle_watchlist,
)

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

app: FastAPI

basic_auth = HTTPBasic(auto_error=False)


class GenerateRequest(BaseModel):
    media_type: MediaType = Field(alias="mediaType")


class WatchlistToggleRequest(BaseModel):
    review_id: str = Field(alias="reviewId")
    lang: Language = PRIMARY_LANGUAGE


class PasswordUpdate(BaseModel):
    password: str = Field(min_length=1, max_length=200)


@asynccontextmanager
async def lifespan(_: FastAPI):
    exit_stack = AsyncExitStack()
    tmdb_http_client = await exit_stack.enter_async_context(
        httpx.AsyncClient(
            base_url=str(settings.tmdb_api_url),
            timeout=httpx.Timeout(20.0, connect=10.0),
        )
    )
    gemini_http_client = await exit_stack.enter_async_context(
        httpx.AsyncClient(
            base_url=str(settings.gemini_api_url),
            timeout=httpx.Timeout(120.0, connect=10.0),
        )
    )
    database = Database(settings.database_url)
    await database.create_all()

    store = StateStore(
        database.session_factory,
        default_config=lambda: AppConfig(tmdb_api_key=settings.tmdb_api_key or ""),
    )
    review_service = ReviewService(
        settings,
        store,
        TMDBClient(tmdb_http_client),
        GeminiClient(settings, gemini_http_client),
    )

    app.state.review_service = review_service
    app.state.database = database
    await review_service.start()

    try:
        yield
    finally:  # pragma: no cover - teardown path exercised at runtime
        await review_service.stop()
        await database.dispose()
        await exit_stack.aclose()


def create_app() -> FastAPI:
    fastapi_app = FastAPI(
        title=settings.app_name,
        description="AI-written movie and TV reviews powered by TMDB and Gemini",
        version="1.0.0",
        lifespan=lifespan,
    )

    fastapi_app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE"],
        allow_headers=["*"],
    )

    register_routes(fastapi_app)
    return fastapi_app


def get_review_service(app: FastAPI) -> ReviewService:
    service = getattr(app.state, "review_service", None)
    if not isinstance(service, ReviewService):
        raise RuntimeError("Review service not initialised")
    return service


async def verify_admin(
    store: StateStore, credentials: HTTPBasicCredentials | None
) -> bool:
    """Compare the supplied credentials with the fixed admin account."""

    if credentials is None:
        return False
    password = await store.get_admin_password()
    username_ok = secrets.compare_digest(
        credentials.username.encode("utf-8"), settings.admin_username.encode("utf-8")
    )
    password_ok = secrets.compare_digest(
        credentials.password.encode("utf-8"), password.encode("utf-8")
    )
    return username_ok and password_ok


def register_routes(fastapi_app: FastAPI) -> None:
    def _service() -> ReviewService:
        return get_review_service(fastapi_app)

    async def _is_admin(
        credentials: HTTPBasicCredentials | None = Depends(basic_auth),
    ) -> bool:
        return await verify_admin(_service().store, credentials)

    async def _require_admin(is_admin: bool = Depends(_is_admin)) -> None:
        if not is_admin:
            raise HTTPException(
                status_code=401,
                detail="Invalid credentials",
                headers={"WWW-Authenticate": "Basic"},
            )

    async def _load_review(review_id: str, *, include_hidden: bool) -> Review:
        reviews = await _service().store.get_reviews()
        review = find_review(reviews, review_id)
        if review is None or (not review.visible and not include_hidden):
            raise HTTPException(status_code=404, detail="Review not found")
        return review

    @fastapi_app.get("/healthz")
    async def healthcheck() -> dict[str, Any]:
        return {"status": "ok", "generating": _service().is_generating}

    @fastapi_app.get("/api/site")
    async def site_info() -> dict[str, Any]:
        config = await _service().store.get_config()
        return config.public_payload()

    @fastapi_app.get("/api/reviews")
    async def list_reviews(
        type: MediaType | None = None,
        genre: str | None = None,
        region: str | None = None,
        year: int | None = None,
        is_admin: bool = Depends(_is_admin),
    ) -> JSONResponse:
        reviews = await _service().store.get_reviews()
        filters = ReviewFilters(media_type=type, genre=genre, region=region, year=year)
        matched = filter_reviews(reviews, filters, include_hidden=is_admin)
        return JSONResponse({"items": [review.to_payload() for review in matched]})

    @fastapi_app.get("/api/reviews/facets")
    async def review_facets(is_admin: bool = Depends(_is_admin)) -> dict[str, Any]:
        reviews = await _service().store.get_reviews()
        visible = filter_reviews(reviews, include_hidden=is_admin)
        return {
            "genres": available_genres(visible),
            "years": available_years(visible),
            "regions": available_regions(visible),
        }

    @fastapi_app.get("/api/reviews/{review_id}")
    async def review_detail(
        review_id: str, is_admin: bool = Depends(_is_admin)
    ) -> JSONResponse:
        store = _service().store
        review = await _load_review(review_id, include_hidden=is_admin)
        reviews = filter_reviews(await store.get_reviews(), include_hidden=is_admin)
        watchlist = await store.get_watchlist()
        config = await store.get_config()
        author = (
            config.authors[review.metadata.author_id]
            if 0 <= review.metadata.author_id < len(config.authors)
            else config.authors[0]
        )
        return JSONResponse(
            {
                "review": review.to_payload(),
                "author": author.to_payload(),
                "images": {
                    "poster": image_url(review.poster_path, "w500"),
                    "backdrops": [
                        image_url(path, "w1280") for path in review.backdrop_paths
                    ],
                },
                "related": [
                    other.to_payload() for other in related_by_genre(review, reviews)
                ],
                "inWatchlist": in_watchlist(watchlist, review.tmdb_id),
            }
        )

    @fastapi_app.get("/api/reviews/{review_id}/director-works")
    async def review_director_works(
        review_id: str, is_admin: bool = Depends(_is_admin)
    ) -> JSONResponse:
        review = await _load_review(review_id, include_hidden=is_admin)
        try:
            works = await _service().director_works(review)
        except MissingCredentialError as exc:
            return JSONResponse(exc.to_dict(), status_code=400)
        except ReviewGenerationError as exc:
            return JSONResponse(exc.to_dict(), status_code=502)
        return JSONResponse(
            {
                "director": review.metadata.director,
                "items": [
                    {
                        "tmdbId": credit.id,
                        "mediaType": credit.media_type,
                        "title": credit.title or credit.name,
                        "posterUrl": image_url(credit.poster_path, "w342"),
                        "voteAverage": round(credit.vote_average, 1),
                    }
                    for credit in works
                ],
            }
        )

    @fastapi_app.post("/api/lottery")
    async def lottery(
        lang: Language = PRIMARY_LANGUAGE, is_admin: bool = Depends(_is_admin)
    ) -> Response:
        reviews = await _service().store.get_reviews()
        result = draw_lottery(filter_reviews(reviews, include_hidden=is_admin), lang)
        if result is None:
            return Response(status_code=204)
        return JSONResponse(result.to_payload(lang))

    @fastapi_app.get("/api/watchlist")
    async def watchlist() -> JSONResponse:
        items = await _service().store.get_watchlist()
        return JSONResponse({"items": [item.to_payload() for item in items]})

    @fastapi_app.post("/api/watchlist/toggle")
    async def watchlist_toggle(
        body: WatchlistToggleRequest, is_admin: bool = Depends(_is_admin)
    ) -> JSONResponse:
        review = await _load_review(body.review_id, include_hidden=is_admin)
        updated = await _service().mutate_watchlist(
            lambda items: toggle_watchlist(items, review, body.lang)
        )
        return JSONResponse(
            {
                "inWatchlist": in_watchlist(updated, review.tmdb_id),
                "items": [item.to_payload() for item in updated],
            }
        )

    @fastapi_app.post("/api/watchlist/{item_id}/watched")
    async def watchlist_watched(item_id: str) -> JSONResponse:
        found: list[str] = []

        def _toggle(items: list[WatchlistItem]) -> list[WatchlistItem]:
            if any(item.id == item_id for item in items):
                found.append(item_id)
            return toggle_watched(items, item_id)

        updated = await _service().mutate_watchlist(_toggle)
        if not found:
            raise HTTPException(status_code=404, detail="Watchlist item not found")
        return JSONResponse({"items": [item.to_payload() for item in updated]})

    @fastapi_app.delete("/api/watchlist/{item_id}")
    async def watchlist_remove(item_id: str) -> JSONResponse:
        removed: list[str] = []

        def _remove(items: list[WatchlistItem]) -> list[WatchlistItem]:
            remaining = [item for item in items if item.id != item_id]
            if len(remaining) != len(items):
                removed.append(item_id)
            return remaining

        remaining = await _service().mutate_watchlist(_remove)
        if not removed:
            raise HTTPException(status_code=404, detail="Watchlist item not found")
        return JSONResponse({"items": [item.to_payload() for item in remaining]})

    @fastapi_app.post("/api/admin/login", dependencies=[Depends(_require_admin)])
    async def admin_login() -> dict[str, str]:
        return {"status": "ok", "username": settings.admin_username}

    @fastapi_app.get("/api/admin/reviews", dependencies=[Depends(_require_admin)])
    async def admin_reviews(page: int = 1) -> JSONResponse:
        reviews = await _service().store.get_reviews()
        return JSONResponse(
            paginate(reviews, page, settings.admin_page_size).to_payload()
        )

    @fastapi_app.post("/api/admin/generate", dependencies=[Depends(_require_admin)])
    async def admin_generate(body: GenerateRequest) -> JSONResponse:
        try:
            review = await _service().generate_review(body.media_type)
        except MissingCredentialError as exc:
            return JSONResponse(exc.to_dict(), status_code=400)
        except CredentialInvalidError as exc:
            return JSONResponse(exc.to_dict(), status_code=401)
        except ReviewGenerationError as exc:
            return JSONResponse(exc.to_dict(), status_code=502)
        return JSONResponse(review.to_payload(), status_code=201)

    @fastapi_app.patch(
        "/api/admin/reviews/{review_id}", dependencies=[Depends(_require_admin)]
    )
    async def admin_edit_review(review_id: str, request: Request) -> JSONResponse:
        try:
            update = ReviewUpdate.model_validate(await request.json())
        except (ValueError, ValidationError) as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc

        edited: list[Review] = []

        def _apply(reviews: list[Review]) -> list[Review]:
            result: list[Review] = []
            for review in reviews:
                if review.id == review_id:
                    review = update.apply(review)
                    edited.append(review)
                result.append(review)
            return result

        try:
            await _service().mutate_reviews(_apply)
        except ValidationError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        if not edited:
            raise HTTPException(status_code=404, detail="Review not found")
        return JSONResponse(edited[0].to_payload())

    @fastapi_app.post(
        "/api/admin/reviews/{review_id}/visibility",
        dependencies=[Depends(_require_admin)],
    )
    async def admin_toggle_visibility(review_id: str) -> JSONResponse:
        toggled: list[Review] = []

        def _toggle(reviews: list[Review]) -> list[Review]:
            result: list[Review] = []
            for review in reviews:
                if review.id == review_id:
                    review = review.model_copy(update={"visible": not review.visible})
                    toggled.append(review)
                result.append(review)
            return result

        await _service().mutate_reviews(_toggle)
        if not toggled:
            raise HTTPException(status_code=404, detail="Review not found")
        return JSONResponse(toggled[0].to_payload())

    @fastapi_app.delete(
        "/api/admin/reviews/{review_id}", dependencies=[Depends(_require_admin)]
    )
    async def admin_delete_review(review_id: str) -> dict[str, Any]:
        removed: list[str] = []

        def _delete(reviews: list[Review]) -> list[Review]:
            kept = [review for review in reviews if review.id != review_id]
            if len(kept) != len(reviews):
                removed.append(review_id)
            return kept

        remaining = await _service().mutate_reviews(_delete)
        if not removed:
            raise HTTPException(status_code=404, detail="Review not found")
        return {"deleted": review_id, "total": len(remaining)}

    @fastapi_app.get("/api/admin/config", dependencies=[Depends(_require_admin)])
    async def admin_get_config() -> JSONResponse:
        config = await _service().store.get_config()
        return JSONResponse(config.to_payload())

    @fastapi_app.put("/api/admin/config", dependencies=[Depends(_require_admin)])
    async def admin_save_config(request: Request) -> JSONResponse:
        try:
            payload = await request.json()
        except ValueError as exc:
            raise HTTPException(status_code=400, detail="Invalid payload") from exc
        if not isinstance(payload, dict):
            raise HTTPException(status_code=400, detail="Invalid payload")
        try:
            config = await _service().update_config(payload)
        except ValidationError as exc:
            raise HTTPException(
                status_code=400,
                detail=exc.errors(include_url=False, include_context=False),
            ) from exc
        logger.info("Site settings updated")
        return JSONResponse(config.to_payload())

    @fastapi_app.put("/api/admin/password", dependencies=[Depends(_require_admin)])
    async def admin_set_password(body: PasswordUpdate) -> dict[str, str]:
        await _service().store.set_admin_password(body.password)
        logger.info("Admin password changed")
        return {"status": "ok"}


app = create_app()


if __name__ == "__main__":  # pragma: no cover - manual execution
    import uvicorn

    uvicorn.run(
        "app.main:app",
        host=settings.server_host,
        port=settings.server_port,
        reload=settings.environment == "development",
    )

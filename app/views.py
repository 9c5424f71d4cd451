"""Derived views over the review and watchlist collections."""

from __future__ import annotations

import math
import random
import secrets
from dataclasses import dataclass
from typing import Sequence

from .models import PRIMARY_LANGUAGE, Language, MediaType, Review, WatchlistItem

FORTUNES: dict[str, tuple[str, ...]] = {
    "en": (
        "A plot twist is heading your way. Keep the popcorn close.",
        "Tonight's pick will outshine its trailer.",
        "Someone will quote this movie at you within a week.",
        "Your next binge ends exactly when you planned. Probably.",
        "The credits hide a scene worth waiting for.",
        "A forgotten favourite is about to trend again.",
    ),
    "zh-TW": (
        "劇情即將大反轉，爆米花請準備好。",
        "今晚的選擇會比預告片更精彩。",
        "一週內會有人跟你引用這部片的台詞。",
        "你的追劇計畫會準時結束，大概吧。",
        "片尾字幕後藏著值得等待的彩蛋。",
        "一部被遺忘的愛片即將再度爆紅。",
    ),
    "zh-CN": (
        "剧情即将大反转，爆米花请准备好。",
        "今晚的选择会比预告片更精彩。",
        "一周内会有人跟你引用这部片的台词。",
        "你的追剧计划会准时结束，大概吧。",
        "片尾字幕后藏着值得等待的彩蛋。",
        "一部被遗忘的爱片即将再度爆红。",
    ),
}

FORTUNE_TYPES: dict[str, tuple[str, ...]] = {
    "en": ("Excellent Luck", "Good Luck", "Great Luck", "Small Luck"),
    "zh-TW": ("大吉", "吉", "中吉", "小吉"),
    "zh-CN": ("大吉", "吉", "中吉", "小吉"),
}


@dataclass(frozen=True, slots=True)
class ReviewFilters:
    """Optional predicates applied to the review list; ``None`` matches all."""

    media_type: MediaType | None = None
    genre: str | None = None
    region: str | None = None
    year: int | None = None

    def matches(self, review: Review) -> bool:
        if self.media_type is not None and review.media_type != self.media_type:
            return False
        if self.genre is not None and self.genre not in review.genres:
            return False
        if self.region is not None and review.region != self.region:
            return False
        if self.year is not None and review.release_year != self.year:
            return False
        return True


def filter_reviews(
    reviews: Sequence[Review],
    filters: ReviewFilters | None = None,
    *,
    include_hidden: bool = False,
) -> list[Review]:
    """Return reviews matching every filter, preserving collection order."""

    filters = filters or ReviewFilters()
    return [
        review
        for review in reviews
        if (review.visible or include_hidden) and filters.matches(review)
    ]


def available_genres(reviews: Sequence[Review]) -> list[str]:
    seen: dict[str, None] = {}
    for review in reviews:
        for genre in review.genres:
            seen.setdefault(genre, None)
    return list(seen)


def available_years(reviews: Sequence[Review]) -> list[int]:
    years = {review.release_year for review in reviews if review.release_year}
    return sorted(years, reverse=True)


def available_regions(reviews: Sequence[Review]) -> list[str]:
    return sorted({review.region for review in reviews if review.region})


@dataclass(slots=True)
class Page:
    items: list[Review]
    page: int
    page_size: int
    total: int

    @property
    def total_pages(self) -> int:
        return math.ceil(self.total / self.page_size) if self.total else 0

    def to_payload(self) -> dict[str, object]:
        return {
            "items": [review.to_payload() for review in self.items],
            "page": self.page,
            "pageSize": self.page_size,
            "total": self.total,
            "totalPages": self.total_pages,
        }


def paginate(reviews: Sequence[Review], page: int = 1, page_size: int = 10) -> Page:
    """Slice a fixed-size page out of the collection (1-based pages)."""

    if page_size < 1:
        raise ValueError("page_size must be positive")
    page = max(page, 1)
    start = (page - 1) * page_size
    return Page(
        items=list(reviews[start : start + page_size]),
        page=page,
        page_size=page_size,
        total=len(reviews),
    )


@dataclass(frozen=True, slots=True)
class LotteryResult:
    review: Review
    fortune: str
    fortune_type: str

    def share_text(self, language: Language) -> str:
        return (
            f'I picked "{self.review.localized_title(language)}"! '
            f"Fortune: {self.fortune_type}. {self.fortune}"
        )

    def to_payload(self, language: Language) -> dict[str, object]:
        return {
            "review": self.review.to_payload(),
            "fortune": self.fortune,
            "fortuneType": self.fortune_type,
            "shareText": self.share_text(language),
        }


def draw_lottery(
    reviews: Sequence[Review],
    language: Language = PRIMARY_LANGUAGE,
    rng: random.Random | None = None,
) -> LotteryResult | None:
    """Draw a random review and an unrelated random fortune.

    Returns ``None`` without drawing anything when ``reviews`` is empty.
    """

    if not reviews:
        return None
    rng = rng or random.Random()
    fortunes = FORTUNES.get(language) or FORTUNES[PRIMARY_LANGUAGE]
    fortune_types = FORTUNE_TYPES.get(language) or FORTUNE_TYPES[PRIMARY_LANGUAGE]
    return LotteryResult(
        review=rng.choice(list(reviews)),
        fortune=rng.choice(fortunes),
        fortune_type=rng.choice(fortune_types),
    )


def related_by_genre(
    review: Review, reviews: Sequence[Review], limit: int = 3
) -> list[Review]:
    genres = set(review.genres)
    related = [
        other
        for other in reviews
        if other.id != review.id and genres.intersection(other.genres)
    ]
    return related[:limit]


def find_review(reviews: Sequence[Review], review_id: str) -> Review | None:
    return next((review for review in reviews if review.id == review_id), None)


def toggle_watchlist(
    watchlist: Sequence[WatchlistItem],
    review: Review,
    language: Language = PRIMARY_LANGUAGE,
) -> list[WatchlistItem]:
    """Remove the review's title from the watchlist, or prepend it."""

    if any(item.tmdb_id == review.tmdb_id for item in watchlist):
        return [item for item in watchlist if item.tmdb_id != review.tmdb_id]
    item = WatchlistItem(
        id=secrets.token_hex(8),
        tmdb_id=review.tmdb_id,
        media_type=review.media_type,
        title=review.localized_title(language),
        poster_path=review.poster_path,
        watched=False,
    )
    return [item, *watchlist]


def toggle_watched(
    watchlist: Sequence[WatchlistItem], item_id: str
) -> list[WatchlistItem]:
    return [
        item.model_copy(update={"watched": not item.watched})
        if item.id == item_id
        else item
        for item in watchlist
    ]


def in_watchlist(watchlist: Sequence[WatchlistItem], tmdb_id: int) -> bool:
    return any(item.tmdb_id == tmdb_id for item in watchlist)

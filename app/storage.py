"""Key/value persistence for the review, config, watchlist and admin records."""

from __future__ import annotations

import logging
from typing import Any, Callable, Iterable, TypeVar

from pydantic import BaseModel, ValidationError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from .db_models import StoredValue
from .models import AppConfig, Review, WatchlistItem

logger = logging.getLogger(__name__)

REVIEWS_KEY = "my_ai_movie_reviews"
CONFIG_KEY = "my_ai_movie_config"
WATCHLIST_KEY = "my_ai_movie_watchlist"
ADMIN_PASSWORD_KEY = "my_ai_movie_admin_pass"

DEFAULT_ADMIN_PASSWORD = "admin"

ModelT = TypeVar("ModelT", bound=BaseModel)


class StateStore:
    """Reads and writes whole collections under fixed keys.

    Every setter replaces the stored document wholesale; there are no partial
    updates, transactions spanning keys, or schema versions. Configuration is
    shallow-merged over the defaults on load so newly introduced fields pick
    up their default values.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        default_config: Callable[[], AppConfig] = AppConfig,
    ):
        self._session_factory = session_factory
        self._default_config = default_config

    async def get_reviews(self) -> list[Review]:
        return self._parse_list(await self._read(REVIEWS_KEY), Review, REVIEWS_KEY)

    async def set_reviews(self, reviews: Iterable[Review]) -> None:
        await self._write(REVIEWS_KEY, [review.to_payload() for review in reviews])

    async def get_watchlist(self) -> list[WatchlistItem]:
        return self._parse_list(
            await self._read(WATCHLIST_KEY), WatchlistItem, WATCHLIST_KEY
        )

    async def set_watchlist(self, items: Iterable[WatchlistItem]) -> None:
        await self._write(WATCHLIST_KEY, [item.to_payload() for item in items])

    async def get_config(self) -> AppConfig:
        defaults = self._default_config()
        stored = await self._read(CONFIG_KEY)
        if not isinstance(stored, dict):
            return defaults
        merged = {**defaults.to_payload(), **stored}
        try:
            return AppConfig.model_validate(merged)
        except ValidationError as exc:
            logger.warning("Stored configuration is invalid, using defaults: %s", exc)
            return defaults

    async def set_config(self, config: AppConfig) -> None:
        await self._write(CONFIG_KEY, config.to_payload())

    async def get_admin_password(self) -> str:
        stored = await self._read(ADMIN_PASSWORD_KEY)
        if isinstance(stored, str) and stored:
            return stored
        return DEFAULT_ADMIN_PASSWORD

    async def set_admin_password(self, password: str) -> None:
        await self._write(ADMIN_PASSWORD_KEY, password)

    async def _read(self, key: str) -> Any:
        async with self._session_factory() as session:
            record = await session.get(StoredValue, key)
            if record is None:
                return None
            return record.value

    async def _write(self, key: str, value: Any) -> None:
        async with self._session_factory() as session:
            record = await session.get(StoredValue, key)
            if record is None:
                session.add(StoredValue(key=key, value=value))
            else:
                record.value = value
            await session.commit()

    @staticmethod
    def _parse_list(raw: Any, model: type[ModelT], key: str) -> list[ModelT]:
        if not isinstance(raw, list):
            return []
        parsed: list[ModelT] = []
        for entry in raw:
            try:
                parsed.append(model.model_validate(entry))
            except ValidationError as exc:
                logger.warning("Skipping invalid entry stored under %s: %s", key, exc)
        return parsed

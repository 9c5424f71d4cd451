"""Database utilities for the CineCritic service."""

from __future__ import annotations

import json
from contextlib import asynccontextmanager
from functools import partial
from typing import AsyncIterator

from sqlalchemy import MetaData
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    """Declarative base for the state tables."""

    metadata = MetaData()


class Database:
    """Owns the async engine and hands out sessions for the state store.

    Stored documents carry Chinese titles and review text, so JSON columns are
    written without ASCII escaping to keep the database file readable.
    """

    def __init__(self, database_url: str):
        self._engine: AsyncEngine = create_async_engine(
            database_url,
            future=True,
            json_serializer=partial(json.dumps, ensure_ascii=False),
        )
        self.session_factory: async_sessionmaker[AsyncSession] = async_sessionmaker(
            self._engine, expire_on_commit=False
        )

    @property
    def engine(self) -> AsyncEngine:
        return self._engine

    async def create_all(self) -> None:
        """Create the state table if it does not yet exist."""

        from . import db_models  # noqa: F401

        async with self._engine.begin() as connection:
            await connection.run_sync(Base.metadata.create_all)

    async def dispose(self) -> None:
        await self._engine.dispose()

    @asynccontextmanager
    async def session(self) -> AsyncIterator[AsyncSession]:
        """Yield a session bound to the engine."""

        async with self.session_factory() as session:
            yield session

"""Async-движок SQLModel и выдача сессий в FastAPI-ручки."""

from __future__ import annotations

from typing import AsyncIterator

from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool
from sqlmodel import SQLModel
from sqlmodel.ext.asyncio.session import AsyncSession

from config.settings import get_settings
from portal import models  # noqa: F401  импортируем модели для регистрации метаданных

settings = get_settings()
engine = create_async_engine(
    settings.database.dsn,
    echo=settings.database.echo,
    poolclass=NullPool,
)
session_maker: async_sessionmaker[AsyncSession] = async_sessionmaker(
    bind=engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


def build_session_maker(bind: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(bind=bind, class_=AsyncSession, expire_on_commit=False)


async def init_db(bind: AsyncEngine | None = None) -> None:
    """Создание таблиц без миграций (dev / тесты). В проде - Alembic."""

    async with (bind or engine).begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)


def get_session_maker() -> async_sessionmaker[AsyncSession]:
    return session_maker


async def session_scope(
    maker: async_sessionmaker[AsyncSession],
) -> AsyncIterator[AsyncSession]:
    """Создаёт AsyncSession на время обработки запроса."""

    async with maker() as session:
        yield session


__all__ = [
    "build_session_maker",
    "engine",
    "get_session_maker",
    "init_db",
    "session_scope",
]

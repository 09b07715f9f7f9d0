"""Database bootstrap helpers.

Nothing here is created at import time: the application builds one engine
and session factory at startup and hands the factory to every repository.
"""

from datetime import datetime, timezone

from sqlalchemy import JSON, text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from paysub.common.logging import logger

# JSONB on Postgres, plain JSON elsewhere (SQLite in tests).
JSONType = JSON().with_variant(JSONB(), "postgresql")


class Base(DeclarativeBase):
    """Declarative base for SQLAlchemy models."""

    pass


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime | None) -> datetime | None:
    """SQLite hands back naive datetimes; everything stored is UTC."""

    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


def async_database_url(url: str) -> str:
    """Normalise a plain postgres URL to the async psycopg driver."""

    if url.startswith("postgresql://"):
        return url.replace("postgresql://", "postgresql+psycopg://", 1)
    if url.startswith("postgres://"):
        return url.replace("postgres://", "postgresql+psycopg://", 1)
    return url


def build_engine(database_url: str) -> AsyncEngine:
    url = async_database_url(database_url)
    if url.startswith("sqlite"):
        return create_async_engine(url)
    return create_async_engine(url, pool_pre_ping=True)


def build_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    # `expire_on_commit=False` keeps ORM objects readable after commit.
    return async_sessionmaker(engine, class_=AsyncSession, autoflush=False, expire_on_commit=False)


async def check_database(session_factory: async_sessionmaker[AsyncSession]) -> bool:
    """Return whether the store answers a trivial query."""

    try:
        async with session_factory() as db:
            await db.execute(text("SELECT 1"))
        return True
    except Exception as exc:
        logger.warning("database_health_check_failed error=%s", exc)
        return False

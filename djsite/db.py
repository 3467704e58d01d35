"""Async SQLAlchemy engine for the content database."""

from __future__ import annotations

from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base

from djsite.config import settings

Base = declarative_base()


def async_database_url(raw_url: str) -> str:
    """Point Postgres URLs (``postgres://`` included) at the asyncpg driver."""

    url = make_url(raw_url)
    if url.get_backend_name() in {"postgresql", "postgres"} and url.drivername != "postgresql+asyncpg":
        url = url.set(drivername="postgresql+asyncpg")
    return url.render_as_string(hide_password=False)


def _connect(database_url: str | None) -> tuple[AsyncEngine | None, async_sessionmaker[AsyncSession] | None]:
    if not database_url:
        return None, None
    engine = create_async_engine(async_database_url(database_url), pool_pre_ping=True)
    return engine, async_sessionmaker(engine, expire_on_commit=False)


_engine, _session_factory = _connect(settings.database_url)


def get_session_factory() -> async_sessionmaker[AsyncSession] | None:
    """Session factory for the content database, or ``None`` when it is not configured."""

    return _session_factory


async def create_tables() -> None:
    if _engine is None:
        return
    # Importing registers every mapped table on Base.metadata.
    from djsite import models  # noqa: F401
    from djsite.services import auth  # noqa: F401

    async with _engine.begin() as connection:
        await connection.run_sync(Base.metadata.create_all)

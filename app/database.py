"""
Lumen — Async database engine and sessions

The engine is chosen from configuration:

- ``CLOUD_SQL_USE_UNIX_SOCKET`` with a ``CLOUD_SQL_INSTANCE_CONNECTION``
  name connects through the Cloud SQL Python Connector (IAM auth, asyncpg).
- Otherwise ``DATABASE_URL`` is used as-is.  PostgreSQL URLs run on asyncpg
  with a tuned pool; SQLite URLs (aiosqlite) are accepted for local runs and
  tests.

Two ways to get a session:

- ``get_db`` for request handlers (commit on success, rollback on error).
- ``async_session_factory`` for the background generation pipeline, which
  outlives the request that started it and opens its own short sessions.
"""

from __future__ import annotations

from typing import Any, AsyncGenerator

import structlog
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from app.config import get_settings

logger = structlog.get_logger("lumen.database")


class Base(DeclarativeBase):
    """Declarative base shared by every Lumen model."""


# Server databases only; SQLite's pool rejects these.
SERVER_POOL_OPTIONS: dict[str, Any] = {
    "pool_size": 10,
    "max_overflow": 5,
    "pool_timeout": 30,
    "pool_recycle": 1800,
    "pool_pre_ping": True,
}


def normalise_database_url(url: str) -> str:
    """Route a bare ``postgresql://`` URL to the asyncpg driver."""
    if url.startswith("postgresql://"):
        return "postgresql+asyncpg://" + url[len("postgresql://"):]
    return url


def build_engine_from_url(url: str, echo: bool = False) -> AsyncEngine:
    """Create an async engine for ``url`` with backend-appropriate pooling."""
    url = normalise_database_url(url)
    backend = make_url(url).get_backend_name()

    options: dict[str, Any] = {"echo": echo}
    if backend != "sqlite":
        options.update(SERVER_POOL_OPTIONS)

    return create_async_engine(url, **options)


def _cloud_sql_engine(echo: bool) -> AsyncEngine:
    from google.cloud.sql.connector import Connector

    settings = get_settings()
    connector = Connector()

    async def _connect():
        return await connector.connect_async(
            settings.CLOUD_SQL_INSTANCE_CONNECTION,
            "asyncpg",
            user=settings.DB_USER,
            password=settings.DB_PASSWORD,
            db=settings.DB_NAME,
            enable_iam_auth=True,
        )

    return create_async_engine(
        "postgresql+asyncpg://",
        async_creator=_connect,
        echo=echo,
        **SERVER_POOL_OPTIONS,
    )


def create_engine_from_settings() -> AsyncEngine:
    settings = get_settings()
    echo = settings.LOG_LEVEL == "DEBUG"

    if settings.CLOUD_SQL_USE_UNIX_SOCKET and settings.CLOUD_SQL_INSTANCE_CONNECTION:
        logger.info(
            "database_engine_created",
            mode="cloud_sql_connector",
            instance=settings.CLOUD_SQL_INSTANCE_CONNECTION,
        )
        return _cloud_sql_engine(echo)

    engine = build_engine_from_url(settings.DATABASE_URL, echo=echo)
    logger.info("database_engine_created", mode="url", backend=engine.dialect.name)
    return engine


engine = create_engine_from_settings()

async_session_factory: async_sessionmaker[AsyncSession] = async_sessionmaker(
    bind=engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency yielding one session per request."""
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise

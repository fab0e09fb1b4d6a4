"""Async engine, session factory and schema bootstrap."""

import logging
from contextlib import asynccontextmanager

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from fixit_platform.app.config import get_settings

logger = logging.getLogger(__name__)


class Base(DeclarativeBase):
    """Declarative base shared by every Fix-It model."""
    pass


def is_sqlite(database_url: str) -> bool:
    return database_url.startswith("sqlite")


def engine_options(database_url: str) -> dict:
    """Engine keyword arguments for ``database_url``.

    SQLite gets a long lock timeout so the scheduler and request handlers can
    share one file; server databases get a bounded pool.
    """
    if is_sqlite(database_url):
        return {"echo": False, "connect_args": {"check_same_thread": False, "timeout": 30}}
    return {"echo": False, "pool_size": 5, "max_overflow": 10, "pool_pre_ping": True}


settings = get_settings()
engine = create_async_engine(settings.database_url, **engine_options(settings.database_url))
async_session = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


async def get_db():
    """FastAPI dependency: one session per HTTP request."""
    async with async_session() as session:
        try:
            yield session
        finally:
            await session.close()


@asynccontextmanager
async def session_scope():
    """Session for work outside a request, such as the scheduler loop."""
    async with async_session() as session:
        try:
            yield session
        except Exception:
            await session.rollback()
            raise


async def init_db():
    """Create missing tables. Existing tables are left untouched."""
    import fixit_platform.domain.models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
        if is_sqlite(settings.database_url):
            await conn.execute(text("PRAGMA journal_mode=WAL"))
            await conn.execute(text("PRAGMA busy_timeout=30000"))
    logger.info("Database ready (%s tables)", len(Base.metadata.tables))

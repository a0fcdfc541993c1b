"""Async SQLAlchemy engine and session factory.

When DATABASE_URL is configured, provides an asyncpg-backed engine, a
session factory for the progress document store, and a lifespan hook.
When it is not, everything here is None and the in-memory or Redis store
is used instead.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from engagement.core.config import SETTINGS

logger = logging.getLogger(__name__)


class Base(DeclarativeBase):
    """SQLAlchemy declarative base for all table models."""


if SETTINGS.database_url:
    engine = create_async_engine(
        SETTINGS.database_url,
        echo=SETTINGS.is_dev,
        pool_size=5,
        max_overflow=10,
    )
    async_session_factory = async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )
else:
    engine = None
    async_session_factory = None


@asynccontextmanager
async def lifespan_db():
    """Create tables on startup (idempotent) and dispose the pool on shutdown."""
    if engine is None:
        logger.info("No DATABASE_URL configured; using in-memory progress store")
        yield
        return

    # Registers CourseProgressRow on Base.metadata
    from engagement.db import tables  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database engine created: %s", engine.url)
    yield
    await engine.dispose()
    logger.info("Database engine disposed")

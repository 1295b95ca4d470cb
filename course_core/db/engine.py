"""Async SQLAlchemy engine and session factory.

With DATABASE_URL set:
  - async engine for PostgreSQL via asyncpg
  - session factory used by the Pg course and progress repos
  - lifespan hook that disposes the pool on shutdown

Without it every export is None and the API wires the in-memory repos.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from course_core.core.config import SETTINGS

logger = logging.getLogger(__name__)


class Base(DeclarativeBase):
    """Declarative base for course_core tables."""


if SETTINGS.database_url:
    engine = create_async_engine(
        SETTINGS.database_url,
        echo=False,
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


async def get_async_session() -> AsyncGenerator[AsyncSession, None]:
    """Request-scoped session: commit on success, roll back on error.

    Progress writes commit per statement inside the repo (the version
    check must be visible to the next reader), so the commit here only
    covers course writes.
    """
    if async_session_factory is None:
        raise RuntimeError("DATABASE_URL is not configured")
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


@asynccontextmanager
async def lifespan_db():
    if engine is None:
        logger.info("No DATABASE_URL configured, using in-memory repositories")
        yield
        return

    logger.info(
        "Database engine created: %s", engine.url.render_as_string(hide_password=True)
    )
    yield
    await engine.dispose()
    logger.info("Database engine disposed")

"""
Database session management.

Flow:
  1. create_repository() calls create_engine(settings) once at startup.
  2. create_session_factory(engine) returns the async_sessionmaker handed to
     PgVectorRepository.
  3. Each repository call opens its own short-lived session and commits or
     rolls back before returning; no session outlives one operation.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from firm_rag.core.config import Settings

logger = logging.getLogger(__name__)


def create_engine(settings: Settings) -> AsyncEngine:
    logger.info(
        "DB engine | pool_size=%d max_overflow=%d echo=%s",
        settings.db_pool_size, settings.db_max_overflow, settings.db_echo_sql,
    )
    return create_async_engine(
        settings.database_url,
        pool_size=settings.db_pool_size,
        max_overflow=settings.db_max_overflow,
        pool_pre_ping=True,          # detect stale connections before use
        pool_recycle=3600,
        echo=settings.db_echo_sql,
    )


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    # expire_on_commit=False keeps ORM objects usable after commit
    return async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


@asynccontextmanager
async def session_scope(
    factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession, None]:
    """
    Transactional scope: commit on success, rollback on any error.

    Usage:
        async with session_scope(factory) as session:
            session.add(obj)
    """
    async with factory() as session:
        try:
            yield session
            await session.commit()
        except BaseException:
            await session.rollback()
            raise

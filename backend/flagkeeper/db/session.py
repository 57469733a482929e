"""
Database Session Module

This module manages database connections and sessions with:
- Async SQLAlchemy engine configuration
- Session factory
- Bounded, atomic transactions for flag mutations
- Error handling and logging
"""

import asyncio
import contextlib
from typing import AsyncIterator, Optional

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from flagkeeper.core.logging import get_logger
from flagkeeper.core.settings import settings

logger = get_logger(__name__)


def create_db_engine(url: Optional[str] = None, **kwargs) -> AsyncEngine:
    """
    Create the async SQLAlchemy engine.

    Args:
        url: Database URL; defaults to the configured async URL
        **kwargs: Extra engine options (pool class, connect args, ...)

    Returns:
        AsyncEngine: Configured engine
    """
    url = url or settings.db.ASYNC_DATABASE_URL
    options = {"echo": settings.app.DEBUG, "pool_pre_ping": True}
    if url.startswith("postgresql"):
        options.update(
            pool_size=settings.db.POSTGRES_MAX_POOL_SIZE,
            max_overflow=settings.db.POSTGRES_MIN_POOL_SIZE,
            pool_recycle=settings.db.POSTGRES_POOL_RECYCLE,
        )
    options.update(kwargs)

    try:
        engine = create_async_engine(url, **options)
        logger.info(
            "Database engine created successfully",
            extra={"dialect": engine.dialect.name}
        )
        return engine

    except Exception as e:
        logger.critical(
            "Failed to create database engine",
            exc_info=True,
            extra={"error": str(e)}
        )
        raise


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Session factory used by services; one session per operation."""
    return async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


@contextlib.asynccontextmanager
async def transaction(
    session_factory: async_sessionmaker[AsyncSession],
    timeout: Optional[float] = None,
) -> AsyncIterator[AsyncSession]:
    """
    Open a session and run the body inside a single transaction.

    Commits when the body completes and rolls back on any exception. The
    whole block is bounded by ``timeout`` seconds; on PostgreSQL the same
    bound is applied server side as ``statement_timeout`` so lock waits
    cannot outlive it.

    Example:
        ```python
        async with transaction(SessionLocal, timeout=15) as db:
            db.add(flag)
        ```
    """
    timeout = timeout or settings.flags.TRANSACTION_TIMEOUT_SECONDS

    async with session_factory() as session:
        try:
            async with asyncio.timeout(timeout):
                async with session.begin():
                    connection = await session.connection()
                    if connection.dialect.name == "postgresql":
                        await session.execute(
                            text(f"SET LOCAL statement_timeout = {int(timeout * 1000)}")
                        )
                    yield session

        except SQLAlchemyError as e:
            logger.error(
                "Database transaction error",
                exc_info=True,
                extra={"error": str(e)}
            )
            raise


engine = create_db_engine()
SessionLocal = create_session_factory(engine)


__all__ = [
    "SessionLocal",
    "engine",
    "create_db_engine",
    "create_session_factory",
    "transaction",
]

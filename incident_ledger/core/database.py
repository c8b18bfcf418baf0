"""Database connection and session management.

Transaction Guarantees:
- Each request gets its own session
- Entity changes, activity rows, audit rows and notification intents
  written during a request commit together
- On any exception, the entire transaction is rolled back
- Sessions are properly closed after each request
"""

from collections.abc import AsyncGenerator, AsyncIterator
from contextlib import asynccontextmanager
import logging

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from .config import get_settings

logger = logging.getLogger(__name__)
settings = get_settings()

db_url_async = settings.database_url_async

engine_kwargs: dict = {"echo": settings.database_echo}
if db_url_async.startswith("postgresql"):
    engine_kwargs.update(
        pool_size=settings.database_pool_size,
        max_overflow=settings.database_max_overflow,
        pool_pre_ping=True,  # Check connection health before use
        pool_recycle=300,
    )

engine = create_async_engine(db_url_async, **engine_kwargs)

# Session factory - creates new sessions for each request
async_session_factory = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,  # Don't expire objects after commit
    autoflush=False,         # Manual flush for better control
)


@asynccontextmanager
async def transactional_session(
    factory: async_sessionmaker[AsyncSession] | None = None,
) -> AsyncIterator[AsyncSession]:
    """Open a session that commits on exit and rolls back on any exception."""
    async with (factory or async_session_factory)() as session:
        try:
            yield session
            await session.commit()
            logger.debug("Transaction committed successfully")
        except SQLAlchemyError as e:
            await session.rollback()
            logger.error(f"Database error, transaction rolled back: {e}")
            raise
        except Exception as e:
            await session.rollback()
            logger.warning(f"Request failed, transaction rolled back: {e}")
            raise
        finally:
            await session.close()


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """
    Dependency that provides a transactional database session.

    Services only flush; the commit happens here once the endpoint has
    returned, so a request either lands completely or not at all.
    """
    async with transactional_session() as session:
        yield session


async def init_db() -> None:
    """Initialize database (create tables if needed)."""
    from ..models import Base

    async with engine.begin() as conn:
        # In production, use migrations instead
        await conn.run_sync(Base.metadata.create_all)


async def close_db() -> None:
    """Close database connections."""
    await engine.dispose()

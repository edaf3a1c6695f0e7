"""
Async engine, session factory and the unit-of-work helpers.

Every orchestrator wraps its writes in ``transactional(db)``: the block either
commits as a whole or rolls back as a whole. Driver-level failures surface as
``StoreUnavailable`` so callers can tell them apart from business errors.
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator

from sqlalchemy.exc import DBAPIError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from tutorbook.core.config import get_settings
from tutorbook.core.errors import StoreUnavailable
from tutorbook.core.logging import get_logger

logger = get_logger(__name__)
settings = get_settings()

engine = create_async_engine(
    settings.DATABASE_URL,
    echo=settings.DEBUG,
    pool_size=settings.DB_POOL_SIZE,
    max_overflow=settings.DB_MAX_OVERFLOW,
    pool_timeout=settings.DB_POOL_TIMEOUT,
    pool_recycle=settings.DB_POOL_RECYCLE,
    pool_pre_ping=True,
)

AsyncSessionLocal = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency yielding one session per request."""
    async with AsyncSessionLocal() as session:
        yield session


@asynccontextmanager
async def transactional(db: AsyncSession) -> AsyncGenerator[AsyncSession, None]:
    """Commit on success, roll back on any exception."""
    try:
        yield db
        await db.commit()
    except DBAPIError as exc:
        await db.rollback()
        logger.error("transaction_aborted", error_type=type(exc.orig).__name__ if exc.orig else None)
        raise StoreUnavailable() from exc
    except BaseException:
        await db.rollback()
        raise


@asynccontextmanager
async def rollback_only(db: AsyncSession) -> AsyncGenerator[AsyncSession, None]:
    """Run checks under the same locks as a real operation, then discard everything."""
    try:
        yield db
    except DBAPIError as exc:
        raise StoreUnavailable() from exc
    finally:
        await db.rollback()

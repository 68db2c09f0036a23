"""
Database configuration with async support
"""

import asyncio
import logging
from typing import AsyncGenerator, Awaitable, Callable, TypeVar

from sqlalchemy.exc import (
    DisconnectionError,
    InterfaceError,
    OperationalError,
    SQLAlchemyError,
    TimeoutError as SATimeoutError,
)
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession
from sqlalchemy.orm import sessionmaker
from sqlmodel import SQLModel
from sqlmodel.ext.asyncio.session import AsyncSession as AsyncSessionSQLModel

from feedengine.core.config import settings
from feedengine.core.exceptions import (
    FeedEngineError,
    InternalEngineError,
    StoreTimeoutError,
    StoreUnavailableError,
    TransientStoreError,
)

# Configure logging based on environment
logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)

logger = logging.getLogger(__name__)

logger.info(f"Environment: {settings.ENVIRONMENT}")

T = TypeVar("T")

async_engine = create_async_engine(
    settings.async_database_url,
    echo=settings.SQL_ECHO,
    future=True,
    pool_size=settings.DB_POOL_SIZE,
    max_overflow=settings.DB_MAX_OVERFLOW,
    pool_pre_ping=True,  # Verify connections before use
    pool_recycle=3600,  # Recycle connections after 1 hour
    connect_args={
        "server_settings": {
            "application_name": "social_feed_engine",
        }
    }
)

# Async session factory
AsyncSessionLocal = sessionmaker(
    bind=async_engine,
    class_=AsyncSessionSQLModel,
    expire_on_commit=False,
    autoflush=False
)


async def init_db():
    """Initialize database tables"""
    # Register every table on the metadata before create_all
    import feedengine.models  # noqa: F401

    async with async_engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """
    Async database session dependency
    Usage:
    async def some_endpoint(db: AsyncSession = Depends(get_db)):
        ...
    """
    async with AsyncSessionLocal() as session:
        yield session


def translate_store_error(error: SQLAlchemyError) -> FeedEngineError:
    """Map a driver/ORM failure onto the engine's error taxonomy without leaking store internals."""
    if isinstance(error, SATimeoutError):
        return StoreTimeoutError()
    # 57014 = query_canceled (statement_timeout)
    if getattr(getattr(error, "orig", None), "sqlstate", None) == "57014":
        return StoreTimeoutError()
    if isinstance(error, (OperationalError, InterfaceError, DisconnectionError)):
        return StoreUnavailableError()
    return InternalEngineError()


async def run_with_store_retry(
    db: AsyncSession,
    operation: Callable[[], Awaitable[T]],
    *,
    retries: int = 1,
    backoff_seconds: float = None,
) -> T:
    """
    Run a store operation, retrying transient failures with linear backoff.
    The session is rolled back before each retry; the last error is re-raised.
    """
    backoff = settings.STORE_RETRY_BACKOFF_SECONDS if backoff_seconds is None else backoff_seconds
    for attempt in range(retries + 1):
        try:
            return await operation()
        except TransientStoreError as e:
            await db.rollback()
            if attempt == retries:
                raise
            logger.warning(f"Transient store failure (attempt {attempt + 1}): {e.detail}")
            await asyncio.sleep(backoff * (attempt + 1))

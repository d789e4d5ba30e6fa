"""
Database Connection and Session Management
Async SQLAlchemy setup shared by the API and the Celery workers
"""
from contextlib import asynccontextmanager
from typing import AsyncIterator
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.orm import declarative_base
from sqlalchemy.pool import NullPool
import logging

from config import settings

logger = logging.getLogger(__name__)

# Create declarative base
Base = declarative_base()


def build_engine(url: str) -> AsyncEngine:
    """Create an async engine; pool sizing only applies to server databases"""
    if url.startswith("sqlite"):
        return create_async_engine(url, echo=settings.DEBUG, future=True)

    if settings.ENVIRONMENT == "testing":
        return create_async_engine(url, echo=settings.DEBUG, future=True, poolclass=NullPool)

    return create_async_engine(
        url,
        echo=settings.DEBUG,
        future=True,
        pool_pre_ping=True,
        pool_size=20,
        max_overflow=30,
        pool_recycle=3600,  # Recycle connections after 1 hour
        pool_timeout=30,  # Wait up to 30s for a connection
    )


def build_session_factory(bind: AsyncEngine) -> async_sessionmaker:
    return async_sessionmaker(
        bind,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False
    )


engine = build_engine(settings.DATABASE_URL)

# Create async session factory
AsyncSessionLocal = build_session_factory(engine)


@asynccontextmanager
async def task_session_factory() -> AsyncIterator[async_sessionmaker]:
    """Session factory for Celery tasks, each run on its own event loop with a private engine"""
    task_engine = create_async_engine(settings.DATABASE_URL, future=True, poolclass=NullPool)
    try:
        yield build_session_factory(task_engine)
    finally:
        await task_engine.dispose()


async def close_db():
    await engine.dispose()
    logger.info("Database connections closed")

"""
Database Connection Management

SQLAlchemy engine, session factory, and connection pooling. PostgreSQL via
asyncpg in production; SQLite via aiosqlite for local runs and tests.
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator

import structlog
from sqlalchemy import event
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import declarative_base
from sqlalchemy.pool import StaticPool

from agentchain.config import settings
from agentchain.exceptions import StorageUnavailable

logger = structlog.get_logger()

# SQLAlchemy declarative base
Base = declarative_base()

# Global engine instance
engine: AsyncEngine | None = None
SessionLocal: async_sessionmaker[AsyncSession] | None = None


def get_database_url() -> str:
    """Construct async database URL."""
    if settings.DATABASE_URL:
        # Replace postgresql:// with postgresql+asyncpg://
        return settings.DATABASE_URL.replace("postgresql://", "postgresql+asyncpg://")

    return (
        f"postgresql+asyncpg://{settings.POSTGRES_USER}:{settings.POSTGRES_PASSWORD}"
        f"@{settings.POSTGRES_HOST}:{settings.POSTGRES_PORT}/{settings.POSTGRES_DB}"
    )


def create_engine_for_url(database_url: str) -> AsyncEngine:
    """
    Create an async engine with options suited to the backend.

    SQLite in-memory databases share one connection so every session sees
    the same schema.
    """
    if database_url.startswith("sqlite"):
        kwargs: dict = {"echo": settings.DEBUG}
        if ":memory:" in database_url:
            kwargs["poolclass"] = StaticPool
            kwargs["connect_args"] = {"check_same_thread": False}
        return create_async_engine(database_url, **kwargs)

    return create_async_engine(
        database_url,
        echo=settings.DEBUG,
        pool_size=settings.DATABASE_POOL_SIZE,
        max_overflow=settings.DATABASE_MAX_OVERFLOW,
        pool_timeout=settings.DATABASE_POOL_TIMEOUT,
        pool_recycle=settings.DATABASE_POOL_RECYCLE,
        pool_pre_ping=True,  # Verify connections before using
    )


def create_session_factory(db_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Create the session factory used by the stores."""
    return async_sessionmaker(
        db_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


async def init_db(database_url: str | None = None, create_tables: bool = False) -> async_sessionmaker[AsyncSession]:
    """
    Initialize database engine and session factory.

    Args:
        database_url: Override for the configured URL
        create_tables: Create tables from metadata (local runs without migrations)

    Returns:
        The global session factory
    """
    global engine, SessionLocal

    if engine is not None and SessionLocal is not None:
        logger.warning("database_already_initialized")
        return SessionLocal

    url = database_url or get_database_url()
    logger.info("database_initializing", url=url.split("@")[-1])  # Hide credentials

    engine = create_engine_for_url(url)

    @event.listens_for(engine.sync_engine, "connect")
    def receive_connect(dbapi_conn, connection_record):
        logger.debug("database_connection_established")

    if create_tables:
        # Import models so their tables register on Base.metadata
        from agentchain.database import models  # noqa: F401

        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    SessionLocal = create_session_factory(engine)
    logger.info("database_initialized")
    return SessionLocal


async def close_db() -> None:
    """Close database engine and cleanup connections."""
    global engine, SessionLocal

    if engine is None:
        return

    await engine.dispose()
    engine = None
    SessionLocal = None
    logger.info("database_closed")


@asynccontextmanager
async def session_scope(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession, None]:
    """
    Transactional session scope.

    Commits on success, rolls back on error, and translates persistence-layer
    failures into StorageUnavailable.

    Raises:
        StorageUnavailable: If the database fails or cannot be reached
    """
    try:
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise
    except (SQLAlchemyError, OSError) as e:
        logger.error("database_operation_failed", error=str(e))
        raise StorageUnavailable(f"Database operation failed: {e}") from e

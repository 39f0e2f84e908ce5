"""
Database Connection and Session Management

This module handles database connectivity using SQLAlchemy async. SQLite
(aiosqlite) is the default backend; PostgreSQL is supported through the
asyncpg driver.
"""
from pathlib import Path

from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import create_async_engine, AsyncEngine, AsyncSession, async_sessionmaker
from sqlalchemy.orm import declarative_base
from sqlalchemy.pool import NullPool
from sqlalchemy import text
import logging

from facematch.config import DATABASE_URL, DB_POOL_SIZE, DB_MAX_OVERFLOW

logger = logging.getLogger(__name__)


def build_engine(url: str) -> AsyncEngine:
    """
    Create an async engine for the given URL.

    SQLite files get NullPool (one connection per session) and their parent
    directory is created; server databases get a health-checked pool.
    """
    parsed = make_url(url)
    if parsed.get_backend_name() == "sqlite":
        if parsed.database and parsed.database != ":memory:":
            Path(parsed.database).parent.mkdir(parents=True, exist_ok=True)
        return create_async_engine(url, echo=False, poolclass=NullPool)

    return create_async_engine(
        url,
        echo=False,  # Set to True for SQL debugging
        pool_size=DB_POOL_SIZE,
        max_overflow=DB_MAX_OVERFLOW,
        pool_pre_ping=True,  # Enable connection health checks
    )


def build_session_maker(bind: AsyncEngine) -> async_sessionmaker:
    return async_sessionmaker(
        bind,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


# Create async engine
engine = build_engine(DATABASE_URL)

# Session factory
async_session_maker = build_session_maker(engine)

# Base class for ORM models
Base = declarative_base()


async def create_tables(bind: AsyncEngine) -> None:
    """Create faces and access_logs tables if they do not exist."""
    # Register models on Base.metadata
    from facematch import models  # noqa: F401

    async with bind.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def init_db():
    """Initialize database connection, verify connectivity and create tables."""
    try:
        async with engine.begin() as conn:
            # Test connection
            await conn.execute(text("SELECT 1"))
        await create_tables(engine)
        logger.info(f"Database ready ({engine.dialect.name})")
    except Exception as e:
        logger.error(f"Failed to connect to database: {e}")
        raise


async def close_db():
    """Close database connection pool."""
    await engine.dispose()
    logger.info("Database connection pool closed")

"""Database session management for async SQLAlchemy.

Provides async session creation and dependency injection for FastAPI.
"""

import logging
from collections.abc import AsyncGenerator

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlmodel import SQLModel

from docsynth.core.config import Settings, get_settings

logger = logging.getLogger(__name__)


# Global engine and session maker
_engine: AsyncEngine | None = None
_async_session_maker: async_sessionmaker[AsyncSession] | None = None


def build_engine(database_url: str, echo: bool = False, **kwargs) -> AsyncEngine:
    """Create an async engine for ``database_url``.

    Connection pool sizing only applies to server databases; SQLite
    engines are created with the driver defaults.
    """
    if not database_url.startswith("sqlite"):
        kwargs.setdefault("pool_pre_ping", True)
        kwargs.setdefault("pool_size", 10)
        kwargs.setdefault("max_overflow", 20)

    return create_async_engine(database_url, echo=echo, future=True, **kwargs)


def build_session_maker(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


def get_engine(settings: Settings | None = None) -> AsyncEngine:
    """Get or create the async database engine.

    Args:
        settings: Optional settings. If None, uses global settings.

    Returns:
        The async SQLAlchemy engine.
    """
    global _engine

    try:
        if _engine is None:
            settings = settings or get_settings()

            logger.info("Creating async database engine")

            _engine = build_engine(settings.database_url, echo=settings.log_level == "DEBUG")

            logger.info("Database engine created successfully")

        return _engine

    except Exception as e:
        logger.error(f"Failed to create database engine: {e}", exc_info=True)
        raise


def get_session_maker(settings: Settings | None = None) -> async_sessionmaker[AsyncSession]:
    """Get or create the async session maker.

    Args:
        settings: Optional settings. If None, uses global settings.

    Returns:
        The async session maker.
    """
    global _async_session_maker

    try:
        if _async_session_maker is None:
            _async_session_maker = build_session_maker(get_engine(settings))
            logger.info("Session maker created successfully")

        return _async_session_maker

    except Exception as e:
        logger.error(f"Failed to create session maker: {e}", exc_info=True)
        raise


async def get_async_session(settings: Settings | None = None) -> AsyncGenerator[AsyncSession, None]:
    """Dependency injection for FastAPI to get async database sessions.

    Args:
        settings: Optional settings. If None, uses global settings.

    Yields:
        An async database session.

    Example:
        ```python
        @router.get("/templates/{template_id}")
        async def get_template(template_id: UUID, session: AsyncSession = Depends(get_async_session)):
            return await session.get(DocumentTemplate, template_id)
        ```
    """
    session_maker = get_session_maker(settings)
    async with session_maker() as session:
        try:
            yield session
        except SQLAlchemyError as e:
            logger.error(f"Database error: {e}", exc_info=True)
            await session.rollback()
            raise
        except Exception:
            await session.rollback()
            raise


async def create_all_tables(engine: AsyncEngine | None = None) -> None:
    """Create all database tables.

    This uses SQLAlchemy's metadata.create_all for table creation.
    In production, consider using Alembic for migrations.

    Args:
        engine: Engine to create tables on. If None, uses the global engine.
    """
    try:
        # Import models to ensure they're registered with SQLModel metadata
        from docsynth.db import models  # noqa: F401

        engine = engine or get_engine()

        logger.info("Creating database tables...")

        async with engine.begin() as conn:
            await conn.run_sync(SQLModel.metadata.create_all)

        logger.info("Database tables created successfully")

    except Exception as e:
        logger.error(f"Failed to create database tables: {e}", exc_info=True)
        raise


async def drop_all_tables(engine: AsyncEngine | None = None) -> None:
    """Drop all database tables.

    WARNING: This will delete all data. Use with caution,
    typically only in test environments.
    """
    try:
        engine = engine or get_engine()

        logger.warning("Dropping all database tables...")

        async with engine.begin() as conn:
            await conn.run_sync(SQLModel.metadata.drop_all)

        logger.warning("All database tables dropped")

    except Exception as e:
        logger.error(f"Failed to drop database tables: {e}", exc_info=True)
        raise


async def init_db(settings: Settings | None = None) -> None:
    """Initialize the database.

    Creates missing tables and the storage directories.

    Args:
        settings: Optional settings. If None, uses global settings.
    """
    settings = settings or get_settings()

    for directory in (settings.templates_dir, settings.sources_dir, settings.generated_dir):
        directory.mkdir(parents=True, exist_ok=True)

    await create_all_tables(get_engine(settings))


async def close_db() -> None:
    """Close the database engine and all connections."""
    global _engine, _async_session_maker

    try:
        if _engine is not None:
            logger.info("Closing database engine...")
            await _engine.dispose()
            _engine = None
            _async_session_maker = None
            logger.info("Database engine closed")

    except Exception as e:
        logger.error(f"Error closing database engine: {e}", exc_info=True)
        raise

"""
Database Configuration.

SQLAlchemy async engine and session management.
Uses lazy initialization to prevent import-time failures when .env is not configured.
"""

from collections.abc import AsyncGenerator, AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from catalog.core.logging import get_logger

logger = get_logger(__name__)

# Module-level state for lazy initialization
_engine: Any = None
_async_session_factory: async_sessionmaker[AsyncSession] | None = None


def _create_engine() -> Any:
    """Create async SQLAlchemy engine."""
    from catalog.core.config import get_app_config, get_database_url

    db_config = get_app_config().database

    engine_kwargs: dict[str, Any] = {"echo": db_config.echo}
    if not db_config.driver.startswith("sqlite"):
        engine_kwargs.update(
            pool_size=db_config.pool_size,
            max_overflow=db_config.max_overflow,
            pool_timeout=db_config.pool_timeout,
            pool_recycle=db_config.pool_recycle,
        )

    engine = create_async_engine(get_database_url(), **engine_kwargs)
    logger.debug("Database engine created", extra={"host": db_config.host, "driver": db_config.driver})
    return engine


def get_engine() -> Any:
    """Get the database engine, creating it on first use."""
    global _engine
    if _engine is None:
        _engine = _create_engine()
    return _engine


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Get the session factory, creating it on first use."""
    global _async_session_factory
    if _async_session_factory is None:
        _async_session_factory = async_sessionmaker(
            get_engine(),
            class_=AsyncSession,
            expire_on_commit=False,
        )
    return _async_session_factory


async def get_db_session() -> AsyncGenerator[AsyncSession, None]:
    """
    Dependency that provides a database session.

    Usage in endpoints:
        @router.get("/items")
        async def get_items(db: AsyncSession = Depends(get_db_session)):
            ...
    """
    session_factory = get_session_factory()
    async with session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


@asynccontextmanager
async def atomic(session: AsyncSession) -> AsyncIterator[AsyncSession]:
    """
    Run a block as one commit/rollback unit.

    Opens a real transaction when the session is idle and a SAVEPOINT
    when one is already in progress, so atomic blocks nest. On any
    exception the unit is rolled back and the exception re-raised as is.

    Usage:
        async with atomic(session):
            await repo.create({...})
            await repo.update(other_id, {...})
    """
    if session.in_transaction():
        async with session.begin_nested():
            yield session
    else:
        async with session.begin():
            yield session


async def get_streaming_session() -> AsyncSession:
    """
    Dependency that provides a session for a streaming response.

    The session must outlive the endpoint, so the caller closes it once
    the response body has been sent (e.g. with a BackgroundTask).
    """
    return get_session_factory()()


async def dispose_engine() -> None:
    """Close every pooled connection and forget the engine."""
    global _engine, _async_session_factory
    if _engine is not None:
        await _engine.dispose()
        logger.debug("Database engine disposed")
    _engine = None
    _async_session_factory = None


async def create_all() -> None:
    """Create every catalog table that does not exist yet."""
    import catalog.models  # noqa: F401  (registers the tables)
    from catalog.models.base import Base

    async with get_engine().begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

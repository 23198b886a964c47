"""Async SQLAlchemy engine and session management.

The engine is created on first use so importing models never opens a
connection pool. Celery workers build their own engine with ``NullPool``
because every task runs in a fresh event loop.
"""

from typing import Optional

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy.pool import NullPool

from streamvault.core.config import settings


class Base(DeclarativeBase):
    """Declarative base for all ORM models."""
    pass


_engine: Optional[AsyncEngine] = None
_session_maker: Optional[async_sessionmaker[AsyncSession]] = None


def create_engine_and_session(
    url: str,
    use_null_pool: bool = False,
) -> tuple[AsyncEngine, async_sessionmaker[AsyncSession]]:
    """Create an engine and a session factory bound to it.

    Args:
        url: SQLAlchemy database URL
        use_null_pool: Disable pooling (one connection per session)

    Returns:
        Tuple of engine and session factory
    """
    engine_kwargs = {"echo": settings.DEBUG}
    if use_null_pool:
        engine_kwargs["poolclass"] = NullPool
    else:
        engine_kwargs["pool_pre_ping"] = True

    engine = create_async_engine(url, **engine_kwargs)
    session_maker = async_sessionmaker(engine, expire_on_commit=False)
    return engine, session_maker


def get_engine() -> AsyncEngine:
    """Get the process-wide engine, creating it on first call."""
    global _engine, _session_maker
    if _engine is None:
        _engine, _session_maker = create_engine_and_session(settings.DATABASE_URL)
    return _engine


def async_session_maker() -> AsyncSession:
    """Open a new session from the process-wide factory."""
    get_engine()
    return _session_maker()


async def init_db(engine: Optional[AsyncEngine] = None) -> None:
    """Create tables that do not exist yet."""
    # Import models so they register on Base.metadata
    from streamvault.modules.video import models  # noqa: F401

    engine = engine or get_engine()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def close_db() -> None:
    """Dispose the process-wide engine."""
    global _engine, _session_maker
    if _engine is not None:
        await _engine.dispose()
    _engine = None
    _session_maker = None

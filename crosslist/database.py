# crosslist/database.py

from contextlib import asynccontextmanager
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine, async_sessionmaker, AsyncSession
from sqlalchemy.orm import declarative_base

from crosslist.core.config import get_settings

Base = declarative_base()

_engine: Optional[AsyncEngine] = None
_session_factory: Optional[async_sessionmaker] = None


def get_engine() -> AsyncEngine:
    """Create the process-wide engine on first use."""
    global _engine
    if _engine is None:
        database_url = get_settings().async_database_url
        if not database_url:
            raise ValueError("DATABASE_URL is not set in environment variables")

        engine_kwargs = {"echo": False, "future": True}
        if database_url.startswith("postgresql"):
            engine_kwargs.update(
                pool_size=10,
                max_overflow=20,
                pool_timeout=30,
                pool_recycle=1800,
            )
        _engine = create_async_engine(database_url, **engine_kwargs)
    return _engine


def get_session_factory() -> async_sessionmaker:
    global _session_factory
    if _session_factory is None:
        _session_factory = async_sessionmaker(
            get_engine(),
            class_=AsyncSession,
            expire_on_commit=False
        )
    return _session_factory


def async_session() -> AsyncSession:
    return get_session_factory()()


@asynccontextmanager
async def get_session() -> AsyncSession:
    session = async_session()
    try:
        yield session
    finally:
        await session.close()


async def dispose_engine() -> None:
    global _engine, _session_factory
    if _engine is not None:
        await _engine.dispose()
    _engine = None
    _session_factory = None

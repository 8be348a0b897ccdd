"""Database engine and session factories (SQLAlchemy asyncio)."""

from typing import Optional

from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker, create_async_engine

from src.db.base import Base
from src.settings import get_settings

_async_engine: Optional[AsyncEngine] = None


def get_async_engine() -> AsyncEngine:
    """Get or create the process-wide async engine."""
    global _async_engine
    if _async_engine is None:
        settings = get_settings()
        kwargs = {"pool_pre_ping": True}
        if not settings.database_url.startswith("sqlite"):
            kwargs.update(pool_size=20, max_overflow=10)
        _async_engine = create_async_engine(settings.database_url, **kwargs)
    return _async_engine


def get_async_session_factory(engine: Optional[AsyncEngine] = None) -> async_sessionmaker:
    return async_sessionmaker(bind=engine or get_async_engine(), expire_on_commit=False)


async def create_tables(engine: Optional[AsyncEngine] = None) -> None:
    """Create every table directly from the models (dev and tests; prod uses alembic)."""
    engine = engine or get_async_engine()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def dispose_engine() -> None:
    global _async_engine
    if _async_engine is not None:
        await _async_engine.dispose()
        _async_engine = None


AsyncSessionLocal = get_async_session_factory

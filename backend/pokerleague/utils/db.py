"""Database connection and session management."""

from typing import Any

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from pokerleague.config import Settings, get_settings
from pokerleague.utils.json_utils import json_dumps, json_loads

_engine: AsyncEngine | None = None
_session_factory: async_sessionmaker[AsyncSession] | None = None


def create_engine(settings: Settings | None = None, **overrides: Any) -> AsyncEngine:
    """Create an async engine from settings.

    SQLite URLs do not accept pool sizing, so pool_size is only passed for
    server databases.
    """
    settings = settings or get_settings()
    options: dict[str, Any] = {
        "echo": settings.db_echo,
        "future": True,
        # JSON 컬럼 (탈락 스냅샷) 직렬화
        "json_serializer": json_dumps,
        "json_deserializer": json_loads,
    }
    if not settings.database_url.startswith("sqlite"):
        options["pool_size"] = settings.db_pool_size
    options.update(overrides)
    return create_async_engine(settings.database_url, **options)


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


def get_engine(settings: Settings | None = None) -> AsyncEngine:
    """Process-wide engine, created on first use."""
    global _engine
    if _engine is None:
        _engine = create_engine(settings)
    return _engine


def get_session_factory(settings: Settings | None = None) -> async_sessionmaker[AsyncSession]:
    global _session_factory
    if _session_factory is None:
        _session_factory = create_session_factory(get_engine(settings))
    return _session_factory


async def init_db(settings: Settings | None = None, create_tables: bool = False) -> None:
    """Initialize database connection (optionally create tables)."""
    from pokerleague.models import Base

    async with get_engine(settings).begin() as conn:
        if create_tables:
            await conn.run_sync(Base.metadata.create_all)
        else:
            await conn.run_sync(lambda _: None)


async def close_db() -> None:
    """Close database connection pool."""
    global _engine, _session_factory
    if _engine is not None:
        await _engine.dispose()
    _engine = None
    _session_factory = None

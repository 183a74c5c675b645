from typing import Any

from sqlalchemy import event, text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from sessiondeck.config import get_settings

settings = get_settings()

FTS_TABLE = "session_search"

_CREATE_FTS_SQL = f"""
CREATE VIRTUAL TABLE IF NOT EXISTS {FTS_TABLE} USING fts5(
    session_id UNINDEXED,
    content,
    tool_name,
    files_touched
)
"""


class Base(DeclarativeBase):
    """Base class for SQLAlchemy models."""

    pass


def _enable_foreign_keys(dbapi_connection: Any, _connection_record: Any) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def create_engine(url: str) -> AsyncEngine:
    """Create an async engine with SQLite foreign keys switched on."""
    new_engine = create_async_engine(url, echo=False)
    if new_engine.dialect.name == "sqlite":
        event.listen(new_engine.sync_engine, "connect", _enable_foreign_keys)
    return new_engine


def _make_session_factory(bind: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(bind=bind, class_=AsyncSession, expire_on_commit=False)


_engine: AsyncEngine = create_engine(settings.DATABASE_URL)
_session_factory: async_sessionmaker[AsyncSession] = _make_session_factory(_engine)


def get_engine() -> AsyncEngine:
    """Get the current database engine."""
    return _engine


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Get the current async session factory."""
    return _session_factory


def override_engine(new_engine: AsyncEngine) -> None:
    """Override the database engine and session factory for testing."""
    global _engine, _session_factory
    _engine = new_engine
    _session_factory = _make_session_factory(new_engine)


async def init_db(target: AsyncEngine | None = None) -> None:
    """Create the session tables and the FTS5 search index."""
    import sessiondeck.db.models  # noqa: F401  # pyright: ignore[reportUnusedImport]

    async with (target or _engine).begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
        await conn.execute(text(_CREATE_FTS_SQL))


# resi_hub/database.py
"""
Async engine and sessions for Resi Hub.

PostgreSQL (asyncpg) in deployment; SQLite (aiosqlite) for local runs and
the test-suite. Bulk operations use SAVEPOINTs, which the SQLite driver only
honours once SQLAlchemy owns BEGIN (see ``enable_sqlite_savepoints``).
"""
from __future__ import annotations
import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator, AsyncIterator, Dict, Optional

from sqlalchemy import event, text
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from resi_hub.settings import settings

logger = logging.getLogger(__name__)

# driver prefixes accepted in DATABASE_URL and what they become
_ASYNC_DRIVERS = (
    ("sqlite:///", "sqlite+aiosqlite:///"),
    ("postgresql://", "postgresql+asyncpg://"),
    ("postgres://", "postgresql+asyncpg://"),
)


class Base(DeclarativeBase):
    pass


_engine: Optional[AsyncEngine] = None
_sessions: Optional[async_sessionmaker[AsyncSession]] = None


def get_database_url() -> str:
    """DATABASE_URL when set (sync driver names upgraded to async ones), else DB_* parts."""
    url = settings.DATABASE_URL
    if not url:
        return (
            f"postgresql+asyncpg://{settings.DB_USER}:{settings.DB_PASSWORD}"
            f"@{settings.DB_HOST}:{settings.DB_PORT}/{settings.DB_NAME}"
        )
    for plain, driver in _ASYNC_DRIVERS:
        if url.startswith(plain):
            return driver + url[len(plain):]
    return url


def enable_sqlite_savepoints(engine: AsyncEngine) -> None:
    """Take BEGIN away from pysqlite so nested transactions work."""

    @event.listens_for(engine.sync_engine, "connect")
    def _no_driver_transactions(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _emit_begin(conn):
        conn.exec_driver_sql("BEGIN")


def build_engine(url: Optional[str] = None) -> AsyncEngine:
    url = url or get_database_url()
    if url.startswith("sqlite"):
        engine = create_async_engine(url, echo=settings.DB_ECHO)
        enable_sqlite_savepoints(engine)
        return engine
    return create_async_engine(
        url,
        echo=settings.DB_ECHO,
        pool_size=settings.DB_POOL_SIZE,
        max_overflow=settings.DB_MAX_OVERFLOW,
        pool_pre_ping=True,
    )


def make_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    # no implicit flushes: writes happen at savepoint exits and explicit flush()
    return async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)


async def init_db(create_tables: bool = False) -> None:
    global _engine, _sessions
    if _engine is not None:
        return

    _engine = build_engine()
    _sessions = make_session_factory(_engine)
    if create_tables:
        from resi_hub import db_models  # noqa: F401  (registers tables)
        async with _engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("Database tables ensured")


async def close_db() -> None:
    global _engine, _sessions
    if _engine is None:
        return
    await _engine.dispose()
    _engine = None
    _sessions = None


@asynccontextmanager
async def get_session_context() -> AsyncIterator[AsyncSession]:
    """Unit of work outside FastAPI: commit on success, rollback on error."""
    if _sessions is None:
        await init_db()
    async with _sessions() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency: one unit of work per request."""
    async with get_session_context() as session:
        yield session


async def check_db_health() -> Dict[str, str]:
    try:
        async with get_session_context() as db:
            await db.execute(text("SELECT 1"))
    except Exception as e:
        logger.warning(f"Health check failed: {e}")
        return {"status": "unhealthy", "database": "disconnected", "error": str(e)}
    return {"status": "healthy", "database": "connected"}

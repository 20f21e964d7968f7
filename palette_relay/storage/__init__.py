"""PostgreSQL access for refinement sessions.

The process shares one lazily built ``Database`` (engine plus session
factory). ``DatabaseSessionStore`` opens its per-operation transactions
through ``get_session`` and the readiness probe goes through ``ping``.
Creation is guarded by a lock because the CLI and uvicorn workers may touch
it from more than one thread.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from dataclasses import dataclass

from sqlalchemy import text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from palette_relay.settings import Settings, get_settings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Database:
    """An engine and the session factory bound to it."""

    engine: AsyncEngine
    sessions: async_sessionmaker[AsyncSession]

    @classmethod
    def from_engine(cls, engine: AsyncEngine) -> Database:
        # Session rows are read after commit to build the returned Session.
        return cls(engine, async_sessionmaker(engine, expire_on_commit=False, autoflush=False))

    @classmethod
    def from_settings(cls, settings: Settings) -> Database:
        engine = create_async_engine(
            str(settings.database_url),
            pool_size=settings.database_pool_size,
            max_overflow=settings.database_max_overflow,
            pool_timeout=settings.database_pool_timeout,
            pool_recycle=settings.database_pool_recycle,
            pool_pre_ping=True,
        )
        return cls.from_engine(engine)


_database: Database | None = None
_lock = threading.Lock()


def get_database(settings: Settings | None = None) -> Database:
    """Return the shared database, building it from settings on first use."""
    global _database

    if _database is None:
        with _lock:
            if _database is None:
                _database = Database.from_settings(settings or get_settings())
                logger.debug("Database engine created")
    return _database


@asynccontextmanager
async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """Open a session on the shared database; closed on exit, never committed."""
    async with get_database().sessions() as session:
        yield session


async def ping() -> None:
    """Run ``SELECT 1``; raises whatever the driver raises when unreachable."""
    async with get_session() as session:
        await session.execute(text("SELECT 1"))


async def init_db() -> None:
    """Build the engine and check connectivity at startup."""
    await ping()
    logger.info("Database connection verified")


async def close_db() -> None:
    """Dispose of the shared engine; the next ``get_database`` builds a new one."""
    global _database

    with _lock:
        database, _database = _database, None
    if database is not None:
        await database.engine.dispose()


__all__ = [
    "Database",
    "close_db",
    "get_database",
    "get_session",
    "init_db",
    "ping",
]

"""Integration test fixtures using testcontainers.

Provides a real PostgreSQL container for the session store without
requiring external infrastructure.
"""

import os


def _configure_container_runtime() -> None:
    """Point testcontainers at a rootless Podman socket when Docker is absent."""
    if os.environ.get("DOCKER_HOST") or os.path.exists("/var/run/docker.sock"):
        return

    linux_socket = f"/run/user/{os.getuid()}/podman/podman.sock"
    if os.path.exists(linux_socket):
        os.environ["DOCKER_HOST"] = f"unix://{linux_socket}"
        os.environ.setdefault("TESTCONTAINERS_RYUK_DISABLED", "true")


_configure_container_runtime()

from collections.abc import AsyncGenerator, Generator  # noqa: E402
from contextlib import asynccontextmanager  # noqa: E402
from typing import Any  # noqa: E402

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from sqlalchemy import event  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine  # noqa: E402

from palette_relay.dal.sessions import DatabaseSessionStore  # noqa: E402
from palette_relay.storage.entities import Base  # noqa: E402

# Try to import testcontainers, skip tests if not available
try:
    from testcontainers.postgres import PostgresContainer

    TESTCONTAINERS_AVAILABLE = True
except ImportError:
    TESTCONTAINERS_AVAILABLE = False
    PostgresContainer = None  # type: ignore


# =============================================================================
# POSTGRESQL CONTAINER
# =============================================================================


@pytest.fixture(scope="session")
def postgres_container() -> Generator[Any, None, None]:
    """Start a PostgreSQL container shared by every integration test."""
    if not TESTCONTAINERS_AVAILABLE:
        pytest.skip("testcontainers not installed")

    try:
        with PostgresContainer(
            image="postgres:16-alpine",
            username="test",
            password="test",
            dbname="palettes_test",
        ) as postgres:
            yield postgres
    except Exception as e:
        pytest.skip(f"Docker/Podman not available: {e}")


@pytest.fixture(scope="session")
def postgres_url(postgres_container: Any) -> str:
    """Async connection URL for the PostgreSQL container."""
    sync_url = postgres_container.get_connection_url()
    async_url = sync_url.replace("postgresql://", "postgresql+asyncpg://")
    return async_url.replace("psycopg2", "asyncpg")


@pytest_asyncio.fixture(scope="session", loop_scope="session")
async def integration_engine(postgres_url: str) -> AsyncGenerator[Any, None]:
    """Async engine connected to the test container, with tables created."""
    engine = create_async_engine(postgres_url, echo=False, pool_pre_ping=True)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest_asyncio.fixture(loop_scope="session")
async def integration_session(
    integration_engine: Any,
) -> AsyncGenerator[AsyncSession, None]:
    """Database session whose outer transaction is always rolled back.

    ``session.commit()`` only releases a SAVEPOINT, so every test starts
    from a clean slate.
    """
    async with integration_engine.connect() as conn:
        trans = await conn.begin()
        session = AsyncSession(bind=conn, expire_on_commit=False)
        await session.begin_nested()

        @event.listens_for(session.sync_session, "after_transaction_end")
        def restart_savepoint(session_sync, transaction):
            if transaction.nested and not transaction._parent.nested:
                session_sync.begin_nested()

        yield session

        await session.close()
        await trans.rollback()


@pytest.fixture
def db_store(integration_session: AsyncSession) -> DatabaseSessionStore:
    """Session store whose operations all share the rolled-back test session."""

    @asynccontextmanager
    async def _factory():
        yield integration_session

    return DatabaseSessionStore(_factory)


# =============================================================================
# MARKERS
# =============================================================================


def pytest_configure(config: pytest.Config) -> None:
    """Register integration test markers."""
    config.addinivalue_line("markers", "integration: Integration tests requiring real services")
    config.addinivalue_line("markers", "requires_postgres: Tests requiring PostgreSQL container")

"""Unit tests for System API routes.

Tests GET /health, GET /ready and GET /producers with mocked
dependencies -- no real database or LLM provider connections.
"""

from contextlib import asynccontextmanager
from datetime import datetime
from unittest.mock import AsyncMock, patch

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.exc import OperationalError

from palette_relay.api.deps import get_app_settings
from palette_relay.llm.catalog import PRODUCER_CATALOG


def _make_test_app(settings):
    """Create a minimal FastAPI app with the system router."""
    from fastapi import FastAPI

    from palette_relay.api.routes.system import router

    app = FastAPI()
    app.include_router(router, prefix="/api/v1")
    app.dependency_overrides[get_app_settings] = lambda: settings
    return app


@pytest.fixture
def system_app(test_settings):
    return _make_test_app(test_settings)


@pytest.fixture
async def system_client(system_app):
    """Async HTTP client wired to the system test app."""
    async with AsyncClient(
        transport=ASGITransport(app=system_app),
        base_url="http://test",
    ) as client:
        yield client


def _session_factory(session):
    @asynccontextmanager
    async def _mock_get_session():
        yield session

    return _mock_get_session


@pytest.mark.asyncio
class TestHealthCheck:
    """Tests for GET /api/v1/health."""

    async def test_health_check_returns_healthy(self, system_client):
        """Should return healthy status with timestamp and version."""
        response = await system_client.get("/api/v1/health")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["version"] == "0.1.0"
        datetime.fromisoformat(data["timestamp"].replace("Z", "+00:00"))


@pytest.mark.asyncio
class TestReadinessCheck:
    """Tests for GET /api/v1/ready."""

    async def test_ready_when_db_available(self, system_client):
        mock_session = AsyncMock()

        with patch("palette_relay.storage.get_session", _session_factory(mock_session)):
            response = await system_client.get("/api/v1/ready")

        assert response.status_code == 200
        assert response.json()["status"] == "healthy"
        mock_session.execute.assert_awaited_once()

    async def test_not_ready_when_db_refuses(self, system_client):
        mock_session = AsyncMock()
        mock_session.execute.side_effect = OSError("connection refused")

        with patch("palette_relay.storage.get_session", _session_factory(mock_session)):
            response = await system_client.get("/api/v1/ready")

        assert response.status_code == 503
        assert "database unavailable" in response.json()["detail"]

    async def test_not_ready_on_sqlalchemy_error(self, system_client):
        mock_session = AsyncMock()
        mock_session.execute.side_effect = OperationalError("SELECT 1", {}, Exception("down"))

        with patch("palette_relay.storage.get_session", _session_factory(mock_session)):
            response = await system_client.get("/api/v1/ready")

        assert response.status_code == 503


@pytest.mark.asyncio
class TestListProducers:
    """Tests for GET /api/v1/producers."""

    async def test_lists_whole_catalog(self, system_client):
        response = await system_client.get("/api/v1/producers")

        assert response.status_code == 200
        data = response.json()
        assert [p["key"] for p in data] == list(PRODUCER_CATALOG)
        assert all(p["enabled"] for p in data)
        defaults = [p["key"] for p in data if p["default"]]
        assert defaults == ["groq-oss-120b"]

    async def test_enabled_subset(self, test_settings):
        settings = test_settings.model_copy(update={"enabled_producers": "kimi-k2, gpt-4.1-nano"})
        app = _make_test_app(settings)

        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
            response = await client.get("/api/v1/producers")

        enabled = {p["key"] for p in response.json() if p["enabled"]}
        assert enabled == {"kimi-k2", "gpt-4.1-nano"}

    async def test_structured_mode_reported(self, system_client):
        response = await system_client.get("/api/v1/producers")

        modes = {p["key"]: p["mode"] for p in response.json()}
        assert modes["gemini-2.0-flash"] == "structured"
        assert modes["groq-oss-120b"] == "text"

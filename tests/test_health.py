"""Tests for health check endpoint"""

from pathlib import Path

import pytest
from httpx import ASGITransport, AsyncClient

from pocket_chat.api.services import build_runtime
from pocket_chat.core.config import Settings
from pocket_chat.db import JsonConversationStore
from pocket_chat.main import app


@pytest.fixture
async def client(tmp_path: Path, orchestrator):
    """Create async test client."""
    # ASGITransport skips the lifespan, so install the runtime directly
    settings = Settings(data_dir=tmp_path)
    app.state.runtime = build_runtime(
        settings,
        store=JsonConversationStore(settings.conversations_dir),
        orchestrator=orchestrator,
    )
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


@pytest.mark.asyncio
async def test_health_check_returns_ok(client: AsyncClient):
    """Test that health check endpoint returns status ok."""
    response = await client.get("/api/v1/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok", "model_loaded": False, "model_id": None}


@pytest.mark.asyncio
async def test_health_check_content_type(client: AsyncClient):
    """Test that health check returns JSON content type."""
    response = await client.get("/api/v1/health")
    assert "application/json" in response.headers["content-type"]


@pytest.mark.asyncio
async def test_health_check_method_not_allowed(client: AsyncClient):
    """Test that POST to health check returns 405 Method Not Allowed."""
    response = await client.post("/api/v1/health")
    assert response.status_code == 405


@pytest.mark.asyncio
async def test_nonexistent_endpoint_returns_404(client: AsyncClient):
    """Test that non-existent endpoint returns 404."""
    response = await client.get("/api/v1/nonexistent")
    assert response.status_code == 404

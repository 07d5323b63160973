"""
Tests for discovery, health and application lifecycle.
"""

import asyncio
from datetime import timedelta
from unittest.mock import AsyncMock

import httpx
import pytest

from mcp_sampling_server.api.app import create_app, lifespan
from mcp_sampling_server.config import Settings
from mcp_sampling_server.protocol.jsonrpc import make_request


def make_client(app) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://testserver")


async def initialize(client) -> str:
    response = await client.post(
        "/mcp",
        json=make_request(1, "initialize", {"protocolVersion": "2025-06-18", "capabilities": {}}),
        headers={"Accept": "application/json, text/event-stream"},
    )
    return response.headers["mcp-session-id"]


@pytest.mark.asyncio
async def test_health_check():
    """Test health reports session counts."""
    app = create_app(Settings())
    async with make_client(app) as client:
        await initialize(client)
        response = await client.get("/api/health")

    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "healthy"
    assert data["sessions"] == {"streamable_http": 1, "sse": 0}


@pytest.mark.asyncio
@pytest.mark.parametrize("path", ["/.well-known/mcp.json", "/.well-known/mcp"])
async def test_discovery_document(path):
    """Test the identity document advertises every endpoint."""
    app = create_app(Settings())
    async with make_client(app) as client:
        response = await client.get(path)

    assert response.status_code == 200
    data = response.json()
    assert data["name"] == "mcp-sampling-server"
    assert data["endpoints"] == {
        "streamable_http": "http://testserver/mcp",
        "sse": "http://testserver/sse",
        "message": "http://testserver/message",
    }
    assert data["capabilities"]["tools"] == {"listChanged": False}


@pytest.mark.asyncio
async def test_discovery_prefers_public_base_url():
    """Test a configured public URL wins over the request host."""
    app = create_app(Settings(public_base_url="https://mcp.example.com/"))
    async with make_client(app) as client:
        response = await client.get("/.well-known/mcp.json")

    assert response.json()["endpoints"]["streamable_http"] == "https://mcp.example.com/mcp"


@pytest.mark.asyncio
async def test_cors_exposes_session_header():
    """Test browsers can read the session id header."""
    app = create_app(Settings())
    async with make_client(app) as client:
        response = await client.post(
            "/mcp",
            json=make_request(1, "initialize", {"protocolVersion": "2025-06-18", "capabilities": {}}),
            headers={"Accept": "application/json, text/event-stream", "Origin": "https://app.example.com"},
        )

    assert "mcp-session-id" in response.headers["access-control-expose-headers"]


@pytest.mark.asyncio
async def test_shutdown_closes_all_sessions():
    """Test leaving the lifespan terminates every open session."""
    app = create_app(Settings())
    async with make_client(app) as client:
        async with lifespan(app):
            first = await initialize(client)
            second = await initialize(client)
            assert len(app.state.http_sessions) == 2

    assert len(app.state.http_sessions) == 0
    assert first not in app.state.event_store
    assert second not in app.state.event_store


@pytest.mark.asyncio
async def test_idle_sessions_are_reaped():
    """Test a disconnected session idle past the window is terminated."""
    app = create_app(Settings(session_sweep_interval_seconds=1, session_idle_timeout_minutes=1))
    async with make_client(app) as client:
        async with lifespan(app):
            idle_id = await initialize(client)
            active_id = await initialize(client)

            idle = await app.state.http_sessions.lookup(idle_id)
            idle.last_activity -= timedelta(hours=1)

            async def wait_for_reap():
                while idle_id in app.state.http_sessions:
                    await asyncio.sleep(0.05)

            await asyncio.wait_for(wait_for_reap(), timeout=3)
            assert active_id in app.state.http_sessions


@pytest.mark.asyncio
async def test_reaper_survives_a_failing_close():
    """Test one session failing to close does not stop the sweep."""
    app = create_app(Settings(session_sweep_interval_seconds=1, session_idle_timeout_minutes=1))
    async with make_client(app) as client:
        async with lifespan(app):
            broken_id = await initialize(client)
            idle_id = await initialize(client)

            broken = await app.state.http_sessions.lookup(broken_id)
            broken.transport.close = AsyncMock(side_effect=RuntimeError("stuck"))
            idle = await app.state.http_sessions.lookup(idle_id)
            for session in (broken, idle):
                session.last_activity -= timedelta(hours=1)

            async def wait_for_reap():
                while idle_id in app.state.http_sessions:
                    await asyncio.sleep(0.05)

            await asyncio.wait_for(wait_for_reap(), timeout=3)
            broken.transport.close.assert_awaited()
            assert broken_id in app.state.http_sessions

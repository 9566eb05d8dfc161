"""Health endpoint tests."""

import pytest


@pytest.mark.asyncio
async def test_health_returns_ok(client):
    resp = await client.get("/api/v1/health")
    assert resp.status_code == 200
    data = resp.json()
    assert data["status"] == "healthy"
    assert data["database"] == "ok"
    assert data["broker"] == "ok"
    assert "version" in data
    assert data["relay"]["listener"] is None
    assert data["feed"] == {"topics": 0, "subscribers": 0}


@pytest.mark.asyncio
async def test_health_is_open(anon_client):
    resp = await anon_client.get("/api/v1/health")
    assert resp.status_code == 200


@pytest.mark.asyncio
async def test_health_degraded_without_broker(client, gateway):
    gateway.connected = False
    data = (await client.get("/api/v1/health")).json()
    assert data["status"] == "degraded"
    assert data["broker"].startswith("error")


@pytest.mark.asyncio
async def test_health_reports_feed_usage(client, app):
    app.state.feed.subscribe("messageAdded_1")
    app.state.feed.subscribe("messageAdded_1")
    data = (await client.get("/api/v1/health")).json()
    assert data["feed"] == {"topics": 1, "subscribers": 2}

"""
Health Check Tests
==================

Tests for the health check endpoints.
"""

import pytest
from httpx import AsyncClient


@pytest.mark.asyncio
async def test_health_check(client: AsyncClient):
    response = await client.get("/health")

    assert response.status_code == 200
    data = response.json()

    assert data["status"] == "healthy"
    assert data["environment"] == "test"
    assert data["redis"] == "ok"
    assert "reset-7" in data["programs"]


@pytest.mark.asyncio
async def test_health_survives_redis_outage(client: AsyncClient, fake_redis, monkeypatch):
    async def down():
        raise ConnectionError("redis down")

    monkeypatch.setattr(fake_redis, "ping", down)
    response = await client.get("/health")

    assert response.status_code == 200
    assert response.json()["redis"] == "unavailable"


@pytest.mark.asyncio
async def test_root_endpoint(client: AsyncClient):
    response = await client.get("/")

    assert response.status_code == 200
    data = response.json()

    assert data["name"] == "Ancre-toi API"
    # docs are only served in development
    assert data["docs"] == "Disabled in production"

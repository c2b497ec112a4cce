"""Integration tests for /health, /health/ready and /metrics endpoints."""

import pytest
from unittest.mock import MagicMock

from httpx import AsyncClient

from scrapegate.config import settings


class TestLivenessEndpoint:
    @pytest.mark.asyncio
    async def test_liveness_returns_healthy(self, client: AsyncClient):
        """GET /health returns 200 with status healthy."""
        resp = await client.get("/health")
        assert resp.status_code == 200
        assert resp.json()["status"] == "healthy"

    @pytest.mark.asyncio
    async def test_request_id_is_echoed(self, client: AsyncClient):
        resp = await client.get("/health", headers={"X-Request-ID": "req-123"})
        assert resp.headers["X-Request-ID"] == "req-123"

    @pytest.mark.asyncio
    async def test_request_id_is_generated(self, client: AsyncClient):
        resp = await client.get("/health")
        assert len(resp.headers["X-Request-ID"]) == 36


class TestReadinessEndpoint:
    @pytest.mark.asyncio
    async def test_ready_with_idle_browser(self, client: AsyncClient):
        """Chromium is launched lazily, so an idle browser pool is still ready."""
        resp = await client.get("/health/ready")
        assert resp.status_code == 200
        data = resp.json()
        assert data["status"] == "ready"
        assert data["checks"] == {"database": "ok", "redis": "ok", "browser_pool": "idle"}

    @pytest.mark.asyncio
    async def test_returns_503_when_redis_unavailable(self, client: AsyncClient, fake_redis):
        fake_redis.available = False
        resp = await client.get("/health/ready")
        assert resp.status_code == 503
        data = resp.json()
        assert data["status"] == "not ready"
        assert data["checks"]["redis"] == "unavailable"

    @pytest.mark.asyncio
    async def test_returns_503_when_database_fails(self, client: AsyncClient, engine, monkeypatch):
        broken = MagicMock()
        broken.connect.side_effect = Exception("Connection refused")
        monkeypatch.setattr(engine, "db_engine", broken)

        resp = await client.get("/health/ready")
        assert resp.status_code == 503
        assert resp.json()["checks"]["database"].startswith("error")


class TestMetricsEndpoint:
    @pytest.mark.asyncio
    async def test_metrics_exposed(self, client: AsyncClient):
        resp = await client.get("/metrics")
        assert resp.status_code == 200
        assert "scrape_requests_total" in resp.text

    @pytest.mark.asyncio
    async def test_metrics_disabled(self, client: AsyncClient, monkeypatch):
        monkeypatch.setattr(settings, "METRICS_ENABLED", False)
        resp = await client.get("/metrics")
        assert resp.status_code == 404

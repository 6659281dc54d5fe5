"""
API envelope and infrastructure tests.

Tests:
- Envelope shape (success/error)
- requestId on every response
- Health, self-description and rate limit introspection endpoints
- CORS origin policy
"""

import logging
from unittest.mock import AsyncMock

import pytest
from httpx import ASGITransport, AsyncClient


# ---------------------------------------------------------------------------
# Health check
# ---------------------------------------------------------------------------

class TestHealthEndpoint:
    """GET /health returns envelope with status and version."""

    @pytest.mark.asyncio
    async def test_health_returns_200(self, client):
        response = await client.get("/health")
        assert response.status_code == 200

    @pytest.mark.asyncio
    async def test_health_envelope_shape(self, client):
        body = (await client.get("/health")).json()
        assert body["success"] is True
        assert body["data"]["status"] == "healthy"
        assert "version" in body["data"]
        assert "uptime" in body["data"]

    @pytest.mark.asyncio
    async def test_health_not_rate_limited(self, client):
        response = await client.get("/health")
        assert "x-ratelimit-limit" not in response.headers


# ---------------------------------------------------------------------------
# Envelope + request id
# ---------------------------------------------------------------------------

class TestAPIEnvelope:
    """All responses follow {success, data|error, requestId} shape."""

    @pytest.mark.asyncio
    async def test_404_error_envelope(self, client):
        response = await client.get("/nonexistent-route")
        assert response.status_code == 404
        body = response.json()
        assert body["success"] is False
        assert body["error"]["code"] == "NOT_FOUND"
        assert "message" in body["error"]
        assert "requestId" in body

    @pytest.mark.asyncio
    async def test_custom_request_id_header(self, client):
        custom_id = "test-req-12345"
        response = await client.get("/health", headers={"x-request-id": custom_id})
        assert response.headers["x-request-id"] == custom_id
        assert response.json()["requestId"] == custom_id

    @pytest.mark.asyncio
    async def test_auto_generated_request_id(self, client):
        response = await client.get("/health")
        assert response.headers.get("x-request-id")

    @pytest.mark.asyncio
    async def test_request_id_on_404(self, client):
        response = await client.get("/does-not-exist")
        assert "x-request-id" in response.headers

    @pytest.mark.asyncio
    async def test_schema_validation_envelope(self, client):
        response = await client.get("/api/weather/forecast", params={"lat": 21, "lon": 105, "days": 99})
        assert response.status_code == 422
        body = response.json()
        assert body["success"] is False
        assert body["error"]["code"] == "VALIDATION_ERROR"


# ---------------------------------------------------------------------------
# /api/test and /api/ratelimit
# ---------------------------------------------------------------------------

class TestInfoEndpoints:
    @pytest.mark.asyncio
    async def test_api_test_lists_endpoints(self, client):
        body = (await client.get("/api/test")).json()
        assert body["success"] is True
        assert "temperatureGrid" in body["data"]["apis"]
        assert body["data"]["rateLimit"]["max"] == 300

    @pytest.mark.asyncio
    async def test_ratelimit_reports_window(self, client):
        await client.get("/api/test")
        body = (await client.get("/api/ratelimit")).json()
        assert body["data"]["limit"] == 300
        assert body["data"]["current"] == 2
        assert body["data"]["remaining"] == 298


# ---------------------------------------------------------------------------
# Rate limiting (in-process window; no Redis in tests)
# ---------------------------------------------------------------------------

class TestRateLimiting:
    @pytest.mark.asyncio
    async def test_headers_on_api_routes(self, client):
        response = await client.get("/api/test")
        assert response.headers["x-ratelimit-limit"] == "300"
        assert response.headers["x-ratelimit-remaining"] == "299"

    @pytest.mark.asyncio
    async def test_429_after_limit(self, client, monkeypatch):
        from services.weather_api.config import settings

        monkeypatch.setattr(settings, "rate_limit_max_requests", 2)

        assert (await client.get("/api/test")).status_code == 200
        assert (await client.get("/api/test")).status_code == 200
        response = await client.get("/api/test")

        assert response.status_code == 429
        body = response.json()
        assert body["success"] is False
        assert body["error"]["code"] == "RATE_LIMITED"
        assert int(response.headers["retry-after"]) >= 1
        assert body["requestId"] == response.headers["x-request-id"]

    @pytest.mark.asyncio
    async def test_clients_limited_independently(self, client, monkeypatch):
        from services.weather_api.config import settings

        monkeypatch.setattr(settings, "rate_limit_max_requests", 1)

        a = await client.get("/api/test", headers={"x-forwarded-for": "10.0.0.1"})
        b = await client.get("/api/test", headers={"x-forwarded-for": "10.0.0.2, 172.16.0.1"})
        a_again = await client.get("/api/test", headers={"x-forwarded-for": "10.0.0.1"})

        assert a.status_code == 200
        assert b.status_code == 200
        assert a_again.status_code == 429


# ---------------------------------------------------------------------------
# CORS
# ---------------------------------------------------------------------------

class TestCORS:
    @pytest.mark.asyncio
    @pytest.mark.parametrize("origin", [
        "http://localhost:5173",
        "https://pleasant-weather.pages.dev",
        "https://abc123.pleasant-weather.pages.dev",
        "https://pleasant.vercel.app",
        "https://api.up.railway.app",
        "https://pleasant.onrender.com",
    ])
    async def test_allowed_origins(self, client, origin):
        response = await client.get("/health", headers={"origin": origin})
        assert response.headers.get("access-control-allow-origin") == origin

    @pytest.mark.asyncio
    async def test_unknown_origin_not_allowed(self, client):
        response = await client.get("/health", headers={"origin": "https://evil.example.com"})
        assert "access-control-allow-origin" not in response.headers

    @pytest.mark.asyncio
    async def test_preflight(self, client):
        response = await client.options(
            "/api/map/temperature-grid",
            headers={
                "origin": "https://pleasant.vercel.app",
                "access-control-request-method": "GET",
            },
        )
        assert response.status_code == 200
        assert response.headers["access-control-allow-origin"] == "https://pleasant.vercel.app"


# ---------------------------------------------------------------------------
# Debug setting
# ---------------------------------------------------------------------------

class TestDebugSetting:
    def test_debug_drives_log_level(self, monkeypatch):
        from services.weather_api.config import settings
        from services.weather_api.main import _log_level

        monkeypatch.setattr(settings, "log_level", "WARNING")
        assert _log_level() == logging.WARNING

        monkeypatch.setattr(settings, "debug", True)
        assert _log_level() == logging.DEBUG

    @pytest.mark.asyncio
    async def test_unhandled_error_uses_envelope_when_debug_off(self, app, mock_weather_client):
        assert app.debug is False
        mock_weather_client.get_current_weather = AsyncMock(side_effect=RuntimeError("bug"))

        transport = ASGITransport(app=app, raise_app_exceptions=False)
        async with AsyncClient(transport=transport, base_url="http://test") as ac:
            response = await ac.get("/api/weather/current", params={"lat": 21.0, "lon": 105.0})

        assert response.status_code == 500
        body = response.json()
        assert body["success"] is False
        assert body["error"]["code"] == "INTERNAL_ERROR"

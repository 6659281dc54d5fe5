"""
Tests for the sliding window rate limiter in isolation.
"""

import pytest
from unittest.mock import AsyncMock, MagicMock

from fastapi import FastAPI, Request
from httpx import ASGITransport, AsyncClient

from services.weather_api.middleware.rate_limit import (
    InMemorySlidingWindow,
    RateLimitMiddleware,
    _get_client_key,
)


def _request(headers: dict[str, str] | None = None, host: str = "203.0.113.9") -> Request:
    scope = {
        "type": "http",
        "method": "GET",
        "path": "/api/ping",
        "headers": [(k.lower().encode(), v.encode()) for k, v in (headers or {}).items()],
        "client": (host, 5555),
    }
    return Request(scope)


def _mock_redis(prior_count: int) -> MagicMock:
    pipe = MagicMock()
    pipe.execute = AsyncMock(return_value=[0, prior_count, 1, True])
    redis = MagicMock()
    redis.pipeline = MagicMock(return_value=pipe)
    return redis


def _build_app(**middleware_kwargs) -> FastAPI:
    app = FastAPI()

    @app.get("/api/ping")
    async def ping(request: Request):
        return {"rate_limit": request.state.rate_limit}

    @app.get("/health")
    async def health():
        return {"ok": True}

    app.add_middleware(RateLimitMiddleware, **middleware_kwargs)
    return app


async def _get(app: FastAPI, path: str):
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        return await ac.get(path)


class TestInMemorySlidingWindow:
    def test_counts_prior_hits(self):
        window = InMemorySlidingWindow()
        assert window.hit("k", now=100.0, window_s=60) == 0
        assert window.hit("k", now=101.0, window_s=60) == 1
        assert window.hit("k", now=102.0, window_s=60) == 2
        assert window.oldest("k") == 100.0

    def test_expired_hits_drop_out(self):
        window = InMemorySlidingWindow()
        window.hit("k", now=100.0, window_s=60)
        window.hit("k", now=130.0, window_s=60)

        assert window.hit("k", now=160.0, window_s=60) == 1
        assert window.oldest("k") == 130.0

    def test_keys_are_independent(self):
        window = InMemorySlidingWindow()
        window.hit("a", now=1.0, window_s=60)
        assert window.hit("b", now=1.0, window_s=60) == 0

    def test_reset(self):
        window = InMemorySlidingWindow()
        window.hit("k", now=1.0, window_s=60)
        window.reset()
        assert window.oldest("k") is None
        assert len(window) == 0

    def test_idle_keys_purged_after_a_window(self):
        window = InMemorySlidingWindow()
        for i in range(5000):
            window.hit(f"ip:10.0.{i // 256}.{i % 256}", now=0.0, window_s=900)
        assert len(window) == 5000

        window.hit("ip:198.51.100.7", now=10_000.0, window_s=900)

        assert len(window) == 1
        assert window.oldest("ip:198.51.100.7") == 10_000.0

    def test_purge_keeps_active_keys(self):
        window = InMemorySlidingWindow()
        window.hit("idle", now=0.0, window_s=900)
        window.hit("active", now=800.0, window_s=900)

        # First hit a full window after the last purge triggers one
        assert window.hit("new", now=1000.0, window_s=900) == 0

        assert window.oldest("idle") is None
        assert window.oldest("active") == 800.0
        assert len(window) == 2

    def test_no_purge_within_a_window(self):
        window = InMemorySlidingWindow()
        window.hit("a", now=0.0, window_s=900)
        window.hit("b", now=899.0, window_s=900)
        assert len(window) == 2


class TestClientKey:
    def test_socket_peer(self):
        assert _get_client_key(_request()) == "ip:203.0.113.9"

    def test_first_forwarded_hop(self):
        request = _request({"X-Forwarded-For": "198.51.100.7, 10.0.0.1"})
        assert _get_client_key(request) == "ip:198.51.100.7"


class TestRedisBackend:
    @pytest.mark.asyncio
    async def test_under_limit(self):
        redis = _mock_redis(prior_count=4)
        response = await _get(_build_app(redis_client=redis), "/api/ping")

        assert response.status_code == 200
        assert response.headers["x-ratelimit-remaining"] == "295"
        assert response.json()["rate_limit"]["current"] == 5
        pipe = redis.pipeline.return_value
        pipe.zremrangebyscore.assert_called_once()
        pipe.zadd.assert_called_once()
        assert pipe.expire.call_args[0][1] == 1800

    @pytest.mark.asyncio
    async def test_over_limit(self):
        response = await _get(_build_app(redis_client=_mock_redis(prior_count=300)), "/api/ping")

        assert response.status_code == 429
        body = response.json()
        assert body["success"] is False
        assert body["error"]["code"] == "RATE_LIMITED"
        assert response.headers["x-ratelimit-remaining"] == "0"
        assert 899 <= int(response.headers["retry-after"]) <= 900

    @pytest.mark.asyncio
    async def test_unlimited_paths_skip_redis(self):
        redis = _mock_redis(prior_count=300)
        response = await _get(_build_app(redis_client=redis), "/health")

        assert response.status_code == 200
        redis.pipeline.assert_not_called()


class TestLocalBackend:
    @pytest.mark.asyncio
    async def test_uses_supplied_window(self):
        window = InMemorySlidingWindow()
        app = _build_app(local_window=window)

        await _get(app, "/api/ping")
        response = await _get(app, "/api/ping")

        assert response.json()["rate_limit"]["current"] == 2
        assert window.oldest("ratelimit:api:ip:127.0.0.1") is not None
        assert len(window) == 1

"""
Sliding window rate limiter for /api/ routes.

Limit: 300 requests per 15 minutes per client IP (settings-driven).

Backends:
  - Redis sorted sets when a client is available (shared across workers)
  - In-process window otherwise (per worker, lost on restart)

The window state for the current request is exposed on request.state.rate_limit
so GET /api/ratelimit can report it.
"""

import time
from collections import deque
from typing import Callable

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import JSONResponse

from services.weather_api.config import settings

LIMITED_PREFIX = "/api/"


def _get_client_key(request: Request) -> str:
    """Client identifier: first X-Forwarded-For hop, else socket peer."""
    client_ip = request.client.host if request.client else "unknown"
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        client_ip = forwarded.split(",")[0].strip()
    return f"ip:{client_ip}"


class InMemorySlidingWindow:
    """
    Per-key request timestamps, trimmed to the window on every hit.

    Keys with no hit inside the window are purged at most once per window,
    so idle clients (or spoofed X-Forwarded-For values) do not accumulate.
    """

    def __init__(self) -> None:
        self._hits: dict[str, deque[float]] = {}
        self._last_purge: float | None = None

    def __len__(self) -> int:
        return len(self._hits)

    def hit(self, key: str, now: float, window_s: float) -> int:
        """Record a hit and return how many hits were already in the window."""
        if self._last_purge is None:
            self._last_purge = now
        elif now - self._last_purge >= window_s:
            self.purge(now, window_s)

        hits = self._hits.setdefault(key, deque())
        window_start = now - window_s
        while hits and hits[0] <= window_start:
            hits.popleft()
        current = len(hits)
        hits.append(now)
        return current

    def purge(self, now: float, window_s: float) -> int:
        """Drop keys whose newest hit has left the window. Returns the number dropped."""
        window_start = now - window_s
        stale = [key for key, hits in self._hits.items() if not hits or hits[-1] <= window_start]
        for key in stale:
            del self._hits[key]
        self._last_purge = now
        return len(stale)

    def oldest(self, key: str) -> float | None:
        hits = self._hits.get(key)
        return hits[0] if hits else None

    def reset(self) -> None:
        self._hits.clear()
        self._last_purge = None


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Sliding window rate limiter backed by Redis sorted sets or process memory."""

    def __init__(self, app, redis_client=None, local_window: InMemorySlidingWindow | None = None):
        super().__init__(app)
        self.redis = redis_client
        self.local_window = local_window if local_window is not None else InMemorySlidingWindow()

    async def _count_redis(self, window_key: str, now: float, window_s: float, request: Request) -> int:
        pipe = self.redis.pipeline()
        # Remove expired entries
        pipe.zremrangebyscore(window_key, 0, now - window_s)
        # Count current entries
        pipe.zcard(window_key)
        # Add current request
        pipe.zadd(window_key, {f"{now}:{id(request)}": now})
        # Set TTL on the key
        pipe.expire(window_key, int(window_s * 2))
        results = await pipe.execute()
        return results[1]

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        if not request.url.path.startswith(LIMITED_PREFIX):
            return await call_next(request)

        limit = settings.rate_limit_max_requests
        window_s = settings.rate_limit_window_s
        client_key = _get_client_key(request)
        window_key = f"ratelimit:api:{client_key}"
        now = time.time()

        if self.redis is not None:
            current_count = await self._count_redis(window_key, now, window_s, request)
            reset_at = now + window_s
        else:
            current_count = self.local_window.hit(window_key, now, window_s)
            oldest = self.local_window.oldest(window_key)
            reset_at = (oldest if oldest is not None else now) + window_s

        remaining = max(0, limit - current_count - 1)
        request.state.rate_limit = {
            "limit": limit,
            "remaining": remaining,
            "reset": int(reset_at),
            "current": current_count + 1,
        }

        headers = {
            "X-RateLimit-Limit": str(limit),
            "X-RateLimit-Remaining": str(remaining),
            "X-RateLimit-Reset": str(int(reset_at)),
        }

        if current_count >= limit:
            headers["Retry-After"] = str(max(1, int(reset_at - now)))
            return JSONResponse(
                status_code=429,
                content={
                    "success": False,
                    "error": {
                        "code": "RATE_LIMITED",
                        "message": f"Too many requests. Max {limit} requests per {window_s // 60} minutes.",
                    },
                    "requestId": getattr(request.state, "request_id", ""),
                },
                headers=headers,
            )

        response = await call_next(request)
        for key, value in headers.items():
            response.headers[key] = value
        return response

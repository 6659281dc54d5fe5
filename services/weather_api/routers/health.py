"""Health check, self-description and rate limit introspection endpoints."""

import time
from datetime import datetime, timezone

from fastapi import APIRouter, Request

router = APIRouter(tags=["health"])


@router.get("/health")
async def health_check(request: Request) -> dict:
    started_at = getattr(request.app.state, "started_at", None)
    return {
        "success": True,
        "data": {
            "status": "healthy",
            "version": request.app.state.settings.app_version,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "uptime": round(time.monotonic() - started_at, 1) if started_at is not None else 0.0,
        },
        "requestId": request.state.request_id,
    }


@router.get("/api/test")
async def describe_api(request: Request) -> dict:
    settings = request.app.state.settings
    return {
        "success": True,
        "data": {
            "message": "Backend is running",
            "stack": {
                "weather": "Open-Meteo (free)",
                "geocoding": "OpenWeatherMap + Nominatim",
                "map": "Leaflet (frontend)",
            },
            "apis": {
                "currentWeather": "/api/weather/current?city=Hanoi",
                "forecast": "/api/weather/forecast?city=Hanoi&days=7",
                "hourly": "/api/weather/hourly?city=Hanoi&hours=24",
                "search": "/api/map/search?q=Hanoi",
                "reverse": "/api/map/reverse?lat=21.0285&lon=105.8542",
                "temperatureGrid": "/api/map/temperature-grid?bounds=21.0,105.0,21.5,105.5&gridSize=10",
            },
            "rateLimit": {
                "max": settings.rate_limit_max_requests,
                "windowSeconds": settings.rate_limit_window_s,
                "note": "Check X-RateLimit-* headers in response",
            },
        },
        "requestId": request.state.request_id,
    }


@router.get("/api/ratelimit")
async def rate_limit_status(request: Request) -> dict:
    """Window state recorded by RateLimitMiddleware for this caller."""
    info = getattr(request.state, "rate_limit", None) or {}
    return {
        "success": True,
        "data": {
            "limit": info.get("limit", request.app.state.settings.rate_limit_max_requests),
            "remaining": info.get("remaining"),
            "reset": info.get("reset"),
            "current": info.get("current"),
        },
        "requestId": request.state.request_id,
    }

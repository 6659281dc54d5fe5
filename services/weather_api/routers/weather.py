"""
Weather endpoints — GET /api/weather/{current,forecast,hourly}

Location is either ?city=... (geocoded to the best match) or ?lat=..&lon=...
When only coordinates are given, /current reverse-geocodes a display name on
a best-effort basis.
"""

import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Query, Request

from services.weather_api.errors import NotFoundError, UpstreamError, ValidationError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/weather", tags=["weather"])


async def _resolve_location(
    request: Request,
    city: str | None,
    lat: float | None,
    lon: float | None,
) -> tuple[str | None, float, float]:
    """Return (city, lat, lon), geocoding the city when coordinates are missing."""
    if city and (lat is None or lon is None):
        places = await request.app.state.geocoding.search(city)
        best = places[0]
        logger.info("Geocoded %r to %s (%s, %s)", city, best["nameVi"], best["lat"], best["lon"])
        return best["nameVi"], best["lat"], best["lon"]

    if lat is None or lon is None:
        raise ValidationError("Provide either city or both lat and lon")
    return city, lat, lon


def _location(city: str | None, lat: float, lon: float) -> dict:
    return {"city": city, "lat": lat, "lon": lon}


@router.get("/current")
async def current_weather(
    request: Request,
    city: str | None = Query(None, max_length=200),
    lat: float | None = Query(None, ge=-90, le=90),
    lon: float | None = Query(None, ge=-180, le=180),
) -> dict:
    city, lat, lon = await _resolve_location(request, city, lat, lon)
    weather = await request.app.state.weather_client.get_current_weather(lat, lon)

    if not city:
        try:
            place = await request.app.state.geocoding.reverse(lat, lon)
            city = place.get("nameVi") or place.get("name")
        except (UpstreamError, NotFoundError) as exc:
            logger.warning("Reverse geocoding failed for lat=%s lon=%s: %s", lat, lon, exc.message)

    return {
        "success": True,
        "data": {
            "location": _location(city, lat, lon),
            "weather": weather,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        },
        "requestId": request.state.request_id,
    }


@router.get("/forecast")
async def daily_forecast(
    request: Request,
    city: str | None = Query(None, max_length=200),
    lat: float | None = Query(None, ge=-90, le=90),
    lon: float | None = Query(None, ge=-180, le=180),
    days: int = Query(7, ge=1, le=16),
) -> dict:
    city, lat, lon = await _resolve_location(request, city, lat, lon)
    forecast = await request.app.state.weather_client.get_forecast(lat, lon, days)

    return {
        "success": True,
        "data": {
            "location": _location(city, lat, lon),
            "forecast": forecast,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        },
        "requestId": request.state.request_id,
    }


@router.get("/hourly")
async def hourly_forecast(
    request: Request,
    city: str | None = Query(None, max_length=200),
    lat: float | None = Query(None, ge=-90, le=90),
    lon: float | None = Query(None, ge=-180, le=180),
    hours: int = Query(24, ge=1, le=168),
) -> dict:
    city, lat, lon = await _resolve_location(request, city, lat, lon)
    hourly = await request.app.state.weather_client.get_hourly_forecast(lat, lon, hours)

    return {
        "success": True,
        "data": {
            "location": _location(city, lat, lon),
            "hourly": hourly,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        },
        "requestId": request.state.request_id,
    }

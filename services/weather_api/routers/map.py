"""
Map endpoints — place search, reverse geocoding and the temperature grid.

GET /api/map/temperature-grid?bounds=minLat,minLon,maxLat,maxLon&gridSize=10

Bounds and grid size are validated here before the fetcher does any I/O.
The grid is best effort: fewer points than requested is still a 200.
"""

import asyncio
import logging

from fastapi import APIRouter, Query, Request

from services.weather_api.errors import GridTimeoutError, ValidationError
from services.weather_api.grid import parse_bounds, resolve_grid_size

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/map", tags=["map"])


@router.get("/search")
async def search_location(
    request: Request,
    q: str | None = Query(None, max_length=200, description="Place name"),
) -> dict:
    if not q or not q.strip():
        raise ValidationError("Query string q is required")

    results = await request.app.state.geocoding.search(q.strip())
    return {
        "success": True,
        "data": {
            "query": q,
            "results": results,
            "count": len(results),
        },
        "requestId": request.state.request_id,
    }


@router.get("/reverse")
async def reverse_geocode(
    request: Request,
    lat: float | None = Query(None, ge=-90, le=90),
    lon: float | None = Query(None, ge=-180, le=180),
) -> dict:
    if lat is None or lon is None:
        raise ValidationError("Both lat and lon are required")

    place = await request.app.state.geocoding.reverse(lat, lon)
    return {
        "success": True,
        "data": place,
        "requestId": request.state.request_id,
    }


@router.get("/temperature-grid")
async def temperature_grid(
    request: Request,
    bounds: str | None = Query(None, description="minLat,minLon,maxLat,maxLon"),
    grid_size: str | None = Query(None, alias="gridSize", description="Cells per side (max 12)"),
) -> dict:
    settings = request.app.state.settings
    box = parse_bounds(bounds)
    size = resolve_grid_size(grid_size, settings.grid_default_size, settings.grid_max_size)

    try:
        result = await asyncio.wait_for(
            request.app.state.grid_fetcher.fetch_grid(box, size),
            timeout=settings.grid_request_timeout_s,
        )
    except asyncio.TimeoutError:
        logger.warning(
            "Temperature grid timed out after %.1fs: bounds=%s size=%d",
            settings.grid_request_timeout_s, bounds, size,
        )
        raise GridTimeoutError("Temperature grid took too long; try a smaller area or grid") from None

    return {
        "success": True,
        "data": result.to_dict(),
        "requestId": request.state.request_id,
    }

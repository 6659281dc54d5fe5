"""
Temperature grid package.

SpatialCache dedupes nearby lookups per 0.1° cell with a 10 minute TTL;
GridFetcher fans a bounding box out into batched, cached point fetches.
"""

from services.weather_api.grid.cache import CacheEntry, SpatialCache, cache_key
from services.weather_api.grid.fetcher import (
    BoundingBox,
    GridFetcher,
    GridPoint,
    GridResponse,
    GridResult,
    generate_points,
    parse_bounds,
    resolve_grid_size,
)

__all__ = [
    "BoundingBox",
    "CacheEntry",
    "GridFetcher",
    "GridPoint",
    "GridResponse",
    "GridResult",
    "SpatialCache",
    "cache_key",
    "generate_points",
    "parse_bounds",
    "resolve_grid_size",
]

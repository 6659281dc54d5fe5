"""
Temperature grid fetcher for the heat-map layer.

Pipeline for one request:
  1. parse_bounds / resolve_grid_size  — reject bad input before any I/O
  2. generate_points                    — (N+1)² evenly spaced coordinates
  3. batches of BATCH_SIZE              — each batch's fetches run concurrently,
                                          the next batch waits for all of them
  4. per point                          — cache hit, a fetch already running for
                                          the same cell, or fetch_point + cache put
  5. aggregate                          — drop failed points, count survivors

A failed point (any UpstreamError) becomes val=None and is dropped; it never
aborts its batch or the request. After the upstream answers 429, the rest of
the run stops issuing new fetches and serves cache hits only.
"""

from __future__ import annotations

import asyncio
import logging
import math
import re
from dataclasses import dataclass, field
from typing import Any, Protocol

from services.weather_api.errors import RateLimitedError, UpstreamError, ValidationError
from services.weather_api.grid.cache import SpatialCache, cache_key

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

# Max simultaneous upstream calls per grid request
BATCH_SIZE = 30

DEFAULT_GRID_SIZE = 10

# 12 -> 169 points; larger grids time out against the free tier
MAX_GRID_SIZE = 12

_LEADING_INT = re.compile(r"\s*([+-]?\d+)")


class PointSource(Protocol):
    async def fetch_point(self, lat: float, lon: float) -> float: ...


@dataclass(frozen=True)
class BoundingBox:
    min_lat: float
    min_lon: float
    max_lat: float
    max_lon: float

    def to_dict(self) -> dict[str, float]:
        return {
            "minLat": self.min_lat,
            "minLon": self.min_lon,
            "maxLat": self.max_lat,
            "maxLon": self.max_lon,
        }


@dataclass(frozen=True)
class GridPoint:
    lat: float
    lon: float


@dataclass
class GridResult:
    lat: float
    lon: float
    val: float | None

    def to_dict(self) -> dict[str, Any]:
        return {"lat": self.lat, "lon": self.lon, "val": self.val}


@dataclass
class GridResponse:
    points: list[GridResult]
    bounds: BoundingBox
    grid_size: int
    total: int
    cache_hits: int = 0
    cache_misses: int = 0
    failures: int = 0
    rate_limited: bool = False

    @property
    def count(self) -> int:
        return len(self.points)

    def to_dict(self) -> dict[str, Any]:
        return {
            "points": [p.to_dict() for p in self.points],
            "count": self.count,
            "total": self.total,
            "bounds": self.bounds.to_dict(),
            "gridSize": self.grid_size,
        }


@dataclass
class _RunStats:
    cache_hits: int = 0
    cache_misses: int = 0
    failures: int = 0
    shared_fetches: int = 0
    rate_limited: bool = False
    errors: list[str] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Input handling
# ---------------------------------------------------------------------------

def parse_bounds(raw: str | None) -> BoundingBox:
    """
    Parse 'minLat,minLon,maxLat,maxLon' into a BoundingBox.

    Raises ValidationError when the value is missing, is not exactly four
    finite numbers, or is inverted (min >= max on either axis).
    """
    if raw is None or not raw.strip():
        raise ValidationError("bounds is required (minLat,minLon,maxLat,maxLon)")

    parts = raw.split(",")
    if len(parts) != 4:
        raise ValidationError(f"bounds must have 4 comma-separated numbers, got {len(parts)}")

    try:
        values = [float(p.strip()) for p in parts]
    except ValueError:
        raise ValidationError(f"bounds contains a non-numeric value: {raw!r}") from None

    if not all(math.isfinite(v) for v in values):
        raise ValidationError(f"bounds contains a non-finite value: {raw!r}")

    min_lat, min_lon, max_lat, max_lon = values
    if min_lat >= max_lat or min_lon >= max_lon:
        raise ValidationError("bounds are inverted: min must be strictly less than max")

    return BoundingBox(min_lat=min_lat, min_lon=min_lon, max_lat=max_lat, max_lon=max_lon)


def resolve_grid_size(
    raw: Any,
    default: int = DEFAULT_GRID_SIZE,
    maximum: int = MAX_GRID_SIZE,
) -> int:
    """
    Leading integer of raw ("2.5" -> 2, "8px" -> 8), clamped to maximum.
    Absent, non-numeric or < 1 -> default.
    """
    match = _LEADING_INT.match(str(raw)) if raw is not None else None
    if match is None:
        return default
    size = int(match.group(1))
    if size < 1:
        return default
    return min(size, maximum)


def generate_points(bounds: BoundingBox, grid_size: int) -> list[GridPoint]:
    """(grid_size+1)² points, row-major by latitude, both edges included."""
    lat_step = (bounds.max_lat - bounds.min_lat) / grid_size
    lon_step = (bounds.max_lon - bounds.min_lon) / grid_size

    def _lat(i: int) -> float:
        return bounds.max_lat if i == grid_size else bounds.min_lat + i * lat_step

    def _lon(j: int) -> float:
        return bounds.max_lon if j == grid_size else bounds.min_lon + j * lon_step

    return [
        GridPoint(lat=_lat(i), lon=_lon(j))
        for i in range(grid_size + 1)
        for j in range(grid_size + 1)
    ]


# ---------------------------------------------------------------------------
# Fetcher
# ---------------------------------------------------------------------------

class GridFetcher:
    """
    Batched, cached temperature lookups over a bounding box.

    Points that round to the same cache cell share one upstream call: the
    first miss starts the fetch, later points in the run wait on it.

    Usage:
        fetcher = GridFetcher(client=OpenMeteoClient(http), cache=SpatialCache())
        response = await fetcher.fetch_grid(parse_bounds("21,105,21.5,105.5"), 10)
        response.to_dict()
    """

    def __init__(
        self,
        client: PointSource,
        cache: SpatialCache,
        batch_size: int = BATCH_SIZE,
        max_grid_size: int = MAX_GRID_SIZE,
        stop_on_rate_limit: bool = True,
    ) -> None:
        self.client = client
        self.cache = cache
        self.batch_size = batch_size
        self.max_grid_size = max_grid_size
        self.stop_on_rate_limit = stop_on_rate_limit

    async def fetch_grid(self, bounds: BoundingBox, grid_size: int) -> GridResponse:
        grid_size = max(1, min(grid_size, self.max_grid_size))
        points = generate_points(bounds, grid_size)
        stats = _RunStats()
        in_flight: dict[str, asyncio.Task] = {}
        results: list[GridResult] = []

        # At most batch_size points are in flight; the next batch starts once all settle
        for batch_start in range(0, len(points), self.batch_size):
            batch = points[batch_start : batch_start + self.batch_size]
            results.extend(await self._run_batch(batch, stats, in_flight))

        valid = [r for r in results if r.val is not None]

        logger.info(
            "Temperature grid: size=%d requested=%d returned=%d hits=%d shared=%d misses=%d failed=%d%s",
            grid_size,
            len(points),
            len(valid),
            stats.cache_hits,
            stats.shared_fetches,
            stats.cache_misses,
            stats.failures,
            " (upstream rate limited)" if stats.rate_limited else "",
        )
        if stats.errors:
            logger.debug("Temperature grid point errors: %s", stats.errors[:10])

        return GridResponse(
            points=valid,
            bounds=bounds,
            grid_size=grid_size,
            total=len(points),
            cache_hits=stats.cache_hits,
            cache_misses=stats.cache_misses,
            failures=stats.failures,
            rate_limited=stats.rate_limited,
        )

    async def _run_batch(
        self,
        batch: list[GridPoint],
        stats: _RunStats,
        in_flight: dict[str, asyncio.Task],
    ) -> list[GridResult]:
        tasks = [asyncio.ensure_future(self._resolve_point(point, stats, in_flight)) for point in batch]
        try:
            return await asyncio.gather(*tasks)
        except BaseException:
            # Unexpected error or cancellation: no fetch outlives the batch
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise

    async def _resolve_point(
        self,
        point: GridPoint,
        stats: _RunStats,
        in_flight: dict[str, asyncio.Task],
    ) -> GridResult:
        """Cache hit, a fetch already running for the same cell, or a new fetch."""
        key = cache_key(point.lat, point.lon)
        entry = self.cache.get(key)
        if entry is not None:
            stats.cache_hits += 1
            return GridResult(lat=point.lat, lon=point.lon, val=entry.value)

        pending = in_flight.get(key)
        if pending is not None:
            value = await asyncio.shield(pending)
            if value is None:
                stats.failures += 1
            else:
                stats.cache_hits += 1
                stats.shared_fetches += 1
            return GridResult(lat=point.lat, lon=point.lon, val=value)

        stats.cache_misses += 1
        if stats.rate_limited and self.stop_on_rate_limit:
            stats.failures += 1
            return GridResult(lat=point.lat, lon=point.lon, val=None)

        task = asyncio.ensure_future(self._fetch_cell(key, point, stats))
        in_flight[key] = task
        try:
            value = await task
        finally:
            in_flight.pop(key, None)
        return GridResult(lat=point.lat, lon=point.lon, val=value)

    async def _fetch_cell(self, key: str, point: GridPoint, stats: _RunStats) -> float | None:
        """One upstream call. Upstream failures become None and are not cached."""
        try:
            value = await self.client.fetch_point(point.lat, point.lon)
        except RateLimitedError as exc:
            stats.rate_limited = True
            stats.failures += 1
            stats.errors.append(f"{key}: {exc.message}")
            return None
        except UpstreamError as exc:
            stats.failures += 1
            stats.errors.append(f"{key}: {exc.message}")
            return None

        self.cache.put(key, value)
        return value

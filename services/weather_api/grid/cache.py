"""
Spatial cache — in-memory, keyed per 0.1° cell.

Cache key format:  {lat:.1f},{lon:.1f}   (each coordinate rounded half-up)
TTL:               600 seconds (10 minutes)
Sweep:             every 300 seconds, drops expired entries

A 0.1° cell is roughly 11 km square. Two grid points inside the same cell
share one upstream reading; that coarse-graining is what makes heat-map
requests over overlapping viewports cheap.

Expiry is checked on every read, so the sweep is only there to bound memory.
Everything runs on one event loop and no operation here awaits, so a plain
dict is safe to share across concurrent requests (last write wins).
"""

from __future__ import annotations

import asyncio
import logging
import math
import time
from dataclasses import dataclass
from typing import Callable

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 600.0
DEFAULT_SWEEP_INTERVAL_SECONDS = 300.0

# Cells per degree: 10 -> 0.1° resolution
_CELLS_PER_DEGREE = 10


def _quantize(value: float) -> float:
    """Round half-up to the nearest cell. Adding 0.0 folds -0.0 into 0.0."""
    return math.floor(value * _CELLS_PER_DEGREE + 0.5) / _CELLS_PER_DEGREE + 0.0


def cache_key(lat: float, lon: float) -> str:
    """Build the cache key for a coordinate.

    21.04, 105.83  ->  '21.0,105.8'
    21.06, 105.87  ->  '21.1,105.9'
    """
    return f"{_quantize(lat):.1f},{_quantize(lon):.1f}"


@dataclass(frozen=True)
class CacheEntry:
    value: float
    inserted_at: float


class SpatialCache:
    """
    TTL cache for per-cell temperature readings.

    Usage:
        cache = SpatialCache()
        cache.start()                       # inside a running event loop
        key = cache_key(lat, lon)
        entry = cache.get(key)
        if entry is None:
            value = await client.fetch_point(lat, lon)
            cache.put(key, value)
        ...
        await cache.stop()
    """

    def __init__(
        self,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        sweep_interval_seconds: float = DEFAULT_SWEEP_INTERVAL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """
        Args:
            ttl_seconds:            Max age of an entry that still counts as a hit.
            sweep_interval_seconds: Period of the background expiry sweep.
            clock:                  Seconds source; inject a fake in tests.
        """
        self.ttl_seconds = ttl_seconds
        self.sweep_interval_seconds = sweep_interval_seconds
        self._clock = clock
        self._entries: dict[str, CacheEntry] = {}
        self._sweep_task: asyncio.Task | None = None

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: str) -> bool:
        return key in self._entries

    def _is_fresh(self, entry: CacheEntry, now: float) -> bool:
        return now - entry.inserted_at < self.ttl_seconds

    def get(self, key: str) -> CacheEntry | None:
        """Return the entry for key, or None on miss / expiry.

        Expired entries are left in place for the sweep.
        """
        entry = self._entries.get(key)
        if entry is None:
            return None
        if not self._is_fresh(entry, self._clock()):
            logger.debug("Spatial cache expired: %s", key)
            return None
        return entry

    def put(self, key: str, value: float) -> None:
        self._entries[key] = CacheEntry(value=value, inserted_at=self._clock())

    def sweep(self) -> int:
        """Remove every expired entry. Returns the number removed."""
        now = self._clock()
        expired = [k for k, e in self._entries.items() if not self._is_fresh(e, now)]
        for key in expired:
            del self._entries[key]
        if expired:
            logger.debug("Spatial cache sweep removed %d entries (%d left)", len(expired), len(self._entries))
        return len(expired)

    def clear(self) -> None:
        self._entries.clear()

    # -- Sweep lifecycle --

    @property
    def running(self) -> bool:
        return self._sweep_task is not None and not self._sweep_task.done()

    def start(self) -> None:
        """Start the periodic sweep task. No-op if already running."""
        if self.running:
            return
        self._sweep_task = asyncio.get_running_loop().create_task(self._sweep_loop())

    async def stop(self) -> None:
        """Cancel the sweep task and wait for it to finish."""
        task = self._sweep_task
        self._sweep_task = None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def _sweep_loop(self) -> None:
        while True:
            await asyncio.sleep(self.sweep_interval_seconds)
            try:
                self.sweep()
            except Exception:
                logger.exception("Spatial cache sweep failed")

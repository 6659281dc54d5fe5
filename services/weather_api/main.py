"""
Pleasant Weather FastAPI service — weather, geocoding and temperature grid.

Entrypoint: uvicorn services.weather_api.main:app --host 0.0.0.0 --port 5000
"""

import logging
import time
import uuid
from contextlib import asynccontextmanager

import httpx
import redis.asyncio as aioredis
from fastapi import FastAPI, Request, Response
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.responses import JSONResponse

from services.weather_api.config import settings
from services.weather_api.errors import WeatherAPIError
from services.weather_api.geocoding import GeocodingService
from services.weather_api.grid import GridFetcher, SpatialCache
from services.weather_api.middleware.cors import setup_cors
from services.weather_api.middleware.rate_limit import InMemorySlidingWindow, RateLimitMiddleware
from services.weather_api.middleware.sentry import setup_sentry
from services.weather_api.routers import health, map as map_router, weather
from services.weather_api.weather import OpenMeteoClient

logger = logging.getLogger(__name__)

# Shared redis reference: set during lifespan, read by rate limiter
_redis_holder: dict = {"client": None}

# Fallback window when Redis is not configured or unreachable
local_rate_window = InMemorySlidingWindow()


def _log_level() -> int:
    if settings.debug:
        return logging.DEBUG
    return getattr(logging, settings.log_level.upper(), logging.INFO)


def _configure_logging() -> None:
    logging.basicConfig(
        level=_log_level(),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup/shutdown lifecycle."""
    _configure_logging()
    setup_sentry()

    # Redis for rate limiting
    redis_client = None
    if settings.redis_url:
        try:
            redis_client = aioredis.from_url(
                settings.redis_url,
                decode_responses=True,
                socket_connect_timeout=5,
            )
            await redis_client.ping()
        except Exception:
            # Rate limiting falls back to the in-process window
            logger.warning("Redis unavailable at startup; using in-process rate limit window")
            redis_client = None

    _redis_holder["client"] = redis_client
    app.state.redis = redis_client
    app.state.settings = settings
    app.state.started_at = time.monotonic()

    # One pooled client for every upstream; caps total sockets above one grid batch
    http = httpx.AsyncClient(
        timeout=settings.upstream_timeout_s,
        limits=httpx.Limits(max_connections=settings.grid_batch_size + 10),
    )
    weather_client = OpenMeteoClient(
        http,
        base_url=settings.open_meteo_base_url,
        timezone=settings.open_meteo_timezone,
    )
    app.state.weather_client = weather_client
    app.state.geocoding = GeocodingService(
        http,
        api_key=settings.openweather_api_key,
        openweather_base_url=settings.openweather_base_url,
        nominatim_base_url=settings.nominatim_base_url,
        user_agent=settings.nominatim_user_agent,
        language=settings.nominatim_language,
    )

    grid_cache = SpatialCache(
        ttl_seconds=settings.grid_cache_ttl_s,
        sweep_interval_seconds=settings.grid_cache_sweep_interval_s,
    )
    grid_cache.start()
    app.state.grid_cache = grid_cache
    app.state.grid_fetcher = GridFetcher(
        client=weather_client,
        cache=grid_cache,
        batch_size=settings.grid_batch_size,
        max_grid_size=settings.grid_max_size,
        stop_on_rate_limit=settings.grid_stop_on_rate_limit,
    )

    logger.info(
        "%s %s started (env=%s, weather=%s, geocoding key %s)",
        settings.app_name,
        settings.app_version,
        settings.environment,
        settings.open_meteo_base_url,
        "set" if settings.openweather_api_key else "MISSING",
    )

    yield

    await grid_cache.stop()
    await http.aclose()
    if redis_client:
        await redis_client.aclose()


app = FastAPI(
    title="Pleasant Weather API",
    version=settings.app_version,
    debug=settings.debug,
    docs_url="/docs" if settings.environment == "development" else None,
    redoc_url=None,
    lifespan=lifespan,
)

# -- Middleware (order matters: last added = outermost in Starlette) --

# Routers first (innermost)
app.include_router(health.router)
app.include_router(weather.router)
app.include_router(map_router.router)


# Rate limiting, with the redis reference resolved lazily from lifespan
class _LazyRateLimitMiddleware(RateLimitMiddleware):
    """Rate limiter that picks up Redis client after lifespan init."""

    def __init__(self, app):
        super().__init__(app, redis_client=None, local_window=local_rate_window)

    async def dispatch(self, request, call_next):
        self.redis = _redis_holder.get("client")
        return await super().dispatch(request, call_next)


app.add_middleware(_LazyRateLimitMiddleware)

# Request ID injection + access log
@app.middleware("http")
async def request_envelope_middleware(request: Request, call_next) -> Response:
    request_id = request.headers.get("x-request-id", str(uuid.uuid4()))
    request.state.request_id = request_id

    query = f"?{request.url.query}" if request.url.query else ""
    logger.info("%s %s%s", request.method, request.url.path, query)

    response = await call_next(request)
    response.headers["X-Request-ID"] = request_id
    return response


# CORS outermost so 429s and preflights carry CORS headers
setup_cors(app)


# -- Exception Handlers --

def _error_response(request: Request, status_code: int, code: str, message: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={
            "success": False,
            "error": {"code": code, "message": message},
            "requestId": getattr(request.state, "request_id", str(uuid.uuid4())),
        },
    )


@app.exception_handler(WeatherAPIError)
async def weather_api_error_handler(request: Request, exc: WeatherAPIError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.warning("%s %s failed: %s %s", request.method, request.url.path, exc.code, exc.message)
    return _error_response(request, exc.status_code, exc.code, exc.message)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = exc.errors()
    message = "; ".join(
        f"{'.'.join(str(p) for p in err.get('loc', ()))}: {err.get('msg', 'invalid')}" for err in errors
    ) or "Validation error."
    return _error_response(request, 422, "VALIDATION_ERROR", message)


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    if exc.status_code == 404:
        return _error_response(request, 404, "NOT_FOUND", f"Route not found: {request.url.path}")
    return _error_response(request, exc.status_code, "HTTP_ERROR", str(exc.detail))


@app.exception_handler(Exception)
async def internal_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return _error_response(request, 500, "INTERNAL_ERROR", "An unexpected error occurred.")

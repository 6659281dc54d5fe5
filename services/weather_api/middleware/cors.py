"""
CORS middleware configuration.

Allows the configured origins (localhost dev servers + FRONTEND_URL) and any
preview/production deployment on the hosting platforms the client ships to.
Requests without an Origin header (mobile apps, curl) are not CORS requests
and pass through untouched.
"""

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from services.weather_api.config import settings

# Cloudflare Pages, Railway, Render, Vercel
HOSTED_ORIGIN_REGEX = r"https?://[^/]+\.(pages\.dev|railway\.app|onrender\.com|vercel\.app)"


def allowed_origins() -> list[str]:
    origins = list(settings.cors_origins)
    if settings.frontend_url and settings.frontend_url not in origins:
        origins.append(settings.frontend_url)
    return origins


def setup_cors(app: FastAPI) -> None:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=allowed_origins(),
        allow_origin_regex=HOSTED_ORIGIN_REGEX,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization"],
        expose_headers=["X-Request-ID", "X-RateLimit-Limit", "X-RateLimit-Remaining", "X-RateLimit-Reset"],
        max_age=600,
    )

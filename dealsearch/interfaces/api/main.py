"""
FastAPI Main Application - Search API entry point.

Run with: uvicorn dealsearch.interfaces.api.main:app --reload
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from dealsearch import __version__
from dealsearch.config import Settings, get_settings

from .deps import cleanup_services, init_services
from .middleware import (
    ErrorHandlerMiddleware,
    LatencyMiddleware,
    RateLimitMiddleware,
    RequestIDMiddleware,
)
from .routes import health, search

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Open the record store on startup and drain the engine on shutdown."""
    settings = get_settings()
    logger.info("DealSearch API %s starting (db=%s)", __version__, settings.db_path)
    await init_services()

    yield

    logger.info("DealSearch API stopping, flushing pending analytics")
    await cleanup_services()


def _install_middleware(app: FastAPI, settings: Settings) -> None:
    # Starlette wraps in reverse: the last added runs first on the way in,
    # so request ids exist before latency, errors and rate limits see them.
    app.add_middleware(RateLimitMiddleware, requests_per_minute=settings.api_rate_limit_rpm)
    app.add_middleware(ErrorHandlerMiddleware)
    app.add_middleware(LatencyMiddleware)
    app.add_middleware(RequestIDMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.api_cors_origins,
        allow_methods=["GET", "POST", "DELETE"],
        allow_headers=["Content-Type", "X-Request-ID"],
        expose_headers=["X-Request-ID", "X-Response-Time-Ms", "X-RateLimit-Remaining"],
    )


def create_app(settings: Settings | None = None) -> FastAPI:
    """Build the search API with its middleware stack and routers."""
    settings = settings or get_settings()

    app = FastAPI(
        title="DealSearch API",
        description="Marketplace search across deals, coupons, companies, categories and users",
        version=__version__,
        lifespan=lifespan,
        debug=settings.api_debug,
    )
    _install_middleware(app, settings)

    app.include_router(health.router, tags=["Health"])
    app.include_router(search.router, prefix="/api/search", tags=["Search"])
    return app


app = create_app()

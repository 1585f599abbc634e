"""
Health Routes - Liveness, readiness and service info.
"""

from typing import Any

from fastapi import APIRouter, Depends

from dealsearch import __version__
from dealsearch.domains.search import SearchEngine

from ..deps import get_search_engine

router = APIRouter()


@router.get("/health")
async def health_check() -> dict[str, str]:
    """Liveness probe; never touches the store."""
    return {"status": "healthy", "service": "dealsearch"}


@router.get("/health/ready")
async def readiness(engine: SearchEngine = Depends(get_search_engine)) -> dict[str, Any]:
    """Readiness probe with cache and analytics counters."""
    return {"status": "ready", "version": __version__, "engine": engine.stats()}


@router.get("/api")
async def api_info() -> dict[str, Any]:
    return {
        "name": "DealSearch API",
        "version": __version__,
        "entities": ["deals", "coupons", "companies", "categories", "users"],
        "docs": "/docs",
    }

"""
Search Routes - Composite search, suggestions and analytics endpoints.
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, Query, Request
from pydantic import BaseModel, Field

from dealsearch.domains.search import SearchEngine, SearchResponse, Suggestion
from dealsearch.interfaces.api.deps import get_search_engine

router = APIRouter()


class SuggestionsResponse(BaseModel):
    """Suggestions for a partial query."""

    query: str
    suggestions: list[Suggestion]


class InteractionRequest(BaseModel):
    """Click (or other interaction) on a search result."""

    query: str = ""
    result_type: str = Field(..., min_length=1, description="Entity of the clicked result")
    result_id: str = Field(..., min_length=1)
    interaction_type: str = "click"


@router.get("", response_model=SearchResponse)
async def search(
    request: Request,
    engine: SearchEngine = Depends(get_search_engine),
) -> SearchResponse:
    """
    Search deals, coupons, users, companies and categories.

    - **q**: Free-text query (max 200 chars)
    - **type**: all, deals, coupons, users, companies, categories
    - **sort**: relevance, newest, oldest, popular, price_low, price_high, discount
    - **page** / **limit**: Pagination
    - **tags**: Repeated or comma-separated tag names
    - Filters: category, company, min_price, max_price, min_discount,
      max_discount, has_coupon, coupon_type, featured, latitude, longitude, radius
    """
    params: dict[str, Any] = dict(request.query_params)
    tags = request.query_params.getlist("tags")
    if len(tags) > 1:
        params["tags"] = tags
    return await engine.search(params)


@router.get("/suggestions", response_model=SuggestionsResponse)
async def suggestions(
    q: str = "",
    limit: int = Query(default=10, ge=1, le=50),
    engine: SearchEngine = Depends(get_search_engine),
) -> SuggestionsResponse:
    """Auto-complete and spell-correction suggestions for a partial query."""
    return SuggestionsResponse(query=q, suggestions=await engine.get_suggestions(q, limit))


@router.get("/trending")
async def trending(
    limit: int = Query(default=10, ge=1, le=50),
    engine: SearchEngine = Depends(get_search_engine),
) -> dict[str, Any]:
    """Most searched queries, topped up from the vocabulary."""
    return {"trending": await engine.trending(limit)}


@router.get("/analytics")
async def analytics(
    timeframe: str = "24h",
    engine: SearchEngine = Depends(get_search_engine),
) -> dict[str, Any]:
    """Search analytics for a timeframe (1h, 24h, 7d, 30d)."""
    return engine.get_analytics(timeframe)


@router.post("/interaction")
async def record_interaction(
    body: InteractionRequest,
    engine: SearchEngine = Depends(get_search_engine),
) -> dict[str, Any]:
    """Record an interaction with a search result."""
    event = await engine.record_interaction(
        body.query,
        body.result_type,
        body.result_id,
        body.interaction_type,
    )
    return {"recorded": True, "event": event}


@router.delete("/cache")
async def clear_cache(engine: SearchEngine = Depends(get_search_engine)) -> dict[str, bool]:
    """Drop cached search results and auto-complete entries."""
    await engine.clear_cache()
    return {"cleared": True}


@router.post("/vocabulary/refresh")
async def refresh_vocabulary(engine: SearchEngine = Depends(get_search_engine)) -> dict[str, int]:
    """Rebuild the suggestion vocabulary from the store."""
    return {"terms": await engine.refresh_vocabulary()}


@router.get("/stats")
async def stats(engine: SearchEngine = Depends(get_search_engine)) -> dict[str, Any]:
    """Cache and suggestion statistics."""
    return engine.stats()

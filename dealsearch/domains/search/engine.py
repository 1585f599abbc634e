"""
Search Engine - Top-level search orchestration.

normalize -> cache lookup -> dispatch -> suggestions -> ranking -> cache store,
with analytics recorded in the background.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Coroutine, Mapping
from typing import TYPE_CHECKING, Any

from dealsearch.config.errors import DealSearchError

from .analytics import SearchAnalytics
from .cache import ResultCache
from .contracts import AnalyticsSink, RecordStore
from .dispatcher import EntitySearchDispatcher
from .fuzzy import FuzzyMatcher
from .models import SearchQuery, SearchResponse, Suggestion
from .normalizer import normalize_search_params
from .ranking import SearchRanking
from .suggestions import SuggestionGenerator, VocabularyIndex

if TYPE_CHECKING:
    from dealsearch.config import Settings

logger = logging.getLogger(__name__)

__all__ = ["SearchEngine"]


class SearchEngine:
    """
    Search facade over dispatcher, cache, suggestions, ranking and analytics.

    Example:
        >>> engine = SearchEngine(store)
        >>> response = await engine.search({"q": "lap", "type": "deals"})
        >>> response.total_deals
        3
    """

    def __init__(
        self,
        store: RecordStore,
        dispatcher: EntitySearchDispatcher | None = None,
        cache: ResultCache | None = None,
        suggestions: SuggestionGenerator | None = None,
        ranking: SearchRanking | None = None,
        analytics: AnalyticsSink | None = None,
        max_results: int = 100,
        max_query_length: int = 200,
        default_limit: int = 20,
        default_radius_km: float = 50.0,
        min_suggestion_length: int = 2,
        enable_caching: bool = True,
        enable_suggestions: bool = True,
        enable_analytics: bool = True,
    ) -> None:
        """
        Initialize engine.

        Args:
            store: Record store shared by all components
            dispatcher: Per-entity search fan-out
            cache: Composite result cache
            suggestions: Suggestion generator
            ranking: Final per-entity ordering
            analytics: Analytics sink (fire-and-forget)
            max_results: Upper bound for page size
            max_query_length: Longest accepted query text
            default_limit: Page size when none is given
            default_radius_km: Radius when coordinates come without one
            min_suggestion_length: Shortest query that gets suggestions
            enable_caching: Use the result cache
            enable_suggestions: Attach suggestions to responses
            enable_analytics: Record search and error events
        """
        self.store = store
        self.ranking = ranking or SearchRanking()
        self.dispatcher = dispatcher or EntitySearchDispatcher(store, ranking=self.ranking)
        self.cache = cache or ResultCache()
        self.suggestions = suggestions or SuggestionGenerator(store)
        self.analytics = analytics or SearchAnalytics()
        self.max_results = max_results
        self.max_query_length = max_query_length
        self.default_limit = default_limit
        self.default_radius_km = default_radius_km
        self.min_suggestion_length = min_suggestion_length
        self.enable_caching = enable_caching
        self.enable_suggestions = enable_suggestions
        self.enable_analytics = enable_analytics
        self._background: set[asyncio.Task[Any]] = set()

    @classmethod
    def from_settings(cls, store: RecordStore, settings: Settings) -> SearchEngine:
        """Build an engine and its components from application settings."""
        ranking = SearchRanking(relevance_boosting=settings.search_relevance_boosting)
        dispatcher = EntitySearchDispatcher(
            store,
            matcher=FuzzyMatcher(min_score=settings.search_fuzzy_threshold),
            ranking=ranking,
            enrichment_concurrency=settings.search_enrichment_concurrency,
        )
        suggestions = SuggestionGenerator(
            store,
            vocabulary=VocabularyIndex(
                top_deals=settings.vocabulary_top_deals,
                company_limit=settings.vocabulary_company_limit,
            ),
            max_suggestions=settings.suggestion_max,
            min_query_length=settings.search_min_query_length,
            cache_ttl=settings.suggestion_cache_ttl,
            refresh_interval=settings.vocabulary_refresh_interval,
        )
        return cls(
            store,
            dispatcher=dispatcher,
            cache=ResultCache(
                default_ttl=settings.search_cache_ttl,
                max_size=settings.search_cache_max_size,
            ),
            suggestions=suggestions,
            ranking=ranking,
            max_results=settings.search_max_results,
            max_query_length=settings.search_max_query_length,
            default_limit=settings.search_default_limit,
            default_radius_km=settings.search_default_radius_km,
            min_suggestion_length=settings.search_min_query_length,
            enable_caching=settings.search_enable_caching,
            enable_suggestions=settings.search_enable_suggestions,
            enable_analytics=settings.search_enable_analytics,
        )

    async def search(self, params: Mapping[str, Any]) -> SearchResponse:
        """
        Run a search from raw request parameters.

        Args:
            params: Raw parameters (`q`, `type`, `sort`, `page`, `limit`, filters)

        Returns:
            Composite response across the requested entities

        Raises:
            ValidationError: Invalid query length, type or sort
            DealSearchError: Any other failure (recorded, then re-raised)
        """
        start = time.perf_counter()
        try:
            query = normalize_search_params(
                params,
                max_results=self.max_results,
                max_query_length=self.max_query_length,
                default_limit=self.default_limit,
                default_radius_km=self.default_radius_km,
            )

            if self.enable_caching:
                cached = await self.cache.get(query)
                if cached is not None:
                    self._record_search(query, cached, _elapsed_ms(start), "cache_hit")
                    return cached

            response = await self._execute(query)
            response.search_time = _elapsed_ms(start)

            if self.enable_caching:
                await self.cache.set(query, response)

            self._record_search(query, response, response.search_time, "database_hit")
            return response

        except Exception as e:
            elapsed = _elapsed_ms(start)
            if isinstance(e, DealSearchError):
                logger.warning("Search rejected: %s", e)
            else:
                logger.exception("Search failed after %.1fms", elapsed)
            if self.enable_analytics:
                self._spawn(self.analytics.record_error(params, e, elapsed))
            raise

    async def _execute(self, query: SearchQuery) -> SearchResponse:
        response = SearchResponse(query=query.query)
        for outcome in await self.dispatcher.dispatch(query):
            response.apply(outcome.result_set())
        response.compute_total()

        if self.enable_suggestions and len(query.query) >= self.min_suggestion_length:
            response.suggestions = await self.suggestions.generate(query.query, response)

        return self.ranking.rank_results(response, query)

    # --- Analytics ---

    def _record_search(self, query: SearchQuery, response: SearchResponse, elapsed: float, source: str) -> None:
        if self.enable_analytics:
            self._spawn(self.analytics.record_search(query, response, elapsed, source))

    def _spawn(self, coro: Coroutine[Any, Any, Any]) -> None:
        task = asyncio.create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._on_background_done)

    def _on_background_done(self, task: asyncio.Task[Any]) -> None:
        self._background.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.warning("Analytics recording failed: %s", task.exception())

    async def record_interaction(
        self,
        query: str,
        result_type: str,
        result_id: str,
        interaction_type: str = "click",
    ) -> dict[str, Any]:
        """Record a click (or other interaction) on a search result."""
        if not isinstance(self.analytics, SearchAnalytics):
            return {}
        event = await self.analytics.record_interaction(query, result_type, result_id, interaction_type)
        return event.model_dump()

    def get_analytics(self, timeframe: str = "24h") -> dict[str, Any]:
        """Aggregated analytics for a timeframe (empty for external sinks)."""
        if not isinstance(self.analytics, SearchAnalytics):
            return {"timeframe": timeframe}
        return self.analytics.get_analytics(timeframe)

    # --- Suggestions ---

    async def get_suggestions(self, query: str, limit: int = 10) -> list[Suggestion]:
        return await self.suggestions.get_suggestions(query, limit)

    async def trending(self, limit: int = 10) -> list[dict[str, Any]]:
        """Most searched queries in the last day, topped up from the vocabulary."""
        trending: list[dict[str, Any]] = []
        if isinstance(self.analytics, SearchAnalytics):
            trending = [
                {"term": q["query"], "source": "searches", "count": q["count"]}
                for q in self.analytics.popular_queries(limit)
            ]
        if len(trending) < limit:
            await self.suggestions.ensure_vocabulary()
            seen = {t["term"] for t in trending}
            for term in self.suggestions.trending_terms(limit):
                if term["term"] not in seen and len(trending) < limit:
                    trending.append(term)
        return trending

    async def refresh_vocabulary(self) -> int:
        return await self.suggestions.refresh_vocabulary()

    # --- Lifecycle ---

    async def clear_cache(self) -> None:
        """Drop cached results and auto-complete entries."""
        await self.cache.clear()
        await self.suggestions.clear_cache()

    def stats(self) -> dict[str, Any]:
        return {
            "cache": self.cache.stats(),
            "suggestions": self.suggestions.stats(),
            "pending_analytics": len(self._background),
        }

    async def aclose(self) -> None:
        """Wait for pending analytics tasks."""
        if self._background:
            await asyncio.gather(*self._background, return_exceptions=True)


def _elapsed_ms(start: float) -> float:
    return round((time.perf_counter() - start) * 1000, 3)

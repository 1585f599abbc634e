"""
Search Analytics - In-process search, error and interaction tracking.

Events are held in bounded in-memory buffers; aggregates are computed on
demand for a timeframe (1h, 24h, 7d, 30d).
"""

from __future__ import annotations

import logging
import math
import time
from collections import Counter, deque
from collections.abc import Callable, Iterable, Mapping
from typing import Any

from pydantic import BaseModel, Field

from dealsearch.config.errors import DealSearchError, ValidationError

from .models import SearchQuery, SearchResponse

logger = logging.getLogger(__name__)

__all__ = ["SearchAnalytics", "SearchEvent", "ErrorEvent", "InteractionEvent", "TIMEFRAMES"]

TIMEFRAMES: dict[str, float] = {
    "1h": 60 * 60,
    "24h": 24 * 60 * 60,
    "7d": 7 * 24 * 60 * 60,
    "30d": 30 * 24 * 60 * 60,
}

_REALTIME_WINDOW = 60.0
_SUMMARY_FIELDS = {"query", "type", "page", "limit", "offset"}


class SearchEvent(BaseModel):
    query: str
    type: str
    filters: dict[str, Any] = Field(default_factory=dict)
    results_count: int = 0
    response_time: float
    source: str
    timestamp: float


class ErrorEvent(BaseModel):
    query: str
    type: str
    error_message: str
    error_code: str
    response_time: float
    timestamp: float


class InteractionEvent(BaseModel):
    query: str
    result_type: str
    result_id: str
    interaction_type: str = "click"
    timestamp: float


class SearchAnalytics:
    """
    Search analytics sink with on-demand aggregates.

    Example:
        >>> analytics = SearchAnalytics()
        >>> await analytics.record_search(query, response, 12.5, "database_hit")
        >>> analytics.get_analytics("1h")["search_stats"]["total_searches"]
        1
    """

    def __init__(self, max_events: int = 10_000, clock: Callable[[], float] = time.time) -> None:
        """
        Initialize analytics.

        Args:
            max_events: Events kept per buffer (oldest dropped first)
            clock: Epoch seconds source
        """
        self._clock = clock
        self._searches: deque[SearchEvent] = deque(maxlen=max_events)
        self._errors: deque[ErrorEvent] = deque(maxlen=max_events)
        self._interactions: deque[InteractionEvent] = deque(maxlen=max_events)

    # --- Recording ---

    async def record_search(
        self,
        query: SearchQuery,
        response: SearchResponse,
        elapsed_ms: float,
        source: str,
    ) -> SearchEvent:
        event = SearchEvent(
            query=query.query,
            type=query.type.value,
            filters=query.model_dump(mode="json", exclude_defaults=True, exclude=_SUMMARY_FIELDS),
            results_count=response.total_results,
            response_time=elapsed_ms,
            source=source,
            timestamp=self._clock(),
        )
        self._searches.append(event)
        return event

    async def record_error(
        self,
        params: Mapping[str, Any],
        error: BaseException,
        elapsed_ms: float,
    ) -> ErrorEvent:
        code = error.code.value if isinstance(error, DealSearchError) else "UNKNOWN"
        event = ErrorEvent(
            query=str(params.get("q") or ""),
            type=str(params.get("type") or "all"),
            error_message=str(error),
            error_code=code,
            response_time=elapsed_ms,
            timestamp=self._clock(),
        )
        self._errors.append(event)
        return event

    async def record_interaction(
        self,
        query: str,
        result_type: str,
        result_id: str,
        interaction_type: str = "click",
    ) -> InteractionEvent:
        event = InteractionEvent(
            query=query,
            result_type=result_type,
            result_id=str(result_id),
            interaction_type=interaction_type,
            timestamp=self._clock(),
        )
        self._interactions.append(event)
        return event

    # --- Aggregates ---

    def get_analytics(self, timeframe: str = "24h") -> dict[str, Any]:
        """
        Aggregate events within a timeframe.

        Args:
            timeframe: One of 1h, 24h, 7d, 30d

        Returns:
            Search stats, popular queries, performance, errors, conversions, real-time counters

        Raises:
            ValidationError: Unknown timeframe
        """
        if timeframe not in TIMEFRAMES:
            raise ValidationError(
                f"Invalid timeframe: {timeframe}",
                {"timeframe": timeframe, "allowed": list(TIMEFRAMES)},
            )

        end = self._clock()
        start = end - TIMEFRAMES[timeframe]
        searches = _within(self._searches, start)
        errors = _within(self._errors, start)
        interactions = _within(self._interactions, start)

        return {
            "timeframe": timeframe,
            "period": {"start": start, "end": end},
            "search_stats": self._search_stats(searches),
            "popular_queries": _popular(searches, limit=20),
            "performance": self._performance(searches),
            "errors": self._error_stats(errors, len(searches) + len(errors) + len(interactions)),
            "conversions": self._conversions(interactions, len(searches)),
            "real_time": self.real_time_metrics(),
        }

    def popular_queries(self, limit: int = 10, timeframe: str = "24h") -> list[dict[str, Any]]:
        start = self._clock() - TIMEFRAMES.get(timeframe, TIMEFRAMES["24h"])
        return _popular(_within(self._searches, start), limit)

    def real_time_metrics(self) -> dict[str, Any]:
        start = self._clock() - _REALTIME_WINDOW
        searches_per_minute = len(_within(self._searches, start))
        if searches_per_minute > 100:
            load = "high"
        elif searches_per_minute > 50:
            load = "medium"
        else:
            load = "low"
        return {
            "searches_per_minute": searches_per_minute,
            "errors_per_minute": len(_within(self._errors, start)),
            "interactions_per_minute": len(_within(self._interactions, start)),
            "current_load": load,
        }

    def clear(self) -> None:
        self._searches.clear()
        self._errors.clear()
        self._interactions.clear()

    @staticmethod
    def _search_stats(searches: list[SearchEvent]) -> dict[str, Any]:
        total = len(searches)
        cache_hits = sum(1 for s in searches if s.source == "cache_hit")
        return {
            "total_searches": total,
            "unique_queries": len({s.query for s in searches}),
            "avg_response_time": round(sum(s.response_time for s in searches) / total) if total else 0,
            "cache_hit_rate": round(cache_hits / total * 100, 2) if total else 0.0,
            "search_types": dict(Counter(s.type for s in searches)),
        }

    @staticmethod
    def _performance(searches: list[SearchEvent]) -> dict[str, Any]:
        if not searches:
            return {
                "avg_response_time": 0,
                "median_response_time": 0,
                "p95_response_time": 0,
                "p99_response_time": 0,
                "fastest_query": None,
                "slowest_query": None,
            }
        times = sorted(s.response_time for s in searches)
        fastest = min(searches, key=lambda s: s.response_time)
        slowest = max(searches, key=lambda s: s.response_time)
        return {
            "avg_response_time": round(sum(times) / len(times)),
            "median_response_time": percentile(times, 50),
            "p95_response_time": percentile(times, 95),
            "p99_response_time": percentile(times, 99),
            "fastest_query": fastest.model_dump(),
            "slowest_query": slowest.model_dump(),
        }

    @staticmethod
    def _error_stats(errors: list[ErrorEvent], total_events: int) -> dict[str, Any]:
        counts = Counter(e.error_code for e in errors)
        return {
            "total_errors": len(errors),
            "error_rate": round(len(errors) / total_events * 100, 2) if total_events else 0.0,
            "error_breakdown": [
                {"error_type": code, "count": count, "percentage": round(count / len(errors) * 100, 2)}
                for code, count in counts.most_common()
            ],
        }

    @staticmethod
    def _conversions(interactions: list[InteractionEvent], search_count: int) -> dict[str, Any]:
        counts = Counter(i.result_type for i in interactions)
        return {
            "total_interactions": len(interactions),
            "click_through_rate": round(len(interactions) / search_count * 100, 2) if search_count else 0.0,
            "result_type_breakdown": [
                {"result_type": kind, "clicks": count, "percentage": round(count / len(interactions) * 100, 2)}
                for kind, count in counts.most_common()
            ],
        }


def percentile(sorted_values: list[float], pct: float) -> float:
    """Nearest-rank percentile of an ascending list."""
    if not sorted_values:
        return 0
    rank = max(1, math.ceil(pct / 100 * len(sorted_values)))
    return sorted_values[rank - 1]


def _within(events: Iterable[Any], start: float) -> list[Any]:
    return [e for e in events if e.timestamp >= start]


def _popular(searches: list[SearchEvent], limit: int) -> list[dict[str, Any]]:
    queries = [s.query.lower().strip() for s in searches if s.query.strip()]
    counts = Counter(queries)
    return [
        {"query": query, "count": count, "percentage": round(count / len(queries) * 100, 2)}
        for query, count in counts.most_common(limit)
    ]

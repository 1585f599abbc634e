"""
Tests for search analytics.
"""

from __future__ import annotations

import pytest

from dealsearch.config.errors import StorageError, ValidationError

from .analytics import SearchAnalytics, percentile
from .models import SearchQuery, SearchResponse, SearchScope


class FakeClock:
    def __init__(self, now: float = 1_000_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def analytics(clock: FakeClock) -> SearchAnalytics:
    return SearchAnalytics(clock=clock)


async def _search(analytics: SearchAnalytics, text: str, ms: float = 10.0, source: str = "database_hit", **kw):
    query = SearchQuery(query=text, **kw)
    return await analytics.record_search(query, SearchResponse(query=text, total_results=3), ms, source)


# --- Recording Tests ---


async def test_record_search_event(analytics: SearchAnalytics) -> None:
    """Test a search event captures the query summary and filters."""
    event = await _search(analytics, "lap", type=SearchScope.DEALS, min_price=10.0, page=2)
    assert event.query == "lap"
    assert event.type == "deals"
    assert event.filters == {"min_price": 10.0}
    assert event.results_count == 3
    assert event.source == "database_hit"


async def test_record_error_codes(analytics: SearchAnalytics) -> None:
    """Test known errors keep their code and others become UNKNOWN."""
    known = await analytics.record_error({"q": "lap", "type": "deals"}, StorageError("down"), 5.0)
    unknown = await analytics.record_error({}, RuntimeError("boom"), 5.0)
    assert known.error_code == "STORAGE_READ_FAILED"
    assert known.query == "lap"
    assert unknown.error_code == "UNKNOWN"
    assert unknown.type == "all"


async def test_record_interaction(analytics: SearchAnalytics) -> None:
    """Test interactions store the result reference as text."""
    event = await analytics.record_interaction("lap", "deal", 42)
    assert event.result_id == "42"
    assert event.interaction_type == "click"


async def test_buffer_is_bounded(clock: FakeClock) -> None:
    """Test old events are dropped past the buffer size."""
    analytics = SearchAnalytics(max_events=3, clock=clock)
    for i in range(5):
        await _search(analytics, f"q{i}")
    stats = analytics.get_analytics("1h")["search_stats"]
    assert stats["total_searches"] == 3


# --- Aggregate Tests ---


async def test_get_analytics_search_stats(analytics: SearchAnalytics) -> None:
    """Test totals, unique queries, cache hit rate and type breakdown."""
    await _search(analytics, "lap", ms=10)
    await _search(analytics, "Lap", ms=30, source="cache_hit")
    await _search(analytics, "mouse", ms=20, type=SearchScope.DEALS)

    report = analytics.get_analytics("24h")
    stats = report["search_stats"]
    assert report["timeframe"] == "24h"
    assert stats["total_searches"] == 3
    assert stats["unique_queries"] == 3
    assert stats["avg_response_time"] == 20
    assert stats["cache_hit_rate"] == pytest.approx(33.33)
    assert stats["search_types"] == {"all": 2, "deals": 1}


async def test_popular_queries_normalized(analytics: SearchAnalytics) -> None:
    """Test popular queries fold case and skip blank queries."""
    await _search(analytics, "Laptop")
    await _search(analytics, "laptop ")
    await _search(analytics, "mouse")
    await _search(analytics, "")

    popular = analytics.popular_queries(limit=5)
    assert popular[0] == {"query": "laptop", "count": 2, "percentage": pytest.approx(66.67)}
    assert [p["query"] for p in popular] == ["laptop", "mouse"]


async def test_timeframe_window(analytics: SearchAnalytics, clock: FakeClock) -> None:
    """Test events older than the timeframe are excluded."""
    await _search(analytics, "old")
    clock.now += 2 * 60 * 60
    await _search(analytics, "new")

    assert analytics.get_analytics("1h")["search_stats"]["total_searches"] == 1
    assert analytics.get_analytics("24h")["search_stats"]["total_searches"] == 2


async def test_invalid_timeframe(analytics: SearchAnalytics) -> None:
    """Test an unknown timeframe raises ValidationError."""
    with pytest.raises(ValidationError):
        analytics.get_analytics("2w")


async def test_performance_percentiles(analytics: SearchAnalytics) -> None:
    """Test latency aggregates and extreme queries."""
    for i, ms in enumerate([5, 10, 15, 20, 100]):
        await _search(analytics, f"q{i}", ms=ms)
    perf = analytics.get_analytics("1h")["performance"]
    assert perf["avg_response_time"] == 30
    assert perf["median_response_time"] == 15
    assert perf["p95_response_time"] == 100
    assert perf["fastest_query"]["query"] == "q0"
    assert perf["slowest_query"]["query"] == "q4"


async def test_empty_performance(analytics: SearchAnalytics) -> None:
    """Test an empty window reports zeros."""
    perf = analytics.get_analytics("1h")["performance"]
    assert perf["avg_response_time"] == 0
    assert perf["fastest_query"] is None


async def test_error_and_conversion_stats(analytics: SearchAnalytics) -> None:
    """Test error breakdown and click-through rate."""
    await _search(analytics, "lap")
    await _search(analytics, "mouse")
    await analytics.record_error({"q": "x"}, ValidationError("bad"), 1.0)
    await analytics.record_interaction("lap", "deal", "1")

    report = analytics.get_analytics("1h")
    assert report["errors"]["total_errors"] == 1
    assert report["errors"]["error_rate"] == 25.0
    assert report["errors"]["error_breakdown"] == [
        {"error_type": "VALIDATION_ERROR", "count": 1, "percentage": 100.0}
    ]
    assert report["conversions"]["click_through_rate"] == 50.0
    assert report["conversions"]["result_type_breakdown"][0]["result_type"] == "deal"


async def test_real_time_metrics(analytics: SearchAnalytics, clock: FakeClock) -> None:
    """Test the last-minute counters."""
    await _search(analytics, "old")
    clock.now += 120
    await _search(analytics, "new")
    metrics = analytics.real_time_metrics()
    assert metrics["searches_per_minute"] == 1
    assert metrics["current_load"] == "low"


async def test_clear(analytics: SearchAnalytics) -> None:
    """Test clear drops every buffer."""
    await _search(analytics, "lap")
    analytics.clear()
    assert analytics.get_analytics("1h")["search_stats"]["total_searches"] == 0


def test_percentile_nearest_rank() -> None:
    """Test nearest-rank percentiles."""
    values = [1.0, 2.0, 3.0, 4.0]
    assert percentile(values, 50) == 2.0
    assert percentile(values, 100) == 4.0
    assert percentile([], 95) == 0

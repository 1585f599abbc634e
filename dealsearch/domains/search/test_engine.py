"""
Tests for the search engine facade, end to end over real and stub stores.
"""

from __future__ import annotations

from unittest.mock import AsyncMock

import pytest

from dealsearch.config import Settings
from dealsearch.config.errors import ValidationError

from .analytics import SearchAnalytics
from .dispatcher import DEAL_TEXT_FIELDS
from .engine import SearchEngine
from .fuzzy import FuzzyMatcher
from .models import SearchResponse, SuggestionType


def _mentions(deal, text: str) -> bool:
    haystacks = [deal.title, deal.description, deal.merchant]
    haystacks += [t.name for t in deal.tags] + [t.slug for t in deal.tags]
    return any(h and text in h.lower() for h in haystacks)


# --- End-to-end Tests ---


async def test_deals_text_search(sqlite_store) -> None:
    """Test a deals query returns only matching approved deals, fuzzy ranked."""
    engine = SearchEngine(sqlite_store)
    response = await engine.search({"q": "lap", "type": "deals"})
    await engine.aclose()

    assert {d.id for d in response.deals} == {1, 2, 3, 6}
    assert all(_mentions(d, "lap") for d in response.deals)
    assert response.total_deals == 4
    assert response.total_results == 4
    assert response.coupons == [] and response.users == []
    assert response.total_coupons == response.total_users == 0

    reranked = FuzzyMatcher().filter_and_rank_results(response.deals, "lap", DEAL_TEXT_FIELDS)
    assert [d.id for d in reranked] == [d.id for d in response.deals]

    tagged = {d.id: d for d in response.deals}[6]
    assert [t.slug for t in tagged.tags] == ["laptop-accessories"]
    assert response.search_time > 0


async def test_total_independent_of_limit(sqlite_store) -> None:
    """Test total_deals counts every match regardless of page size."""
    engine = SearchEngine(sqlite_store)
    response = await engine.search({"q": "lap", "type": "deals", "limit": "2"})
    assert len(response.deals) == 2
    assert response.total_deals == 4


async def test_browse_all_newest(sqlite_store) -> None:
    """Test an empty query over all entities sorted newest first."""
    engine = SearchEngine(sqlite_store)
    response = await engine.search({"q": "", "type": "all", "sort": "newest"})

    assert [d.id for d in response.deals] == [4, 1, 2, 3, 6]
    assert [c.id for c in response.coupons] == [2, 1]
    assert [u.id for u in response.users] == ["u3", "u2", "u1"]
    assert [c.id for c in response.companies] == [2, 3, 1]
    assert [c.id for c in response.categories] == [3, 2, 1]
    assert response.suggestions == []
    assert response.total_results == 16

    users = {u.id: u for u in response.users}
    assert users["u1"].stats.deals_count == 3
    assert users["u1"].stats.coupons_count == 1


async def test_invalid_sort_never_reaches_store() -> None:
    """Test an invalid sort is rejected before any store access."""
    store = AsyncMock()
    engine = SearchEngine(store)

    with pytest.raises(ValidationError, match="Invalid sort option"):
        await engine.search({"q": "lap", "sort": "bogus"})
    await engine.aclose()

    store.query.assert_not_called()
    errors = engine.get_analytics("1h")["errors"]
    assert errors["total_errors"] == 1
    assert errors["error_breakdown"][0]["error_type"] == "VALIDATION_ERROR"


async def test_out_of_range_latitude_never_reaches_store() -> None:
    """Test a bad coordinate is a validation error, not an empty deals branch."""
    store = AsyncMock()
    engine = SearchEngine(store)

    with pytest.raises(ValidationError, match="Invalid latitude"):
        await engine.search({"type": "deals", "latitude": "95", "longitude": "0"})
    await engine.aclose()

    store.query.assert_not_called()


async def test_infinite_latitude_searches_without_geo(memory_store) -> None:
    """Test an overflowing latitude is dropped instead of failing the deals branch."""
    engine = SearchEngine(memory_store, enable_analytics=False)
    response = await engine.search({"type": "deals", "latitude": "1e999", "longitude": "0"})
    assert response.total_deals == 5


async def test_query_too_long_rejected(memory_store) -> None:
    """Test overlong queries raise ValidationError."""
    engine = SearchEngine(memory_store)
    with pytest.raises(ValidationError):
        await engine.search({"q": "x" * 250})
    assert memory_store.calls == []


# --- Suggestion Tests ---


async def test_suggestions_attached(memory_store) -> None:
    """Test queries of two or more characters get suggestions."""
    engine = SearchEngine(memory_store)
    response = await engine.search({"q": "lap"})
    assert response.suggestions
    assert response.suggestions[0].type == SuggestionType.TAG


async def test_short_query_skips_suggestions(memory_store) -> None:
    """Test one-character queries get no suggestions."""
    engine = SearchEngine(memory_store)
    response = await engine.search({"q": "l"})
    assert response.suggestions == []


async def test_suggestions_disabled(memory_store) -> None:
    """Test suggestions can be switched off."""
    engine = SearchEngine(memory_store, enable_suggestions=False)
    response = await engine.search({"q": "lap"})
    assert response.suggestions == []


async def test_get_suggestions(memory_store) -> None:
    """Test stand-alone suggestions honour the limit."""
    engine = SearchEngine(memory_store)
    suggestions = await engine.get_suggestions("lap", limit=3)
    assert len(suggestions) == 3


# --- Cache Tests ---


async def test_cache_hit_skips_store(memory_store) -> None:
    """Test a repeated search is served from the cache."""
    engine = SearchEngine(memory_store)
    first = await engine.search({"q": "lap", "type": "deals"})
    calls = len(memory_store.calls)

    second = await engine.search({"type": "deals", "q": " lap "})
    await engine.aclose()

    assert second == first
    assert len(memory_store.calls) == calls
    stats = engine.get_analytics("1h")["search_stats"]
    assert stats["total_searches"] == 2
    assert stats["cache_hit_rate"] == 50.0


async def test_cache_disabled(memory_store) -> None:
    """Test every search reaches the store without caching."""
    engine = SearchEngine(memory_store, enable_caching=False)
    await engine.search({"q": "lap", "type": "deals"})
    calls = len(memory_store.calls)
    await engine.search({"q": "lap", "type": "deals"})
    assert len(memory_store.calls) > calls


async def test_clear_cache(memory_store) -> None:
    """Test clearing drops cached results."""
    engine = SearchEngine(memory_store)
    await engine.search({"q": "lap"})
    assert len(engine.cache) == 1
    await engine.clear_cache()
    assert len(engine.cache) == 0


# --- Failure Tests ---


async def test_partial_failure_degrades(failing_store) -> None:
    """Test a failing entity yields an empty set while others succeed."""
    engine = SearchEngine(failing_store("profiles"))
    response = await engine.search({"q": "lap"})
    assert response.users == []
    assert response.total_users == 0
    assert response.total_deals == 4
    assert response.total_results == 5


async def test_unexpected_error_recorded_and_raised(memory_store) -> None:
    """Test unexpected errors are recorded then re-raised."""
    dispatcher = AsyncMock()
    dispatcher.dispatch.side_effect = RuntimeError("boom")
    engine = SearchEngine(memory_store, dispatcher=dispatcher)

    with pytest.raises(RuntimeError, match="boom"):
        await engine.search({"q": "lap", "type": "deals"})
    await engine.aclose()

    breakdown = engine.get_analytics("1h")["errors"]["error_breakdown"]
    assert breakdown == [{"error_type": "UNKNOWN", "count": 1, "percentage": 100.0}]


async def test_analytics_failure_does_not_fail_search(memory_store) -> None:
    """Test a broken analytics sink never affects the response."""
    sink = AsyncMock()
    sink.record_search.side_effect = RuntimeError("sink down")
    engine = SearchEngine(memory_store, analytics=sink)
    response = await engine.search({"q": "lap", "type": "deals"})
    await engine.aclose()
    assert response.total_deals == 4
    sink.record_search.assert_awaited_once()


async def test_analytics_disabled(memory_store) -> None:
    """Test nothing is recorded when analytics is off."""
    engine = SearchEngine(memory_store, enable_analytics=False)
    await engine.search({"q": "lap"})
    await engine.aclose()
    assert engine.get_analytics("1h")["search_stats"]["total_searches"] == 0


# --- Facade Tests ---


async def test_trending_prefers_searches(memory_store) -> None:
    """Test trending lists searched queries before vocabulary terms."""
    engine = SearchEngine(memory_store, enable_caching=False)
    await engine.search({"q": "lap"})
    await engine.search({"q": "lap"})
    await engine.aclose()

    trending = await engine.trending(limit=3)
    assert trending[0] == {"term": "lap", "source": "searches", "count": 2}
    assert len(trending) == 3
    assert all(t["source"] == "vocabulary" for t in trending[1:])


async def test_record_interaction(memory_store) -> None:
    """Test interactions are recorded and returned."""
    engine = SearchEngine(memory_store)
    event = await engine.record_interaction("lap", "deal", "1")
    assert event["result_id"] == "1"
    assert engine.get_analytics("1h")["conversions"]["total_interactions"] == 1


async def test_external_sink_has_no_aggregates(memory_store) -> None:
    """Test aggregates are only available from the built-in analytics."""
    engine = SearchEngine(memory_store, analytics=AsyncMock())
    assert engine.get_analytics("1h") == {"timeframe": "1h"}
    assert await engine.record_interaction("lap", "deal", "1") == {}


async def test_refresh_vocabulary_and_stats(memory_store) -> None:
    """Test a forced rebuild is reflected in the stats."""
    engine = SearchEngine(memory_store)
    terms = await engine.refresh_vocabulary()
    stats = engine.stats()
    assert terms > 0
    assert stats["suggestions"]["vocabulary_terms"] == terms
    assert stats["cache"]["size"] == 0
    assert stats["pending_analytics"] == 0


def test_from_settings(memory_store) -> None:
    """Test settings flow into the engine components."""
    settings = Settings(
        search_default_limit=5,
        search_max_results=50,
        search_fuzzy_threshold=0.5,
        suggestion_max=4,
        search_enable_caching=False,
    )
    engine = SearchEngine.from_settings(memory_store, settings)
    assert engine.default_limit == 5
    assert engine.max_results == 50
    assert engine.dispatcher.matcher.min_score == 0.5
    assert engine.suggestions.max_suggestions == 4
    assert engine.enable_caching is False
    assert isinstance(engine.analytics, SearchAnalytics)


async def test_settings_limit_applied(memory_store) -> None:
    """Test the configured default page size is used."""
    engine = SearchEngine.from_settings(memory_store, Settings(search_default_limit=2))
    response = await engine.search({"type": "deals"})
    assert isinstance(response, SearchResponse)
    assert len(response.deals) == 2
    assert response.total_deals == 5

"""
Tests for the per-entity search dispatcher and its predicate builders.
"""

from __future__ import annotations

from unittest.mock import AsyncMock

import pytest

from dealsearch.config.errors import EntitySearchError, StorageError

from .dispatcher import EntitySearchDispatcher, coupon_filters, deal_filters, geo_predicate, text_predicate
from .models import EntityStats, EntityType, SearchQuery, SearchScope, SortMode
from .predicates import Contains, Eq, Or, StartsWith, StoreResult, matches


def _by_entity(outcomes):
    return {o.entity: o for o in outcomes}


# --- Predicate Builder Tests ---


def test_text_predicate_blank() -> None:
    """Test blank queries produce no text filter."""
    assert text_predicate("   ", ["title"]) is None


def test_text_predicate_phrase_and_words() -> None:
    """Test the phrase and each word of 2+ chars are matched in every field."""
    pred = text_predicate("Gaming Laptop x", ["title", "merchant"])
    assert isinstance(pred, Or)
    assert Contains("title", "gaming laptop x") in pred.children
    assert Contains("merchant", "laptop") in pred.children
    assert Contains("title", "x") not in pred.children


def test_text_predicate_word_prefix() -> None:
    """Test word prefixes are added on request."""
    pred = text_predicate("deal", ["handle"], word_prefix=True)
    assert StartsWith("handle", "deal") in pred.children


def test_geo_includes_center_and_unlocated() -> None:
    """Test a record at the center and a record without latitude both match."""
    pred = geo_predicate(40.7128, -74.006, 10)
    assert matches(pred, {"latitude": 40.7128, "longitude": -74.006})
    assert matches(pred, {"latitude": None, "longitude": None})
    assert matches(pred, {})


def test_geo_excludes_outside_box() -> None:
    """Test a record far outside the radius does not match."""
    pred = geo_predicate(40.7128, -74.006, 10)
    assert not matches(pred, {"latitude": 51.5, "longitude": -0.12})
    assert not matches(pred, {"latitude": 40.7128, "longitude": -73.0})


def test_deal_filters() -> None:
    """Test structured filters compose into one conjunction."""
    query = SearchQuery(category="1", min_price=10, has_coupon=True, featured=True)
    pred = deal_filters(query)
    assert matches(pred, {"category_id": 1, "price": 20, "coupon_code": "X", "is_featured": True})
    assert not matches(pred, {"category_id": 1, "price": 5, "coupon_code": "X", "is_featured": True})
    assert not matches(pred, {"category_id": 1, "price": 20, "coupon_code": None, "is_featured": True})
    assert not matches(pred, {"category_id": "1", "price": 20, "coupon_code": "X", "is_featured": True})


def test_deal_filters_empty() -> None:
    """Test no filters means no predicate."""
    assert deal_filters(SearchQuery()) is None


def test_coupon_filters() -> None:
    """Test coupon type and discount bounds."""
    pred = coupon_filters(SearchQuery(coupon_type="percentage", max_discount=30, company="acme"))
    assert matches(pred, {"coupon_type": "percentage", "discount_value": 20, "company_id": "acme"})
    assert not matches(pred, {"coupon_type": "percentage", "discount_value": 40, "company_id": "acme"})
    assert pred is not None and Eq("company_id", "acme") in pred.children


# --- Dispatch Tests ---


async def test_dispatch_all_entities(memory_store) -> None:
    """Test every entity is searched and settled in entity order."""
    outcomes = await EntitySearchDispatcher(memory_store).dispatch(SearchQuery(query="lap"))

    assert [o.entity for o in outcomes] == list(EntityType)
    assert all(o.ok for o in outcomes)
    results = {o.entity: o.result for o in outcomes}

    assert {d.id for d in results[EntityType.DEALS].results} == {1, 2, 3, 6}
    assert results[EntityType.DEALS].total == 4
    assert [c.id for c in results[EntityType.COUPONS].results] == [1]
    assert [u.id for u in results[EntityType.USERS].results] == ["u2"]
    assert results[EntityType.COMPANIES].total == 0
    assert results[EntityType.CATEGORIES].results == []


async def test_dispatch_single_entity(memory_store) -> None:
    """Test a scoped query only touches that entity's collections."""
    outcomes = await EntitySearchDispatcher(memory_store).dispatch(SearchQuery(type=SearchScope.CATEGORIES))
    assert [o.entity for o in outcomes] == [EntityType.CATEGORIES]
    assert "profiles" not in memory_store.collections_queried()


async def test_pending_deals_excluded(memory_store) -> None:
    """Test only approved deals are returned."""
    outcomes = _by_entity(await EntitySearchDispatcher(memory_store).dispatch(SearchQuery(type=SearchScope.DEALS)))
    ids = {d.id for d in outcomes[EntityType.DEALS].result.results}
    assert 5 not in ids
    assert outcomes[EntityType.DEALS].result.total == 5


async def test_total_independent_of_limit(memory_store) -> None:
    """Test the count covers every match, not just the page."""
    query = SearchQuery(query="lap", type=SearchScope.DEALS, limit=2)
    [outcome] = await EntitySearchDispatcher(memory_store).dispatch(query)
    assert len(outcome.result.results) == 2
    assert outcome.result.total == 4


async def test_tag_union_and_attachment(memory_store) -> None:
    """Test a tag match pulls in the deal and tags are attached."""
    query = SearchQuery(query="accessories", type=SearchScope.DEALS)
    [outcome] = await EntitySearchDispatcher(memory_store).dispatch(query)
    deals = {d.id: d for d in outcome.result.results}
    assert set(deals) == {2, 6}
    assert [t.name for t in deals[6].tags] == ["Laptop Accessories"]
    assert deals[6].tags[0].slug == "laptop-accessories"


async def test_tags_attached_without_query(memory_store) -> None:
    """Test every returned deal carries its tags."""
    query = SearchQuery(type=SearchScope.DEALS)
    [outcome] = await EntitySearchDispatcher(memory_store).dispatch(query)
    deals = {d.id: d for d in outcome.result.results}
    assert {t.name for t in deals[4].tags} == {"Audio", "Travel"}
    assert deals[1].tags == []


async def test_stats_attached(memory_store) -> None:
    """Test users, companies and categories carry approved counts."""
    outcomes = _by_entity(await EntitySearchDispatcher(memory_store).dispatch(SearchQuery()))
    users = {u.id: u for u in outcomes[EntityType.USERS].result.results}
    companies = {c.id: c for c in outcomes[EntityType.COMPANIES].result.results}
    categories = {c.id: c for c in outcomes[EntityType.CATEGORIES].result.results}

    assert users["u2"].stats == EntityStats(deals_count=2, coupons_count=1)
    assert companies[1].stats == EntityStats(deals_count=3, coupons_count=1)
    assert categories[3].stats.total == 2


async def test_deal_filters_applied(memory_store) -> None:
    """Test geo and coupon filters narrow the deals."""
    dispatcher = EntitySearchDispatcher(memory_store)

    geo = SearchQuery(type=SearchScope.DEALS, latitude=40.7128, longitude=-74.006, radius=10)
    [outcome] = await dispatcher.dispatch(geo)
    assert {d.id for d in outcome.result.results} == {1, 2, 4, 6}

    coupon = SearchQuery(type=SearchScope.DEALS, has_coupon=True)
    [outcome] = await dispatcher.dispatch(coupon)
    assert [d.id for d in outcome.result.results] == [3]


async def test_store_ordering_follows_sort(memory_store) -> None:
    """Test the page is read in the requested order."""
    query = SearchQuery(type=SearchScope.DEALS, sort=SortMode.PRICE_LOW)
    [outcome] = await EntitySearchDispatcher(memory_store).dispatch(query)
    prices = [d.price for d in outcome.result.results]
    assert prices == sorted(prices)


# --- Failure Tests ---


async def test_partial_failure_isolated(failing_store) -> None:
    """Test a failing entity yields an empty failed set and siblings succeed."""
    outcomes = _by_entity(await EntitySearchDispatcher(failing_store("profiles")).dispatch(SearchQuery()))

    users = outcomes[EntityType.USERS]
    assert not users.ok
    assert isinstance(users.error, EntitySearchError)
    assert users.error.entity == "users"
    result_set = users.result_set()
    assert result_set.failed is True
    assert result_set.results == []
    assert result_set.total == 0

    assert outcomes[EntityType.DEALS].ok
    assert outcomes[EntityType.DEALS].result.total == 5


async def test_tag_lookup_failure_degrades(failing_store) -> None:
    """Test tag lookups failing leaves text matches untagged."""
    store = failing_store("deal_tag_details")
    [outcome] = await EntitySearchDispatcher(store).dispatch(SearchQuery(query="lap", type=SearchScope.DEALS))
    assert outcome.ok
    assert {d.id for d in outcome.result.results} == {1, 2, 3}
    assert all(d.tags == [] for d in outcome.result.results)


async def test_stats_failure_degrades(failing_store) -> None:
    """Test count failures attach zero stats instead of failing the entity."""
    store = failing_store("coupons")
    [outcome] = await EntitySearchDispatcher(store).dispatch(SearchQuery(type=SearchScope.COMPANIES))
    assert outcome.ok
    assert all(c.stats == EntityStats() for c in outcome.result.results)


async def test_all_entities_fail() -> None:
    """Test every branch failing still settles with empty results."""
    store = AsyncMock()
    store.query.side_effect = StorageError("database is locked")
    outcomes = await EntitySearchDispatcher(store).dispatch(SearchQuery())
    assert len(outcomes) == 5
    assert not any(o.ok for o in outcomes)


async def test_page_window_passed_to_store() -> None:
    """Test offset, limit and count flag reach the store."""
    store = AsyncMock()
    store.query.return_value = StoreResult(rows=[], total=0)
    await EntitySearchDispatcher(store).dispatch(
        SearchQuery(type=SearchScope.CATEGORIES, page=3, limit=10, offset=20)
    )
    request = store.query.call_args.args[0]
    assert request.collection == "categories"
    assert request.offset == 20
    assert request.limit == 10
    assert request.with_count is True


@pytest.mark.parametrize("scope", [SearchScope.USERS, SearchScope.COMPANIES, SearchScope.CATEGORIES])
async def test_empty_pages_skip_enrichment(scope: SearchScope) -> None:
    """Test no count queries run for an empty page."""
    store = AsyncMock()
    store.query.return_value = StoreResult(rows=[], total=0)
    await EntitySearchDispatcher(store).dispatch(SearchQuery(type=scope))
    assert store.query.await_count == 1

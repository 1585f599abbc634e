"""
Entity Search Dispatcher - Concurrent per-entity search strategies.

Each entity gets its own strategy that builds a predicate tree (text, tag
union, structured filters), reads one page plus an exact count from the
record store, re-ranks and enriches the page. All requested strategies run
concurrently; a failing strategy yields an empty result for its entity and
never cancels its siblings.
"""

from __future__ import annotations

import asyncio
import logging
import math
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass
from typing import Any

from dealsearch.config.errors import EntitySearchError

from .contracts import RecordStore
from .fuzzy import FuzzyMatcher
from .models import (
    Category,
    Company,
    Coupon,
    Deal,
    EntityResultSet,
    EntityStats,
    EntityType,
    SearchQuery,
    Tag,
    UserProfile,
)
from .predicates import (
    And,
    Contains,
    Eq,
    Gte,
    In,
    IsNull,
    Lte,
    Not,
    Or,
    Predicate,
    StartsWith,
    StoreQuery,
    all_of,
    any_of,
)
from .ranking import SearchRanking

logger = logging.getLogger(__name__)

__all__ = ["EntitySearchDispatcher", "EntityOutcome", "text_predicate", "geo_predicate"]

DEAL_TEXT_FIELDS = ("title", "description", "merchant")
COUPON_TEXT_FIELDS = ("title", "description", "coupon_code")
USER_TEXT_FIELDS = ("handle", "display_name", "first_name", "last_name", "bio")
NAME_FIELDS = ("name",)

KM_PER_DEGREE = 111.0

APPROVED = Eq("status", "approved")


@dataclass
class EntityOutcome:
    """Settled result of one entity branch: a result set or the error that ended it."""

    entity: EntityType
    result: EntityResultSet[Any] | None = None
    error: BaseException | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def result_set(self) -> EntityResultSet[Any]:
        if self.result is not None and self.ok:
            return self.result
        return EntityResultSet.empty(self.entity, failed=True)


# --- Predicate builders ---


def text_predicate(query: str, fields: Sequence[str], word_prefix: bool = False) -> Predicate | None:
    """
    Disjunction of phrase and per-word substring matches over fields.

    Args:
        query: Raw query text
        fields: Columns to match
        word_prefix: Also match each word as a field prefix

    Returns:
        OR predicate, or None for blank queries
    """
    clean = query.lower().strip()
    if not clean:
        return None

    conditions: list[Predicate] = [Contains(f, clean) for f in fields]
    for word in clean.split():
        if len(word) < 2:
            continue
        for f in fields:
            conditions.append(Contains(f, word))
            if word_prefix:
                conditions.append(StartsWith(f, word))
    return any_of(*conditions)


def geo_predicate(latitude: float, longitude: float, radius_km: float) -> Predicate:
    """Bounding box around a point, or records without a location."""
    lat_delta = radius_km / KM_PER_DEGREE
    lon_delta = radius_km / (KM_PER_DEGREE * math.cos(math.radians(latitude)))
    box = And(
        (
            Gte("latitude", latitude - lat_delta),
            Lte("latitude", latitude + lat_delta),
            Gte("longitude", longitude - lon_delta),
            Lte("longitude", longitude + lon_delta),
        )
    )
    return Or((IsNull("latitude"), box))


def _as_id(value: str) -> int | str:
    return int(value) if value.isdigit() else value


def deal_filters(query: SearchQuery) -> Predicate | None:
    """Structured deal filters: category, company, price, discount, coupon, featured, geo."""
    geo = None
    if query.latitude is not None and query.longitude is not None and query.radius:
        geo = geo_predicate(query.latitude, query.longitude, query.radius)
    return all_of(
        geo,
        Eq("category_id", _as_id(query.category)) if query.category else None,
        Eq("company_id", _as_id(query.company)) if query.company else None,
        Gte("price", query.min_price) if query.min_price is not None else None,
        Lte("price", query.max_price) if query.max_price is not None else None,
        Gte("discount_percentage", query.min_discount) if query.min_discount is not None else None,
        Lte("discount_percentage", query.max_discount) if query.max_discount is not None else None,
        Not(IsNull("coupon_code")) if query.has_coupon else None,
        Eq("is_featured", True) if query.featured else None,
    )


def coupon_filters(query: SearchQuery) -> Predicate | None:
    """Structured coupon filters: category, company, discount value, type, featured."""
    return all_of(
        Eq("category_id", _as_id(query.category)) if query.category else None,
        Eq("company_id", _as_id(query.company)) if query.company else None,
        Gte("discount_value", query.min_discount) if query.min_discount is not None else None,
        Lte("discount_value", query.max_discount) if query.max_discount is not None else None,
        Eq("coupon_type", query.coupon_type) if query.coupon_type else None,
        Eq("is_featured", True) if query.featured else None,
    )


class EntitySearchDispatcher:
    """
    Fans a normalized query out to the per-entity strategies.

    Example:
        >>> dispatcher = EntitySearchDispatcher(store)
        >>> outcomes = await dispatcher.dispatch(query)
        >>> [o.entity for o in outcomes if not o.ok]
        []
    """

    def __init__(
        self,
        store: RecordStore,
        matcher: FuzzyMatcher | None = None,
        ranking: SearchRanking | None = None,
        enrichment_concurrency: int = 8,
    ) -> None:
        """
        Initialize dispatcher.

        Args:
            store: Record store to read from
            matcher: Fuzzy re-ranker for deals and coupons
            ranking: Source of store-side ordering
            enrichment_concurrency: Max in-flight enrichment count queries
        """
        self.store = store
        self.matcher = matcher or FuzzyMatcher()
        self.ranking = ranking or SearchRanking()
        self._semaphore = asyncio.Semaphore(max(1, enrichment_concurrency))
        self._strategies: dict[EntityType, Callable[[SearchQuery], Awaitable[EntityResultSet[Any]]]] = {
            EntityType.DEALS: self.search_deals,
            EntityType.COUPONS: self.search_coupons,
            EntityType.USERS: self.search_users,
            EntityType.COMPANIES: self.search_companies,
            EntityType.CATEGORIES: self.search_categories,
        }

    async def dispatch(self, query: SearchQuery) -> list[EntityOutcome]:
        """
        Run every requested entity search concurrently and wait for all to settle.

        Args:
            query: Normalized query

        Returns:
            One outcome per requested entity, in entity order
        """
        entities = query.entity_types()
        settled = await asyncio.gather(
            *(self._run(entity, query) for entity in entities),
            return_exceptions=True,
        )

        outcomes = []
        for entity, result in zip(entities, settled):
            if isinstance(result, Exception):
                logger.warning("Search branch '%s' failed: %s", entity.value, result)
                outcomes.append(EntityOutcome(entity=entity, error=result))
            elif isinstance(result, BaseException):
                raise result
            else:
                outcomes.append(EntityOutcome(entity=entity, result=result))
        return outcomes

    async def _run(self, entity: EntityType, query: SearchQuery) -> EntityResultSet[Any]:
        try:
            return await self._strategies[entity](query)
        except Exception as e:
            raise EntitySearchError(entity.value, str(e)) from e

    # --- Strategies ---

    async def search_deals(self, query: SearchQuery) -> EntityResultSet[Deal]:
        text = None
        if query.query:
            tag_ids = await self._tag_matching_ids("deal_tag_details", "deal_id", query.query)
            text = any_of(
                text_predicate(query.query, DEAL_TEXT_FIELDS),
                In("id", tuple(tag_ids)) if tag_ids else None,
            )

        rows, total = await self._page("deals", all_of(APPROVED, text, deal_filters(query)), query, EntityType.DEALS)
        deals = [Deal.model_validate(row) for row in rows]
        if query.query:
            deals = self.matcher.filter_and_rank_results(deals, query.query, DEAL_TEXT_FIELDS)
        deals = await self._attach_tags(deals, "deal_tag_details", "deal_id")
        return EntityResultSet(EntityType.DEALS, deals, total)

    async def search_coupons(self, query: SearchQuery) -> EntityResultSet[Coupon]:
        text = None
        if query.query:
            tag_ids = await self._tag_matching_ids("coupon_tag_details", "coupon_id", query.query)
            text = any_of(
                text_predicate(query.query, COUPON_TEXT_FIELDS),
                In("id", tuple(tag_ids)) if tag_ids else None,
            )

        where = all_of(APPROVED, text, coupon_filters(query))
        rows, total = await self._page("coupons", where, query, EntityType.COUPONS)
        coupons = [Coupon.model_validate(row) for row in rows]
        if query.query:
            coupons = self.matcher.filter_and_rank_results(coupons, query.query, COUPON_TEXT_FIELDS)
        coupons = await self._attach_tags(coupons, "coupon_tag_details", "coupon_id")
        return EntityResultSet(EntityType.COUPONS, coupons, total)

    async def search_users(self, query: SearchQuery) -> EntityResultSet[UserProfile]:
        where = text_predicate(query.query, USER_TEXT_FIELDS, word_prefix=True)
        rows, total = await self._page("profiles", where, query, EntityType.USERS)
        users = [UserProfile.model_validate(row) for row in rows]
        await self._attach_stats(users, "submitter_id")
        return EntityResultSet(EntityType.USERS, users, total)

    async def search_companies(self, query: SearchQuery) -> EntityResultSet[Company]:
        where = all_of(
            text_predicate(query.query, NAME_FIELDS),
            Eq("category_id", _as_id(query.category)) if query.category else None,
        )
        rows, total = await self._page("companies", where, query, EntityType.COMPANIES)
        companies = [Company.model_validate(row) for row in rows]
        await self._attach_stats(companies, "company_id")
        return EntityResultSet(EntityType.COMPANIES, companies, total)

    async def search_categories(self, query: SearchQuery) -> EntityResultSet[Category]:
        where = text_predicate(query.query, NAME_FIELDS)
        rows, total = await self._page("categories", where, query, EntityType.CATEGORIES)
        categories = [Category.model_validate(row) for row in rows]
        await self._attach_stats(categories, "category_id")
        return EntityResultSet(EntityType.CATEGORIES, categories, total)

    # --- Store access ---

    async def _page(
        self,
        collection: str,
        where: Predicate | None,
        query: SearchQuery,
        entity: EntityType,
    ) -> tuple[list[dict[str, Any]], int]:
        result = await self.store.query(
            StoreQuery(
                collection,
                where=where,
                order_by=self.ranking.order_for(query.sort, entity),
                offset=query.offset,
                limit=query.limit,
                with_count=True,
            )
        )
        return result.rows, result.total or 0

    async def _tag_matching_ids(self, view: str, id_field: str, text: str) -> list[Any]:
        """Ids of records carrying a tag whose name or slug contains `text`."""
        try:
            result = await self.store.query(
                StoreQuery(view, where=any_of(Contains("name", text), Contains("slug", text)))
            )
        except Exception:
            logger.warning("Tag lookup on %s failed", view, exc_info=True)
            return []
        return list(dict.fromkeys(row[id_field] for row in result.rows))

    async def _attach_tags(self, records: list[Any], view: str, id_field: str) -> list[Any]:
        """Attach tags to every record with one batched lookup."""
        if not records:
            return records
        try:
            result = await self.store.query(
                StoreQuery(view, where=In(id_field, tuple(r.id for r in records)))
            )
        except Exception:
            logger.warning("Tag enrichment from %s failed", view, exc_info=True)
            return records

        tags_by_id: dict[Any, list[Tag]] = {}
        for row in result.rows:
            tags_by_id.setdefault(row[id_field], []).append(
                Tag(id=row.get("tag_id"), name=row["name"], slug=row.get("slug"), color=row.get("color"))
            )
        return [r.model_copy(update={"tags": tags_by_id.get(r.id, [])}) for r in records]

    async def _attach_stats(self, records: list[Any], owner_field: str) -> None:
        """Attach approved deal/coupon counts to each record (zeros on failure)."""
        if not records:
            return

        async def stats_for(record: Any) -> None:
            try:
                deals, coupons = await asyncio.gather(
                    self._count("deals", owner_field, record.id),
                    self._count("coupons", owner_field, record.id),
                )
                record.stats = EntityStats(deals_count=deals, coupons_count=coupons)
            except Exception:
                logger.warning("Stats enrichment failed for %s=%s", owner_field, record.id, exc_info=True)
                record.stats = EntityStats()

        await asyncio.gather(*(stats_for(record) for record in records))

    async def _count(self, collection: str, owner_field: str, owner_id: Any) -> int:
        async with self._semaphore:
            result = await self.store.query(
                StoreQuery(
                    collection,
                    where=all_of(Eq(owner_field, owner_id), APPROVED),
                    limit=0,
                    with_count=True,
                )
            )
        return result.total or 0

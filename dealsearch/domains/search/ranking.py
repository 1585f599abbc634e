"""
Search Ranking - Sort-mode comparators and relevance scoring per entity.

The same comparator family is used twice: as store-side ordering when the
page is fetched, and in memory to restore the requested order after fuzzy
re-ranking has reshuffled a page.
"""

from __future__ import annotations

import logging
import math
import re
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, TypeVar

from .models import (
    Category,
    Company,
    Coupon,
    Deal,
    EntityType,
    SearchQuery,
    SearchResponse,
    SortMode,
    UserProfile,
)
from .predicates import OrderBy

logger = logging.getLogger(__name__)

__all__ = ["SearchRanking", "RankingWeights"]

T = TypeVar("T")

_NEWEST = [OrderBy("created_at", descending=True)]

# (entity, sort) -> ordering; missing pairs fall back to newest first
_ORDERINGS: dict[tuple[EntityType, SortMode], list[OrderBy]] = {
    (EntityType.DEALS, SortMode.POPULAR): [OrderBy("views_count", True)],
    (EntityType.COUPONS, SortMode.POPULAR): [OrderBy("views_count", True)],
    (EntityType.USERS, SortMode.POPULAR): [OrderBy("karma", True)],
    (EntityType.COMPANIES, SortMode.POPULAR): [
        OrderBy("created_at", True),
        OrderBy("name"),
    ],
    (EntityType.DEALS, SortMode.PRICE_LOW): [OrderBy("price")],
    (EntityType.DEALS, SortMode.PRICE_HIGH): [OrderBy("price", True)],
    (EntityType.DEALS, SortMode.DISCOUNT): [OrderBy("discount_percentage", True)],
    (EntityType.COUPONS, SortMode.DISCOUNT): [OrderBy("discount_value", True)],
    (EntityType.DEALS, SortMode.RELEVANCE): [OrderBy("views_count", True)],
    (EntityType.COUPONS, SortMode.RELEVANCE): [OrderBy("views_count", True)],
    (EntityType.USERS, SortMode.RELEVANCE): [OrderBy("karma", True)],
    (EntityType.COMPANIES, SortMode.RELEVANCE): [
        OrderBy("is_verified", True),
        OrderBy("name"),
    ],
}


@dataclass(frozen=True)
class RankingWeights:
    """Blend and boost factors for relevance scoring."""

    text_relevance: float = 0.4
    popularity: float = 0.3
    recency: float = 0.2
    engagement: float = 0.1

    exact_match_boost: float = 2.0
    title_match_boost: float = 1.5
    featured_boost: float = 1.3
    verified_boost: float = 1.2
    exclusive_boost: float = 1.1
    staff_boost: float = 1.3
    high_karma_boost: float = 1.1

    old_content_penalty: float = 0.8
    low_engagement_penalty: float = 0.9
    expiring_soon_penalty: float = 0.95

    time_decay_factor: float = 0.1
    max_age_months: float = 12


class SearchRanking:
    """
    Per-entity ordering and relevance ranking.

    Example:
        >>> ranking = SearchRanking()
        >>> ranking.order_for(SortMode.NEWEST, EntityType.DEALS)
        [OrderBy(field='created_at', descending=True)]
    """

    def __init__(
        self,
        weights: RankingWeights | None = None,
        relevance_boosting: bool = False,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        """
        Initialize ranking.

        Args:
            weights: Relevance blend and boosts
            relevance_boosting: Re-score relevance-sorted results after fuzzy ranking
            clock: Current time source (UTC)
        """
        self.weights = weights or RankingWeights()
        self.relevance_boosting = relevance_boosting
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    # --- Ordering ---

    def order_for(self, sort: SortMode, entity: EntityType) -> list[OrderBy]:
        """Store-side ordering for a sort mode and entity."""
        if sort == SortMode.NEWEST:
            return list(_NEWEST)
        if sort == SortMode.OLDEST:
            return [OrderBy("created_at")]
        return list(_ORDERINGS.get((entity, sort), _NEWEST))

    def sort_records(self, records: Sequence[T], sort: SortMode, entity: EntityType) -> list[T]:
        """Apply the ordering of `order_for` in memory (stable, nulls lowest)."""
        ordered = list(records)
        for order in reversed(self.order_for(sort, entity)):
            ordered.sort(
                key=lambda r, f=order.field: _null_low_key(getattr(r, f, None)),
                reverse=order.descending,
            )
        return ordered

    def rank_results(self, response: SearchResponse, query: SearchQuery) -> SearchResponse:
        """
        Final per-entity ordering of a composite response.

        Non-relevance sorts restore the requested order; relevance sorts keep
        the fuzzy order unless relevance boosting is enabled.
        """
        for entity in EntityType:
            records = response.records(entity)
            if not records:
                continue
            if query.sort != SortMode.RELEVANCE:
                setattr(response, entity.value, self.sort_records(records, query.sort, entity))
            elif self.relevance_boosting:
                setattr(response, entity.value, self.rank_by_relevance(records, query.query, entity))
        return response

    # --- Relevance ---

    def rank_by_relevance(self, records: Sequence[T], query: str, entity: EntityType) -> list[T]:
        """Sort records by composite relevance score, highest first."""
        scorer = {
            EntityType.DEALS: self.deal_score,
            EntityType.COUPONS: self.coupon_score,
            EntityType.USERS: self.user_score,
            EntityType.COMPANIES: self.company_score,
            EntityType.CATEGORIES: self.category_score,
        }[entity]
        scored = [(scorer(record, query), record) for record in records]  # type: ignore[arg-type]
        scored.sort(key=lambda pair: pair[0], reverse=True)
        return [record for _, record in scored]

    def deal_score(self, deal: Deal, query: str) -> float:
        w = self.weights
        score = text_relevance(deal, query, ["title", "description", "merchant"]) * w.text_relevance
        score += popularity_score(deal.views_count, deal.clicks_count, 10_000, 1_000) * w.popularity
        score += self._recency_score(deal.created_at) * w.recency
        score += engagement_score(deal.views_count, deal.clicks_count) * w.engagement

        if has_exact_match(deal, query, ["title", "merchant"]):
            score *= w.exact_match_boost
        if query and query.lower() in deal.title.lower():
            score *= w.title_match_boost
        if deal.is_featured:
            score *= w.featured_boost
        if self._is_old(deal.created_at):
            score *= w.old_content_penalty
        if deal.views_count < 10 or deal.clicks_count == 0:
            score *= w.low_engagement_penalty
        return max(0.0, score)

    def coupon_score(self, coupon: Coupon, query: str) -> float:
        w = self.weights
        score = text_relevance(coupon, query, ["title", "description", "coupon_code"]) * w.text_relevance
        score += popularity_score(coupon.views_count, coupon.clicks_count, 5_000, 500) * w.popularity
        score += self._recency_score(coupon.created_at) * w.recency
        score += (coupon.success_rate or 0) / 100 * w.engagement

        if has_exact_match(coupon, query, ["title", "coupon_code"]):
            score *= w.exact_match_boost
        if coupon.is_featured:
            score *= w.featured_boost
        if coupon.is_exclusive:
            score *= w.exclusive_boost
        if self._is_expiring_soon(coupon.expires_at):
            score *= w.expiring_soon_penalty
        return max(0.0, score)

    def user_score(self, user: UserProfile, query: str) -> float:
        w = self.weights
        fields = ["handle", "display_name", "first_name", "last_name", "bio"]
        score = text_relevance(user, query, fields) * 0.6
        score += min(1.0, user.karma / 1000) * 0.3
        contributions = user.stats.total if user.stats else 0
        score += min(1.0, contributions / 50) * 0.1

        if has_exact_match(user, query, ["handle", "display_name"]):
            score *= w.exact_match_boost
        if user.role in ("admin", "moderator"):
            score *= w.staff_boost
        if user.karma > 500:
            score *= w.high_karma_boost
        return max(0.0, score)

    def company_score(self, company: Company, query: str) -> float:
        w = self.weights
        score = text_relevance(company, query, ["name"]) * 0.5
        offers = company.stats.total if company.stats else 0
        score += min(1.0, offers / 100) * 0.3

        if company.is_verified:
            score *= w.verified_boost
        if has_exact_match(company, query, ["name"]):
            score *= w.exact_match_boost
        return max(0.0, score)

    def category_score(self, category: Category, query: str) -> float:
        score = text_relevance(category, query, ["name"]) * 0.6
        items = category.stats.total if category.stats else 0
        score += min(1.0, items / 200) * 0.4

        if has_exact_match(category, query, ["name"]):
            score *= self.weights.exact_match_boost
        return max(0.0, score)

    def _age_months(self, created_at: datetime | None) -> float | None:
        if created_at is None:
            return None
        if created_at.tzinfo is None:
            created_at = created_at.replace(tzinfo=timezone.utc)
        return (self._clock() - created_at).total_seconds() / (60 * 60 * 24 * 30)

    def _recency_score(self, created_at: datetime | None) -> float:
        age = self._age_months(created_at)
        if age is None:
            return 0.0
        return max(0.0, math.exp(-self.weights.time_decay_factor * age))

    def _is_old(self, created_at: datetime | None) -> bool:
        age = self._age_months(created_at)
        return age is not None and age > self.weights.max_age_months

    def _is_expiring_soon(self, expires_at: datetime | None) -> bool:
        if expires_at is None:
            return False
        if expires_at.tzinfo is None:
            expires_at = expires_at.replace(tzinfo=timezone.utc)
        days = (expires_at - self._clock()).total_seconds() / (60 * 60 * 24)
        return 0 < days < 7


def text_relevance(item: Any, query: str, fields: Sequence[str]) -> float:
    """Best per-field keyword score across fields, normalized to 0-1."""
    query_lower = query.lower().strip()
    if not query_lower:
        return 0.0
    words = query_lower.split()

    best = 0.0
    for field_name in fields:
        value = getattr(item, field_name, None)
        if not value:
            continue
        text = str(value).lower()
        field_score = 100.0 if query_lower in text else 0.0
        for word in words:
            if word in text:
                field_score += 20
            if re.search(rf"\b{re.escape(word)}\b", text):
                field_score += 30
            if text.startswith(word):
                field_score += 40
        best = max(best, field_score)
    return min(1.0, best / 100)


def popularity_score(views: int, clicks: int, max_views: int, max_clicks: int) -> float:
    """Clicks weigh more than views."""
    return min(1.0, views / max_views) * 0.3 + min(1.0, clicks / max_clicks) * 0.7


def engagement_score(views: int, clicks: int) -> float:
    if views <= 0:
        return 0.0
    return min(1.0, clicks / views * 10)


def has_exact_match(item: Any, query: str, fields: Sequence[str]) -> bool:
    query_lower = query.lower().strip()
    return any(
        (value := getattr(item, f, None)) and str(value).lower() == query_lower
        for f in fields
    )


def _null_low_key(value: Any) -> tuple[bool, Any]:
    if isinstance(value, datetime) and value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return (value is not None, value if value is not None else 0)

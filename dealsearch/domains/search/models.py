"""
Search Models - Data types for search domain.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Generic, TypeVar

from pydantic import BaseModel, ConfigDict, Field, computed_field


class EntityType(str, Enum):
    """Record collections covered by a search."""

    DEALS = "deals"
    COUPONS = "coupons"
    USERS = "users"
    COMPANIES = "companies"
    CATEGORIES = "categories"


class SearchScope(str, Enum):
    """Entity selector accepted on the request (`all` or one entity)."""

    ALL = "all"
    DEALS = "deals"
    COUPONS = "coupons"
    USERS = "users"
    COMPANIES = "companies"
    CATEGORIES = "categories"


class SortMode(str, Enum):
    """Result ordering requested by the caller."""

    RELEVANCE = "relevance"
    NEWEST = "newest"
    OLDEST = "oldest"
    POPULAR = "popular"
    PRICE_LOW = "price_low"
    PRICE_HIGH = "price_high"
    DISCOUNT = "discount"


class SearchQuery(BaseModel):
    """Normalized search request, produced once per request."""

    query: str = ""
    type: SearchScope = SearchScope.ALL
    category: str | None = None
    company: str | None = None
    tags: tuple[str, ...] = ()
    min_price: float | None = None
    max_price: float | None = None
    min_discount: float | None = None
    max_discount: float | None = None
    has_coupon: bool = False
    coupon_type: str | None = None
    featured: bool = False
    sort: SortMode = SortMode.RELEVANCE
    latitude: float | None = None
    longitude: float | None = None
    radius: float | None = None
    page: int = Field(default=1, ge=1)
    limit: int = Field(default=20, ge=1)
    offset: int = Field(default=0, ge=0)
    filters: dict[str, Any] = Field(default_factory=dict)

    model_config = {"frozen": True}

    def entity_types(self) -> list[EntityType]:
        """Entities this query fans out to."""
        if self.type == SearchScope.ALL:
            return list(EntityType)
        return [EntityType(self.type.value)]

    def canonical_key(self) -> str:
        """Stable serialization used for cache keys."""
        payload = self.model_dump(mode="json")
        payload["tags"] = sorted(payload["tags"])
        return json.dumps(payload, sort_keys=True, default=str)


# --- Records ---


class Tag(BaseModel):
    """Tag attached to a deal or coupon."""

    id: int | None = None
    name: str
    slug: str | None = None
    color: str | None = None

    model_config = ConfigDict(extra="ignore")


class EntityStats(BaseModel):
    """Approved contribution counts attached to users, companies and categories."""

    deals_count: int = 0
    coupons_count: int = 0

    @computed_field  # type: ignore[prop-decorator]
    @property
    def total(self) -> int:
        return self.deals_count + self.coupons_count


class _Record(BaseModel):
    model_config = ConfigDict(extra="ignore")

    created_at: datetime | None = None


class Deal(_Record):
    """Approved deal (offer)."""

    id: int
    title: str = ""
    url: str | None = None
    price: float | None = None
    original_price: float | None = None
    merchant: str | None = None
    description: str | None = None
    image_url: str | None = None
    coupon_code: str | None = None
    coupon_type: str | None = None
    discount_percentage: float | None = None
    discount_amount: float | None = None
    expires_at: datetime | None = None
    category_id: int | None = None
    company_id: int | None = None
    deal_type: str | None = None
    is_featured: bool = False
    views_count: int = 0
    clicks_count: int = 0
    submitter_id: str | None = None
    status: str = "approved"
    latitude: float | None = None
    longitude: float | None = None
    tags: list[Tag] = Field(default_factory=list)


class Coupon(_Record):
    """Approved coupon (voucher)."""

    id: int
    title: str = ""
    description: str | None = None
    coupon_code: str | None = None
    coupon_type: str | None = None
    discount_value: float | None = None
    minimum_order_amount: float | None = None
    maximum_discount_amount: float | None = None
    company_id: int | None = None
    category_id: int | None = None
    submitter_id: str | None = None
    terms_conditions: str | None = None
    starts_at: datetime | None = None
    expires_at: datetime | None = None
    is_featured: bool = False
    is_exclusive: bool = False
    views_count: int = 0
    clicks_count: int = 0
    success_rate: float | None = None
    status: str = "approved"
    tags: list[Tag] = Field(default_factory=list)


class UserProfile(_Record):
    """Public user profile (account)."""

    id: str
    handle: str | None = None
    avatar_url: str | None = None
    karma: int = 0
    role: str | None = None
    first_name: str | None = None
    last_name: str | None = None
    display_name: str | None = None
    bio: str | None = None
    location: str | None = None
    website: str | None = None
    stats: EntityStats | None = None


class Company(_Record):
    """Merchant organization."""

    id: int
    name: str = ""
    slug: str | None = None
    logo_url: str | None = None
    website_url: str | None = None
    is_verified: bool = False
    category_id: int | None = None
    stats: EntityStats | None = None


class Category(_Record):
    """Deal/coupon category."""

    id: int
    name: str = ""
    slug: str | None = None
    color: str | None = None
    stats: EntityStats | None = None


RECORD_TYPES: dict[EntityType, type[_Record]] = {
    EntityType.DEALS: Deal,
    EntityType.COUPONS: Coupon,
    EntityType.USERS: UserProfile,
    EntityType.COMPANIES: Company,
    EntityType.CATEGORIES: Category,
}

RecordT = TypeVar("RecordT", bound=BaseModel)


@dataclass
class EntityResultSet(Generic[RecordT]):
    """One entity's page of results plus the exact matching count."""

    entity: EntityType
    results: list[RecordT] = field(default_factory=list)
    total: int = 0
    failed: bool = False

    @classmethod
    def empty(cls, entity: EntityType, failed: bool = False) -> EntityResultSet[Any]:
        return cls(entity=entity, failed=failed)


@dataclass
class ScoredCandidate(Generic[RecordT]):
    """Record decorated with a transient fuzzy score."""

    item: RecordT
    score: float
    match_count: int


# --- Cache ---


class CacheEntry(BaseModel):
    """Cached value with its expiry bookkeeping (clock seconds)."""

    key: str
    value: Any
    created_at: float
    expires_at: float
    hit_count: int = 0


# --- Suggestions ---


class SuggestionType(str, Enum):
    """Origin of a suggestion."""

    TAG = "tag"
    DEAL_TITLE = "deal_title"
    MERCHANT = "merchant"
    COMPANY = "company"
    USER_HANDLE = "user_handle"
    USER_NAME = "user_name"
    SPELL_CORRECTION = "spell_correction"
    RELATED_TERM = "related_term"
    RELATED_COMPANY = "related_company"
    POPULAR_SEARCH = "popular_search"
    CATEGORY = "category"


class Suggestion(BaseModel):
    """Auto-complete / correction candidate."""

    text: str
    type: SuggestionType
    source: str
    score: float
    extra: dict[str, Any] = Field(default_factory=dict)


# --- Response ---


class SearchResponse(BaseModel):
    """Composite search result returned to callers."""

    deals: list[Deal] = Field(default_factory=list)
    coupons: list[Coupon] = Field(default_factory=list)
    users: list[UserProfile] = Field(default_factory=list)
    companies: list[Company] = Field(default_factory=list)
    categories: list[Category] = Field(default_factory=list)
    total_deals: int = 0
    total_coupons: int = 0
    total_users: int = 0
    total_companies: int = 0
    total_categories: int = 0
    total_results: int = 0
    query: str = ""
    search_time: float = 0.0  # milliseconds
    suggestions: list[Suggestion] = Field(default_factory=list)

    def apply(self, result_set: EntityResultSet[Any]) -> None:
        """Store an entity's results and count on the response."""
        name = result_set.entity.value
        setattr(self, name, list(result_set.results))
        setattr(self, f"total_{name}", result_set.total)

    def records(self, entity: EntityType) -> list[Any]:
        return getattr(self, entity.value)

    def compute_total(self) -> int:
        self.total_results = (
            self.total_deals
            + self.total_coupons
            + self.total_users
            + self.total_companies
            + self.total_categories
        )
        return self.total_results

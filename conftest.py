"""Shared test fixtures: a small marketplace, an in-memory store and a seeded SQLite store."""

from __future__ import annotations

import copy
from collections.abc import AsyncGenerator, Callable
from pathlib import Path
from typing import Any

import pytest

from dealsearch.adapters.sqlite import SQLiteRecordStore
from dealsearch.adapters.sqlite.repository import FIXTURE_ORDER
from dealsearch.config.errors import StorageError
from dealsearch.domains.search.predicates import StoreQuery, StoreResult, matches

MARKETPLACE: dict[str, list[dict[str, Any]]] = {
    "categories": [
        {"id": 1, "name": "Electronics", "slug": "electronics", "created_at": "2023-01-01 09:00:00"},
        {"id": 2, "name": "Office", "slug": "office", "created_at": "2023-02-01 09:00:00"},
        {"id": 3, "name": "Audio", "slug": "audio", "created_at": "2023-03-01 09:00:00"},
    ],
    "companies": [
        {"id": 1, "name": "TechWorld", "slug": "techworld", "is_verified": True, "category_id": 1,
         "created_at": "2023-01-01 10:00:00"},
        {"id": 2, "name": "DeskCo", "slug": "deskco", "is_verified": False, "category_id": 2,
         "created_at": "2023-05-01 10:00:00"},
        {"id": 3, "name": "AudioMax", "slug": "audiomax", "is_verified": True, "category_id": 3,
         "created_at": "2023-03-01 10:00:00"},
    ],
    "profiles": [
        {"id": "u1", "handle": "dealhunter", "display_name": "Deal Hunter", "karma": 900,
         "role": "moderator", "created_at": "2023-06-01 08:00:00"},
        {"id": "u2", "handle": "laptopguru", "display_name": "Laptop Guru", "karma": 300,
         "created_at": "2024-01-01 08:00:00"},
        {"id": "u3", "handle": "saver", "first_name": "Sam", "karma": 50,
         "created_at": "2024-05-01 08:00:00"},
    ],
    "tags": [
        {"id": 1, "name": "Laptop Accessories", "slug": "laptop-accessories", "usage_count": 40},
        {"id": 2, "name": "Audio", "slug": "audio", "usage_count": 25},
        {"id": 3, "name": "Travel", "slug": "travel", "usage_count": 10},
    ],
    "deals": [
        {"id": 1, "title": "Gaming Laptop Pro 15", "merchant": "TechWorld", "price": 999.0,
         "discount_percentage": 20.0, "category_id": 1, "company_id": 1, "submitter_id": "u1",
         "views_count": 500, "clicks_count": 40, "status": "approved",
         "created_at": "2024-03-01 10:00:00"},
        {"id": 2, "title": "Laptop Stand Aluminium", "merchant": "DeskCo", "price": 39.99,
         "discount_percentage": 10.0, "category_id": 2, "company_id": 2, "submitter_id": "u2",
         "views_count": 120, "clicks_count": 5, "status": "approved",
         "latitude": 40.7128, "longitude": -74.006, "created_at": "2024-02-01 10:00:00"},
        {"id": 3, "title": "Wireless Mouse", "merchant": "Lapland Electronics", "price": 19.99,
         "coupon_code": "MOUSE10", "category_id": 1, "company_id": 1, "submitter_id": "u1",
         "views_count": 300, "clicks_count": 12, "status": "approved",
         "latitude": 51.5, "longitude": -0.12, "created_at": "2024-01-15 10:00:00"},
        {"id": 4, "title": "Noise Cancelling Headphones", "description": "Great for travel",
         "merchant": "AudioMax", "price": 199.0, "discount_percentage": 35.0, "is_featured": True,
         "category_id": 3, "company_id": 3, "submitter_id": "u2", "views_count": 800,
         "clicks_count": 90, "status": "approved", "created_at": "2024-04-01 10:00:00"},
        {"id": 5, "title": "Cheap laptop bag", "merchant": "BagsRUs", "price": 15.0,
         "views_count": 50, "status": "pending", "created_at": "2024-04-15 10:00:00"},
        {"id": 6, "title": "USB-C Hub", "description": "Connect all your ports", "merchant": "TechWorld",
         "price": 49.0, "category_id": 1, "company_id": 1, "submitter_id": "u1", "views_count": 90,
         "clicks_count": 3, "status": "approved", "created_at": "2023-12-01 10:00:00"},
    ],
    "coupons": [
        {"id": 1, "title": "20% off laptops", "coupon_code": "LAP20", "coupon_type": "percentage",
         "discount_value": 20.0, "company_id": 1, "category_id": 1, "submitter_id": "u1",
         "views_count": 200, "clicks_count": 30, "success_rate": 80.0, "status": "approved",
         "created_at": "2024-02-10 10:00:00"},
        {"id": 2, "title": "Free shipping on audio", "coupon_code": "SHIPFREE",
         "coupon_type": "free_shipping", "discount_value": 5.0, "company_id": 3, "category_id": 3,
         "submitter_id": "u2", "is_featured": True, "views_count": 50, "clicks_count": 4,
         "status": "approved", "created_at": "2024-03-15 10:00:00"},
        {"id": 3, "title": "Old laptop voucher", "coupon_code": "OLD5", "discount_value": 5.0,
         "status": "expired", "created_at": "2023-01-01 10:00:00"},
    ],
    "deal_tags": [
        {"deal_id": 6, "tag_id": 1},
        {"deal_id": 2, "tag_id": 1},
        {"deal_id": 4, "tag_id": 2},
        {"deal_id": 4, "tag_id": 3},
    ],
    "coupon_tags": [
        {"coupon_id": 2, "tag_id": 2},
    ],
}  # fmt: skip


class InMemoryRecordStore:
    """Record store double that evaluates predicate trees over plain rows."""

    def __init__(self, data: dict[str, list[dict[str, Any]]], fail_on: set[str] | None = None) -> None:
        self.data = copy.deepcopy(data)
        self.fail_on = fail_on or set()
        self.calls: list[StoreQuery] = []
        tags = {t["id"]: t for t in self.data.get("tags", [])}
        for link, owner in (("deal_tags", "deal_id"), ("coupon_tags", "coupon_id")):
            view = link.replace("_tags", "_tag_details")
            self.data[view] = [
                {
                    owner: row[owner],
                    "tag_id": row["tag_id"],
                    "name": tags[row["tag_id"]]["name"],
                    "slug": tags[row["tag_id"]].get("slug"),
                    "color": tags[row["tag_id"]].get("color"),
                }
                for row in self.data.get(link, [])
            ]

    async def query(self, request: StoreQuery) -> StoreResult:
        self.calls.append(request)
        if request.collection in self.fail_on:
            raise StorageError(f"{request.collection} unavailable")

        rows = [r for r in self.data.get(request.collection, []) if matches(request.where, r)]
        for order in reversed(list(request.order_by)):
            rows.sort(
                key=lambda r, f=order.field: (r.get(f) is not None, r.get(f) if r.get(f) is not None else 0),
                reverse=order.descending,
            )
        end = None if request.limit is None else request.offset + request.limit
        page = rows[request.offset : end]
        return StoreResult(rows=[dict(r) for r in page], total=len(rows) if request.with_count else None)

    def collections_queried(self) -> set[str]:
        return {call.collection for call in self.calls}


@pytest.fixture
def marketplace() -> dict[str, list[dict[str, Any]]]:
    """Marketplace rows keyed by collection."""
    return copy.deepcopy(MARKETPLACE)


@pytest.fixture
def memory_store(marketplace: dict[str, list[dict[str, Any]]]) -> InMemoryRecordStore:
    """In-memory store seeded with the marketplace."""
    return InMemoryRecordStore(marketplace)


@pytest.fixture
def failing_store(marketplace: dict[str, list[dict[str, Any]]]) -> Callable[..., InMemoryRecordStore]:
    """Factory for in-memory stores whose named collections raise StorageError."""

    def make(*collections: str) -> InMemoryRecordStore:
        return InMemoryRecordStore(marketplace, fail_on=set(collections))

    return make


@pytest.fixture
async def sqlite_store(
    tmp_path: Path, marketplace: dict[str, list[dict[str, Any]]]
) -> AsyncGenerator[SQLiteRecordStore, None]:
    """SQLite store in a temporary directory, seeded with the marketplace."""
    store = SQLiteRecordStore(tmp_path / "dealsearch.db")
    await store.initialize()
    for collection in FIXTURE_ORDER:
        await store.insert_many(collection, marketplace[collection])
    yield store
    await store.close()

"""
SQLite Record Store - Predicate-driven reads over marketplace collections.

Features:
- Async operations via aiosqlite
- Predicate tree compiled to parameterised SQL
- Exact match counts alongside each page
- JSON fixture loading for seeding
"""

from __future__ import annotations

import json
import logging
import re
from collections.abc import Iterable, Mapping, Sequence
from datetime import datetime
from pathlib import Path
from typing import Any

import aiosqlite

from dealsearch.config.errors import ErrorCode, StorageError
from dealsearch.domains.search.predicates import (
    And,
    Contains,
    Eq,
    Gte,
    In,
    IsNull,
    Lte,
    Not,
    Or,
    OrderBy,
    Predicate,
    StartsWith,
    StoreQuery,
    StoreResult,
)

logger = logging.getLogger(__name__)

__all__ = ["SQLiteRecordStore", "compile_predicate", "COLLECTIONS"]

SCHEMA = """
    CREATE TABLE IF NOT EXISTS categories (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        name TEXT NOT NULL,
        slug TEXT,
        color TEXT,
        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
    );

    CREATE TABLE IF NOT EXISTS companies (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        name TEXT NOT NULL,
        slug TEXT,
        logo_url TEXT,
        website_url TEXT,
        is_verified INTEGER NOT NULL DEFAULT 0,
        category_id INTEGER REFERENCES categories(id),
        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
    );

    CREATE TABLE IF NOT EXISTS profiles (
        id TEXT PRIMARY KEY,
        handle TEXT,
        avatar_url TEXT,
        karma INTEGER NOT NULL DEFAULT 0,
        role TEXT,
        first_name TEXT,
        last_name TEXT,
        display_name TEXT,
        bio TEXT,
        location TEXT,
        website TEXT,
        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
    );

    CREATE TABLE IF NOT EXISTS tags (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        name TEXT NOT NULL,
        slug TEXT,
        color TEXT,
        usage_count INTEGER NOT NULL DEFAULT 0,
        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
    );

    CREATE TABLE IF NOT EXISTS deals (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        title TEXT NOT NULL,
        url TEXT,
        price REAL,
        original_price REAL,
        merchant TEXT,
        description TEXT,
        image_url TEXT,
        coupon_code TEXT,
        coupon_type TEXT,
        discount_percentage REAL,
        discount_amount REAL,
        expires_at TIMESTAMP,
        category_id INTEGER REFERENCES categories(id),
        company_id INTEGER REFERENCES companies(id),
        deal_type TEXT,
        is_featured INTEGER NOT NULL DEFAULT 0,
        views_count INTEGER NOT NULL DEFAULT 0,
        clicks_count INTEGER NOT NULL DEFAULT 0,
        submitter_id TEXT REFERENCES profiles(id),
        status TEXT NOT NULL DEFAULT 'pending',
        latitude REAL,
        longitude REAL,
        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
    );

    CREATE TABLE IF NOT EXISTS coupons (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        title TEXT NOT NULL,
        description TEXT,
        coupon_code TEXT,
        coupon_type TEXT,
        discount_value REAL,
        minimum_order_amount REAL,
        maximum_discount_amount REAL,
        company_id INTEGER REFERENCES companies(id),
        category_id INTEGER REFERENCES categories(id),
        submitter_id TEXT REFERENCES profiles(id),
        terms_conditions TEXT,
        starts_at TIMESTAMP,
        expires_at TIMESTAMP,
        is_featured INTEGER NOT NULL DEFAULT 0,
        is_exclusive INTEGER NOT NULL DEFAULT 0,
        views_count INTEGER NOT NULL DEFAULT 0,
        clicks_count INTEGER NOT NULL DEFAULT 0,
        success_rate REAL,
        status TEXT NOT NULL DEFAULT 'pending',
        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
    );

    CREATE TABLE IF NOT EXISTS deal_tags (
        deal_id INTEGER NOT NULL REFERENCES deals(id),
        tag_id INTEGER NOT NULL REFERENCES tags(id),
        PRIMARY KEY (deal_id, tag_id)
    );

    CREATE TABLE IF NOT EXISTS coupon_tags (
        coupon_id INTEGER NOT NULL REFERENCES coupons(id),
        tag_id INTEGER NOT NULL REFERENCES tags(id),
        PRIMARY KEY (coupon_id, tag_id)
    );

    CREATE VIEW IF NOT EXISTS deal_tag_details AS
        SELECT dt.deal_id, t.id AS tag_id, t.name, t.slug, t.color
        FROM deal_tags dt JOIN tags t ON t.id = dt.tag_id;

    CREATE VIEW IF NOT EXISTS coupon_tag_details AS
        SELECT ct.coupon_id, t.id AS tag_id, t.name, t.slug, t.color
        FROM coupon_tags ct JOIN tags t ON t.id = ct.tag_id;

    -- Indexes
    CREATE INDEX IF NOT EXISTS idx_deals_status ON deals(status);
    CREATE INDEX IF NOT EXISTS idx_deals_views ON deals(views_count);
    CREATE INDEX IF NOT EXISTS idx_deals_submitter ON deals(submitter_id);
    CREATE INDEX IF NOT EXISTS idx_deals_company ON deals(company_id);
    CREATE INDEX IF NOT EXISTS idx_deals_category ON deals(category_id);
    CREATE INDEX IF NOT EXISTS idx_coupons_status ON coupons(status);
    CREATE INDEX IF NOT EXISTS idx_coupons_submitter ON coupons(submitter_id);
    CREATE INDEX IF NOT EXISTS idx_coupons_company ON coupons(company_id);
    CREATE INDEX IF NOT EXISTS idx_coupons_category ON coupons(category_id);
    CREATE INDEX IF NOT EXISTS idx_tags_usage ON tags(usage_count);
"""

COLLECTIONS: dict[str, frozenset[str]] = {
    "categories": frozenset({"id", "name", "slug", "color", "created_at"}),
    "companies": frozenset(
        {"id", "name", "slug", "logo_url", "website_url", "is_verified", "category_id", "created_at"}
    ),
    "profiles": frozenset(
        {
            "id", "handle", "avatar_url", "karma", "role", "first_name", "last_name",
            "display_name", "bio", "location", "website", "created_at",
        }
    ),
    "tags": frozenset({"id", "name", "slug", "color", "usage_count", "created_at"}),
    "deals": frozenset(
        {
            "id", "title", "url", "price", "original_price", "merchant", "description",
            "image_url", "coupon_code", "coupon_type", "discount_percentage", "discount_amount",
            "expires_at", "category_id", "company_id", "deal_type", "is_featured", "views_count",
            "clicks_count", "submitter_id", "status", "latitude", "longitude", "created_at",
        }
    ),
    "coupons": frozenset(
        {
            "id", "title", "description", "coupon_code", "coupon_type", "discount_value",
            "minimum_order_amount", "maximum_discount_amount", "company_id", "category_id",
            "submitter_id", "terms_conditions", "starts_at", "expires_at", "is_featured",
            "is_exclusive", "views_count", "clicks_count", "success_rate", "status", "created_at",
        }
    ),
    "deal_tags": frozenset({"deal_id", "tag_id"}),
    "coupon_tags": frozenset({"coupon_id", "tag_id"}),
    "deal_tag_details": frozenset({"deal_id", "tag_id", "name", "slug", "color"}),
    "coupon_tag_details": frozenset({"coupon_id", "tag_id", "name", "slug", "color"}),
}  # fmt: skip

VIEWS = frozenset({"deal_tag_details", "coupon_tag_details"})

# Insert order that satisfies references
FIXTURE_ORDER = ("categories", "companies", "profiles", "tags", "deals", "coupons", "deal_tags", "coupon_tags")

_IDENTIFIER = re.compile(r"^[a-z_][a-z0-9_]*$")


def _fold_case(value: Any) -> Any:
    # SQLite's LOWER() only folds ASCII; match the query side's str.lower()
    return value.lower() if isinstance(value, str) else value


def _quote(name: str, allowed: frozenset[str]) -> str:
    if name not in allowed or not _IDENTIFIER.match(name):
        raise StorageError(f"Unknown column: {name}", {"column": name})
    return f'"{name}"'


def _escape_like(text: str) -> str:
    return text.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def _bind(value: Any) -> Any:
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, datetime):
        return value.isoformat(sep=" ")
    return value


def compile_predicate(predicate: Predicate | None, columns: frozenset[str]) -> tuple[str, list[Any]]:
    """
    Compile a predicate tree into a SQL boolean expression.

    Args:
        predicate: Predicate tree (None matches everything)
        columns: Columns the expression may reference

    Returns:
        SQL fragment and its bound parameters

    Raises:
        StorageError: Unknown column or predicate node
    """
    if predicate is None:
        return "1", []

    if isinstance(predicate, (And, Or)):
        if not predicate.children:
            return ("1" if isinstance(predicate, And) else "0"), []
        joiner = " AND " if isinstance(predicate, And) else " OR "
        parts, params = [], []
        for child in predicate.children:
            sql, child_params = compile_predicate(child, columns)
            parts.append(f"({sql})")
            params.extend(child_params)
        return joiner.join(parts), params

    if isinstance(predicate, Not):
        sql, params = compile_predicate(predicate.child, columns)
        return f"NOT ({sql})", params

    column = _quote(predicate.field, columns)
    if isinstance(predicate, IsNull):
        return f"{column} IS NULL", []
    if isinstance(predicate, Eq):
        if predicate.value is None:
            return f"{column} IS NULL", []
        return f"{column} = ?", [_bind(predicate.value)]
    if isinstance(predicate, Gte):
        return f"{column} >= ?", [_bind(predicate.value)]
    if isinstance(predicate, Lte):
        return f"{column} <= ?", [_bind(predicate.value)]
    if isinstance(predicate, Contains):
        return f"fold_case({column}) LIKE ? ESCAPE '\\'", [f"%{_escape_like(predicate.text.lower())}%"]
    if isinstance(predicate, StartsWith):
        return f"fold_case({column}) LIKE ? ESCAPE '\\'", [f"{_escape_like(predicate.text.lower())}%"]
    if isinstance(predicate, In):
        if not predicate.values:
            return "0", []
        placeholders = ", ".join("?" for _ in predicate.values)
        return f"{column} IN ({placeholders})", [_bind(v) for v in predicate.values]

    raise StorageError(f"Unsupported predicate: {type(predicate).__name__}")


def _compile_order(order_by: Sequence[OrderBy], columns: frozenset[str]) -> str:
    terms = [f"{_quote(o.field, columns)} {'DESC' if o.descending else 'ASC'}" for o in order_by]
    # Deterministic paging across equal sort keys
    if "id" in columns and not any(o.field == "id" for o in order_by):
        terms.append('"id" ASC')
    return f" ORDER BY {', '.join(terms)}" if terms else ""


class SQLiteRecordStore:
    """
    SQLite implementation of the record store.

    Example:
        >>> store = SQLiteRecordStore("data/dealsearch.db")
        >>> await store.initialize()
        >>> result = await store.query(StoreQuery("deals", where=Contains("title", "lap"), with_count=True))
        >>> result.total
        3
    """

    def __init__(self, db_path: str | Path) -> None:
        """
        Initialize store.

        Args:
            db_path: Path to SQLite database file
        """
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._connection: aiosqlite.Connection | None = None

    async def _get_connection(self) -> aiosqlite.Connection:
        """Get or create database connection."""
        if self._connection is None:
            try:
                self._connection = await aiosqlite.connect(str(self.db_path))
            except aiosqlite.Error as e:
                raise StorageError(
                    f"Cannot open database: {e}",
                    {"db_path": str(self.db_path)},
                    code=ErrorCode.STORAGE_CONNECTION_FAILED,
                ) from e
            self._connection.row_factory = aiosqlite.Row
            await self._connection.create_function("fold_case", 1, _fold_case, deterministic=True)
        return self._connection

    async def initialize(self) -> None:
        """Initialize database schema."""
        conn = await self._get_connection()
        try:
            await conn.executescript(SCHEMA)
            await conn.commit()
        except aiosqlite.Error as e:
            raise StorageError(f"Schema creation failed: {e}", code=ErrorCode.STORAGE_WRITE_FAILED) from e
        logger.info("Database initialized: %s", self.db_path)

    async def query(self, request: StoreQuery) -> StoreResult:
        """
        Run a filtered, ordered, paginated read on one collection.

        Args:
            request: Collection, predicate tree, ordering and window

        Returns:
            Rows as plain dicts, plus the exact total when requested

        Raises:
            StorageError: Unknown collection or column, or a driver failure
        """
        columns = COLLECTIONS.get(request.collection)
        if columns is None:
            raise StorageError(f"Unknown collection: {request.collection}", {"collection": request.collection})

        table = f'"{request.collection}"'
        where, params = compile_predicate(request.where, columns)
        order = _compile_order(request.order_by, columns)

        sql = f"SELECT * FROM {table} WHERE {where}{order}"
        page_params = list(params)
        if request.limit is not None or request.offset:
            sql += " LIMIT ? OFFSET ?"
            page_params += [-1 if request.limit is None else request.limit, request.offset]

        conn = await self._get_connection()
        try:
            rows: list[dict[str, Any]] = []
            if request.limit != 0:
                async with conn.execute(sql, page_params) as cursor:
                    rows = [dict(row) for row in await cursor.fetchall()]

            total = None
            if request.with_count:
                async with conn.execute(f"SELECT COUNT(*) FROM {table} WHERE {where}", params) as cursor:
                    row = await cursor.fetchone()
                    total = row[0] if row else 0
        except aiosqlite.Error as e:
            raise StorageError(
                f"Query on {request.collection} failed: {e}",
                {"collection": request.collection},
            ) from e

        logger.debug("Query %s: %d rows (total=%s)", request.collection, len(rows), total)
        return StoreResult(rows=rows, total=total)

    async def insert_many(self, collection: str, rows: Iterable[Mapping[str, Any]]) -> int:
        """
        Insert rows into a table.

        Args:
            collection: Target table
            rows: Column -> value mappings

        Returns:
            Number of rows inserted
        """
        columns = COLLECTIONS.get(collection)
        if columns is None or collection in VIEWS:
            raise StorageError(f"Not a writable collection: {collection}", {"collection": collection})

        conn = await self._get_connection()
        count = 0
        try:
            for row in rows:
                names = [_quote(name, columns) for name in row]
                placeholders = ", ".join("?" for _ in names)
                await conn.execute(
                    f'INSERT INTO "{collection}" ({", ".join(names)}) VALUES ({placeholders})',
                    [_bind(value) for value in row.values()],
                )
                count += 1
            await conn.commit()
        except aiosqlite.Error as e:
            await conn.rollback()
            raise StorageError(
                f"Insert into {collection} failed: {e}",
                {"collection": collection},
                code=ErrorCode.STORAGE_WRITE_FAILED,
            ) from e
        return count

    async def load_fixture(self, path: str | Path) -> dict[str, int]:
        """
        Seed the store from a JSON file keyed by collection name.

        Args:
            path: JSON file ({"deals": [...], "companies": [...], ...})

        Returns:
            Inserted row count per collection
        """
        data = json.loads(Path(path).read_text(encoding="utf-8"))
        unknown = set(data) - set(FIXTURE_ORDER)
        if unknown:
            raise StorageError(f"Unknown fixture collections: {sorted(unknown)}", {"collections": sorted(unknown)})

        counts = {}
        for collection in FIXTURE_ORDER:
            if collection in data:
                counts[collection] = await self.insert_many(collection, data[collection])
        logger.info("Loaded fixture %s: %s", path, counts)
        return counts

    async def close(self) -> None:
        """Close database connection."""
        if self._connection:
            await self._connection.close()
            self._connection = None

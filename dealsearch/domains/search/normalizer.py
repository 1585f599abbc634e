"""
Query Normalizer - Validates raw request parameters into a SearchQuery.
"""

from __future__ import annotations

import math
from collections.abc import Mapping, Sequence
from typing import Any

from dealsearch.config.errors import ValidationError

from .models import SearchQuery, SearchScope, SortMode

__all__ = ["normalize_search_params", "parse_int", "parse_float"]

DEFAULT_LIMIT = 20
DEFAULT_RADIUS_KM = 50.0
MAX_QUERY_LENGTH = 200
MAX_RADIUS_KM = 20037.5  # half the equatorial circumference


def parse_int(value: Any) -> int | None:
    """Leading-integer parse: "12abc" -> 12, "abc" -> None."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value) if math.isfinite(value) else None
    text = str(value).strip()
    digits = ""
    for i, ch in enumerate(text):
        if ch.isdigit() or (i == 0 and ch in "+-"):
            digits += ch
        else:
            break
    try:
        return int(digits)
    except ValueError:
        return None


def parse_float(value: Any) -> float | None:
    """Float parse; absent, blank, invalid or non-finite values become None."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        parsed = float(value)
    else:
        text = str(value).strip()
        if not text:
            return None
        try:
            parsed = float(text)
        except ValueError:
            return None
    return parsed if math.isfinite(parsed) else None


def _check_range(name: str, value: float | None, low: float, high: float) -> None:
    if value is not None and not low <= value <= high:
        raise ValidationError(
            f"Invalid {name}: must be between {low:g} and {high:g}",
            {name: value},
        )


def _parse_flag(value: Any) -> bool:
    return value is True or value == "true"


def _parse_tags(value: Any) -> tuple[str, ...]:
    if not value:
        return ()
    if isinstance(value, str):
        items: Sequence[Any] = value.split(",")
    elif isinstance(value, Sequence):
        items = value
    else:
        return ()
    return tuple(str(tag).strip() for tag in items if str(tag).strip())


def _optional_str(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def normalize_search_params(
    params: Mapping[str, Any],
    max_results: int = 100,
    max_query_length: int = MAX_QUERY_LENGTH,
    default_limit: int = DEFAULT_LIMIT,
    default_radius_km: float = DEFAULT_RADIUS_KM,
) -> SearchQuery:
    """
    Validate and canonicalize raw search parameters.

    Args:
        params: Raw request parameters (`q`, `type`, `sort`, `page`, ...)
        max_results: Upper bound for `limit`
        max_query_length: Longest accepted query text
        default_limit: Page size used when `limit` is absent or invalid
        default_radius_km: Radius applied when coordinates come without one

    Returns:
        Immutable normalized query

    Raises:
        ValidationError: query too long, unknown type or sort, or
            coordinates or radius out of range
    """
    query = str(params.get("q") or "").strip()
    if len(query) > max_query_length:
        raise ValidationError(
            f"Query too long. Maximum {max_query_length} characters allowed.",
            {"length": len(query), "max_length": max_query_length},
        )

    raw_type = params.get("type") or SearchScope.ALL.value
    try:
        scope = SearchScope(raw_type)
    except ValueError:
        raise ValidationError(f"Invalid search type: {raw_type}", {"type": raw_type}) from None

    raw_sort = params.get("sort") or SortMode.RELEVANCE.value
    try:
        sort = SortMode(raw_sort)
    except ValueError:
        raise ValidationError(f"Invalid sort option: {raw_sort}", {"sort": raw_sort}) from None

    page = max(1, parse_int(params.get("page")) or 1)
    limit = min(max_results, max(1, parse_int(params.get("limit")) or default_limit))

    latitude = parse_float(params.get("latitude"))
    longitude = parse_float(params.get("longitude"))
    radius = parse_float(params.get("radius"))
    _check_range("latitude", latitude, -90.0, 90.0)
    _check_range("longitude", longitude, -180.0, 180.0)
    _check_range("radius", radius, 0.0, MAX_RADIUS_KM)
    if radius is None and latitude is not None and longitude is not None:
        radius = default_radius_km

    filters = params.get("filters")

    return SearchQuery(
        query=query,
        type=scope,
        category=_optional_str(params.get("category")),
        company=_optional_str(params.get("company")),
        tags=_parse_tags(params.get("tags")),
        min_price=parse_float(params.get("min_price")),
        max_price=parse_float(params.get("max_price")),
        min_discount=parse_float(params.get("min_discount")),
        max_discount=parse_float(params.get("max_discount")),
        has_coupon=_parse_flag(params.get("has_coupon")),
        coupon_type=_optional_str(params.get("coupon_type")),
        featured=_parse_flag(params.get("featured")),
        sort=sort,
        latitude=latitude,
        longitude=longitude,
        radius=radius,
        page=page,
        limit=limit,
        offset=(page - 1) * limit,
        filters=dict(filters) if isinstance(filters, Mapping) else {},
    )

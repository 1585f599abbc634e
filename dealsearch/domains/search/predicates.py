"""
Predicate Tree - Typed filter expressions passed to the record store.

Store adapters compile these nodes into their own query language; the search
domain never builds raw filter strings.

Example:
    >>> where = all_of(
    ...     Eq("status", "approved"),
    ...     any_of(Contains("title", "lap"), Contains("merchant", "lap")),
    ... )
    >>> StoreQuery("deals", where=where, order_by=[OrderBy("views_count", True)])
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any, Union

__all__ = [
    "Eq",
    "Gte",
    "Lte",
    "Contains",
    "StartsWith",
    "IsNull",
    "In",
    "And",
    "Or",
    "Not",
    "Predicate",
    "all_of",
    "any_of",
    "matches",
    "OrderBy",
    "StoreQuery",
    "StoreResult",
]


@dataclass(frozen=True)
class Eq:
    field: str
    value: Any


@dataclass(frozen=True)
class Gte:
    field: str
    value: float


@dataclass(frozen=True)
class Lte:
    field: str
    value: float


@dataclass(frozen=True)
class Contains:
    """Case-insensitive substring match."""

    field: str
    text: str


@dataclass(frozen=True)
class StartsWith:
    """Case-insensitive prefix match."""

    field: str
    text: str


@dataclass(frozen=True)
class IsNull:
    field: str


@dataclass(frozen=True)
class In:
    field: str
    values: tuple[Any, ...]


@dataclass(frozen=True)
class And:
    children: tuple[Predicate, ...]


@dataclass(frozen=True)
class Or:
    children: tuple[Predicate, ...]


@dataclass(frozen=True)
class Not:
    child: Predicate


Predicate = Union[Eq, Gte, Lte, Contains, StartsWith, IsNull, In, And, Or, Not]


def all_of(*predicates: Predicate | None) -> Predicate | None:
    """AND the given predicates, skipping `None`; one child is returned as-is."""
    children = tuple(p for p in predicates if p is not None)
    if not children:
        return None
    if len(children) == 1:
        return children[0]
    return And(children)


def any_of(*predicates: Predicate | None) -> Predicate | None:
    """OR the given predicates, skipping `None`; one child is returned as-is."""
    children = tuple(p for p in predicates if p is not None)
    if not children:
        return None
    if len(children) == 1:
        return children[0]
    return Or(children)


def matches(predicate: Predicate | None, row: Mapping[str, Any]) -> bool:
    """Evaluate a predicate against a plain row mapping."""
    if predicate is None:
        return True
    if isinstance(predicate, And):
        return all(matches(child, row) for child in predicate.children)
    if isinstance(predicate, Or):
        return any(matches(child, row) for child in predicate.children)
    if isinstance(predicate, Not):
        return not matches(predicate.child, row)
    if isinstance(predicate, IsNull):
        return row.get(predicate.field) is None

    value = row.get(predicate.field)
    if isinstance(predicate, Eq):
        return value == predicate.value
    if isinstance(predicate, In):
        return value in predicate.values
    if value is None:
        return False
    if isinstance(predicate, Gte):
        return value >= predicate.value
    if isinstance(predicate, Lte):
        return value <= predicate.value
    if isinstance(predicate, Contains):
        return predicate.text.lower() in str(value).lower()
    if isinstance(predicate, StartsWith):
        return str(value).lower().startswith(predicate.text.lower())
    raise TypeError(f"Unsupported predicate: {predicate!r}")


@dataclass(frozen=True)
class OrderBy:
    field: str
    descending: bool = False


@dataclass(frozen=True)
class StoreQuery:
    """One collection read: filter, ordering and an offset/limit window."""

    collection: str
    where: Predicate | None = None
    order_by: Sequence[OrderBy] = ()
    offset: int = 0
    limit: int | None = None
    with_count: bool = False


@dataclass
class StoreResult:
    rows: list[dict[str, Any]] = field(default_factory=list)
    total: int | None = None

"""
Search Contracts - Interfaces for search domain collaborators.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any, Protocol, runtime_checkable

from .models import SearchQuery, SearchResponse
from .predicates import StoreQuery, StoreResult


@runtime_checkable
class RecordStore(Protocol):
    """Contract for the record store the search core reads from."""

    async def query(self, request: StoreQuery) -> StoreResult:
        """
        Run a filtered, ordered, paginated read on one collection.

        Args:
            request: Collection, predicate tree, ordering and window

        Returns:
            Matching rows, plus the exact total when `with_count` is set
        """
        ...


@runtime_checkable
class AnalyticsSink(Protocol):
    """Contract for search analytics (fire-and-forget)."""

    async def record_search(
        self,
        query: SearchQuery,
        response: SearchResponse,
        elapsed_ms: float,
        source: str,
    ) -> None:
        """Record a successful search (`cache_hit` or `database_hit`)."""
        ...

    async def record_error(
        self,
        params: Mapping[str, Any],
        error: BaseException,
        elapsed_ms: float,
    ) -> None:
        """Record a failed search."""
        ...

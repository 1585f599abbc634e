"""
Search Domain - Multi-entity marketplace search.

This domain handles:
- Query normalization and validation
- Concurrent per-entity search with partial-failure tolerance
- Fuzzy re-ranking of textual matches
- Auto-complete, spell correction and related-term suggestions
- TTL result caching
- Search analytics
"""

from .analytics import SearchAnalytics
from .cache import ResultCache, TTLCache
from .contracts import AnalyticsSink, RecordStore
from .dispatcher import EntityOutcome, EntitySearchDispatcher
from .engine import SearchEngine
from .fuzzy import FuzzyMatcher, edit_distance
from .models import (
    Category,
    Company,
    Coupon,
    Deal,
    EntityResultSet,
    EntityType,
    SearchQuery,
    SearchResponse,
    SearchScope,
    SortMode,
    Suggestion,
    SuggestionType,
    UserProfile,
)
from .normalizer import normalize_search_params
from .ranking import SearchRanking
from .suggestions import SuggestionGenerator, VocabularyIndex

__all__ = [
    # Engine
    "SearchEngine",
    "EntitySearchDispatcher",
    "EntityOutcome",
    "FuzzyMatcher",
    "SearchRanking",
    "SuggestionGenerator",
    "VocabularyIndex",
    "ResultCache",
    "TTLCache",
    "SearchAnalytics",
    "normalize_search_params",
    "edit_distance",
    # Contracts
    "RecordStore",
    "AnalyticsSink",
    # Models
    "SearchQuery",
    "SearchResponse",
    "SearchScope",
    "SortMode",
    "EntityType",
    "EntityResultSet",
    "Suggestion",
    "SuggestionType",
    "Deal",
    "Coupon",
    "UserProfile",
    "Company",
    "Category",
]

"""
Search Suggestions - Auto-complete, spell correction and query suggestions.

Suggestions come from five sources: store-backed auto-complete (tags, deal
titles and merchants, companies, user profiles), spell correction against the
vocabulary index, related terms from the current result page, popular
vocabulary terms, and category names.
"""

from __future__ import annotations

import asyncio
import logging
import re
import time
from collections.abc import Awaitable, Callable, Iterable
from typing import Any

from .cache import TTLCache
from .contracts import RecordStore
from .fuzzy import edit_distance
from .models import (
    Category,
    Company,
    Deal,
    SearchResponse,
    Suggestion,
    SuggestionType,
    Tag,
    UserProfile,
)
from .predicates import Contains, Eq, OrderBy, StartsWith, StoreQuery, all_of, any_of

logger = logging.getLogger(__name__)

__all__ = ["VocabularyIndex", "SuggestionGenerator", "is_valid_term"]

STOP_WORDS = frozenset(
    {
        "the", "and", "or", "but", "in", "on", "at", "to", "for", "of", "with", "by",
        "from", "up", "about", "into", "through", "during", "before", "after", "above",
        "below", "between", "among", "this", "that", "these", "those", "is", "are", "was",
        "were", "be", "been", "being", "have", "has", "had", "do", "does", "did", "will",
        "would", "could", "should", "may", "might", "must", "can", "a", "an",
    }
)  # fmt: skip

_TERM_PATTERN = re.compile(r"^[a-zA-Z0-9\s-]+$")

# Per-source scores
SCORE_TAG = 12
SCORE_DEAL_TITLE = 10
SCORE_COMPANY = 9
SCORE_MERCHANT = 8
SCORE_USER_HANDLE = 7
SCORE_POPULAR = 6
SCORE_USER_NAME = 6
SCORE_CATEGORY = 5
SCORE_SPELL_BASE = 5
SCORE_RELATED_TERM = 4
SCORE_RELATED_COMPANY = 3

MAX_SPELL_DISTANCE = 2


def is_valid_term(term: str) -> bool:
    """Not a stop word, only letters/digits/spaces/hyphens, at least 2 chars."""
    return (
        term.lower() not in STOP_WORDS
        and bool(_TERM_PATTERN.match(term))
        and len(term) >= 2
    )


class VocabularyIndex:
    """
    Lower-cased terms drawn from the most viewed deals and a slice of companies.

    Rebuilt wholesale on `refresh`; readers see either the old or the new set.
    """

    def __init__(
        self,
        top_deals: int = 100,
        company_limit: int = 50,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.top_deals = top_deals
        self.company_limit = company_limit
        self._clock = clock
        self._terms: frozenset[str] = frozenset()
        self._built_at: float | None = None

    @property
    def terms(self) -> frozenset[str]:
        return self._terms

    @property
    def built_at(self) -> float | None:
        return self._built_at

    def __len__(self) -> int:
        return len(self._terms)

    def __contains__(self, term: object) -> bool:
        return term in self._terms

    def is_stale(self, max_age: float) -> bool:
        """True when never built or older than `max_age` seconds."""
        return self._built_at is None or self._clock() - self._built_at >= max_age

    def replace(self, terms: Iterable[str]) -> None:
        """Swap in a new term set."""
        self._terms = frozenset(t.lower() for t in terms)
        self._built_at = self._clock()

    async def refresh(self, store: RecordStore) -> int:
        """
        Rebuild the vocabulary from the store.

        Args:
            store: Record store to scan

        Returns:
            Number of terms in the new vocabulary

        Raises:
            StorageError: If either scan fails (the previous vocabulary is kept)
        """
        deals = await store.query(
            StoreQuery(
                "deals",
                where=Eq("status", "approved"),
                order_by=[OrderBy("views_count", descending=True)],
                limit=self.top_deals,
            )
        )
        companies = await store.query(StoreQuery("companies", limit=self.company_limit))

        terms: set[str] = set()
        for row in deals.rows:
            for word in (row.get("title") or "").split():
                if is_valid_term(word):
                    terms.add(word.lower())
            merchant = row.get("merchant")
            if merchant and is_valid_term(merchant):
                terms.add(merchant.lower())
        for row in companies.rows:
            name = row.get("name")
            if name and is_valid_term(name):
                terms.add(name.lower())

        self.replace(terms)
        logger.info("Vocabulary built with %d terms", len(terms))
        return len(terms)


class SuggestionGenerator:
    """
    Generates ranked, de-duplicated suggestions for a query.

    Example:
        >>> generator = SuggestionGenerator(store)
        >>> await generator.generate("lap", response)
        [Suggestion(text='laptop', type=<SuggestionType.POPULAR_SEARCH: ...>, ...), ...]
    """

    def __init__(
        self,
        store: RecordStore,
        vocabulary: VocabularyIndex | None = None,
        max_suggestions: int = 10,
        min_query_length: int = 2,
        cache_ttl: float = 600,
        refresh_interval: float = 3600,
    ) -> None:
        """
        Initialize generator.

        Args:
            store: Record store for auto-complete and category lookups
            vocabulary: Shared vocabulary index (built lazily when empty)
            max_suggestions: Cap on returned suggestions
            min_query_length: Shortest query that gets auto-complete
            cache_ttl: Auto-complete cache TTL in seconds
            refresh_interval: Vocabulary age that triggers a rebuild
        """
        self.store = store
        self.vocabulary = vocabulary or VocabularyIndex()
        self.max_suggestions = max_suggestions
        self.min_query_length = min_query_length
        self.refresh_interval = refresh_interval
        self._cache = TTLCache(default_ttl=cache_ttl, max_size=1000)
        self._refresh_lock = asyncio.Lock()

    async def generate(self, query: str, results: SearchResponse | None = None) -> list[Suggestion]:
        """
        Collect suggestions from every source, dedupe and rank them.

        Args:
            query: Raw query text
            results: Current result page, used for related terms

        Returns:
            At most `max_suggestions` suggestions
        """
        await self.ensure_vocabulary()

        suggestions: list[Suggestion] = []
        suggestions.extend(await self.autocomplete(query))
        suggestions.extend(self.spell_corrections(query))
        if results is not None:
            suggestions.extend(self.related_terms(query, results))
        suggestions.extend(self.popular_suggestions(query))
        suggestions.extend(await self.category_suggestions(query))

        ranked = rank_suggestions(remove_duplicates(suggestions), query)
        return ranked[: self.max_suggestions]

    async def get_suggestions(self, query: str, limit: int = 10) -> list[Suggestion]:
        """Suggestions for a bare query, without a result page."""
        if not query or len(query) < self.min_query_length:
            return []
        suggestions = await self.generate(query, SearchResponse(query=query))
        return suggestions[:limit]

    # --- Vocabulary ---

    async def ensure_vocabulary(self) -> None:
        """Build or rebuild the vocabulary when missing or stale."""
        if not self.vocabulary.is_stale(self.refresh_interval):
            return
        async with self._refresh_lock:
            if not self.vocabulary.is_stale(self.refresh_interval):
                return
            try:
                await self.vocabulary.refresh(self.store)
            except Exception:
                logger.warning("Vocabulary refresh failed, keeping %d terms", len(self.vocabulary), exc_info=True)

    async def refresh_vocabulary(self) -> int:
        """Force a vocabulary rebuild."""
        async with self._refresh_lock:
            return await self.vocabulary.refresh(self.store)

    # --- Sources ---

    async def autocomplete(self, query: str) -> list[Suggestion]:
        """Prefix matches from tags, deals, companies and user profiles (cached)."""
        if len(query) < self.min_query_length:
            return []

        cache_key = f"autocomplete_{query}"
        cached = await self._cache.get(cache_key)
        if cached is not None:
            return list(cached)

        groups = await asyncio.gather(
            _safe("tags", self._tag_suggestions(query)),
            _safe("deals", self._deal_suggestions(query)),
            _safe("companies", self._company_suggestions(query)),
            _safe("users", self._user_suggestions(query)),
        )
        suggestions = [s for group in groups for s in group]
        await self._cache.set(cache_key, suggestions)
        return suggestions

    async def _tag_suggestions(self, query: str) -> list[Suggestion]:
        result = await self.store.query(
            StoreQuery(
                "tags",
                where=any_of(StartsWith("name", query), StartsWith("slug", query)),
                order_by=[OrderBy("usage_count", descending=True)],
                limit=5,
            )
        )
        suggestions = []
        for row in result.rows:
            tag = Tag.model_validate(row)
            suggestions.append(
                Suggestion(
                    text=tag.name,
                    type=SuggestionType.TAG,
                    source="tags",
                    score=SCORE_TAG,
                    extra={"slug": tag.slug, "usage": row.get("usage_count", 0)},
                )
            )
        return suggestions

    async def _deal_suggestions(self, query: str) -> list[Suggestion]:
        result = await self.store.query(
            StoreQuery(
                "deals",
                where=all_of(StartsWith("title", query), Eq("status", "approved")),
                limit=5,
            )
        )
        prefix = query.lower()
        suggestions = []
        for deal in (Deal.model_validate(row) for row in result.rows):
            if deal.title and deal.title.lower().startswith(prefix):
                suggestions.append(
                    Suggestion(text=deal.title, type=SuggestionType.DEAL_TITLE, source="deals", score=SCORE_DEAL_TITLE)
                )
            if deal.merchant and deal.merchant.lower().startswith(prefix):
                suggestions.append(
                    Suggestion(text=deal.merchant, type=SuggestionType.MERCHANT, source="deals", score=SCORE_MERCHANT)
                )
        return suggestions

    async def _company_suggestions(self, query: str) -> list[Suggestion]:
        result = await self.store.query(StoreQuery("companies", where=StartsWith("name", query), limit=5))
        return [
            Suggestion(text=company.name, type=SuggestionType.COMPANY, source="companies", score=SCORE_COMPANY)
            for company in (Company.model_validate(row) for row in result.rows)
            if company.name
        ]

    async def _user_suggestions(self, query: str) -> list[Suggestion]:
        fields = ("handle", "display_name", "first_name", "last_name")
        result = await self.store.query(
            StoreQuery("profiles", where=any_of(*(StartsWith(f, query) for f in fields)), limit=3)
        )
        prefix = query.lower()
        suggestions = []
        for user in (UserProfile.model_validate(row) for row in result.rows):
            if user.handle and user.handle.lower().startswith(prefix):
                suggestions.append(
                    Suggestion(text=user.handle, type=SuggestionType.USER_HANDLE, source="users", score=SCORE_USER_HANDLE)
                )
            if user.display_name and user.display_name.lower().startswith(prefix):
                suggestions.append(
                    Suggestion(
                        text=user.display_name, type=SuggestionType.USER_NAME, source="users", score=SCORE_USER_NAME
                    )
                )
        return suggestions

    def spell_corrections(self, query: str) -> list[Suggestion]:
        """Replace misspelled words (3+ chars) with vocabulary terms within distance 2."""
        suggestions = []
        terms = sorted(self.vocabulary.terms)
        for word in query.lower().split():
            if len(word) < 3:
                continue
            for term, distance in find_similar_terms(word, terms):
                corrected = re.sub(re.escape(word), lambda _m, t=term: t, query, flags=re.IGNORECASE)
                suggestions.append(
                    Suggestion(
                        text=corrected,
                        type=SuggestionType.SPELL_CORRECTION,
                        source="spell_checker",
                        score=SCORE_SPELL_BASE - distance,
                        extra={"original": query},
                    )
                )
        return suggestions

    def related_terms(self, query: str, results: SearchResponse) -> list[Suggestion]:
        """Words from result deal titles (>3 chars) and company names (>2 chars)."""
        query_words = set(query.lower().split())
        suggestions = []
        for deal in results.deals:
            for word in (deal.title or "").lower().split():
                if len(word) > 3 and word not in query_words and is_valid_term(word):
                    suggestions.append(
                        Suggestion(
                            text=word,
                            type=SuggestionType.RELATED_TERM,
                            source="deal_titles",
                            score=SCORE_RELATED_TERM,
                        )
                    )
        for company in results.companies:
            for word in (company.name or "").lower().split():
                if len(word) > 2 and word not in query_words and is_valid_term(word):
                    suggestions.append(
                        Suggestion(
                            text=word,
                            type=SuggestionType.RELATED_COMPANY,
                            source="company_names",
                            score=SCORE_RELATED_COMPANY,
                        )
                    )
        return suggestions

    def popular_suggestions(self, query: str) -> list[Suggestion]:
        """Vocabulary terms extending the query."""
        prefix = query.lower()
        return [
            Suggestion(text=term, type=SuggestionType.POPULAR_SEARCH, source="popular_terms", score=SCORE_POPULAR)
            for term in sorted(self.vocabulary.terms)
            if term.startswith(prefix) and term != prefix
        ]

    async def category_suggestions(self, query: str) -> list[Suggestion]:
        try:
            result = await self.store.query(StoreQuery("categories", where=Contains("name", query), limit=3))
        except Exception:
            logger.warning("Category suggestions failed for '%s'", query[:50], exc_info=True)
            return []
        return [
            Suggestion(
                text=category.name,
                type=SuggestionType.CATEGORY,
                source="categories",
                score=SCORE_CATEGORY,
                extra={"slug": category.slug},
            )
            for category in (Category.model_validate(row) for row in result.rows)
            if category.name
        ]

    # --- Lifecycle ---

    def trending_terms(self, limit: int = 10) -> list[dict[str, Any]]:
        """Vocabulary terms, alphabetically, as trending candidates."""
        return [{"term": term, "source": "vocabulary"} for term in sorted(self.vocabulary.terms)[:limit]]

    async def clear_cache(self) -> None:
        await self._cache.clear()

    def stats(self) -> dict[str, Any]:
        cache_stats = self._cache.stats()
        return {
            "cached_suggestions": cache_stats["size"],
            "cache_hit_rate": cache_stats["hit_rate"],
            "vocabulary_terms": len(self.vocabulary),
            "vocabulary_built_at": self.vocabulary.built_at,
        }


def find_similar_terms(word: str, terms: Iterable[str], max_distance: int = MAX_SPELL_DISTANCE) -> list[tuple[str, int]]:
    """Terms within `max_distance` edits of `word` (excluding exact), closest first."""
    similar = []
    for term in terms:
        distance = edit_distance(word, term.lower())
        if 0 < distance <= max_distance:
            similar.append((term, distance))
    similar.sort(key=lambda pair: pair[1])
    return similar


def remove_duplicates(suggestions: Iterable[Suggestion]) -> list[Suggestion]:
    """Dedupe by lower-cased text; the first occurrence wins."""
    seen: set[str] = set()
    unique = []
    for suggestion in suggestions:
        key = suggestion.text.lower()
        if key in seen:
            continue
        seen.add(key)
        unique.append(suggestion)
    return unique


def rank_suggestions(suggestions: list[Suggestion], query: str) -> list[Suggestion]:
    """Score desc, then edit distance to the query asc, then length asc."""
    query_lower = query.lower()
    return sorted(
        suggestions,
        key=lambda s: (-s.score, edit_distance(query_lower, s.text.lower()), len(s.text)),
    )


async def _safe(source: str, coro: Awaitable[list[Suggestion]]) -> list[Suggestion]:
    try:
        return await coro
    except Exception:
        logger.warning("Auto-complete source '%s' failed", source, exc_info=True)
        return []

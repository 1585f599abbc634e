"""
Fuzzy Matcher - Composite string-similarity scoring for search results.

Scores combine exact, prefix, substring, word-boundary, camel-case,
consecutive-character and edit-distance signals, with a small penalty for
long candidate text.

Example:
    >>> matcher = FuzzyMatcher()
    >>> matcher.score("lap", "Laptop Stand")
    >>> matcher.filter_and_rank_results(deals, "lap", ["title", "merchant"])
"""

from __future__ import annotations

import logging
import re
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any, TypeVar

from .models import ScoredCandidate

logger = logging.getLogger(__name__)

__all__ = ["FuzzyMatcher", "MatchWeights", "edit_distance"]

T = TypeVar("T")

_CAPITALS = re.compile(r"[A-Z]")


def edit_distance(a: str, b: str) -> int:
    """Levenshtein distance with unit-cost substitution, insertion and deletion."""
    m, n = len(a), len(b)
    table = [[0] * (n + 1) for _ in range(m + 1)]
    for i in range(m + 1):
        table[i][0] = i
    for j in range(n + 1):
        table[0][j] = j

    for i in range(1, m + 1):
        for j in range(1, n + 1):
            if a[i - 1] == b[j - 1]:
                table[i][j] = table[i - 1][j - 1]
            else:
                table[i][j] = 1 + min(
                    table[i - 1][j - 1],  # substitution
                    table[i][j - 1],  # insertion
                    table[i - 1][j],  # deletion
                )
    return table[m][n]


@dataclass(frozen=True)
class MatchWeights:
    """Bonus values for each matching signal."""

    exact: float = 100.0
    prefix: float = 50.0
    contains: float = 25.0
    fuzzy: float = 10.0
    word_boundary: float = 20.0
    camel_case: float = 15.0
    consecutive: float = 10.0


class FuzzyMatcher:
    """
    Relevance scorer and result re-ranker.

    Features:
    - Composite per-field scoring
    - Permissive threshold filtering (any field match keeps an item)
    - Popularity tie-breaking
    """

    def __init__(self, weights: MatchWeights | None = None, min_score: float = 0.3) -> None:
        """
        Initialize matcher.

        Args:
            weights: Signal bonuses
            min_score: Default threshold for filter_and_rank_results
        """
        self.weights = weights or MatchWeights()
        self.min_score = min_score

    def score(self, query: str, text: str, field_weight: float = 1.0) -> float:
        """Relevance of `text` for `query`; 0 when either is empty."""
        if not query or not text:
            return 0.0

        query_lower = query.lower().strip()
        text_lower = text.lower().strip()
        w = self.weights
        score = 0.0

        if text_lower == query_lower:
            score += w.exact
        if text_lower.startswith(query_lower):
            score += w.prefix
        if query_lower in text_lower:
            score += w.contains

        for word in query_lower.split():
            if len(word) >= 2:
                hits = re.findall(rf"\b{re.escape(word)}", text_lower)
                score += w.word_boundary * len(hits)

        if self._has_camel_case_match(query_lower, text.strip()):
            score += w.camel_case

        score += self._consecutive_score(query_lower, text_lower)
        score += self._similarity_score(query_lower, text_lower)

        score *= field_weight

        length_penalty = max(0.0, (len(text_lower) - len(query_lower)) / 100)
        return max(0.0, score - length_penalty)

    def filter_and_rank_results(
        self,
        items: Sequence[T],
        query: str,
        fields: Sequence[str],
        threshold: float | None = None,
    ) -> list[T]:
        """
        Score items across fields, drop non-matches and sort by relevance.

        Args:
            items: Records to rank
            query: Raw query text
            fields: Attribute names to score
            threshold: Minimum average score (advisory when any field matched)

        Returns:
            Items ordered by score, match count, then popularity
        """
        if not query or not items:
            return list(items)

        min_threshold = self.min_score if threshold is None else threshold
        candidates = [self._score_item(item, query, fields) for item in items]
        kept = [c for c in candidates if c.score >= min_threshold or c.match_count > 0]
        kept.sort(key=lambda c: (-c.score, -c.match_count, -_popularity(c.item)))

        logger.debug(
            "Fuzzy ranked query='%s': %d -> %d items",
            query[:50],
            len(candidates),
            len(kept),
        )
        return [c.item for c in kept]

    def highlight_matches(
        self,
        text: str,
        query: str,
        open_tag: str = "<mark>",
        close_tag: str = "</mark>",
    ) -> str:
        """Wrap every occurrence of each query word in `text`."""
        if not query or not text:
            return text
        words = [w for w in query.lower().split() if w]
        if not words:
            return text
        pattern = re.compile(
            "|".join(re.escape(w) for w in sorted(words, key=len, reverse=True)),
            re.IGNORECASE,
        )
        return pattern.sub(lambda m: f"{open_tag}{m.group(0)}{close_tag}", text)

    def extract_snippet(self, text: str, query: str, max_length: int = 150) -> str:
        """Window of `text` centred on the first query occurrence, highlighted."""
        if not text or not query:
            return text

        index = text.lower().find(query.lower())
        if index == -1:
            return text if len(text) <= max_length else text[:max_length] + "..."

        start = max(0, index - (max_length - len(query)) // 2)
        end = min(len(text), start + max_length)
        snippet = text[start:end]
        if start > 0:
            snippet = "..." + snippet
        if end < len(text):
            snippet = snippet + "..."
        return self.highlight_matches(snippet, query)

    def _score_item(self, item: T, query: str, fields: Sequence[str]) -> ScoredCandidate[T]:
        total = 0.0
        match_count = 0
        for field_name in fields:
            value = _field_value(item, field_name)
            if value is None or value == "":
                continue
            field_score = self.score(query, str(value))
            if field_score > 0:
                total += field_score
                match_count += 1
        average = total / match_count if match_count else 0.0
        return ScoredCandidate(item=item, score=average, match_count=match_count)

    @staticmethod
    def _has_camel_case_match(query: str, text: str) -> bool:
        capitals = "".join(_CAPITALS.findall(text)).lower()
        if not capitals:
            return False
        return capitals in query or query in capitals

    def _consecutive_score(self, query: str, text: str) -> float:
        score = 0.0
        run = 0
        cursor = 0
        for ch in text:
            if cursor >= len(query):
                break
            if ch == query[cursor]:
                run += 1
                cursor += 1
            elif run:
                score += run * self.weights.consecutive
                run = 0
        if run:
            score += run * self.weights.consecutive
        return score

    def _similarity_score(self, query: str, text: str) -> float:
        longest = max(len(query), len(text))
        if longest == 0:
            return 0.0
        return (1 - edit_distance(query, text) / longest) * self.weights.fuzzy


def _field_value(item: Any, path: str) -> Any:
    """Resolve a dotted attribute/key path on a record."""
    current = item
    for key in path.split("."):
        if current is None:
            return None
        if isinstance(current, dict):
            current = current.get(key)
        else:
            current = getattr(current, key, None)
    return current


def _popularity(item: Any) -> float:
    return _field_value(item, "views_count") or _field_value(item, "karma") or 0

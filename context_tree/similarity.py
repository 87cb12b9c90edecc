"""Tag similarity lookups.

The semantic oracle scoring one ``key:value`` tag pair at a time lives outside
this package; :class:`TagSimilarityCache` wraps any object implementing
:class:`TagSimilarityOracle`, memoises results per unordered pair for the run
and turns missing or failed lookups into 0.0 similarity.
"""

from __future__ import annotations

import logging
import threading
from typing import Dict, Optional, Protocol, Tuple

from .errors import InvalidParameterError, SimilarityLookupError


class TagSimilarityOracle(Protocol):
    def tag_similarity(self, tag_a: str, tag_b: str) -> Optional[float]:
        ...


class ExactMatchSimilarity:
    """Reference oracle: mean of key equality and value equality.

    ``amenity:cafe`` vs ``amenity:cafe`` scores 1.0, vs ``amenity:park`` 0.5,
    vs ``leisure:park`` 0.0.
    """

    def tag_similarity(self, tag_a: str, tag_b: str) -> Optional[float]:
        key_a, _, value_a = tag_a.partition(":")
        key_b, _, value_b = tag_b.partition(":")
        return (float(key_a == key_b) + float(value_a == value_b)) / 2.0


class TagSimilarityCache:
    """Memoising wrapper around a tag similarity oracle.

    Oracle errors and ``None`` results count as 0.0 similarity. When
    ``max_fallback_fraction`` is set and at least ``min_lookups`` oracle calls
    have been made, exceeding that fraction of fallbacks raises
    :class:`SimilarityLookupError`.
    """

    def __init__(
        self,
        oracle: TagSimilarityOracle,
        max_fallback_fraction: Optional[float] = None,
        min_lookups: int = 20,
    ) -> None:
        if max_fallback_fraction is not None and not 0.0 <= max_fallback_fraction <= 1.0:
            raise InvalidParameterError(
                f"max_fallback_fraction must be within [0, 1], got {max_fallback_fraction}"
            )
        self.oracle = oracle
        self.max_fallback_fraction = max_fallback_fraction
        self.min_lookups = min_lookups
        self.lookups = 0
        self.fallbacks = 0
        self._cache: Dict[Tuple[str, str], float] = {}
        self._lock = threading.Lock()
        self.logger: logging.Logger = logging.getLogger(self.__class__.__name__)

    def __len__(self) -> int:
        return len(self._cache)

    @property
    def fallback_fraction(self) -> float:
        return self.fallbacks / self.lookups if self.lookups else 0.0

    def similarity(self, tag_a: str, tag_b: str) -> float:
        pair = (tag_a, tag_b) if tag_a <= tag_b else (tag_b, tag_a)
        # Held across the oracle call: each unordered pair reaches the oracle once.
        with self._lock:
            return self._lookup(pair)

    def _lookup(self, pair: Tuple[str, str]) -> float:
        cached = self._cache.get(pair)
        if cached is not None:
            return cached

        self.lookups += 1
        try:
            value = self.oracle.tag_similarity(*pair)
        except Exception as exc:
            self.logger.warning("Similarity lookup failed for %s / %s: %s", pair[0], pair[1], exc)
            self.fallbacks += 1
            self._check_fallbacks()
            # Failed lookups are not memoised so a later call can retry.
            return 0.0

        if value is None:
            self.fallbacks += 1
            self._check_fallbacks()
            value = 0.0
        score = min(max(float(value), 0.0), 1.0)
        self._cache[pair] = score
        return score

    def _check_fallbacks(self) -> None:
        if self.max_fallback_fraction is None or self.lookups < self.min_lookups:
            return
        if self.fallback_fraction > self.max_fallback_fraction:
            raise SimilarityLookupError(
                f"{self.fallbacks} of {self.lookups} similarity lookups fell back to 0.0 "
                f"(limit {self.max_fallback_fraction:.2%})"
            )

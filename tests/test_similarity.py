import pytest

from context_tree.errors import InvalidParameterError, SimilarityLookupError
from context_tree.similarity import ExactMatchSimilarity, TagSimilarityCache


class CountingOracle:
    def __init__(self, value=0.75):
        self.value = value
        self.calls = []

    def tag_similarity(self, tag_a, tag_b):
        self.calls.append((tag_a, tag_b))
        return self.value


class FailingOracle:
    def tag_similarity(self, tag_a, tag_b):
        raise ConnectionError("similarity service unavailable")


def test_exact_match_oracle():
    oracle = ExactMatchSimilarity()
    assert oracle.tag_similarity("amenity:cafe", "amenity:cafe") == 1.0
    assert oracle.tag_similarity("amenity:cafe", "amenity:park") == 0.5
    assert oracle.tag_similarity("amenity:cafe", "leisure:park") == 0.0


def test_cache_memoises_unordered_pairs():
    oracle = CountingOracle()
    cache = TagSimilarityCache(oracle)
    assert cache.similarity("b:2", "a:1") == 0.75
    assert cache.similarity("a:1", "b:2") == 0.75
    assert oracle.calls == [("a:1", "b:2")]
    assert len(cache) == 1


def test_missing_result_counts_as_zero():
    cache = TagSimilarityCache(CountingOracle(value=None))
    assert cache.similarity("a:1", "b:2") == 0.0
    assert cache.fallbacks == 1


def test_oracle_errors_fall_back_to_zero():
    cache = TagSimilarityCache(FailingOracle())
    assert cache.similarity("a:1", "b:2") == 0.0
    assert cache.similarity("a:1", "b:2") == 0.0
    assert cache.lookups == 2
    assert cache.fallback_fraction == 1.0


def test_fallback_policy_aborts():
    cache = TagSimilarityCache(FailingOracle(), max_fallback_fraction=0.5, min_lookups=3)
    cache.similarity("a:1", "b:1")
    cache.similarity("a:1", "b:2")
    with pytest.raises(SimilarityLookupError):
        cache.similarity("a:1", "b:3")


def test_invalid_fallback_fraction():
    with pytest.raises(InvalidParameterError):
        TagSimilarityCache(ExactMatchSimilarity(), max_fallback_fraction=1.5)

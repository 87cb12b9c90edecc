"""Hybrid cluster distance (HCD) and pairwise helpers.

``distance = 1 - (lam * semantic + (1 - lam) * features)`` where ``semantic`` is
a soft bipartite alignment of the two tag sets and ``features`` is the Jaccard
index of coarse duration, time-of-day, visit-count and area buckets.
"""

from __future__ import annotations

import math
from typing import List, Optional, Sequence, Set

import numpy as np

from .cluster import ClusterNode
from .errors import InvalidParameterError
from .similarity import TagSimilarityCache

DURATION_INCREMENT_MIN = 15
TIME_OF_DAY_INCREMENT_H = 4
VALID_COUNT_INCREMENT = 1
AREA_INCREMENT_M2 = 10


def _floor_to(value: float, increment: float) -> int:
    return int(math.floor(value / float(increment)) * increment)


def features_for(cluster: ClusterNode) -> Set[str]:
    """Bucketed feature labels used for the Jaccard comparison."""

    return {
        f"duration_{_floor_to(cluster.average_duration, DURATION_INCREMENT_MIN)}",
        f"timeofday_{_floor_to(cluster.mode_starthour, TIME_OF_DAY_INCREMENT_H)}",
        f"validcount_{_floor_to(len(cluster.times), VALID_COUNT_INCREMENT)}",
        f"area_{_floor_to(cluster.area, AREA_INCREMENT_M2)}",
    }


def jaccard_index(set_1: Set[str], set_2: Set[str]) -> float:
    union = set_1 | set_2
    if not union:
        return 0.0
    return len(set_1 & set_2) / float(len(union))


def tag_alignment(tags_1: Sequence[str], tags_2: Sequence[str], similarity: TagSimilarityCache) -> float:
    """Best-match tag similarity, averaged and taken in the better direction."""

    if not tags_1 or not tags_2:
        return 0.0
    matrix = np.array([[similarity.similarity(t1, t2) for t2 in tags_2] for t1 in tags_1], dtype=float)
    sim_12 = float(matrix.max(axis=1).mean())
    sim_21 = float(matrix.max(axis=0).mean())
    return max(sim_12, sim_21)


class HybridDistance:
    """Callable hybrid semantic + feature distance between two clusters."""

    def __init__(self, lam: float, similarity: Optional[TagSimilarityCache] = None) -> None:
        if not 0.0 <= lam <= 1.0:
            raise InvalidParameterError(f"lambda must be within [0, 1], got {lam}")
        if lam > 0 and similarity is None:
            raise InvalidParameterError("A tag similarity cache is required when lambda > 0.")
        self.lam = float(lam)
        self.similarity = similarity

    def semantic_similarity(self, c1: ClusterNode, c2: ClusterNode) -> float:
        return tag_alignment(c1.tag_strings(), c2.tag_strings(), self.similarity)

    def feature_similarity(self, c1: ClusterNode, c2: ClusterNode) -> float:
        return jaccard_index(features_for(c1), features_for(c2))

    def __call__(self, c1: ClusterNode, c2: ClusterNode) -> float:
        semantic = self.semantic_similarity(c1, c2) if self.lam > 0 else 0.0
        features = self.feature_similarity(c1, c2) if self.lam < 1 else 0.0
        distance = 1.0 - (self.lam * semantic + (1.0 - self.lam) * features)
        return min(max(distance, 0.0), 1.0)


def pairwise_distance_matrix(clusters: Sequence[ClusterNode], distance: HybridDistance) -> np.ndarray:
    """Compute a symmetric pairwise HCD matrix for the provided clusters."""

    n = len(clusters)
    mat = np.zeros((n, n), dtype=float)
    for i in range(n):
        for j in range(i + 1, n):
            mat[i, j] = mat[j, i] = distance(clusters[i], clusters[j])
    return mat


def average_distance(clusters: List[ClusterNode], distance: HybridDistance) -> float:
    """Mean HCD over distinct cluster pairs (1.0 when there are none)."""

    if len(clusters) < 2:
        return 1.0
    mat = pairwise_distance_matrix(clusters, distance)
    return float(mat[np.triu_indices(len(clusters), k=1)].mean())

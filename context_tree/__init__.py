"""Hierarchical land-usage context trees built from summarised visit clusters.

This package provides the geometry kernel, the cluster node hierarchy, the
out-of-core pairwise distance store, the agglomerative context tree builder and
the cost-benefit pruner used to simplify the finished tree.
"""

from .builder import ContextTreeBuilder
from .cluster import ClusterNode
from .config import TreeConfig, load_config
from .distance_store import DiskDistanceStore, DistanceStore, MemoryDistanceStore, open_distance_store
from .distances import HybridDistance
from .errors import (
    ContextTreeError,
    DegenerateGeometryError,
    DistanceStoreError,
    InvalidMergeError,
    InvalidParameterError,
    SelfReferenceError,
    SimilarityLookupError,
    StorageCostError,
    UtilityRangeError,
)
from .pruning import NodeState, Pruner
from .similarity import ExactMatchSimilarity, TagSimilarityCache
from .tree import ContextTree

__all__ = [
    "ClusterNode",
    "ContextTree",
    "ContextTreeBuilder",
    "ContextTreeError",
    "DegenerateGeometryError",
    "DiskDistanceStore",
    "DistanceStore",
    "DistanceStoreError",
    "ExactMatchSimilarity",
    "HybridDistance",
    "InvalidMergeError",
    "InvalidParameterError",
    "MemoryDistanceStore",
    "NodeState",
    "Pruner",
    "SelfReferenceError",
    "SimilarityLookupError",
    "StorageCostError",
    "TagSimilarityCache",
    "TreeConfig",
    "UtilityRangeError",
    "load_config",
    "open_distance_store",
]

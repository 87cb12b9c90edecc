"""High-level orchestration of context tree building and pruning."""

from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, Mapping, Optional

from .builder import ContextTreeBuilder
from .cluster import ClusterNode
from .config import TreeConfig
from .distances import HybridDistance
from .errors import ContextTreeError
from .io import build_leaves, normalise_summaries
from .pruning import Pruner, summarise
from .similarity import ExactMatchSimilarity, TagSimilarityCache, TagSimilarityOracle


class ContextTree:
    """Coordinate leaf creation, tree construction and pruning for one run."""

    def __init__(
        self,
        summarised: Mapping[str, Any] | Iterable[Any],
        config: Optional[TreeConfig] = None,
        oracle: Optional[TagSimilarityOracle] = None,
    ) -> None:
        """Create leaves from summaries (or ready-made nodes) and wire up the distance."""

        self.config: TreeConfig = config or TreeConfig()
        self.logger: logging.Logger = logging.getLogger(self.__class__.__name__)

        if not isinstance(summarised, Mapping):
            summarised = list(summarised)
        items = list(summarised.values()) if isinstance(summarised, Mapping) else summarised
        if items and all(isinstance(item, ClusterNode) for item in items):
            self.leaves = items
        else:
            self.leaves = build_leaves(normalise_summaries(summarised), grid_size=self.config.grid_size)

        self.similarity: Optional[TagSimilarityCache] = None
        if self.config.lam > 0:
            self.similarity = TagSimilarityCache(
                oracle or ExactMatchSimilarity(),
                max_fallback_fraction=self.config.max_fallback_fraction,
                min_lookups=self.config.min_lookups,
            )
        self.distance = HybridDistance(self.config.lam, self.similarity)
        self.builder = ContextTreeBuilder(
            self.distance,
            disk_threshold=self.config.disk_threshold,
            scratch_dir=self.config.scratch_dir,
            n_jobs=self.config.n_jobs,
            grid_size=self.config.grid_size,
        )
        self.pruner: Optional[Pruner] = None
        self.root: Optional[ClusterNode] = None
        self.summary: Dict[str, float] = {}

    def cluster(self) -> ClusterNode:
        self.root = self.builder.build(self.leaves)
        return self.root

    def prune(
        self,
        threshold: Optional[float] = None,
        xi: Optional[float] = None,
        calculate_summary: Optional[bool] = None,
    ) -> ClusterNode:
        """Prune the built tree; arguments default to the run configuration."""

        if self.root is None:
            raise ContextTreeError("No root node to prune; call cluster() first.")
        threshold = self.config.prune_threshold if threshold is None else threshold
        xi = self.config.xi if xi is None else xi
        if calculate_summary is None:
            calculate_summary = self.config.calculate_summary

        self.pruner = Pruner(threshold, xi)
        self.pruner.prune(self.root)
        if calculate_summary:
            self.summary = summarise(self.root, self.distance)
            self.logger.info("Summary: %s", self.summary)
        return self.root

"""Agglomerative construction of the context tree.

Each round refreshes the distance store, finds every pair of active clusters
at the global minimum distance, coalesces pairs that share a member into one
group and merges each group into a new parent node. Rounds repeat until a
single root remains.
"""

from __future__ import annotations

import itertools
import logging
from pathlib import Path
from typing import Any, Dict, Hashable, Iterable, List, Optional, Sequence, Tuple

from joblib import Parallel, delayed

from .cluster import ClusterNode
from .config import DEFAULT_DISK_THRESHOLD, DEFAULT_GRID_SIZE
from .distance_store import DistanceStore, Row, open_distance_store
from .distances import HybridDistance
from .errors import ContextTreeError, InvalidParameterError


def coalesce_pairs(pairs: Sequence[Tuple[Hashable, Hashable]]) -> List[List[Hashable]]:
    """Union pairs that share a member into groups.

    Groups, and the members inside each group, keep the order in which they
    first appear in ``pairs``.
    """

    parent: Dict[Hashable, Hashable] = {}
    order: List[Hashable] = []

    def find(item: Hashable) -> Hashable:
        while parent[item] != item:
            parent[item] = parent[parent[item]]
            item = parent[item]
        return item

    for a, b in pairs:
        for item in (a, b):
            if item not in parent:
                parent[item] = item
                order.append(item)
        root_a, root_b = find(a), find(b)
        if root_a != root_b:
            parent[root_b] = root_a

    groups: Dict[Hashable, List[Hashable]] = {}
    for item in order:
        groups.setdefault(find(item), []).append(item)
    return list(groups.values())


class ContextTreeBuilder:
    """Builds a context tree by repeatedly merging the closest cluster groups."""

    def __init__(
        self,
        distance: HybridDistance,
        disk_threshold: int = DEFAULT_DISK_THRESHOLD,
        scratch_dir: Optional[str | Path] = None,
        n_jobs: int = 1,
        grid_size: int = DEFAULT_GRID_SIZE,
    ) -> None:
        self.distance = distance
        self.disk_threshold = disk_threshold
        self.scratch_dir = scratch_dir
        self.n_jobs = n_jobs
        self.grid_size = grid_size
        self.history: List[int] = []
        self.root: Optional[ClusterNode] = None
        self._ids = itertools.count(1)
        self._known_ids: set = set()
        self.logger: logging.Logger = logging.getLogger(self.__class__.__name__)

    @property
    def rounds(self) -> int:
        return len(self.history)

    def build(self, leaves: Iterable[ClusterNode]) -> ClusterNode:
        """Merge ``leaves`` into a single tree and return its root."""

        clusters: Dict[Hashable, ClusterNode] = {}
        for leaf in leaves:
            if leaf.id in clusters:
                raise InvalidParameterError(f"Duplicate cluster id: {leaf.id}")
            clusters[leaf.id] = leaf
        if not clusters:
            raise InvalidParameterError("Cannot build a context tree from zero clusters.")

        self.logger.info("Context tree initialised with %d clusters", len(clusters))
        self.history = []
        self._ids = itertools.count(1)
        self._known_ids = set(clusters)

        store = open_distance_store(
            len(clusters),
            disk_threshold=self.disk_threshold,
            scratch_dir=self.scratch_dir,
            n_jobs=self.n_jobs,
        )
        with store:
            new: Optional[List[ClusterNode]] = None
            while len(clusters) > 1:
                self.history.append(len(clusters))
                self.logger.info("Clustering round %d commencing, %d items", self.rounds, len(clusters))
                self.refresh_distances(store, clusters, new)
                groups = self.closest_groups(store, clusters)
                new = self.merge_groups(store, clusters, groups)

        self.root = next(iter(clusters.values()))
        self.logger.info("Context tree complete after %d rounds (root %s)", self.rounds, self.root.id)
        return self.root

    def refresh_distances(
        self,
        store: DistanceStore,
        clusters: Dict[Hashable, ClusterNode],
        new: Optional[Sequence[ClusterNode]],
    ) -> int:
        """Fill in missing distances; after round one only pairs with new nodes.

        Each pair is stored once, under whichever node is earlier in ``clusters``.
        Returns the number of distances computed.
        """

        nodes = list(clusters.values())
        new_ids = None if new is None else {node.id for node in new}

        tasks: List[Tuple[ClusterNode, List[ClusterNode]]] = []
        for index, outer in enumerate(nodes):
            inners = nodes[index + 1:]
            if new_ids is not None and outer.id not in new_ids:
                inners = [inner for inner in inners if inner.id in new_ids]
            if inners:
                tasks.append((outer, inners))

        results = Parallel(n_jobs=self.n_jobs, prefer="threads")(
            delayed(self._compute_row)(store, outer, inners) for outer, inners in tasks
        )

        computed = 0
        for outer_id, row, n_fresh in results:
            if n_fresh:
                store.set(outer_id, row)
            computed += n_fresh
        self.logger.debug("Computed %d new distances over %d rows", computed, len(tasks))
        return computed

    def _compute_row(
        self, store: DistanceStore, outer: ClusterNode, inners: Sequence[ClusterNode]
    ) -> Tuple[Hashable, Row, int]:
        row = store.get(outer.id)
        fresh = {inner.id: self.distance(outer, inner) for inner in inners if inner.id not in row}
        row.update(fresh)
        return outer.id, row, len(fresh)

    def closest_groups(self, store: DistanceStore, clusters: Dict[Hashable, ClusterNode]) -> List[List[ClusterNode]]:
        """All groups of clusters linked by pairs at the global minimum distance."""

        smallest: Optional[float] = None
        pairs: List[Tuple[Hashable, Hashable]] = []
        for outer_id, row in store.enumerate():
            for inner_id, value in row.items():
                if smallest is None or value < smallest:
                    smallest = value
                    pairs = [(outer_id, inner_id)]
                elif value == smallest:
                    pairs.append((outer_id, inner_id))

        if smallest is None:
            raise ContextTreeError(f"No distances available for {len(clusters)} active clusters.")
        self.logger.info("Found minimum: %s across %d pairs", smallest, len(pairs))

        return [[clusters[cluster_id] for cluster_id in group] for group in coalesce_pairs(pairs)]

    def _next_id(self) -> str:
        node_id = f"merge_{next(self._ids)}"
        while node_id in self._known_ids:
            node_id = f"merge_{next(self._ids)}"
        self._known_ids.add(node_id)
        return node_id

    def merge(self, group: Sequence[ClusterNode]) -> ClusterNode:
        """A new node built from snapshots of ``group`` (originals stay untouched)."""

        node = ClusterNode(node_id=self._next_id(), grid_size=self.grid_size)
        for member in group:
            node.merge_with(member.snapshot())
        return node

    def merge_groups(
        self,
        store: DistanceStore,
        clusters: Dict[Hashable, ClusterNode],
        groups: Sequence[Sequence[ClusterNode]],
    ) -> List[ClusterNode]:
        """Replace each group by its merged parent; purge the members from ``store``."""

        created: List[ClusterNode] = []
        merged_ids: List[Hashable] = []
        for group in groups:
            node = self.merge(group)
            for member in group:
                node.add_child(member)
                member.parent = node
                del clusters[member.id]
                merged_ids.append(member.id)
                self.logger.debug("Merged %s into %s", member.id, node.id)
            clusters[node.id] = node
            created.append(node)

        store.delete(merged_ids)
        return created

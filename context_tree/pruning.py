"""Cost-benefit pruning of a finished context tree.

Nodes are scored bottom-up by ``utility / storage_cost`` against their parent.
A node scoring below the threshold is marked pruned unless one of its children
was retained, in which case it is retained too and reports a score of 1.0.
Pruning never detaches nodes; it only flips ``ClusterNode.pruned``.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import Any, Dict, Iterable, Optional, Tuple

from .cluster import ClusterNode
from .distances import HybridDistance, average_distance
from .errors import InvalidParameterError, StorageCostError, UtilityRangeError


class NodeState(Enum):
    UNVISITED = "unvisited"
    SCORED = "scored"
    PRUNED = "pruned"
    RETAINED = "retained"


def _ratio(numerator: float, denominator: float, label: str) -> float:
    if denominator < 0:
        raise UtilityRangeError(f"Parent {label} is negative ({denominator})")
    if denominator == 0:
        return 0.0
    # A parent hull can be smaller than a child's, so ratios are capped at 1.
    return min(numerator / float(denominator), 1.0)


class Pruner:
    """Marks low-value subtrees of a context tree as pruned."""

    def __init__(self, threshold: float, xi: float) -> None:
        if threshold < 0:
            raise InvalidParameterError(f"Prune threshold must be >= 0, got {threshold}")
        if xi <= 0:
            raise InvalidParameterError(f"xi must be > 0, got {xi}")
        self.threshold = float(threshold)
        self.xi = float(xi)
        self.states: Dict[Any, NodeState] = {}
        self.scores: Dict[Any, float] = {}
        self.logger: logging.Logger = logging.getLogger(self.__class__.__name__)

    def prune(self, root: ClusterNode) -> ClusterNode:
        """Score the tree under ``root`` and mark pruned nodes; returns ``root``."""

        nodes = root.nodes_array()
        for node in nodes:
            node.pruned = False
        self.states = {node.id: NodeState.UNVISITED for node in nodes}
        self.scores = {}

        self._evaluate(root)
        # Nothing above the root can prune it.
        self.states[root.id] = NodeState.RETAINED

        n_pruned = sum(1 for state in self.states.values() if state is NodeState.PRUNED)
        self.logger.info(
            "Pruned %d of %d nodes (threshold=%s, xi=%s)", n_pruned, len(nodes), self.threshold, self.xi
        )
        return root

    def _evaluate(self, node: ClusterNode) -> Tuple[float, bool]:
        """Post-order walk returning ``(score, retained)`` for ``node``."""

        if node.children:
            has_retained_child = False
            for child in node.children:
                _, retained = self._evaluate(child)
                if retained:
                    has_retained_child = True
                else:
                    child.pruned = True
                    self.states[child.id] = NodeState.PRUNED
            if has_retained_child:
                self.logger.debug("Setting score to 1.0 for %s", node.id)
                self.scores[node.id] = 1.0
                self.states[node.id] = NodeState.RETAINED
                return 1.0, True

        score = self.cost_benefit(node)
        self.scores[node.id] = score
        retained = score >= self.threshold
        self.states[node.id] = NodeState.RETAINED if retained else NodeState.SCORED
        self.logger.debug("Score %s for %s", score, node.id)
        return score, retained

    def cost_benefit(self, node: ClusterNode, parent: Optional[ClusterNode] = None) -> float:
        parent = parent if parent is not None else node.parent
        numerator = self.utility(node, parent)
        denominator = self.storage_cost(node, parent)
        return numerator / denominator

    def utility(self, node: ClusterNode, parent: Optional[ClusterNode]) -> float:
        """Share of the parent's information not already carried by ``node``."""

        if parent is None:
            return 1.0
        times = _ratio(node.total_duration(), parent.total_duration(), "duration")
        coordsets = _ratio(node.area, parent.area, "area")
        tags = _ratio(len(node.tags), len(parent.tags), "tag count")
        utility = 1.0 - ((times + coordsets + tags) / 3.0)
        self.logger.debug("Utility: %s (%s, %s, %s)", utility, times, coordsets, tags)
        if not 0.0 <= utility <= 1.0:
            raise UtilityRangeError(f"Utility must be within [0, 1] (is {utility}) for {node.id}")
        return utility

    def storage_cost(self, node: ClusterNode, parent: Optional[ClusterNode]) -> float:
        """``xi`` plus the times, shapes and coordinates ``node`` holds beyond ``parent``."""

        if parent is None:
            cost = self.xi
        else:
            parent_times = set(parent.times)
            parent_shapes = set(parent.geographical)
            parent_coords = {point for shape in parent.geographical for point in shape}
            times_difference = sum(1 for interval in node.times if interval not in parent_times)
            geosets_difference = sum(1 for shape in node.geographical if shape not in parent_shapes)
            coords_difference = sum(
                1 for shape in node.geographical for point in shape if point not in parent_coords
            )
            cost = self.xi + times_difference + geosets_difference + coords_difference
        if not cost > 0:
            raise StorageCostError(f"Storage cost must be > 0 (is {cost}) for {node.id}")
        return float(cost)


def total_information(nodes: Iterable[ClusterNode]) -> float:
    """Equal thirds of duration (seconds), area and tag count, summed over ``nodes``."""

    return float(
        sum(
            (node.total_duration() / 3.0) + (node.area / 3.0) + (len(node.tags) / 3.0)
            for node in nodes
        )
    )


def summarise(root: ClusterNode, distance: HybridDistance) -> Dict[str, float]:
    """Average pairwise distance and total information of the unpruned tree."""

    nodes = root.nodes_array(unpruned_only=True)
    return {
        "avg_distance": average_distance(nodes, distance),
        "total_information": total_information(nodes),
    }

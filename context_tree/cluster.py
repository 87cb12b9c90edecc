"""Cluster nodes of the context tree.

A node holds the merged visit times, land-usage tags and geographic shapes of
the clusters below it, plus its links into the hierarchy. Derived statistics
are cached and recomputed once a merge marks them dirty. Pruning never removes
a node; it only sets ``pruned``, which every query and export respects.
"""

from __future__ import annotations

import itertools
import weakref
from collections import Counter
from datetime import datetime
from typing import Any, Dict, FrozenSet, Iterable, List, Mapping, Optional, Set, Tuple, Union

import numpy as np
import pandas as pd

from . import geometry
from .config import DEFAULT_GRID_SIZE
from .errors import InvalidMergeError, SelfReferenceError
from .geometry import LatLng, LatLngLike

Interval = Tuple[datetime, datetime]
TagValue = Union[str, FrozenSet[str]]
Tag = Tuple[str, TagValue]
Shape = Tuple[LatLng, ...]

ANONYMOUS_PREFIX = "~anonymous_"
_SYNTHETIC_IDS = itertools.count(1)


def summary_key(summary: Mapping[str, Any]) -> Optional[Any]:
    """The ``key`` of a summary, else its ``id``; None only when both are absent."""

    key = summary.get("key")
    return key if key is not None else summary.get("id")


def to_datetime(value: Any) -> datetime:
    """Coerce a datetime, ISO string or epoch seconds into a ``datetime``."""

    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return pd.Timestamp(value, unit="s").to_pydatetime()
    return pd.Timestamp(value).to_pydatetime()


def normalise_interval(interval: Any) -> Interval:
    if isinstance(interval, Mapping):
        start, end = interval["start"], interval["end"]
    else:
        start, end = interval
    start_dt, end_dt = to_datetime(start), to_datetime(end)
    if end_dt < start_dt:
        raise ValueError(f"Interval ends before it starts: {start_dt} > {end_dt}")
    return start_dt, end_dt


def coalesce_intervals(intervals: Iterable[Interval]) -> List[Interval]:
    """Sort intervals and merge any that overlap or touch."""

    merged: List[Interval] = []
    for start, end in sorted(set(intervals)):
        if merged and start <= merged[-1][1]:
            merged[-1] = (merged[-1][0], max(merged[-1][1], end))
        else:
            merged.append((start, end))
    return merged


def normalise_tags(tags: Union[Mapping[str, Any], Iterable[Any]]) -> Set[Tag]:
    """Turn a tag mapping or a list of pairs into a set of ``(key, value)`` tags.

    List-like values become frozensets so multi-valued tags compare without
    regard to order.
    """

    pairs = tags.items() if isinstance(tags, Mapping) else tags
    normalised: Set[Tag] = set()
    for key, value in pairs:
        if isinstance(value, (list, tuple, set, frozenset)):
            normalised.add((str(key), frozenset(str(v) for v in value)))
        else:
            normalised.add((str(key), str(value)))
    return normalised


def format_tag(tag: Tag) -> str:
    """Render a tag as ``key:value`` (multi-values sorted and joined by ``;``)."""

    key, value = tag
    if isinstance(value, frozenset):
        return f"{key}:{';'.join(sorted(value))}"
    return f"{key}:{value}"


def merge_shapes(shapes: Iterable[Shape], size: int = DEFAULT_GRID_SIZE) -> List[Shape]:
    """Repeatedly replace any two intersecting shapes by the hull of their union."""

    pending: List[Shape] = list(dict.fromkeys(shapes))
    disjoint: Set[FrozenSet[Shape]] = set()

    merged = True
    while merged:
        merged = False
        for i, j in itertools.combinations(range(len(pending)), 2):
            pair = frozenset((pending[i], pending[j]))
            if pair in disjoint:
                continue
            if geometry.shapes_intersect(pending[i], pending[j], size):
                hull = tuple(geometry.location_hull(pending[i] + pending[j]))
                pending = [shape for k, shape in enumerate(pending) if k not in (i, j)]
                if hull not in pending:
                    pending.append(hull)
                merged = True
                break
            disjoint.add(pair)
    return pending


class ClusterNode:
    """One vertex of the context tree: a leaf visit cluster or a merge product."""

    def __init__(
        self,
        times: Optional[Iterable[Any]] = None,
        tags: Optional[Union[Mapping[str, Any], Iterable[Any]]] = None,
        geographical: Optional[Iterable[Iterable[LatLngLike]]] = None,
        key: Optional[str] = None,
        node_id: Optional[Any] = None,
        grid_size: int = DEFAULT_GRID_SIZE,
    ) -> None:
        self.key: str = str(key) if key is not None else ""
        if key is not None:
            self._id: Any = self.key
        elif node_id is not None:
            self._id = node_id
        else:
            # Keyless nodes get an id no external key is expected to use.
            self._id = f"{ANONYMOUS_PREFIX}{next(_SYNTHETIC_IDS)}"

        self.times: List[Interval] = coalesce_intervals(normalise_interval(t) for t in (times or []))
        self.tags: Set[Tag] = normalise_tags(tags or [])
        self.geographical: List[Shape] = [
            tuple(geometry.as_latlng(p) for p in shape) for shape in (geographical or [])
        ]
        self.children: List[ClusterNode] = []
        self.pruned: bool = False
        self.grid_size = grid_size

        self._parent: Optional[weakref.ReferenceType] = None
        self._absorbed: Set[Any] = set()
        self._dirty = True
        self._area: Optional[float] = None
        self._average_duration: Optional[float] = None
        self._mode_starthour: Optional[int] = None

    @classmethod
    def from_summary(cls, summary: Mapping[str, Any], grid_size: int = DEFAULT_GRID_SIZE) -> "ClusterNode":
        """Build a leaf from a summarised cluster ``{key, times, tags, latlngs}``.

        The raw ``latlngs`` become a single shape, the convex hull of the points.
        A pre-built ``geographical`` list of shapes is used as-is instead.
        """

        latlngs = summary.get("latlngs") or []
        if latlngs:
            shapes: List[List[LatLng]] = [geometry.location_hull(latlngs)]
        else:
            shapes = [list(shape) for shape in summary.get("geographical") or []]
        return cls(
            times=summary.get("times") or [],
            tags=summary.get("tags") or [],
            geographical=shapes,
            key=summary_key(summary),
            grid_size=grid_size,
        )

    # ------------------------------------------------------------------
    # Identity and links
    # ------------------------------------------------------------------

    @property
    def id(self) -> Any:
        return self._id

    @property
    def parent(self) -> Optional["ClusterNode"]:
        return self._parent() if self._parent is not None else None

    @parent.setter
    def parent(self, node: Optional["ClusterNode"]) -> None:
        self._parent = weakref.ref(node) if node is not None else None

    @property
    def is_leaf(self) -> bool:
        return not self.children

    def add_child(self, node: "ClusterNode") -> None:
        """Append ``node`` to the children; the caller sets its parent."""

        if node is self:
            raise SelfReferenceError(f"Cannot add {self!r} as its own child.")
        self.children.append(node)

    # ------------------------------------------------------------------
    # Merging
    # ------------------------------------------------------------------

    def merge_with(self, other: "ClusterNode") -> "ClusterNode":
        """Absorb ``other``'s times, tags and shapes into this node in place."""

        if other is self or other.id == self.id:
            raise InvalidMergeError(f"Cannot merge {self!r} with itself.")
        if other.id in self._absorbed:
            raise InvalidMergeError(f"{other!r} was already merged into {self!r}.")

        self.times = coalesce_intervals(self.times + other.times)
        self.tags = self.tags | other.tags
        self.geographical = merge_shapes(self.geographical + other.geographical, self.grid_size)
        self._absorbed.add(other.id)
        self._absorbed |= other._absorbed
        self._dirty = True
        return self

    def snapshot(self) -> "ClusterNode":
        """Detached copy of this node's data (no children, no parent)."""

        clone = ClusterNode(node_id=self.id, grid_size=self.grid_size)
        clone.key = self.key
        clone.times = list(self.times)
        clone.tags = set(self.tags)
        clone.geographical = list(self.geographical)
        clone._absorbed = set(self._absorbed)
        if not self._dirty:
            clone._area = self._area
            clone._average_duration = self._average_duration
            clone._mode_starthour = self._mode_starthour
            clone._dirty = False
        return clone

    # ------------------------------------------------------------------
    # Derived statistics
    # ------------------------------------------------------------------

    def _refresh_stats(self) -> None:
        if not self._dirty:
            return
        durations = [(end - start).total_seconds() / 60.0 for start, end in self.times]
        self._average_duration = float(np.mean(durations)) if durations else 0.0

        hours = Counter(start.hour for start, _ in self.times)
        # Ties resolve to the earliest hour.
        self._mode_starthour = max(sorted(hours), key=lambda h: hours[h]) if hours else 0

        self._area = float(sum(geometry.location_area(shape, self.grid_size) for shape in self.geographical))
        self._dirty = False

    @property
    def area(self) -> float:
        """Summed hull area of all shapes, in square metres."""

        self._refresh_stats()
        return self._area

    @property
    def average_duration(self) -> float:
        """Mean interval length in minutes."""

        self._refresh_stats()
        return self._average_duration

    @property
    def mode_starthour(self) -> int:
        """Most common start hour of the intervals."""

        self._refresh_stats()
        return self._mode_starthour

    def total_duration(self) -> float:
        """Summed interval length in seconds."""

        return float(sum((end - start).total_seconds() for start, end in self.times))

    def tag_strings(self) -> List[str]:
        return sorted(format_tag(tag) for tag in self.tags)

    # ------------------------------------------------------------------
    # Tree queries (pruned nodes are excluded)
    # ------------------------------------------------------------------

    def descendant_ids(self) -> List[Any]:
        """Ids of all unpruned descendants, not including this node."""

        ids: List[Any] = []
        for child in self.children:
            if child.pruned:
                continue
            ids.append(child.id)
            ids.extend(child.descendant_ids())
        return list(dict.fromkeys(ids))

    def ancestor_ids(self) -> List[Any]:
        """Ids of all unpruned ancestors, nearest first."""

        ids: List[Any] = []
        node = self.parent
        while node is not None:
            if not node.pruned:
                ids.append(node.id)
            node = node.parent
        return ids

    def sibling_and_descendant_ids(self) -> List[Any]:
        """Ids of unpruned siblings and their descendants."""

        parent = self.parent
        if parent is None:
            return []
        ids: List[Any] = []
        for sibling in parent.children:
            if sibling is self or sibling.pruned:
                continue
            ids.append(sibling.id)
            ids.extend(sibling.descendant_ids())
        return list(dict.fromkeys(ids))

    def nodes_array(self, unpruned_only: bool = False) -> List["ClusterNode"]:
        """This node and every node below it, optionally skipping pruned subtrees."""

        if unpruned_only and self.pruned:
            return []
        nodes = [self]
        for child in self.children:
            nodes.extend(child.nodes_array(unpruned_only))
        return nodes

    def unpruned_count(self) -> int:
        if self.pruned:
            return 0
        return 1 + sum(child.unpruned_count() for child in self.children)

    def max_depth(self, current: int = 0) -> int:
        """Depth of the deepest unpruned node below this one."""

        if self.pruned:
            return current
        depths = [child.max_depth(current + 1) for child in self.children if not child.pruned]
        return max(depths) if depths else current

    def pruned_leaves(self) -> List[Any]:
        if self.is_leaf:
            return [self.id] if self.pruned else []
        return [leaf for child in self.children for leaf in child.pruned_leaves()]

    def render(self, indent: int = 0) -> str:
        """Indented text view of the subtree; pruned nodes are marked ``[X]``."""

        line = f"{'  - ' * indent}{'[X] ' if self.pruned else ''}<Cluster {self.id}>"
        return "\n".join([line] + [child.render(indent + 1) for child in self.children])

    def to_dict(self) -> Dict[str, Any]:
        """Nested reporting view of the unpruned subtree."""

        return {
            "id": self.id,
            "children": [child.to_dict() for child in self.children if not child.pruned],
            "leaf": self.is_leaf,
            "average_duration": self.average_duration,
            "mode_starthour": self.mode_starthour,
            "area": self.area,
            "descendant_ids": self.descendant_ids(),
            "ancestor_ids": self.ancestor_ids(),
            "sibling_and_descendant_ids": self.sibling_and_descendant_ids(),
        }

    def __repr__(self) -> str:
        return f"<Cluster {self.id}, children: {len(self.children)}, pruned: {self.pruned}>"

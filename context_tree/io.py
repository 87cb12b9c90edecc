"""Input/output helpers for the context tree pipeline.

Covers loading summarised visit clusters from YAML or JSON, exporting the
nested tree view, and flattening the tree into a pandas table saved as CSV.
"""

from __future__ import annotations

import itertools
import json
import logging
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional

import pandas as pd
import yaml

from .cluster import ANONYMOUS_PREFIX, ClusterNode, summary_key
from .config import DEFAULT_GRID_SIZE

YAML_SUFFIXES = {".yml", ".yaml"}


def normalise_summaries(summarised: Mapping[str, Any] | Iterable[Mapping[str, Any]]) -> List[Dict[str, Any]]:
    """Return a list of cluster summaries; mapping keys become missing ``key`` fields."""

    if isinstance(summarised, Mapping):
        summaries = []
        for key, summary in summarised.items():
            summary = dict(summary)
            if summary_key(summary) is None:
                summary["key"] = str(key)
            summaries.append(summary)
        return summaries
    return [dict(summary) for summary in summarised]


def load_summarised_clusters(path: str | Path) -> List[Dict[str, Any]]:
    """Load summarised clusters from a YAML or JSON file."""

    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Cluster summary file not found: {path}")
    with path.open("r", encoding="utf-8") as fh:
        if path.suffix.lower() in YAML_SUFFIXES:
            payload = yaml.safe_load(fh) or {}
        else:
            payload = json.load(fh)

    if isinstance(payload, Mapping) and "clusters" in payload:
        payload = payload["clusters"]
    summaries = normalise_summaries(payload)
    logging.info("Loaded %d summarised clusters from %s", len(summaries), path)
    return summaries


def build_leaves(summaries: Iterable[Mapping[str, Any]], grid_size: int = DEFAULT_GRID_SIZE) -> List[ClusterNode]:
    """Create leaf nodes; keyless summaries get ids unused by the keyed ones."""

    summaries = [dict(summary) for summary in summaries]
    taken = {str(key) for key in map(summary_key, summaries) if key is not None}
    counter = itertools.count(1)
    for summary in summaries:
        if summary_key(summary) is not None:
            continue
        key = f"{ANONYMOUS_PREFIX}{next(counter)}"
        while key in taken:
            key = f"{ANONYMOUS_PREFIX}{next(counter)}"
        taken.add(key)
        summary["key"] = key
    return [ClusterNode.from_summary(summary, grid_size=grid_size) for summary in summaries]


def export_tree(root: ClusterNode, path: str | Path, fmt: Optional[str] = None) -> Path:
    """Write the nested unpruned tree view as YAML or JSON (by suffix unless ``fmt``)."""

    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    fmt = (fmt or ("yaml" if path.suffix.lower() in YAML_SUFFIXES else "json")).lower()
    tree = root.to_dict()
    with path.open("w", encoding="utf-8") as fh:
        if fmt == "yaml":
            yaml.safe_dump(tree, fh, sort_keys=False)
        elif fmt == "json":
            json.dump(tree, fh, indent=2)
        else:
            raise ValueError(f"Unsupported tree format: {fmt}")
    logging.info("Saved context tree to %s", path)
    return path


def nodes_frame(root: ClusterNode, unpruned_only: bool = False) -> pd.DataFrame:
    """One row per node with its position in the tree and derived statistics."""

    rows = []
    stack = [(root, 0)]
    while stack:
        node, depth = stack.pop()
        if unpruned_only and node.pruned:
            continue
        parent = node.parent
        rows.append(
            {
                "id": node.id,
                "parent_id": parent.id if parent is not None else None,
                "depth": depth,
                "leaf": node.is_leaf,
                "pruned": node.pruned,
                "area": node.area,
                "average_duration": node.average_duration,
                "mode_starthour": node.mode_starthour,
                "n_times": len(node.times),
                "n_tags": len(node.tags),
                "n_shapes": len(node.geographical),
                "tags": ",".join(node.tag_strings()),
            }
        )
        stack.extend((child, depth + 1) for child in reversed(node.children))
    return pd.DataFrame(rows)


def save_dataframe(df: pd.DataFrame, path: str | Path) -> None:
    """Persist a DataFrame to CSV."""

    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    df.to_csv(path, index=False)
    logging.info("Saved %d rows to %s", len(df), path)

"""CLI entry point for the context tree pipeline.

Orchestrates loading summarised clusters, building the context tree, pruning
it and exporting the nested tree plus a flat node table, as configured in a
YAML file.
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import Dict

import yaml

from context_tree.config import TreeConfig, get_nested, load_config
from context_tree.errors import ContextTreeError
from context_tree.io import export_tree, load_summarised_clusters, nodes_frame, save_dataframe
from context_tree.tree import ContextTree


def configure_logging(log_cfg: Dict[str, object], run_name: str = "context_tree") -> Path:
    """Log to the console and to ``<run_name>.log`` unless a filename is configured."""

    log_dir = Path(log_cfg.get("dir", "logs"))
    log_dir.mkdir(parents=True, exist_ok=True)
    filename = log_cfg.get("filename") or f"{run_name}.log"
    log_path = log_dir / filename
    level_name = str(log_cfg.get("level", "INFO")).upper()
    level = getattr(logging, level_name, logging.INFO)

    fmt = "%(asctime)s - %(levelname)s - %(message)s"
    root = logging.getLogger()
    root.handlers.clear()
    root.setLevel(level)

    file_handler = logging.FileHandler(log_path, mode="w", encoding="utf-8")
    file_handler.setFormatter(logging.Formatter(fmt))
    stream_handler = logging.StreamHandler()
    stream_handler.setFormatter(logging.Formatter(fmt))

    root.addHandler(file_handler)
    root.addHandler(stream_handler)
    root.info("Logging to %s (level=%s)", log_path, level_name)
    return log_path


def main(config_path: str = "config/context_tree.yaml") -> Path:
    cfg = load_config(config_path)
    output_cfg = cfg.get("output", {}) or {}
    exp_name = str(output_cfg.get("experiment_name", "context_tree"))

    configure_logging(cfg.get("logging", {}) or {}, run_name=exp_name)
    tree_cfg = TreeConfig.from_dict(cfg)
    logging.info(
        "Run parameters: lambda=%s threshold=%s xi=%s disk_threshold=%d grid_size=%d",
        tree_cfg.lam,
        tree_cfg.prune_threshold,
        tree_cfg.xi,
        tree_cfg.disk_threshold,
        tree_cfg.grid_size,
    )

    clusters_path = get_nested(cfg, ["input", "clusters"], "data/clusters.yaml")
    summaries = load_summarised_clusters(clusters_path)

    run_dir = Path(output_cfg.get("dir", "output")) / exp_name
    run_dir.mkdir(parents=True, exist_ok=True)
    logging.info("Using run directory %s", run_dir)

    tree = ContextTree(summaries, tree_cfg)
    tree.cluster()

    if get_nested(cfg, ["pruning", "enabled"], True):
        tree.prune()
        logging.info(
            "Unpruned nodes: %d, max depth: %d", tree.root.unpruned_count(), tree.root.max_depth()
        )

    tree_format = str(output_cfg.get("tree_format", "yaml")).lower()
    suffix = "yaml" if tree_format == "yaml" else "json"
    tree_path = export_tree(tree.root, run_dir / f"tree_{exp_name}.{suffix}", fmt=tree_format)

    if output_cfg.get("save_nodes_csv", True):
        save_dataframe(nodes_frame(tree.root), run_dir / f"nodes_{exp_name}.csv")

    if tree.summary:
        (run_dir / f"summary_{exp_name}.yaml").write_text(yaml.safe_dump(tree.summary), encoding="utf-8")
    return tree_path


def run() -> None:
    parser = argparse.ArgumentParser(description="Context tree clustering pipeline.")
    parser.add_argument(
        "-c",
        "--config",
        default="config/context_tree.yaml",
        help="Path to YAML config file.",
    )
    args = parser.parse_args()
    try:
        main(args.config)
    except ContextTreeError as exc:
        logging.error("Context tree run aborted: %s", exc)
        sys.exit(1)


if __name__ == "__main__":
    run()

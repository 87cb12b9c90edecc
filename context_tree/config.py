"""Configuration helpers for the context tree pipeline.

Provides YAML loading, nested lookups with defaults and a validated
:class:`TreeConfig` holding every tuning parameter of a run.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from .errors import InvalidParameterError

DEFAULT_DISK_THRESHOLD = 10_000
DEFAULT_GRID_SIZE = 100


def load_config(path: str | Path) -> Dict[str, Any]:
    """Load a YAML configuration file."""

    with Path(path).open("r", encoding="utf-8") as fh:
        return yaml.safe_load(fh) or {}


def get_nested(config: Dict[str, Any], keys: list[str], default: Any) -> Any:
    """Retrieve a nested value from a config dict with a default."""

    current: Any = config
    for key in keys:
        if not isinstance(current, dict) or key not in current:
            return default
        current = current[key]
    return current


@dataclass
class TreeConfig:
    """Strongly-typed parameters for building and pruning a context tree."""

    lam: float = 0.5
    prune_threshold: float = 0.1
    xi: float = 1.0
    disk_threshold: int = DEFAULT_DISK_THRESHOLD
    grid_size: int = DEFAULT_GRID_SIZE
    n_jobs: int = 1
    scratch_dir: Optional[Path] = None
    max_fallback_fraction: Optional[float] = None
    min_lookups: int = 20
    calculate_summary: bool = False

    def __post_init__(self) -> None:
        self.validate()

    def validate(self) -> None:
        """Raise :class:`InvalidParameterError` for out-of-range parameters."""

        if not 0.0 <= self.lam <= 1.0:
            raise InvalidParameterError(f"lambda must be within [0, 1], got {self.lam}")
        if self.prune_threshold < 0:
            raise InvalidParameterError(f"prune threshold must be >= 0, got {self.prune_threshold}")
        if self.xi <= 0:
            raise InvalidParameterError(f"xi must be > 0, got {self.xi}")
        if self.disk_threshold < 0:
            raise InvalidParameterError(f"disk threshold must be >= 0, got {self.disk_threshold}")
        if self.grid_size < 1:
            raise InvalidParameterError(f"grid size must be >= 1, got {self.grid_size}")
        if self.n_jobs == 0:
            raise InvalidParameterError("n_jobs must be non-zero")
        if self.max_fallback_fraction is not None and not 0.0 <= self.max_fallback_fraction <= 1.0:
            raise InvalidParameterError(
                f"max fallback fraction must be within [0, 1], got {self.max_fallback_fraction}"
            )

    @classmethod
    def from_dict(cls, cfg: Dict[str, Any]) -> "TreeConfig":
        """Build a config from the nested YAML layout (``tree``, ``pruning``, ...)."""

        scratch_dir = get_nested(cfg, ["tree", "scratch_dir"], None)
        fallback = get_nested(cfg, ["similarity", "max_fallback_fraction"], None)
        return cls(
            lam=float(get_nested(cfg, ["tree", "lambda"], 0.5)),
            prune_threshold=float(get_nested(cfg, ["pruning", "threshold"], 0.1)),
            xi=float(get_nested(cfg, ["pruning", "xi"], 1.0)),
            disk_threshold=int(get_nested(cfg, ["tree", "disk_threshold"], DEFAULT_DISK_THRESHOLD)),
            grid_size=int(get_nested(cfg, ["geometry", "grid_size"], DEFAULT_GRID_SIZE)),
            n_jobs=int(get_nested(cfg, ["tree", "n_jobs"], 1)),
            scratch_dir=Path(scratch_dir) if scratch_dir else None,
            max_fallback_fraction=float(fallback) if fallback is not None else None,
            min_lookups=int(get_nested(cfg, ["similarity", "min_lookups"], 20)),
            calculate_summary=bool(get_nested(cfg, ["pruning", "calculate_summary"], False)),
        )

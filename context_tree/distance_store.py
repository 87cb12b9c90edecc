"""Pairwise distance storage for the context tree builder.

Rows are keyed by an outer cluster id and map inner cluster ids to distances.
Small runs keep every row in memory; large runs spill one ``joblib`` blob per
row into a private scratch directory. Both implementations behave identically,
so callers never branch on the storage mode.
"""

from __future__ import annotations

import hashlib
import logging
import os
import shutil
import tempfile
import weakref
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, Hashable, Iterable, Iterator, Optional, Tuple

import joblib
from joblib import Parallel, delayed

from .config import DEFAULT_DISK_THRESHOLD
from .errors import DistanceStoreError

Row = Dict[Hashable, float]


class DistanceStore(ABC):
    """Interface shared by the in-memory and disk-backed stores."""

    def __init__(self) -> None:
        self.logger: logging.Logger = logging.getLogger(self.__class__.__name__)

    @abstractmethod
    def get(self, outer_id: Hashable) -> Row:
        """Return a copy of the row for ``outer_id`` (empty if unknown)."""

    @abstractmethod
    def set(self, outer_id: Hashable, row: Row) -> None:
        """Replace the row for ``outer_id``."""

    @abstractmethod
    def delete(self, ids: Iterable[Hashable]) -> None:
        """Remove each id's row and every entry for it inside other rows."""

    @abstractmethod
    def enumerate(self) -> Iterator[Tuple[Hashable, Row]]:
        """Lazily yield ``(outer_id, row)`` in insertion order."""

    @abstractmethod
    def __len__(self) -> int:
        ...

    def close(self) -> None:
        """Release any resources held by the store."""

    def __iter__(self) -> Iterator[Tuple[Hashable, Row]]:
        return self.enumerate()

    def __contains__(self, outer_id: Hashable) -> bool:
        return bool(self.get(outer_id))

    def __enter__(self) -> "DistanceStore":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


def _as_id_list(ids: Iterable[Hashable] | Hashable) -> list:
    if isinstance(ids, (str, bytes)) or not isinstance(ids, Iterable):
        return [ids]
    return list(ids)


class MemoryDistanceStore(DistanceStore):
    """Keeps every row in a dict."""

    def __init__(self) -> None:
        super().__init__()
        self._rows: Dict[Hashable, Row] = {}

    def get(self, outer_id: Hashable) -> Row:
        # Looking up a missing key must not create a row.
        row = self._rows.get(outer_id)
        return dict(row) if row is not None else {}

    def set(self, outer_id: Hashable, row: Row) -> None:
        self._rows[outer_id] = dict(row)

    def delete(self, ids: Iterable[Hashable] | Hashable) -> None:
        doomed = set(_as_id_list(ids))
        for key in doomed:
            self._rows.pop(key, None)
        for row in self._rows.values():
            for key in doomed.intersection(row):
                del row[key]

    def enumerate(self) -> Iterator[Tuple[Hashable, Row]]:
        for outer_id in list(self._rows):
            yield outer_id, dict(self._rows[outer_id])

    def __len__(self) -> int:
        return len(self._rows)


def _load_row(path: Path) -> Row:
    try:
        return joblib.load(path)
    except Exception as exc:
        raise DistanceStoreError(f"Failed to read distance row {path}: {exc}") from exc


def _write_row(path: Path, row: Row) -> None:
    """Write a row to a temporary file and atomically move it into place."""

    tmp_path = path.with_name(path.name + ".tmp")
    try:
        joblib.dump(row, tmp_path)
        os.replace(tmp_path, path)
    except Exception as exc:
        raise DistanceStoreError(f"Failed to write distance row {path}: {exc}") from exc


def _purge_row(path: Path, doomed: frozenset) -> bool:
    """Drop ``doomed`` ids from the row stored at ``path``; True if rewritten."""

    row = _load_row(path)
    stale = doomed.intersection(row)
    if not stale:
        return False
    for key in stale:
        del row[key]
    _write_row(path, row)
    return True


class DiskDistanceStore(DistanceStore):
    """Stores one ``joblib`` blob per outer id in a private scratch directory.

    The directory is removed by :meth:`close`, on context exit, or when the
    store is garbage collected or the interpreter exits.
    """

    def __init__(self, scratch_dir: Optional[str | Path] = None, n_jobs: int = 1) -> None:
        super().__init__()
        if scratch_dir is not None:
            Path(scratch_dir).mkdir(parents=True, exist_ok=True)
        self.directory = Path(tempfile.mkdtemp(prefix="distance_store_", dir=scratch_dir))
        self.n_jobs = n_jobs
        self._files: Dict[Hashable, Path] = {}
        self._finalizer = weakref.finalize(self, shutil.rmtree, str(self.directory), True)
        self.logger.warning("Entering disk-based storage mode in %s", self.directory)

    def _file_path(self, outer_id: Hashable) -> Path:
        digest = hashlib.sha1(repr(outer_id).encode("utf-8")).hexdigest()
        return self.directory / f"{digest}.joblib"

    def get(self, outer_id: Hashable) -> Row:
        path = self._files.get(outer_id)
        return _load_row(path) if path is not None else {}

    def set(self, outer_id: Hashable, row: Row) -> None:
        path = self._files.get(outer_id)
        if path is None:
            path = self._file_path(outer_id)
            self._files[outer_id] = path
        _write_row(path, dict(row))

    def delete(self, ids: Iterable[Hashable] | Hashable) -> None:
        doomed = frozenset(_as_id_list(ids))
        for key in doomed:
            path = self._files.pop(key, None)
            if path is not None:
                self.logger.debug("Deleting %s", path)
                try:
                    path.unlink()
                except OSError as exc:
                    raise DistanceStoreError(f"Failed to delete distance row {path}: {exc}") from exc

        # One rewrite per remaining file for the whole invalidation set.
        paths = list(self._files.values())
        if not paths or not doomed:
            return
        rewritten = Parallel(n_jobs=self.n_jobs, prefer="threads")(
            delayed(_purge_row)(path, doomed) for path in paths
        )
        self.logger.debug("Rewrote %d of %d distance rows", sum(rewritten), len(paths))

    def enumerate(self) -> Iterator[Tuple[Hashable, Row]]:
        for outer_id, path in list(self._files.items()):
            yield outer_id, _load_row(path)

    def __len__(self) -> int:
        return len(self._files)

    @property
    def closed(self) -> bool:
        return not self._finalizer.alive

    def close(self) -> None:
        if self._finalizer.alive:
            self.logger.info("Removing distance store scratch directory %s", self.directory)
            self._finalizer()
        self._files.clear()


def open_distance_store(
    n_clusters: int,
    disk_threshold: int = DEFAULT_DISK_THRESHOLD,
    scratch_dir: Optional[str | Path] = None,
    n_jobs: int = 1,
) -> DistanceStore:
    """Pick the disk-backed store when ``n_clusters`` exceeds ``disk_threshold``."""

    if n_clusters > disk_threshold:
        return DiskDistanceStore(scratch_dir=scratch_dir, n_jobs=n_jobs)
    return MemoryDistanceStore()

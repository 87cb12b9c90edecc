"""Error taxonomy for context tree construction and pruning.

Every error here aborts the current tree-building run: they signal a violated
precondition, not a transient fault.
"""

from __future__ import annotations


class ContextTreeError(Exception):
    """Base class for all context tree failures."""


class InvalidMergeError(ContextTreeError):
    """A node was merged with itself or with a node it already absorbed."""


class SelfReferenceError(ContextTreeError):
    """A node was added as its own child."""


class DegenerateGeometryError(ContextTreeError, ValueError):
    """A hull or centroid was requested for an empty point set."""


class InvalidParameterError(ContextTreeError, ValueError):
    """A tuning parameter is outside its valid range."""


class UtilityRangeError(ContextTreeError):
    """A computed utility fell outside [0, 1]."""


class StorageCostError(ContextTreeError):
    """A computed storage cost was not strictly positive."""


class DistanceStoreError(ContextTreeError):
    """A disk-backed distance row could not be read or written."""


class SimilarityLookupError(ContextTreeError):
    """Too many tag similarity lookups fell back to 0.0."""

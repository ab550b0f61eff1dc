"""
lmconstraints/errors.py
=======================
Exceptions raised while building constraints.

Every failure is raised before any output is returned. Callers decide
whether to lower k, filter the dataset, or give up.
"""

from __future__ import annotations


class ConstraintsError(ValueError):
    """Base class for all constraint-generation failures."""


class DimensionMismatch(ConstraintsError):
    """Dataset and label vector disagree on the number of points."""

    def __init__(self, n_points: int, n_labels: int, message: str | None = None):
        self.n_points = n_points
        self.n_labels = n_labels
        super().__init__(
            message or f"Dataset has {n_points} points but {n_labels} labels were given")


class InsufficientReferencePoints(ConstraintsError):
    """A reference group holds fewer than k points for a queried label."""

    def __init__(self, label, available: int, k: int, group: str = "reference"):
        self.label     = label
        self.available = available
        self.k         = k
        self.group     = group
        super().__init__(
            f"Label {label!r}: {group} group has {available} points, "
            f"need at least k={k}. Reduce k or filter the dataset.")


class IndexOutOfRange(ConstraintsError):
    """A point selection references an index outside [0, N)."""

    def __init__(self, index: int, n_points: int, what: str = "index"):
        self.index    = index
        self.n_points = n_points
        super().__init__(f"{what} {index} is outside [0, {n_points})")

"""
lmconstraints/partition.py
==========================
Label partition cache.

For every distinct label L the partition holds
    same(L) : ascending indices of points labelled L
    diff(L) : ascending indices of points not labelled L

The index arrays are read-only and shared by every query that needs them.
A Partition never changes after construction; LabelPartitioner swaps in a
new one whenever the labels change.
"""

from __future__ import annotations

import logging
import threading
import time
from typing import Optional

import numpy as np

from lmconstraints.errors import DimensionMismatch

logger = logging.getLogger(__name__)


def _frozen(a: np.ndarray) -> np.ndarray:
    a.flags.writeable = False
    return a


class Partition:
    """Immutable label → (same, diff) index mapping built from one label vector."""

    def __init__(self, labels: np.ndarray):
        labels = np.asarray(labels)
        if labels.ndim != 1:
            raise DimensionMismatch(labels.size, labels.size,
                                    f"labels must be 1-D, got shape {labels.shape}")

        self._labels = _frozen(labels.copy())
        unique, inverse, counts = np.unique(
            labels, return_inverse=True, return_counts=True)
        inverse = inverse.reshape(-1)
        self._unique  = _frozen(unique)
        self._inverse = _frozen(inverse.astype(np.int64))

        # bucket once: stable sort by label position keeps indices ascending
        order   = np.argsort(inverse, kind="stable").astype(np.int64)
        buckets = np.split(order, np.cumsum(counts)[:-1]) if len(unique) else []

        self._same: list[np.ndarray] = [_frozen(b) for b in buckets]
        self._diff: list[np.ndarray] = [
            _frozen(np.flatnonzero(inverse != c).astype(np.int64))
            for c in range(len(unique))
        ]

    # ── lookup ────────────────────────────────────────────────────────────────

    def position(self, label) -> int:
        """Position of a label value in unique_labels."""
        pos = int(np.searchsorted(self._unique, label))
        if pos >= len(self._unique) or self._unique[pos] != label:
            raise KeyError(f"Label {label!r} does not occur in the dataset")
        return pos

    def same(self, label) -> np.ndarray:
        return self._same[self.position(label)]

    def diff(self, label) -> np.ndarray:
        return self._diff[self.position(label)]

    def same_at(self, pos: int) -> np.ndarray:
        return self._same[pos]

    def diff_at(self, pos: int) -> np.ndarray:
        return self._diff[pos]

    def label_of(self, index: int):
        return self._labels[index]

    def positions_of(self, indices: np.ndarray) -> np.ndarray:
        """Label position of every given point."""
        return self._inverse[indices]

    def group_counts(self) -> dict:
        """{label: size of its same-label group}."""
        return {lab.item() if hasattr(lab, "item") else lab: len(s)
                for lab, s in zip(self._unique, self._same)}

    def matches(self, labels: np.ndarray) -> bool:
        labels = np.asarray(labels)
        if labels.shape != self._labels.shape or labels.dtype.kind != self._labels.dtype.kind:
            return False
        return np.array_equal(labels, self._labels)

    # ── properties ────────────────────────────────────────────────────────────

    @property
    def labels(self) -> np.ndarray:
        return self._labels

    @property
    def unique_labels(self) -> np.ndarray:
        return self._unique

    @property
    def n_labels(self) -> int:
        return len(self._unique)

    def __len__(self) -> int:
        return len(self._labels)

    def __repr__(self) -> str:
        return f"Partition(n_points={len(self)}, n_labels={self.n_labels})"


class LabelPartitioner:
    """
    Builds and caches the Partition for the current label vector.

    precalculate() is the normal entry point: it rebuilds only when the
    labels differ from the cached ones, so callers may invoke it on every
    request. Rebuilds are serialised by a lock; readers keep whichever
    Partition object they already hold.
    """

    def __init__(self, k: Optional[int] = None):
        self._k         = k
        self._partition: Optional[Partition] = None
        self._lock      = threading.Lock()

    def precalculate(self, labels) -> Partition:
        """Return the partition for `labels`, building it if the cache is stale."""
        labels = np.asarray(labels)
        with self._lock:
            current = self._partition
            if current is not None and current.matches(labels):
                logger.debug("Partition up to date, nothing to do")
                return current
            return self._build(labels)

    def recompute(self, labels) -> Partition:
        """Rebuild unconditionally."""
        with self._lock:
            return self._build(np.asarray(labels))

    def invalidate(self) -> None:
        with self._lock:
            self._partition = None
        logger.debug("Partition invalidated")

    def _build(self, labels: np.ndarray) -> Partition:
        t0 = time.time()
        partition = Partition(labels)
        self._partition = partition
        logger.info(f"Partition built: {len(partition):,} points, "
                    f"{partition.n_labels} labels in {time.time()-t0:.3f}s")
        if self._k is not None:
            self._warn_small_groups(partition)
        return partition

    def _warn_small_groups(self, partition: Partition) -> None:
        n = len(partition)
        for lab, size in partition.group_counts().items():
            if size - 1 < self._k:
                logger.warning(f"Label {lab!r} has {size} points: target neighbours "
                               f"for it will fail with k={self._k}")
            if n - size < self._k:
                logger.warning(f"Label {lab!r} has {n - size} differently labelled "
                               f"points: impostors for it will fail with k={self._k}")

    @property
    def precalculated(self) -> bool:
        return self._partition is not None

    @property
    def partition(self) -> Optional[Partition]:
        return self._partition

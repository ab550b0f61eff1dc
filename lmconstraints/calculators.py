"""
lmconstraints/calculators.py
============================
Target neighbours and impostors.

Both calculators work the same way:
    queried points → grouped by label → one batched adapter call per label
    → columns scattered back into a k×Q result.

Every point of label L shares the same reference set (same(L) for target
neighbours, diff(L) for impostors), so the engine builds that reference
index once per label instead of once per point. A column depends only on
its own query point and its label's reference set, which makes batch and
explicit-point results identical to the matching full-dataset columns.
"""

from __future__ import annotations

import logging
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Optional, Sequence

import numpy as np

from lmconstraints.adapter import NeighborQueryAdapter, NeighborResult
from lmconstraints.errors import (DimensionMismatch, IndexOutOfRange,
                                  InsufficientReferencePoints)
from lmconstraints.partition import LabelPartitioner, Partition
from lmconstraints.search import SearchEngine

logger = logging.getLogger(__name__)


# ══════════════════════════════════════════════════════════════════════════════
# INPUT HANDLING
# ══════════════════════════════════════════════════════════════════════════════

def as_points(dataset, labels) -> tuple[np.ndarray, np.ndarray]:
    """
    Check a D×N dataset against its labels.

    Returns
    -------
    (points [N, D] float64 contiguous, labels [N])
    """
    dataset = np.asarray(dataset)
    labels  = np.asarray(labels)
    if dataset.ndim != 2:
        raise DimensionMismatch(dataset.size, labels.size,
                                f"dataset must be a 2-D D×N matrix, got shape {dataset.shape}")
    if labels.ndim != 1:
        raise DimensionMismatch(dataset.shape[1], labels.size,
                                f"labels must be 1-D, got shape {labels.shape}")
    if dataset.shape[1] != len(labels):
        raise DimensionMismatch(dataset.shape[1], len(labels))
    return np.ascontiguousarray(dataset.T, dtype=np.float64), labels


def resolve_points(
    n_points: int,
    begin: Optional[int] = None,
    batch_size: Optional[int] = None,
    points: Optional[Sequence[int]] = None,
) -> np.ndarray:
    """
    Turn a query selection into an array of dataset indices.

    Exactly one of these forms is used:
        nothing                → every point, 0..N-1
        begin / batch_size     → begin .. begin+batch_size-1 (either may be
                                 omitted: begin defaults to 0, batch_size to
                                 the rest of the dataset)
        points                 → the given indices, in the given order
    """
    if points is not None:
        if begin is not None or batch_size is not None:
            raise ValueError("Pass either points or begin/batch_size, not both")
        pts = np.asarray(points)
        if pts.ndim != 1:
            raise ValueError(f"points must be 1-D, got shape {pts.shape}")
        if pts.size and not np.issubdtype(pts.dtype, np.integer):
            raise ValueError(f"points must hold integer indices, got dtype {pts.dtype}")
        bad = pts[(pts < 0) | (pts >= n_points)]
        if bad.size:
            raise IndexOutOfRange(int(bad[0]), n_points, "point index")
        return pts.astype(np.int64)

    if begin is None and batch_size is None:
        return np.arange(n_points, dtype=np.int64)

    begin = 0 if begin is None else int(begin)
    if begin < 0 or begin >= n_points:
        raise IndexOutOfRange(begin, n_points, "begin")
    batch_size = n_points - begin if batch_size is None else int(batch_size)
    if batch_size < 0:
        raise ValueError(f"batch_size must be non-negative, got {batch_size}")
    if begin + batch_size > n_points:
        raise IndexOutOfRange(begin + batch_size - 1, n_points, "last batch index")
    return np.arange(begin, begin + batch_size, dtype=np.int64)


# ══════════════════════════════════════════════════════════════════════════════
# CALCULATORS
# ══════════════════════════════════════════════════════════════════════════════

class _LabelGroupedCalculator:
    """Shared driver; subclasses pick the reference group."""

    kind         = "neighbours"
    group_name   = "reference"
    exclude_self = False

    def __init__(
        self,
        k: int,
        partitioner: LabelPartitioner,
        engine: SearchEngine,
        n_threads: int = 1,
    ):
        self.k           = k
        self.partitioner = partitioner
        self.engine      = engine
        self._n_threads  = 1
        self._executor: Optional[ThreadPoolExecutor] = None
        self.set_threads(n_threads)

    def _reference(self, partition: Partition, pos: int) -> np.ndarray:
        raise NotImplementedError

    # ── threads ───────────────────────────────────────────────────────────────

    def set_threads(self, n: int) -> None:
        """Set number of threads for parallel per-label search."""
        self._n_threads = max(1, int(n))
        # Recreate persistent executor with new thread count
        if self._executor is not None:
            self._executor.shutdown(wait=True)
        self._executor = ThreadPoolExecutor(max_workers=self._n_threads) \
            if self._n_threads > 1 else None

    @property
    def n_threads(self) -> int:
        return self._n_threads

    def close(self) -> None:
        if self._executor is not None:
            self._executor.shutdown(wait=True)
            self._executor = None

    # ── public ────────────────────────────────────────────────────────────────

    def compute(
        self,
        dataset,
        labels,
        begin: Optional[int] = None,
        batch_size: Optional[int] = None,
        points: Optional[Sequence[int]] = None,
        return_distances: bool = False,
    ) -> NeighborResult:
        """
        k nearest neighbours of the selected points within their reference groups.

        Parameters
        ----------
        dataset          : D×N matrix, one column per point.
        labels           : N labels.
        begin, batch_size: contiguous selection (see resolve_points).
        points           : explicit selection (see resolve_points).
        return_distances : also fill NeighborResult.distances.

        Returns
        -------
        NeighborResult with k×Q global indices, Q = number of selected points.
        """
        pts, labels = as_points(dataset, labels)
        partition   = self.partitioner.precalculate(labels)
        query_ids   = resolve_points(len(labels), begin, batch_size, points)
        return self.compute_for(pts, partition, query_ids, return_distances)

    def compute_for(
        self,
        pts: np.ndarray,
        partition: Partition,
        query_ids: np.ndarray,
        return_distances: bool = False,
    ) -> NeighborResult:
        """Same as compute() on already validated points, partition and selection."""
        t0 = time.time()
        k  = self.k
        Q  = len(query_ids)

        # group query columns by label position
        positions = partition.positions_of(query_ids)
        groups = [(int(p), np.flatnonzero(positions == p)) for p in np.unique(positions)]

        # fail before any search if some group is too small
        for pos, _ in groups:
            self.check(partition, pos)

        indices   = np.empty((k, Q), dtype=np.int64)
        distances = np.empty((k, Q), dtype=np.float64) if return_distances else None
        adapter   = NeighborQueryAdapter(pts, self.engine)

        def run(pos: int, cols: np.ndarray) -> None:
            res = adapter.query(
                self._reference(partition, pos),
                query_ids[cols],
                k,
                exclude_self     = self.exclude_self,
                return_distances = return_distances,
                label            = partition.unique_labels[pos],
            )
            # each label owns a disjoint set of columns
            indices[:, cols] = res.indices
            if return_distances:
                distances[:, cols] = res.distances

        if self._executor is not None and len(groups) > 1:
            futures = {self._executor.submit(run, pos, cols): pos for pos, cols in groups}
            for future in as_completed(futures):
                future.result()
        else:
            for pos, cols in groups:
                run(pos, cols)

        logger.info(f"{self.kind.capitalize()}: {Q:,} points over {len(groups)} labels "
                    f"(k={k}) in {time.time()-t0:.3f}s")
        return NeighborResult(indices=indices, distances=distances)

    def check(self, partition: Partition, pos: int) -> None:
        available = len(self._reference(partition, pos)) - (1 if self.exclude_self else 0)
        if available < self.k:
            raise InsufficientReferencePoints(
                partition.unique_labels[pos], max(available, 0), self.k,
                group=self.group_name)


class TargetNeighborCalculator(_LabelGroupedCalculator):
    """k nearest same-label points of each queried point (never the point itself)."""

    kind         = "target neighbours"
    group_name   = "same-label"
    exclude_self = True

    def _reference(self, partition: Partition, pos: int) -> np.ndarray:
        return partition.same_at(pos)


class ImpostorCalculator(_LabelGroupedCalculator):
    """k nearest differently labelled points of each queried point."""

    kind         = "impostors"
    group_name   = "different-label"
    exclude_self = False

    def _reference(self, partition: Partition, pos: int) -> np.ndarray:
        return partition.diff_at(pos)

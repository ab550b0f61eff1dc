"""
lmconstraints/constraints.py
============================
Distance-based constraints for metric learning.

Usage:
    from lmconstraints import Constraints

    constraints = Constraints(k=3)                      # euclidean, brute force

    # dataset is D×N (one column per point), labels has N entries
    targets   = constraints.target_neighbors(dataset, labels).indices   # k×N
    imp, dist = constraints.impostors(dataset, labels, return_distances=True)
    triplets  = constraints.triplets(dataset, labels)                   # 3×(N·k²)

    # mini-batches reuse the cached label partition
    batch = constraints.impostors(dataset, labels, begin=128, batch_size=64)
    some  = constraints.target_neighbors(dataset, labels, points=[5, 17, 2])
"""

from __future__ import annotations

import logging
from typing import Callable, Optional, Sequence

import numpy as np

from lmconstraints.adapter import NeighborResult
from lmconstraints.calculators import ImpostorCalculator, TargetNeighborCalculator
from lmconstraints.config import settings
from lmconstraints.metrics import Metric, get_metric
from lmconstraints.partition import LabelPartitioner, Partition
from lmconstraints.search import SearchEngine, make_engine
from lmconstraints.triplets import TripletGenerator

logger = logging.getLogger(__name__)


class Constraints:
    """
    Target neighbours, impostors and triplets for a labelled dataset.

    k, the metric and the search backend are fixed at construction. The
    label partition is cached and rebuilt automatically whenever a call
    sees different labels; recompute() and invalidate() control it
    explicitly.

    Parameters
    ----------
    k              : target neighbours and impostors per point (≥ 1).
    metric         : metric name, Metric, or callable f(u, v) -> float.
    backend        : 'brute', 'tree' or 'faiss'.
    n_threads      : threads for parallel per-label search (1 = sequential).
    leaf_size      : tree backend leaf size.
    tree_algorithm : 'kd_tree' or 'ball_tree' for the tree backend.
    engine         : ready-made SearchEngine; overrides metric and backend.
    """

    def __init__(
        self,
        k: Optional[int] = None,
        metric: Optional[str | Metric | Callable] = None,
        backend: Optional[str] = None,
        n_threads: Optional[int] = None,
        leaf_size: Optional[int] = None,
        tree_algorithm: Optional[str] = None,
        engine: Optional[SearchEngine] = None,
    ):
        k = settings.default_k if k is None else k
        if isinstance(k, bool) or not isinstance(k, (int, np.integer)) or k < 1:
            raise ValueError(f"k must be a positive integer, got {k!r}")
        self._k = int(k)

        if engine is None:
            engine = make_engine(
                backend or settings.backend,
                get_metric(metric if metric is not None else settings.metric),
                tree_algorithm = tree_algorithm or settings.tree_algorithm,
                leaf_size      = leaf_size or settings.leaf_size,
            )
        self._engine = engine

        n_threads = settings.n_threads if n_threads is None else n_threads
        self._partitioner = LabelPartitioner(k=self._k)
        self._targets     = TargetNeighborCalculator(
            self._k, self._partitioner, engine, n_threads=n_threads)
        self._impostors   = ImpostorCalculator(
            self._k, self._partitioner, engine, n_threads=n_threads)
        self._triplets    = TripletGenerator(self._targets, self._impostors)

        logger.debug(f"Created {self!r}")

    # ══════════════════════════════════════════════════════════════════════════
    # CONSTRAINTS
    # ══════════════════════════════════════════════════════════════════════════

    def target_neighbors(
        self,
        dataset,
        labels,
        begin: Optional[int] = None,
        batch_size: Optional[int] = None,
        points: Optional[Sequence[int]] = None,
        return_distances: bool = False,
    ) -> NeighborResult:
        """
        k nearest same-label neighbours of each selected point.

        Parameters
        ----------
        dataset          : D×N matrix, one column per point.
        labels           : N labels.
        begin, batch_size: contiguous selection begin .. begin+batch_size-1.
        points           : explicit selection of point indices.
        return_distances : also return the k×Q distances.

        Returns
        -------
        NeighborResult (k×Q indices, optional k×Q distances).
        """
        return self._targets.compute(dataset, labels, begin, batch_size, points,
                                     return_distances)

    def impostors(
        self,
        dataset,
        labels,
        begin: Optional[int] = None,
        batch_size: Optional[int] = None,
        points: Optional[Sequence[int]] = None,
        return_distances: bool = False,
    ) -> NeighborResult:
        """k nearest differently labelled points of each selected point.

        Same arguments and result shape as target_neighbors().
        """
        return self._impostors.compute(dataset, labels, begin, batch_size, points,
                                       return_distances)

    def triplets(
        self,
        dataset,
        labels,
        begin: Optional[int] = None,
        batch_size: Optional[int] = None,
        points: Optional[Sequence[int]] = None,
    ) -> np.ndarray:
        """3×(Q·k²) matrix of (anchor, target, impostor) columns."""
        return self._triplets.compute(dataset, labels, begin, batch_size, points)

    # ══════════════════════════════════════════════════════════════════════════
    # PARTITION
    # ══════════════════════════════════════════════════════════════════════════

    def precalculate(self, labels) -> Partition:
        """Build the label partition if it is missing or stale."""
        return self._partitioner.precalculate(labels)

    def recompute(self, labels) -> Partition:
        """Rebuild the label partition unconditionally."""
        return self._partitioner.recompute(labels)

    def invalidate(self) -> None:
        self._partitioner.invalidate()

    # ══════════════════════════════════════════════════════════════════════════
    # PROPERTIES
    # ══════════════════════════════════════════════════════════════════════════

    @property
    def k(self) -> int:
        return self._k

    @property
    def metric(self) -> Metric:
        return self._engine.metric

    @property
    def backend(self) -> str:
        return self._engine.name

    @property
    def engine(self) -> SearchEngine:
        return self._engine

    @property
    def precalculated(self) -> bool:
        return self._partitioner.precalculated

    @property
    def partition(self) -> Optional[Partition]:
        return self._partitioner.partition

    @property
    def n_threads(self) -> int:
        return self._targets.n_threads

    def set_threads(self, n: int) -> None:
        """Set number of threads for parallel per-label search."""
        self._targets.set_threads(n)
        self._impostors.set_threads(n)
        logger.info(f"Thread count set to {self.n_threads}")

    def close(self) -> None:
        """Shut down worker threads."""
        self._targets.close()
        self._impostors.close()

    def __enter__(self) -> "Constraints":
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    def __repr__(self) -> str:
        return (f"Constraints(k={self._k}, metric={self.metric.name!r}, "
                f"backend={self.backend!r}, n_threads={self.n_threads}, "
                f"precalculated={self.precalculated})")

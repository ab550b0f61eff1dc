"""
lmconstraints/triplets.py
=========================
(anchor, target, impostor) triplets for margin-based metric learning.
"""

from __future__ import annotations

import logging
from typing import Optional, Sequence

import numpy as np

from lmconstraints.calculators import (ImpostorCalculator, TargetNeighborCalculator,
                                       as_points, resolve_points)

logger = logging.getLogger(__name__)


class TripletGenerator:
    """
    Combines target neighbours and impostors into k² triplets per anchor.

    For anchor i the columns are
        (i, targets[r, i], impostors[s, i])   r = 0..k-1 (outer), s = 0..k-1 (inner)
    and anchors follow each other in selection order.
    """

    def __init__(self, targets: TargetNeighborCalculator, impostors: ImpostorCalculator):
        if targets.k != impostors.k:
            raise ValueError(f"Calculators disagree on k: {targets.k} vs {impostors.k}")
        if targets.partitioner is not impostors.partitioner:
            raise ValueError("Calculators must share one LabelPartitioner")
        self.targets   = targets
        self.impostors = impostors

    @property
    def k(self) -> int:
        return self.targets.k

    def compute(
        self,
        dataset,
        labels,
        begin: Optional[int] = None,
        batch_size: Optional[int] = None,
        points: Optional[Sequence[int]] = None,
    ) -> np.ndarray:
        """
        Triplets for the selected anchors (all points by default).

        Returns
        -------
        int64 array [3, Q·k²] with rows (anchor, target, impostor).
        """
        pts, labels = as_points(dataset, labels)
        partition   = self.targets.partitioner.precalculate(labels)
        anchors     = resolve_points(len(labels), begin, batch_size, points)

        # both checks run before either search, so nothing is computed on failure
        for pos in np.unique(partition.positions_of(anchors)):
            self.targets.check(partition, int(pos))
            self.impostors.check(partition, int(pos))

        neighbors = self.targets.compute_for(pts, partition, anchors).indices
        impostors = self.impostors.compute_for(pts, partition, anchors).indices
        triplets  = build_triplets(anchors, neighbors, impostors)

        logger.info(f"Triplets: {triplets.shape[1]:,} from {len(anchors):,} anchors "
                    f"(k={self.k})")
        return triplets


def build_triplets(anchors: np.ndarray, neighbors: np.ndarray,
                   impostors: np.ndarray) -> np.ndarray:
    """Cartesian product of each anchor's k targets and k impostors → [3, Q·k²]."""
    k, Q = neighbors.shape
    out = np.empty((3, Q, k, k), dtype=np.int64)
    out[0] = np.asarray(anchors, dtype=np.int64)[:, None, None]
    out[1] = neighbors.T[:, :, None]      # varies with r (outer)
    out[2] = impostors.T[:, None, :]      # varies with s (inner)
    return out.reshape(3, Q * k * k)

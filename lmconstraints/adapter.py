"""
lmconstraints/adapter.py
========================
Restricted-domain neighbour queries.

NeighborQueryAdapter is the only code that talks to a SearchEngine. It cuts
the reference and query rows out of the dataset, runs one batched search,
and maps the engine's local reference positions back to dataset indices
(the same id-map trick a per-cluster index uses: gids[local_ids]).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

import numpy as np

from lmconstraints.errors import InsufficientReferencePoints
from lmconstraints.search import SearchEngine

logger = logging.getLogger(__name__)


@dataclass
class NeighborResult:
    """
    k×Q neighbour indices, optionally with k×Q distances.

    Column c belongs to the c-th query point; rows run from nearest to
    farthest.
    """
    indices:   np.ndarray
    distances: Optional[np.ndarray] = None

    @property
    def k(self) -> int:
        return self.indices.shape[0]

    @property
    def n_queries(self) -> int:
        return self.indices.shape[1]

    def __iter__(self):
        # allows `idx, dist = result`
        yield self.indices
        yield self.distances


class NeighborQueryAdapter:
    """
    Runs k-NN queries whose reference set is a subset of the dataset.

    Parameters
    ----------
    points : float array [N, D], one row per dataset point.
    engine : SearchEngine used for every query.
    """

    def __init__(self, points: np.ndarray, engine: SearchEngine):
        self.points = points
        self.engine = engine

    def query(
        self,
        reference_ids: np.ndarray,
        query_ids: np.ndarray,
        k: int,
        exclude_self: bool = False,
        return_distances: bool = False,
        label=None,
    ) -> NeighborResult:
        """
        k nearest members of `reference_ids` for each of `query_ids`.

        Parameters
        ----------
        reference_ids    : global indices the neighbours are drawn from.
        query_ids        : global indices of the query points.
        k                : neighbours per query.
        exclude_self     : a query never appears among its own neighbours.
                           Every query must then be a member of reference_ids.
        return_distances : also return the k×Q distance matrix.
        label            : label the reference group belongs to, for errors.

        Returns
        -------
        NeighborResult with k×len(query_ids) global indices.
        """
        reference_ids = np.asarray(reference_ids, dtype=np.int64)
        query_ids     = np.asarray(query_ids, dtype=np.int64)

        available = len(reference_ids) - (1 if exclude_self else 0)
        if available < k:
            raise InsufficientReferencePoints(
                label, max(available, 0), k,
                group="same-label" if exclude_self else "reference")

        search_k = k + 1 if exclude_self else k
        dist, lids = self.engine.search(
            self.points[reference_ids], self.points[query_ids], search_k)
        gids = reference_ids[lids]                          # [Q, search_k]

        if exclude_self:
            gids, dist = _drop_self(gids, dist, query_ids, k)

        logger.debug(f"Query: {len(query_ids)} points against "
                     f"{len(reference_ids)} references (k={k}, label={label!r})")

        return NeighborResult(
            indices   = np.ascontiguousarray(gids.T),
            distances = np.ascontiguousarray(dist.T) if return_distances else None,
        )


def _drop_self(
    gids: np.ndarray,
    dist: np.ndarray,
    query_ids: np.ndarray,
    k: int,
) -> tuple[np.ndarray, np.ndarray]:
    """
    Remove each query's own index from its row of k+1 neighbours.

    Exact duplicates of a point can push the point itself out of the k+1
    returned; the row then has no self entry and its last column is dropped.
    """
    is_self = gids == query_ids[:, None]
    # keep the first k non-self entries of every row
    keep = ~is_self & (np.cumsum(~is_self, axis=1) <= k)
    gids = gids[keep].reshape(len(query_ids), k)
    dist = dist[keep].reshape(len(query_ids), k)
    return gids, dist

"""
lmconstraints/search.py
=======================
Nearest-neighbour search engines.

Every engine answers one question: given a reference set [R, D] and a
query set [Q, D], return for each query the k nearest reference rows as
(distances [Q, k], local_indices [Q, k]) sorted by ascending distance.
Indices are local to the reference set; mapping them back to dataset
indices is the adapter's job.

Backends:
    brute : exact scipy cdist + stable argsort. Any metric, custom ones too.
    tree  : sklearn NearestNeighbors (kd_tree / ball_tree).
    faiss : faiss IndexFlatL2. euclidean / sqeuclidean only.
"""

from __future__ import annotations

import logging
from typing import Optional

import faiss
import numpy as np
from sklearn.neighbors import NearestNeighbors

from lmconstraints.metrics import Metric, get_metric

logger = logging.getLogger(__name__)

# rows of the [Q, R] distance matrix computed at once by the brute engine
_BRUTE_QUERY_CHUNK = 1024


class SearchEngine:
    """Base class. Subclasses implement _search()."""

    name = "base"

    def __init__(self, metric: str | Metric = "euclidean"):
        self.metric = get_metric(metric)

    def search(
        self,
        reference: np.ndarray,
        queries: np.ndarray,
        k: int,
    ) -> tuple[np.ndarray, np.ndarray]:
        """
        Find the k nearest reference rows for every query row.

        Parameters
        ----------
        reference : float array [R, D].
        queries   : float array [Q, D].
        k         : neighbours per query, 1 ≤ k ≤ R.

        Returns
        -------
        (distances [Q, k] float64, local_indices [Q, k] int64), each row
        sorted by ascending distance.
        """
        n_ref = len(reference)
        if k > n_ref:
            raise ValueError(f"Reference set has {n_ref} points, cannot return k={k}")
        if len(queries) == 0:
            return (np.empty((0, k), dtype=np.float64),
                    np.empty((0, k), dtype=np.int64))
        dist, idx = self._search(reference, queries, k)
        return dist.astype(np.float64, copy=False), idx.astype(np.int64, copy=False)

    def _search(self, reference: np.ndarray, queries: np.ndarray, k: int):
        raise NotImplementedError

    def __repr__(self) -> str:
        return f"{type(self).__name__}(metric={self.metric.name!r})"


class BruteForceSearch(SearchEngine):
    """Exact search. Ties are broken by the lower reference position."""

    name = "brute"

    def _search(self, reference, queries, k):
        dist_out = np.empty((len(queries), k), dtype=np.float64)
        idx_out  = np.empty((len(queries), k), dtype=np.int64)
        for start in range(0, len(queries), _BRUTE_QUERY_CHUNK):
            stop  = start + _BRUTE_QUERY_CHUNK
            d     = self.metric.pairwise(queries[start:stop], reference)
            order = np.argsort(d, axis=1, kind="stable")[:, :k]
            idx_out[start:stop]  = order
            dist_out[start:stop] = np.take_along_axis(d, order, axis=1)
        return dist_out, idx_out


class TreeSearch(SearchEngine):
    """Space-partitioning tree search via sklearn NearestNeighbors."""

    name = "tree"

    def __init__(
        self,
        metric: str | Metric = "euclidean",
        algorithm: str = "kd_tree",
        leaf_size: int = 20,
        n_jobs: Optional[int] = None,
    ):
        super().__init__(metric)
        if not self.metric.supports_tree:
            raise ValueError(f"Metric {self.metric.name!r} is not supported by the "
                             f"tree backend. Use backend='brute'")
        self.algorithm = algorithm
        self.leaf_size = leaf_size
        self.n_jobs    = n_jobs

    def _search(self, reference, queries, k):
        nn = NearestNeighbors(
            n_neighbors = k,
            algorithm   = self.algorithm,
            leaf_size   = self.leaf_size,
            metric      = self.metric.tree_metric,
            n_jobs      = self.n_jobs,
        )
        nn.fit(reference)
        dist, idx = nn.kneighbors(queries, n_neighbors=k, return_distance=True)
        return self.metric.from_tree(dist), idx

    def __repr__(self) -> str:
        return (f"TreeSearch(metric={self.metric.name!r}, "
                f"algorithm={self.algorithm!r}, leaf_size={self.leaf_size})")


class FaissSearch(SearchEngine):
    """Flat (exact) L2 search on float32 copies through faiss."""

    name = "faiss"

    def __init__(self, metric: str | Metric = "euclidean"):
        super().__init__(metric)
        if not self.metric.supports_faiss:
            raise ValueError(f"Metric {self.metric.name!r} is not supported by the "
                             f"faiss backend. Use 'euclidean' or 'sqeuclidean'")

    def _search(self, reference, queries, k):
        ref = np.ascontiguousarray(reference, dtype=np.float32)
        qs  = np.ascontiguousarray(queries, dtype=np.float32)
        index = faiss.IndexFlatL2(ref.shape[1])
        index.add(ref)
        dist, lids = index.search(qs, k)          # single batched FAISS call
        if (lids < 0).any():
            raise RuntimeError("faiss returned fewer neighbours than requested")
        return self.metric.from_l2sq(dist.astype(np.float64)), lids


_BACKENDS = {
    "brute": BruteForceSearch,
    "tree":  TreeSearch,
    "faiss": FaissSearch,
}


def make_engine(
    backend: str,
    metric: str | Metric = "euclidean",
    tree_algorithm: str = "kd_tree",
    leaf_size: int = 20,
) -> SearchEngine:
    """Build a search engine by backend name."""
    if backend not in _BACKENDS:
        raise ValueError(f"Unknown backend: {backend}. Use one of {sorted(_BACKENDS)}")
    if backend == "tree":
        engine = TreeSearch(metric, algorithm=tree_algorithm, leaf_size=leaf_size)
    else:
        engine = _BACKENDS[backend](metric)
    logger.debug(f"Search engine: {engine!r}")
    return engine

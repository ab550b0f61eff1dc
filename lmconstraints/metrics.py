"""
lmconstraints/metrics.py
========================
Distance metrics as configuration-time strategies.

A Metric is picked once when Constraints is built and handed to the search
engine. Each metric knows how to compute exact pairwise distances (brute
force) and, where possible, which tree metric or faiss index produces the
same neighbour ordering, plus how to map those distances back.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Optional

import numpy as np
from scipy.spatial.distance import cdist


def _identity(d: np.ndarray) -> np.ndarray:
    return d


def _square(d: np.ndarray) -> np.ndarray:
    return d * d


def _sqrt(d: np.ndarray) -> np.ndarray:
    return np.sqrt(np.maximum(d, 0.0))


@dataclass(frozen=True)
class Metric:
    """
    Distance strategy shared by every engine.

    Attributes
    ----------
    name        : registry name, or the callable's name for custom metrics.
    cdist_name  : scipy cdist metric name, or a callable f(u, v) -> float.
    tree_metric : sklearn NearestNeighbors metric with the same ordering,
                  None if trees cannot serve this metric.
    from_tree   : maps tree distances to this metric's distances.
    from_l2sq   : maps faiss squared-L2 distances to this metric's distances,
                  None if faiss cannot serve this metric.
    """
    name:        str
    cdist_name:  str | Callable[[np.ndarray, np.ndarray], float]
    tree_metric: Optional[str]                               = None
    from_tree:   Callable[[np.ndarray], np.ndarray]          = _identity
    from_l2sq:   Optional[Callable[[np.ndarray], np.ndarray]] = None

    def pairwise(self, a: np.ndarray, b: np.ndarray) -> np.ndarray:
        """Exact distances between rows of a [Q, D] and rows of b [R, D] → [Q, R]."""
        return cdist(a, b, metric=self.cdist_name)

    @property
    def supports_tree(self) -> bool:
        return self.tree_metric is not None

    @property
    def supports_faiss(self) -> bool:
        return self.from_l2sq is not None

    @classmethod
    def custom(cls, func: Callable[[np.ndarray, np.ndarray], float],
               name: Optional[str] = None) -> "Metric":
        """Wrap a user distance f(u, v) -> float. Only the brute engine accepts it."""
        return cls(name=name or getattr(func, "__name__", "custom"), cdist_name=func)


_REGISTRY: dict[str, Metric] = {
    "euclidean":   Metric("euclidean",   "euclidean",   "euclidean", _identity, _sqrt),
    "sqeuclidean": Metric("sqeuclidean", "sqeuclidean", "euclidean", _square,   _identity),
    "manhattan":   Metric("manhattan",   "cityblock",   "manhattan"),
    "chebyshev":   Metric("chebyshev",   "chebyshev",   "chebyshev"),
}


def available_metrics() -> list[str]:
    return sorted(_REGISTRY)


def get_metric(metric: str | Metric | Callable) -> Metric:
    """Resolve a metric name, Metric instance or callable to a Metric."""
    if isinstance(metric, Metric):
        return metric
    if isinstance(metric, str):
        try:
            return _REGISTRY[metric.lower()]
        except KeyError:
            raise ValueError(f"Unknown metric: {metric}. "
                             f"Use one of {available_metrics()} or a callable") from None
    if callable(metric):
        return Metric.custom(metric)
    raise TypeError(f"metric must be a name, Metric or callable, got {type(metric)}")

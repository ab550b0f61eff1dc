"""
tests/test_search.py
====================
Metrics, search engines and the restricted-domain query adapter.
Run with: pytest tests/test_search.py -v
"""

import numpy as np
import pytest

from lmconstraints.adapter import NeighborQueryAdapter
from lmconstraints.errors import InsufficientReferencePoints
from lmconstraints.metrics import Metric, available_metrics, get_metric
from lmconstraints.search import (BruteForceSearch, FaissSearch, TreeSearch,
                                  make_engine)


# six points on a line: x = 0, 1, 2, 10, 11, 12
POINTS = np.array([[0., 0.], [1., 0.], [2., 0.], [10., 0.], [11., 0.], [12., 0.]])


@pytest.fixture
def cloud():
    rng = np.random.default_rng(7)
    return rng.normal(size=(80, 4)), rng.normal(size=(15, 4))


# ══════════════════════════════════════════════════════════════════════════════
# METRICS
# ══════════════════════════════════════════════════════════════════════════════

def test_registry():
    assert available_metrics() == ["chebyshev", "euclidean", "manhattan", "sqeuclidean"]
    assert get_metric("Euclidean").name == "euclidean"
    m = get_metric("manhattan")
    assert get_metric(m) is m


def test_unknown_metric():
    with pytest.raises(ValueError):
        get_metric("hamming-ish")
    with pytest.raises(TypeError):
        get_metric(3)


def test_pairwise_values():
    a = np.array([[0., 0.]])
    b = np.array([[3., 4.]])
    assert get_metric("euclidean").pairwise(a, b)[0, 0] == pytest.approx(5.0)
    assert get_metric("sqeuclidean").pairwise(a, b)[0, 0] == pytest.approx(25.0)
    assert get_metric("manhattan").pairwise(a, b)[0, 0] == pytest.approx(7.0)
    assert get_metric("chebyshev").pairwise(a, b)[0, 0] == pytest.approx(4.0)


def test_custom_metric():
    def l1(u, v):
        return float(np.abs(u - v).sum())

    m = get_metric(l1)
    assert m.name == "l1"
    assert not m.supports_tree
    assert not m.supports_faiss
    assert m.pairwise(np.array([[0., 0.]]), np.array([[3., 4.]]))[0, 0] == pytest.approx(7.0)


# ══════════════════════════════════════════════════════════════════════════════
# ENGINES
# ══════════════════════════════════════════════════════════════════════════════

@pytest.mark.parametrize("engine", [
    BruteForceSearch("euclidean"),
    TreeSearch("euclidean", algorithm="kd_tree"),
    TreeSearch("euclidean", algorithm="ball_tree"),
    FaissSearch("euclidean"),
])
def test_engines_on_line(engine):
    dist, idx = engine.search(POINTS[3:], POINTS[:1], 2)
    np.testing.assert_array_equal(idx, [[0, 1]])
    np.testing.assert_allclose(dist, [[10.0, 11.0]], rtol=1e-6)
    assert dist.dtype == np.float64
    assert idx.dtype == np.int64


@pytest.mark.parametrize("backend", ["tree", "faiss"])
@pytest.mark.parametrize("metric", ["euclidean", "sqeuclidean"])
def test_engines_agree_with_brute_force(cloud, backend, metric):
    ref, qs = cloud
    d0, i0 = BruteForceSearch(metric).search(ref, qs, 5)
    d1, i1 = make_engine(backend, metric).search(ref, qs, 5)
    np.testing.assert_array_equal(i0, i1)
    np.testing.assert_allclose(d0, d1, rtol=1e-4, atol=1e-5)


def test_tree_manhattan_matches_brute_force(cloud):
    ref, qs = cloud
    d0, i0 = BruteForceSearch("manhattan").search(ref, qs, 4)
    d1, i1 = TreeSearch("manhattan").search(ref, qs, 4)
    np.testing.assert_array_equal(i0, i1)
    np.testing.assert_allclose(d0, d1)


def test_brute_force_rows_sorted(cloud):
    ref, qs = cloud
    dist, _ = BruteForceSearch("chebyshev").search(ref, qs, 10)
    assert np.all(np.diff(dist, axis=1) >= 0)


def test_brute_force_ties_prefer_lower_position():
    ref = np.array([[1.], [-1.], [1.], [-1.]])
    _, idx = BruteForceSearch().search(ref, np.array([[0.]]), 4)
    np.testing.assert_array_equal(idx, [[0, 1, 2, 3]])


def test_too_few_reference_points():
    with pytest.raises(ValueError):
        BruteForceSearch().search(POINTS[:2], POINTS[:1], 3)


def test_empty_query_set():
    dist, idx = BruteForceSearch().search(POINTS, np.empty((0, 2)), 3)
    assert dist.shape == (0, 3)
    assert idx.shape == (0, 3)


def test_unsupported_metric_backend_pairs():
    with pytest.raises(ValueError):
        FaissSearch("manhattan")
    with pytest.raises(ValueError):
        TreeSearch(Metric.custom(lambda u, v: 0.0))
    with pytest.raises(ValueError):
        make_engine("annoy")


# ══════════════════════════════════════════════════════════════════════════════
# ADAPTER
# ══════════════════════════════════════════════════════════════════════════════

def test_adapter_maps_local_to_global_indices():
    adapter = NeighborQueryAdapter(POINTS, BruteForceSearch())
    res = adapter.query(np.array([3, 4, 5]), np.array([0, 2]), 2, return_distances=True)
    assert res.indices.shape == (2, 2)
    np.testing.assert_array_equal(res.indices, [[3, 3], [4, 4]])
    np.testing.assert_allclose(res.distances, [[10.0, 8.0], [11.0, 9.0]])


def test_adapter_excludes_self():
    adapter = NeighborQueryAdapter(POINTS, BruteForceSearch())
    res = adapter.query(np.array([0, 1, 2]), np.array([0, 1, 2]), 2, exclude_self=True)
    np.testing.assert_array_equal(res.indices[:, 0], [1, 2])
    np.testing.assert_array_equal(res.indices[:, 2], [1, 0])
    for c, q in enumerate([0, 1, 2]):
        assert q not in res.indices[:, c]
    assert res.distances is None


def test_adapter_excludes_self_with_duplicates():
    pts = np.array([[0.], [0.], [0.], [5.]])
    adapter = NeighborQueryAdapter(pts, BruteForceSearch())
    res = adapter.query(np.arange(4), np.arange(4), 2, exclude_self=True)
    for q in range(4):
        assert q not in res.indices[:, q]
    np.testing.assert_array_equal(res.indices[:, 2], [0, 1])


def test_adapter_insufficient_reference_points():
    adapter = NeighborQueryAdapter(POINTS, BruteForceSearch())
    with pytest.raises(InsufficientReferencePoints) as exc:
        adapter.query(np.array([0, 1]), np.array([0]), 2, exclude_self=True, label=0)
    assert exc.value.available == 1
    assert exc.value.k == 2
    assert exc.value.label == 0


def test_result_unpacks():
    adapter = NeighborQueryAdapter(POINTS, BruteForceSearch())
    idx, dist = adapter.query(np.array([3, 4]), np.array([0]), 1, return_distances=True)
    assert idx[0, 0] == 3
    assert dist[0, 0] == pytest.approx(10.0)

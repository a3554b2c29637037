"""
Tests for the KD-tree spatial index wrapper.
"""

from pathlib import Path
import sys

import numpy as np
import pytest

# Ensure src is importable
sys.path.append(str(Path(__file__).parent.parent / "src"))

from point_cloud_registration.acceleration.neighbors import KDTreeNeighbors, SearchParams, search


@pytest.fixture
def line_cloud():
    return np.column_stack([np.arange(10, dtype=float), np.zeros(10), np.zeros(10)])


def test_k_nearest_sorted_and_includes_self(line_cloud):
    index = KDTreeNeighbors(line_cloud)
    idx, dist = index.k_nearest(line_cloud[5], 3)

    assert idx[0] == 5
    assert dist[0] == 0.0
    assert sorted(idx[1:].tolist()) == [4, 6]
    # Equal distances are ordered by index
    assert idx.tolist() == [5, 4, 6]
    assert np.all(np.diff(dist) >= 0)


def test_k_is_clamped(line_cloud):
    idx, _ = KDTreeNeighbors(line_cloud).k_nearest(line_cloud[0], 50)
    assert len(idx) == 10


def test_within_radius(line_cloud):
    idx, dist = KDTreeNeighbors(line_cloud).within_radius(np.array([2.2, 0.0, 0.0]), 1.5)
    assert idx.tolist() == [2, 3, 1]
    assert np.allclose(dist, [0.2, 0.8, 1.2])


def test_search_dispatch(line_cloud):
    index = KDTreeNeighbors(line_cloud)
    idx_k, _ = search(index, line_cloud[0], SearchParams(mode="knn", k=2))
    idx_r, _ = index.search(line_cloud[0], SearchParams(mode="radius", radius=2.5))
    assert idx_k.tolist() == [0, 1]
    assert idx_r.tolist() == [0, 1, 2]


def test_invalid_inputs():
    with pytest.raises(ValueError):
        SearchParams(mode="octree")
    with pytest.raises(ValueError):
        SearchParams(mode="knn", k=0)
    with pytest.raises(ValueError):
        SearchParams(mode="radius", radius=0.0)
    with pytest.raises(ValueError):
        KDTreeNeighbors(np.zeros((0, 3)))

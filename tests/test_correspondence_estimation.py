"""
Tests for nearest-point and nearest-feature correspondence estimation,
including a feature-based registration run through the full core.
"""

from pathlib import Path
import sys

import numpy as np
import pytest

# Ensure src is importable
sys.path.append(str(Path(__file__).parent.parent / "src"))

from point_cloud_registration.acceleration.neighbors import KDTreeNeighbors, SearchParams
from point_cloud_registration.alignment.correspondence_estimation import (
    find_feature_correspondences,
    find_point_correspondences,
)
from point_cloud_registration.alignment.correspondence_rejection import (
    OneToOneRejector,
    TrimmedRejector,
    chain_rejections,
)
from point_cloud_registration.alignment.transformation_estimation import RigidTransformEstimator
from point_cloud_registration.correspondence import correspondences_to_arrays
from point_cloud_registration.errors import EstimationStatus
from point_cloud_registration.features.fpfh import FPFHEstimator
from point_cloud_registration.features.normals import estimate_normals


def test_point_correspondences():
    target = np.array([[0.0, 0.0, 0.0], [10.0, 0.0, 0.0], [0.0, 10.0, 0.0]])
    source = np.array([[9.0, 0.5, 0.0], [0.2, 0.0, 0.0]])

    corrs = find_point_correspondences(source, target)
    q, m, d = correspondences_to_arrays(corrs)

    assert q.tolist() == [0, 1]
    assert m.tolist() == [1, 0]
    assert np.allclose(d, [np.hypot(1.0, 0.5), 0.2])

    # Same result through a pre-built index
    assert find_point_correspondences(source, target_index=KDTreeNeighbors(target)) == corrs


def test_point_correspondences_edge_cases():
    target = np.zeros((3, 3))
    assert find_point_correspondences(np.zeros((0, 3)), target) == []
    assert find_point_correspondences(np.zeros((2, 3)), np.zeros((0, 3))) == []
    with pytest.raises(ValueError):
        find_point_correspondences(np.zeros((2, 3)))


def test_feature_correspondences_dimension_check():
    with pytest.raises(ValueError):
        find_feature_correspondences(np.zeros((2, 33)), np.zeros((2, 12)))
    assert find_feature_correspondences(np.zeros((0, 33)), np.zeros((2, 33))) == []


def test_feature_based_registration():
    rng = np.random.default_rng(7)
    xy = rng.uniform(-1.0, 1.0, size=(300, 2))
    z = 0.5 * np.sin(2.0 * xy[:, 0]) + 0.3 * xy[:, 1] ** 2
    source = np.column_stack([xy, z])

    th = np.deg2rad(60.0)
    R = np.array([[np.cos(th), -np.sin(th), 0.0], [np.sin(th), np.cos(th), 0.0], [0.0, 0.0, 1.0]])
    t = np.array([2.0, -1.0, 0.5])
    target = source @ R.T + t

    source_normals = estimate_normals(source, k=15, viewpoint=(0.0, 0.0, 10.0))
    # Normals are a rigid quantity: rotate them with the cloud
    target_normals = source_normals @ R.T

    estimator = FPFHEstimator(search_params=SearchParams(k=15), n_threads=2)
    source_features = estimator.compute(source, source_normals)
    target_features = estimator.compute(target, target_normals)

    candidates = find_feature_correspondences(source_features, target_features)
    kept = chain_rejections(candidates, [OneToOneRejector(), TrimmedRejector(0.5)])
    assert len(kept) >= 3

    q, m, _ = correspondences_to_arrays(kept)
    transform_estimator = RigidTransformEstimator()
    T = transform_estimator.estimate(source, target, q, m)

    assert transform_estimator.last_status is EstimationStatus.OK
    assert np.allclose(T[:3, :3], R, atol=1e-5)
    assert np.allclose(T[:3, 3], t, atol=1e-5)

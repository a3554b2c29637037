"""
Tests for PCA normal estimation.
"""

from pathlib import Path
import sys

import numpy as np

# Ensure src is importable
sys.path.append(str(Path(__file__).parent.parent / "src"))

from point_cloud_registration.features.normals import estimate_normals


def test_plane_normals_face_viewpoint():
    rng = np.random.default_rng(0)
    points = np.column_stack([rng.uniform(-1, 1, size=(300, 2)), np.zeros(300)])

    normals = estimate_normals(points, k=15, viewpoint=(0.0, 0.0, 10.0))

    assert normals.shape == (300, 3)
    assert np.allclose(normals[:, 2], 1.0, atol=1e-9)
    assert np.allclose(np.linalg.norm(normals, axis=1), 1.0)


def test_sphere_normals_are_radial():
    rng = np.random.default_rng(1)
    points = rng.normal(size=(1500, 3))
    points /= np.linalg.norm(points, axis=1, keepdims=True)

    normals = estimate_normals(points, k=12)

    # Viewpoint at the centre: normals point inwards
    cos = np.sum(normals * points, axis=1)
    assert np.all(cos < -0.9)


def test_too_few_points_give_nan():
    points = np.array([[0.0, 0.0, 0.0], [1.0, 0.0, 0.0]])
    normals = estimate_normals(points, k=20)
    assert np.isnan(normals).all()


def test_empty_cloud():
    assert estimate_normals(np.zeros((0, 3))).shape == (0, 3)

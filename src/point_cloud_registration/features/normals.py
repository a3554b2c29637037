"""
Surface normal estimation.

Normals are estimated by PCA over the k nearest neighbours of every point
and oriented towards a viewpoint. The descriptor engine expects unit
normals co-indexed with the points; this module is the usual supplier.
"""

from __future__ import annotations

from typing import Optional, Sequence

import numpy as np

from ..acceleration.neighbors import KDTreeNeighbors, SpatialIndex
from ..utils.logging import setup_logger

logger = setup_logger(__name__)


def estimate_normals(
    points: np.ndarray,
    k: int = 20,
    viewpoint: Sequence[float] = (0.0, 0.0, 0.0),
    spatial_index: Optional[SpatialIndex] = None,
) -> np.ndarray:
    """
    Estimate unit surface normals (N x 3).

    Args:
        points: Point cloud (N x 3).
        k: Neighbourhood size, the query point included.
        viewpoint: Normals are flipped to face this position.
        spatial_index: Optional pre-built index over ``points``.

    Returns:
        Normals (N x 3). Rows are NaN where fewer than 3 neighbours exist.
    """
    points = np.asarray(points, dtype=float)
    n = len(points)
    normals = np.full((n, 3), np.nan)
    if n == 0:
        return normals

    if spatial_index is None:
        spatial_index = KDTreeNeighbors(points)
    vp = np.asarray(viewpoint, dtype=float)

    n_missing = 0
    for i in range(n):
        nn_idx, _ = spatial_index.k_nearest(points[i], k)
        if len(nn_idx) < 3:
            n_missing += 1
            continue
        patch = points[nn_idx]
        centered = patch - patch.mean(axis=0)
        cov = centered.T @ centered / len(patch)
        # eigh sorts eigenvalues ascending; the first eigenvector is the normal
        _, vecs = np.linalg.eigh(cov)
        normal = vecs[:, 0]
        if np.dot(vp - points[i], normal) < 0:
            normal = -normal
        normals[i] = normal / np.linalg.norm(normal)

    if n_missing:
        logger.warning("Normal estimation: %d of %d points had fewer than 3 neighbours", n_missing, n)
    return normals

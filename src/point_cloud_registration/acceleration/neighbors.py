"""
Nearest neighbor search wrapper.

Provides the spatial index consumed by the descriptor engine, normal
estimation and correspondence estimation. Any object exposing
``k_nearest`` and ``within_radius`` satisfies the ``SpatialIndex``
protocol; ``KDTreeNeighbors`` is the sklearn-backed implementation.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Literal, Protocol, Tuple

import numpy as np
from sklearn.neighbors import NearestNeighbors as SklearnNN

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SearchParams:
    """Neighbor query: either the ``k`` nearest points or all points within ``radius``."""

    mode: Literal["knn", "radius"] = "knn"
    k: int = 10
    radius: float = 0.05

    def __post_init__(self) -> None:
        if self.mode not in ("knn", "radius"):
            raise ValueError(f"Unknown search mode '{self.mode}' (expected 'knn' or 'radius')")
        if self.mode == "knn" and self.k < 1:
            raise ValueError(f"k must be >= 1, got {self.k}")
        if self.mode == "radius" and not self.radius > 0:
            raise ValueError(f"radius must be > 0, got {self.radius}")


class SpatialIndex(Protocol):
    """Read-only neighbor queries over a fixed point set."""

    def k_nearest(self, point: np.ndarray, k: int) -> Tuple[np.ndarray, np.ndarray]:
        ...

    def within_radius(self, point: np.ndarray, radius: float) -> Tuple[np.ndarray, np.ndarray]:
        ...


def search(index: SpatialIndex, point: np.ndarray, params: SearchParams) -> Tuple[np.ndarray, np.ndarray]:
    """Dispatch a neighbor query on ``params.mode``."""
    if params.mode == "radius":
        return index.within_radius(point, params.radius)
    return index.k_nearest(point, params.k)


def _sorted_by_distance(indices: np.ndarray, distances: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
    # Ties are broken by index so results do not depend on tree internals
    order = np.lexsort((indices, distances))
    return indices[order].astype(np.int64, copy=False), distances[order].astype(float, copy=False)


class KDTreeNeighbors:
    """
    KD-tree spatial index over an (N, D) array.

    Queries return ``(indices, distances)`` sorted by ascending Euclidean
    distance. The index never copies or modifies the input beyond what
    sklearn does when fitting, and is safe to query from several threads.

    Parameters
    ----------
    points : np.ndarray
        (N, D) coordinates (D = 3 for point clouds, D = n_bins for features)
    leaf_size : int, default=30
        Leaf size passed to the sklearn KD-tree
    """

    def __init__(self, points: np.ndarray, leaf_size: int = 30):
        points = np.asarray(points, dtype=float)
        if points.ndim != 2 or len(points) == 0:
            raise ValueError(f"KDTreeNeighbors needs a non-empty (N, D) array, got shape {points.shape}")
        self.n_points = len(points)
        self.leaf_size = leaf_size
        self._model = SklearnNN(algorithm="kd_tree", leaf_size=leaf_size).fit(points)
        logger.debug("Built KD-tree over %d points (dim=%d)", self.n_points, points.shape[1])

    def k_nearest(self, point: np.ndarray, k: int) -> Tuple[np.ndarray, np.ndarray]:
        """Return the ``k`` nearest points (clamped to the index size)."""
        k = min(int(k), self.n_points)
        query = np.asarray(point, dtype=float).reshape(1, -1)
        distances, indices = self._model.kneighbors(query, n_neighbors=k)
        return _sorted_by_distance(indices[0], distances[0])

    def within_radius(self, point: np.ndarray, radius: float) -> Tuple[np.ndarray, np.ndarray]:
        """Return every point within ``radius`` (inclusive)."""
        query = np.asarray(point, dtype=float).reshape(1, -1)
        distances, indices = self._model.radius_neighbors(query, radius=radius, return_distance=True)
        return _sorted_by_distance(np.asarray(indices[0]), np.asarray(distances[0]))

    def search(self, point: np.ndarray, params: SearchParams) -> Tuple[np.ndarray, np.ndarray]:
        return search(self, point, params)

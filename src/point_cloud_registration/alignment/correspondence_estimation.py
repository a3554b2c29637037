"""
Correspondence Estimation

Nearest-neighbour pairing of a source set against a target set, either in
3-D space (closest point) or in descriptor space (closest FPFH histogram).
The resulting correspondence sets feed the rejection chain.
"""

from __future__ import annotations

from typing import Optional

import numpy as np

from ..acceleration.neighbors import KDTreeNeighbors, SpatialIndex
from ..correspondence import Correspondences, correspondences_from_arrays
from ..utils.logging import setup_logger

logger = setup_logger(__name__)


def find_point_correspondences(
    source: np.ndarray,
    target: Optional[np.ndarray] = None,
    target_index: Optional[SpatialIndex] = None,
) -> Correspondences:
    """
    Pair every source point with its nearest target point.

    Args:
        source: Source points (N x D).
        target: Target points (M x D). Only used if ``target_index`` is None.
        target_index: Optional pre-built index over the target.

    Returns:
        One correspondence per source point, in source order, with the
        Euclidean distance as score.
    """
    source = np.asarray(source, dtype=float)
    if len(source) == 0:
        return []
    if target_index is None:
        if target is None:
            raise ValueError("Either 'target' or a pre-built 'target_index' must be provided.")
        if len(target) == 0:
            logger.warning("Correspondence estimation against an empty target; no correspondences.")
            return []
        target_index = KDTreeNeighbors(target)

    match = np.empty(len(source), dtype=np.int64)
    dist = np.empty(len(source), dtype=float)
    for i, point in enumerate(source):
        nn_idx, nn_dist = target_index.k_nearest(point, 1)
        match[i] = nn_idx[0]
        dist[i] = nn_dist[0]
    return correspondences_from_arrays(np.arange(len(source)), match, dist)


def find_feature_correspondences(
    source_features: np.ndarray,
    target_features: np.ndarray,
) -> Correspondences:
    """Pair every source descriptor with its nearest target descriptor."""
    source_features = np.asarray(source_features, dtype=float)
    target_features = np.asarray(target_features, dtype=float)
    if len(source_features) == 0 or len(target_features) == 0:
        logger.warning(
            "Feature matching with empty input (source=%d, target=%d); no correspondences.",
            len(source_features),
            len(target_features),
        )
        return []
    if source_features.shape[1] != target_features.shape[1]:
        raise ValueError(
            f"Descriptor lengths differ (source={source_features.shape[1]}, target={target_features.shape[1]})"
        )
    return find_point_correspondences(source_features, target_features)

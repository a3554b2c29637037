"""
Rigid Transformation Estimation

Closed-form (SVD) estimation of the rotation and translation that best
aligns two ordered sets of corresponding points in the least-squares sense.

Source and target can each be restricted with an index subset. The three
supported combinations (full/full, subset/subset, subset/full) produce the
same transform for the same effective point sets.

Known limitation: the reflection correction flips the last column of V
only. For planar or collinear inputs the smallest singular values are
(near) zero and the rotation about the degenerate axis is not unique; such
inputs are reported with status ``degenerate`` but not otherwise altered.
"""

from typing import Optional, Sequence, Tuple

import numpy as np

from ..errors import (
    DegenerateInputError,
    DimensionMismatchError,
    EstimationStatus,
    InvalidInputError,
    RegistrationError,
    status_for,
)
from ..utils.logging import setup_logger

logger = setup_logger(__name__)


class RigidTransformEstimator:
    """
    Least-squares rigid transform between corresponding point sets.

    The estimator:
    1. Computes the centroid of each point set
    2. Demeans both sets
    3. Builds the 3x3 cross-covariance H = src^T tgt
    4. Decomposes H = U S V^T and takes R = V U^T, flipping the last
       column of V when det(U) det(V) < 0
    5. Sets t = c_tgt - R c_src
    """

    def __init__(self, degeneracy_tolerance: float = 1e-9):
        """
        Args:
            degeneracy_tolerance: Inputs whose second singular value is below
                this fraction of the first are reported as degenerate.
        """
        self.degeneracy_tolerance = degeneracy_tolerance
        # Outcome of the most recent estimate() call
        self.last_status: EstimationStatus = EstimationStatus.OK

    @classmethod
    def from_config(cls, config) -> "RigidTransformEstimator":
        """Build from an ``EstimationConfig`` (or an ``AppConfig``)."""
        cfg = getattr(config, "estimation", config)
        return cls(degeneracy_tolerance=cfg.degeneracy_tolerance)

    def estimate(
        self,
        source: np.ndarray,
        target: np.ndarray,
        source_indices: Optional[Sequence[int]] = None,
        target_indices: Optional[Sequence[int]] = None,
        out: Optional[np.ndarray] = None,
    ) -> np.ndarray:
        """
        Estimate the transform T minimizing sum ||T * source_i - target_i||^2.

        Args:
            source: Source point cloud (N x 3).
            target: Target point cloud (M x 3).
            source_indices: Optional subset of ``source`` rows.
            target_indices: Optional subset of ``target`` rows.
            out: Optional preallocated (4 x 4) array written in place.

        Returns:
            Transformation matrix (4 x 4). The identity when the inputs are
            invalid, mismatched in length or have fewer than 3 points; check
            ``last_status`` to tell these apart.
        """
        if out is None:
            out = np.eye(4)
        else:
            out[...] = np.eye(4)

        try:
            src, tgt = self._select(source, source_indices, target, target_indices)
        except RegistrationError as e:
            self.last_status = status_for(e)
            if isinstance(e, DegenerateInputError):
                logger.warning("Rigid transform estimation skipped: %s", e)
            else:
                logger.error("Rigid transform estimation aborted: %s", e)
            return out

        R, t, singular_values = self._kabsch(src, tgt)

        self.last_status = EstimationStatus.OK
        if singular_values[0] == 0.0 or singular_values[1] <= self.degeneracy_tolerance * singular_values[0]:
            self.last_status = EstimationStatus.DEGENERATE
            logger.warning(
                "Correspondences are (near) collinear (singular values %s); "
                "the estimated rotation is not unique.",
                np.array2string(singular_values, precision=3),
            )

        out[:3, :3] = R
        out[:3, 3] = t
        return out

    # ------------------------ Internals ------------------------
    @staticmethod
    def _kabsch(src: np.ndarray, tgt: np.ndarray) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
        # Center the point sets
        source_centroid = np.mean(src, axis=0)
        target_centroid = np.mean(tgt, axis=0)

        source_centered = src - source_centroid
        target_centered = tgt - target_centroid

        # Cross-covariance matrix
        H = source_centered.T @ target_centered

        U, S, Vt = np.linalg.svd(H)
        V = Vt.T

        # Guard against reflections: flip the last column of V
        if np.linalg.det(U) * np.linalg.det(V) < 0:
            V[:, 2] *= -1

        R = V @ U.T
        t = target_centroid - R @ source_centroid
        return R, t, S

    @staticmethod
    def _select(
        source: np.ndarray,
        source_indices: Optional[Sequence[int]],
        target: np.ndarray,
        target_indices: Optional[Sequence[int]],
    ) -> Tuple[np.ndarray, np.ndarray]:
        if target_indices is not None and source_indices is None:
            raise InvalidInputError("target_indices given without source_indices")

        src = _as_points(source, "source")
        tgt = _as_points(target, "target")
        if source_indices is not None:
            src = _take(src, source_indices, "source")
        if target_indices is not None:
            tgt = _take(tgt, target_indices, "target")

        if len(src) != len(tgt):
            raise DimensionMismatchError(
                f"Number of points in source ({len(src)}) differs from target ({len(tgt)})"
            )
        if not (np.isfinite(src).all() and np.isfinite(tgt).all()):
            raise InvalidInputError("Correspondences contain non-finite coordinates")
        if len(src) < 3:
            raise DegenerateInputError(f"At least 3 correspondences are required, got {len(src)}")
        return src, tgt


def _as_points(points: np.ndarray, name: str) -> np.ndarray:
    points = np.asarray(points, dtype=float)
    if points.ndim != 2 or points.shape[1] != 3:
        raise InvalidInputError(f"{name} must be an (N, 3) array, got shape {points.shape}")
    return points


def _take(points: np.ndarray, indices: Sequence[int], name: str) -> np.ndarray:
    idx = np.asarray(indices, dtype=np.int64).ravel()
    if len(idx) and (idx.min() < 0 or idx.max() >= len(points)):
        raise InvalidInputError(f"{name} indices out of range for {len(points)} points")
    return points[idx]


def estimate_rigid_transform(
    source: np.ndarray,
    target: np.ndarray,
    source_indices: Optional[Sequence[int]] = None,
    target_indices: Optional[Sequence[int]] = None,
    out: Optional[np.ndarray] = None,
) -> np.ndarray:
    """Functional wrapper around ``RigidTransformEstimator.estimate``."""
    return RigidTransformEstimator().estimate(source, target, source_indices, target_indices, out=out)


def apply_transformation(points: np.ndarray, transform: np.ndarray) -> np.ndarray:
    """
    Apply a transformation matrix to a set of points.

    Args:
        points: Point cloud (N x 3).
        transform: Transformation matrix (4 x 4).

    Returns:
        Transformed point cloud (N x 3).
    """
    if points.size == 0:
        return points
    R = transform[:3, :3]
    t = transform[:3, 3]
    return points @ R.T + t

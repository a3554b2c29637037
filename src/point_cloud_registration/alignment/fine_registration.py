"""
ICP Registration Implementation

This module implements the Iterative Closest Point (ICP) loop on top of the
registration core: nearest-point correspondences, a rejection chain and the
closed-form rigid transform estimator.
"""

from typing import Iterable, Optional, Tuple
import time

import numpy as np

from ..acceleration.neighbors import KDTreeNeighbors
from ..errors import EstimationStatus
from ..utils.logging import setup_logger
from .correspondence_estimation import find_point_correspondences
from .correspondence_rejection import CorrespondenceRejector, DistanceRejector, chain_rejections
from .transformation_estimation import RigidTransformEstimator, apply_transformation

logger = setup_logger(__name__)


class ICPRegistration:
    """
    Implementation of ICP algorithm for point cloud registration.

    The ICP algorithm iteratively:
    1. Finds closest point correspondences
    2. Rejects implausible correspondences
    3. Estimates optimal transformation (rotation + translation)
    4. Applies transformation to source points
    5. Repeats until convergence
    """

    def __init__(
        self,
        max_iterations: int = 100,
        tolerance: float = 1e-6,
        max_correspondence_distance: float = 1.0,
        convergence_translation_epsilon: float = 1e-4,
        convergence_rotation_epsilon_deg: float = 0.1,
        rejectors: Iterable[CorrespondenceRejector] = (),
        estimator: Optional[RigidTransformEstimator] = None,
    ):
        """
        Initialize ICP parameters.

        Args:
            max_iterations: Maximum number of ICP iterations.
            tolerance: Convergence tolerance on change in mean squared error.
            max_correspondence_distance: Maximum distance for point correspondences.
            convergence_translation_epsilon: Minimum translation step below
                which the algorithm is considered converged.
            convergence_rotation_epsilon_deg: Minimum rotation step (degrees) below
                which the algorithm is considered converged.
            rejectors: Extra rejection strategies applied after distance rejection.
            estimator: Transform estimator (default: RigidTransformEstimator()).
        """
        self.max_iterations = max_iterations
        self.tolerance = tolerance
        self.max_correspondence_distance = max_correspondence_distance
        self.convergence_translation_epsilon = convergence_translation_epsilon
        # Store rotation epsilon in radians for internal use
        self.convergence_rotation_epsilon_rad = np.deg2rad(convergence_rotation_epsilon_deg)
        self.rejectors = [DistanceRejector(max_correspondence_distance), *rejectors]
        self.estimator = estimator or RigidTransformEstimator()
        self.n_iterations_: int = 0

    @classmethod
    def from_config(cls, config, rejectors: Iterable[CorrespondenceRejector] = ()) -> "ICPRegistration":
        """Build from an ``AppConfig``."""
        icp = config.icp
        return cls(
            max_iterations=icp.max_iterations,
            tolerance=icp.tolerance,
            max_correspondence_distance=icp.max_correspondence_distance,
            convergence_translation_epsilon=icp.convergence_translation_epsilon,
            convergence_rotation_epsilon_deg=icp.convergence_rotation_epsilon_deg,
            rejectors=rejectors,
            estimator=RigidTransformEstimator.from_config(config),
        )

    def align_point_clouds(
        self,
        source: np.ndarray,
        target: np.ndarray,
        initial_transform: Optional[np.ndarray] = None,
    ) -> Tuple[np.ndarray, np.ndarray, float]:
        """
        Align source point cloud to target using ICP.

        Args:
            source: Source point cloud (N x 3).
            target: Target point cloud (M x 3).
            initial_transform: Initial transformation matrix (4 x 4) or None.

        Returns:
            Tuple of (aligned_source_points, transformation_matrix, final_error).
        """
        n_src = len(source)
        n_tgt = len(target)
        logger.info(
            "Starting ICP alignment with %d source points and %d target points.",
            n_src,
            n_tgt,
        )

        transform = np.eye(4) if initial_transform is None else initial_transform.copy()
        self.n_iterations_ = 0

        if n_src == 0 or n_tgt == 0:
            logger.warning(
                "ICP called with empty source or target (source=%d, target=%d); "
                "returning identity (or initial) transform and infinite error.",
                n_src,
                n_tgt,
            )
            return source.copy(), transform, float("inf")

        # Build the nearest-neighbor search structure for the target ONCE.
        target_index = KDTreeNeighbors(target)

        current_source = apply_transformation(source, transform)
        previous_error = float("inf")
        icp_start = time.time()

        for iteration in range(self.max_iterations):
            candidates = find_point_correspondences(current_source, target_index=target_index)
            correspondences = chain_rejections(candidates, self.rejectors)

            if len(correspondences) < 3:
                logger.warning("Not enough valid correspondences found. Stopping ICP.")
                break

            src_idx = [c.index_query for c in correspondences]
            tgt_idx = [c.index_match for c in correspondences]
            delta_transform = self.estimator.estimate(current_source, target, src_idx, tgt_idx)
            if self.estimator.last_status is not EstimationStatus.OK:
                logger.warning(
                    "Transform estimation returned status '%s' at iteration %d. Stopping ICP.",
                    self.estimator.last_status.value,
                    iteration + 1,
                )
                break

            # new_transform = delta_transform * current_transform
            transform = delta_transform @ transform
            # Transform the ORIGINAL source to avoid compounding floating point errors
            current_source = apply_transformation(source, transform)

            current_error = float(np.mean(np.square([c.distance for c in correspondences])))

            trans_step = float(np.linalg.norm(delta_transform[:3, 3]))
            # Clamp argument to arccos to valid range to avoid NaNs
            cos_theta = max(min((float(np.trace(delta_transform[:3, :3])) - 1.0) * 0.5, 1.0), -1.0)
            rot_step = float(np.arccos(cos_theta))

            logger.debug(
                "Iteration %d: MSE=%.6f, |dt|=%.6e, dtheta=%.6e rad, %d/%d correspondences",
                iteration + 1,
                current_error,
                trans_step,
                rot_step,
                len(correspondences),
                len(candidates),
            )
            self.n_iterations_ = iteration + 1

            if abs(previous_error - current_error) < self.tolerance:
                logger.info(
                    "ICP converged after %d iterations (MSE change < %.3e).",
                    self.n_iterations_,
                    self.tolerance,
                )
                break

            if (
                trans_step < self.convergence_translation_epsilon
                and rot_step < self.convergence_rotation_epsilon_rad
            ):
                logger.info(
                    "ICP converged after %d iterations (motion below thresholds: "
                    "|dt|=%.3e, dtheta=%.3e rad).",
                    self.n_iterations_,
                    trans_step,
                    rot_step,
                )
                break

            previous_error = current_error
        else:
            logger.info("ICP did not converge after %d iterations.", self.max_iterations)

        final_error = self.compute_registration_error(current_source, target_index)
        logger.info(
            "ICP finished in %.4f s (%d iterations). Final RMSE: %.6f",
            time.time() - icp_start,
            self.n_iterations_,
            final_error,
        )
        return current_source, transform, final_error

    def compute_registration_error(self, source: np.ndarray, target_index: KDTreeNeighbors) -> float:
        """
        Compute the registration error (RMSE) of correspondences within
        ``max_correspondence_distance``.

        Returns:
            Registration error as RMSE, infinite when nothing is in range.
        """
        correspondences = find_point_correspondences(source, target_index=target_index)
        distances = np.array([c.distance for c in correspondences])
        valid = distances[distances <= self.max_correspondence_distance]
        if valid.size == 0:
            logger.warning("No valid correspondences found for error computation.")
            return float("inf")
        return float(np.sqrt(np.mean(valid ** 2)))

"""
Spatial Alignment Module

Correspondence estimation and rejection, closed-form rigid transform
estimation and the ICP loop built from them.
"""

from .correspondence_estimation import find_point_correspondences, find_feature_correspondences
from .correspondence_rejection import (
    CorrespondenceRejector,
    DistanceRejector,
    MedianDistanceRejector,
    TrimmedRejector,
    OneToOneRejector,
    SurfaceNormalRejector,
    RejectorChain,
    build_rejectors,
    chain_rejections,
    compare_correspondences_distance,
)
from .transformation_estimation import (
    RigidTransformEstimator,
    estimate_rigid_transform,
    apply_transformation,
)
from .fine_registration import ICPRegistration

__all__ = [
    "find_point_correspondences",
    "find_feature_correspondences",
    "CorrespondenceRejector",
    "DistanceRejector",
    "MedianDistanceRejector",
    "TrimmedRejector",
    "OneToOneRejector",
    "SurfaceNormalRejector",
    "RejectorChain",
    "build_rejectors",
    "chain_rejections",
    "compare_correspondences_distance",
    "RigidTransformEstimator",
    "estimate_rigid_transform",
    "apply_transformation",
    "ICPRegistration",
]

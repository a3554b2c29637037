"""
Local Feature Module

Surface normal estimation and FPFH local shape descriptors.
"""

from .normals import estimate_normals
from .fpfh import FPFHEstimator, compute_fpfh_features, compute_pair_features

__all__ = [
    "estimate_normals",
    "FPFHEstimator",
    "compute_fpfh_features",
    "compute_pair_features",
]

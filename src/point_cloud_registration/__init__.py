"""
Point Cloud Registration Package

The alignment core of a 3-D point-cloud toolkit: parallel FPFH local shape
descriptors, a pluggable correspondence rejection framework and a
closed-form (SVD) rigid transform estimator, plus a small ICP driver that
chains them together.
"""

__version__ = "0.1.0"

from .correspondence import Correspondence, correspondences_from_arrays, correspondences_to_arrays
from .errors import (
    EstimationStatus,
    RegistrationError,
    InvalidInputError,
    DimensionMismatchError,
    DegenerateInputError,
)
from .acceleration import *
from .features import *
from .alignment import *
from .utils import *

__all__ = [
    "Correspondence",
    "correspondences_from_arrays",
    "correspondences_to_arrays",
    "EstimationStatus",
    "RegistrationError",
    "InvalidInputError",
    "DimensionMismatchError",
    "DegenerateInputError",
    "acceleration",
    "features",
    "alignment",
    "utils",
]

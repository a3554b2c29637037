"""
Error taxonomy shared by the descriptor engine and the transform estimator.

These exceptions are raised by input validation inside a component and are
caught at that component's public entry point, which logs a diagnostic and
returns a sentinel result instead. Callers inspect ``last_status`` on the
component rather than catching anything.
"""

from __future__ import annotations

from enum import Enum


class RegistrationError(Exception):
    """Base class for recoverable registration errors."""


class InvalidInputError(RegistrationError, ValueError):
    """Malformed or misaligned arguments (length mismatch, bad indices)."""


class DimensionMismatchError(InvalidInputError):
    """Source and target point sets differ in length."""


class DegenerateInputError(RegistrationError):
    """Too few usable points, or a configuration with no unique solution."""


class EstimationStatus(str, Enum):
    OK = "ok"
    INVALID_INPUT = "invalid_input"
    DIMENSION_MISMATCH = "dimension_mismatch"
    DEGENERATE = "degenerate"


def status_for(error: RegistrationError) -> EstimationStatus:
    """Map an error instance to the status recorded on the component."""
    if isinstance(error, DimensionMismatchError):
        return EstimationStatus.DIMENSION_MISMATCH
    if isinstance(error, InvalidInputError):
        return EstimationStatus.INVALID_INPUT
    return EstimationStatus.DEGENERATE

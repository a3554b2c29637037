"""
Correspondence Rejection

A rejector takes a candidate correspondence set and returns the subset it
trusts. Every strategy implements a single filtering rule,
``get_remaining_correspondences(original)``, and inherits the shared
plumbing (input registration, the empty-input policy and the rejected
index diagnostic) from ``CorrespondenceRejector``.

Rejection never fails: an absent or empty input yields an empty result,
because correspondence sets legitimately shrink to nothing inside an
iterative registration loop.

Strategies compose by feeding one rejector's output to the next, see
``chain_rejections`` and ``RejectorChain``.
"""

from __future__ import annotations

import math
from abc import ABC, abstractmethod
from typing import Iterable, List, Optional, Sequence

import numpy as np

from ..correspondence import Correspondence, Correspondences
from ..utils.logging import setup_logger

logger = setup_logger(__name__)


def compare_correspondences_distance(a: Correspondence, b: Correspondence) -> bool:
    """Return True if ``a`` is closer than ``b``."""
    return a.distance < b.distance


def sorted_set_difference(before: Sequence[int], after: Sequence[int]) -> List[int]:
    """
    Elements of ``before`` not matched in ``after``, both assumed sorted.

    Multiset semantics: each element of ``after`` cancels at most one equal
    element of ``before``. Unsorted input gives an unspecified result.
    """
    result: List[int] = []
    i = j = 0
    while i < len(before):
        if j == len(after):
            result.extend(before[i:])
            break
        if before[i] < after[j]:
            result.append(before[i])
            i += 1
        else:
            if not after[j] < before[i]:
                i += 1
            j += 1
    return result


class CorrespondenceRejector(ABC):
    """Base class for correspondence rejection strategies."""

    rejection_name = "CorrespondenceRejector"

    def __init__(self) -> None:
        self._input_correspondences: Optional[Correspondences] = None

    def set_input_correspondences(self, correspondences: Sequence[Correspondence]) -> None:
        """Register the correspondences that ``get_correspondences`` will filter."""
        self._input_correspondences = list(correspondences)

    def get_input_correspondences(self) -> Optional[Correspondences]:
        return self._input_correspondences

    def get_correspondences(self) -> Correspondences:
        """
        Filter the registered input.

        Returns an empty list, without any diagnostic, when no input was set
        or the input is empty.
        """
        if not self._input_correspondences:
            return []
        return self.get_remaining_correspondences(self._input_correspondences)

    @abstractmethod
    def get_remaining_correspondences(self, original: Sequence[Correspondence]) -> Correspondences:
        """
        Return the correspondences of ``original`` that survive this strategy.

        Independent of the registered input, so one rejector can filter
        several sets. Survivors keep their relative order.
        """

    def get_rejected_query_indices(self, correspondences: Sequence[Correspondence]) -> List[int]:
        """
        Query indices present in the registered input but not in ``correspondences``.

        Both sets must be sorted by query index. If no input was registered a
        warning is logged and an empty list is returned; a registered empty
        input yields an empty list silently.
        """
        if self._input_correspondences is None:
            logger.warning(
                "[%s.get_rejected_query_indices] Input correspondences not set "
                "(lookup of rejected correspondences not possible).",
                self.rejection_name,
            )
            return []

        indices_before = [c.index_query for c in self._input_correspondences]
        indices_after = [c.index_query for c in correspondences]
        return sorted_set_difference(indices_before, indices_after)

    def __repr__(self) -> str:
        return f"{type(self).__name__}()"


class DistanceRejector(CorrespondenceRejector):
    """Keep correspondences whose distance is at most ``max_distance``."""

    rejection_name = "DistanceRejector"

    def __init__(self, max_distance: float):
        super().__init__()
        if max_distance < 0:
            raise ValueError(f"max_distance must be non-negative, got {max_distance}")
        self.max_distance = float(max_distance)

    def get_remaining_correspondences(self, original: Sequence[Correspondence]) -> Correspondences:
        return [c for c in original if c.distance <= self.max_distance]

    def __repr__(self) -> str:
        return f"DistanceRejector(max_distance={self.max_distance})"


class MedianDistanceRejector(CorrespondenceRejector):
    """Keep correspondences within ``factor`` times the median distance."""

    rejection_name = "MedianDistanceRejector"

    def __init__(self, factor: float = 3.0):
        super().__init__()
        if factor <= 0:
            raise ValueError(f"factor must be positive, got {factor}")
        self.factor = float(factor)
        self.last_median: float = float("nan")

    def get_remaining_correspondences(self, original: Sequence[Correspondence]) -> Correspondences:
        if not original:
            return []
        self.last_median = float(np.median([c.distance for c in original]))
        threshold = self.factor * self.last_median
        return [c for c in original if c.distance <= threshold]

    def __repr__(self) -> str:
        return f"MedianDistanceRejector(factor={self.factor})"


class TrimmedRejector(CorrespondenceRejector):
    """Keep the ``overlap_ratio`` fraction of correspondences with the smallest distances."""

    rejection_name = "TrimmedRejector"

    def __init__(self, overlap_ratio: float = 0.5, min_correspondences: int = 0):
        super().__init__()
        if not 0.0 < overlap_ratio <= 1.0:
            raise ValueError(f"overlap_ratio must be in (0, 1], got {overlap_ratio}")
        self.overlap_ratio = float(overlap_ratio)
        self.min_correspondences = int(min_correspondences)

    def get_remaining_correspondences(self, original: Sequence[Correspondence]) -> Correspondences:
        n_keep = max(math.ceil(self.overlap_ratio * len(original)), self.min_correspondences)
        n_keep = min(n_keep, len(original))
        # sorted() is stable, so ties keep input order
        ranked = sorted(range(len(original)), key=lambda i: original[i].distance)
        kept = sorted(ranked[:n_keep])
        return [original[i] for i in kept]

    def __repr__(self) -> str:
        return f"TrimmedRejector(overlap_ratio={self.overlap_ratio})"


class OneToOneRejector(CorrespondenceRejector):
    """For every target point keep only its closest correspondence."""

    rejection_name = "OneToOneRejector"

    def get_remaining_correspondences(self, original: Sequence[Correspondence]) -> Correspondences:
        best = {}
        for pos, c in enumerate(original):
            current = best.get(c.index_match)
            if current is None or compare_correspondences_distance(c, original[current]):
                best[c.index_match] = pos
        kept = sorted(best.values())
        return [original[i] for i in kept]


class SurfaceNormalRejector(CorrespondenceRejector):
    """
    Keep correspondences whose surface normals agree within ``max_angle_deg``.

    Normals are compared by ``|n_s . n_t|`` so inconsistently oriented
    normals are not rejected. Correspondences with a non-finite normal are
    rejected.
    """

    rejection_name = "SurfaceNormalRejector"

    def __init__(self, source_normals: np.ndarray, target_normals: np.ndarray, max_angle_deg: float = 30.0):
        super().__init__()
        if not 0.0 <= max_angle_deg <= 180.0:
            raise ValueError(f"max_angle_deg must be in [0, 180], got {max_angle_deg}")
        self.source_normals = np.asarray(source_normals, dtype=float)
        self.target_normals = np.asarray(target_normals, dtype=float)
        self.max_angle_deg = float(max_angle_deg)
        self._min_cos = 0.0 if self.max_angle_deg >= 90.0 else math.cos(math.radians(self.max_angle_deg))

    def get_remaining_correspondences(self, original: Sequence[Correspondence]) -> Correspondences:
        remaining = []
        for c in original:
            cos_angle = abs(float(np.dot(self.source_normals[c.index_query], self.target_normals[c.index_match])))
            # NaN compares False and is dropped
            if cos_angle >= self._min_cos:
                remaining.append(c)
        return remaining

    def __repr__(self) -> str:
        return f"SurfaceNormalRejector(max_angle_deg={self.max_angle_deg})"


def chain_rejections(
    correspondences: Sequence[Correspondence],
    rejectors: Iterable[CorrespondenceRejector],
) -> Correspondences:
    """
    Apply rejectors in order, each filtering the previous one's output.

    Every rejector has its input registered, so ``get_rejected_query_indices``
    can be queried on it afterwards.
    """
    current: Correspondences = list(correspondences)
    for rejector in rejectors:
        rejector.set_input_correspondences(current)
        n_before = len(current)
        current = rejector.get_correspondences()
        logger.debug("%r kept %d of %d correspondences", rejector, len(current), n_before)
        if not current:
            break
    return current


class RejectorChain(CorrespondenceRejector):
    """A sequence of rejectors behaving as a single rejector."""

    rejection_name = "RejectorChain"

    def __init__(self, rejectors: Iterable[CorrespondenceRejector] = ()):
        super().__init__()
        self.rejectors: List[CorrespondenceRejector] = list(rejectors)

    def get_remaining_correspondences(self, original: Sequence[Correspondence]) -> Correspondences:
        return chain_rejections(original, self.rejectors)

    def __len__(self) -> int:
        return len(self.rejectors)

    def __repr__(self) -> str:
        return f"RejectorChain({self.rejectors!r})"


def build_rejectors(
    config,
    source_normals: Optional[np.ndarray] = None,
    target_normals: Optional[np.ndarray] = None,
) -> RejectorChain:
    """
    Build the rejector chain described by a ``RejectionConfig`` (or ``AppConfig``).

    Order: distance, median, trimmed, normal angle, one-to-one. The normal
    rejector is skipped with a warning when normals are not supplied.
    """
    cfg = getattr(config, "rejection", config)
    rejectors: List[CorrespondenceRejector] = []
    if cfg.max_distance is not None:
        rejectors.append(DistanceRejector(cfg.max_distance))
    if cfg.median_factor is not None:
        rejectors.append(MedianDistanceRejector(cfg.median_factor))
    if cfg.trim_ratio is not None:
        rejectors.append(TrimmedRejector(cfg.trim_ratio))
    if cfg.max_normal_angle_deg is not None:
        if source_normals is None or target_normals is None:
            logger.warning("Normal angle rejection configured but no normals given; skipping it.")
        else:
            rejectors.append(SurfaceNormalRejector(source_normals, target_normals, cfg.max_normal_angle_deg))
    if cfg.one_to_one:
        rejectors.append(OneToOneRejector())
    return RejectorChain(rejectors)

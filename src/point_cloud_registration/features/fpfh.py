"""
Fast Point Feature Histogram (FPFH) estimation.

The engine runs two data-parallel passes over a surface cloud with
normals:

1. SPFH: for every candidate point, bin the Darboux-frame pair features
   between the point and each of its neighbours into three histograms.
2. FPFH: for every point of interest, add the distance-weighted mean of
   its neighbours' SPFH rows to its own SPFH row and normalize.

Pass 1 also fills a lookup table from surface index to SPFH row. The
table is complete before pass 2 starts (the executor returns only when
every chunk has finished) and is read-only afterwards.
"""

from __future__ import annotations

import time
from typing import Optional, Sequence, Tuple

import numpy as np

from ..acceleration.neighbors import KDTreeNeighbors, SearchParams, SpatialIndex, search
from ..acceleration.parallel_executor import ChunkParallelExecutor
from ..errors import EstimationStatus, InvalidInputError, status_for
from ..utils.logging import setup_logger

logger = setup_logger(__name__)

_HIST_TOTAL = 100.0


def compute_pair_features(
    p1: np.ndarray,
    n1: np.ndarray,
    p2: np.ndarray,
    n2: np.ndarray,
) -> Optional[Tuple[float, float, float, float]]:
    """
    Compute the four Darboux-frame features between two oriented points.

    The point whose normal makes the smaller angle with the connecting line
    is chosen as the frame origin, which makes the features symmetric.

    Returns:
        (f1, f2, f3, f4) with f1 = atan2(w.n_t, u.n_t) in [-pi, pi],
        f2 = v.n_t, f3 = u.d/|d|, f4 = |d|; or None when the points
        coincide, the line is parallel to the source normal or a normal is
        not finite (see ``estimate_normals`` for sparse points).
    """
    if not (np.isfinite(n1).all() and np.isfinite(n2).all()):
        return None
    dp2p1 = p2 - p1
    f4 = float(np.linalg.norm(dp2p1))
    if f4 == 0.0:
        return None

    angle1 = float(np.dot(n1, dp2p1)) / f4
    angle2 = float(np.dot(n2, dp2p1)) / f4
    if np.arccos(min(abs(angle1), 1.0)) > np.arccos(min(abs(angle2), 1.0)):
        # Swap roles so that the frame sits on the second point
        n_src, n_tgt = n2, n1
        dp2p1 = -dp2p1
        f3 = -angle2
    else:
        n_src, n_tgt = n1, n2
        f3 = angle1

    v = np.cross(dp2p1, n_src)
    v_norm = float(np.linalg.norm(v))
    if v_norm == 0.0:
        return None
    v = v / v_norm
    w = np.cross(n_src, v)

    f2 = float(np.dot(v, n_tgt))
    f1 = float(np.arctan2(np.dot(w, n_tgt), np.dot(n_src, n_tgt)))
    return f1, f2, f3, f4


def _bin(value: float, lower: float, span: float, n_bins: int) -> int:
    idx = int(np.floor(n_bins * (value - lower) / span))
    return min(max(idx, 0), n_bins - 1)


class FPFHEstimator:
    """
    Parallel FPFH descriptor engine.

    Args:
        n_bins_f1: Bins for the f1 (angle) sub-histogram.
        n_bins_f2: Bins for the f2 sub-histogram.
        n_bins_f3: Bins for the f3 sub-histogram.
        search_params: Neighbour query used for both passes.
        n_threads: Worker threads (None = cpu count).
        chunk_size: Rows processed by a thread at a time.
    """

    def __init__(
        self,
        n_bins_f1: int = 11,
        n_bins_f2: int = 11,
        n_bins_f3: int = 11,
        search_params: Optional[SearchParams] = None,
        n_threads: Optional[int] = None,
        chunk_size: int = 256,
    ):
        if min(n_bins_f1, n_bins_f2, n_bins_f3) < 1:
            raise ValueError("Histogram bin counts must be >= 1")
        self.n_bins_f1 = int(n_bins_f1)
        self.n_bins_f2 = int(n_bins_f2)
        self.n_bins_f3 = int(n_bins_f3)
        self.search_params = search_params or SearchParams()
        self.n_threads = n_threads
        self.chunk_size = int(chunk_size)
        self.last_status: EstimationStatus = EstimationStatus.OK

    @classmethod
    def from_config(cls, config) -> "FPFHEstimator":
        """Build from a ``FeatureConfig`` (or an ``AppConfig``)."""
        cfg = getattr(config, "features", config)
        return cls(
            n_bins_f1=cfg.n_bins_f1,
            n_bins_f2=cfg.n_bins_f2,
            n_bins_f3=cfg.n_bins_f3,
            search_params=SearchParams(mode=cfg.search.mode, k=cfg.search.k, radius=cfg.search.radius),
            n_threads=cfg.n_threads,
            chunk_size=cfg.chunk_size,
        )

    @property
    def n_bins(self) -> int:
        return self.n_bins_f1 + self.n_bins_f2 + self.n_bins_f3

    def compute(
        self,
        surface: np.ndarray,
        normals: np.ndarray,
        indices: Optional[Sequence[int]] = None,
        spatial_index: Optional[SpatialIndex] = None,
        reduce_candidates: Optional[bool] = None,
    ) -> np.ndarray:
        """
        Compute one FPFH signature per point of interest.

        Args:
            surface: Surface cloud (N x 3).
            normals: Unit normals co-indexed with ``surface`` (N x 3).
            indices: Points of interest (indices into ``surface``); all points if None.
            spatial_index: Optional pre-built index over ``surface``.
            reduce_candidates: Force (True) or skip (False) the union-of-neighbours
                reduction. None decides automatically: the reduction is skipped when
                ``indices`` covers every surface point exactly once.

        Returns:
            Histograms (len(indices) x n_bins), in ``indices`` order. On invalid
            input an empty (0 x n_bins) array is returned, ``last_status`` is set
            and an error is logged.
        """
        try:
            surface, normals, indices = self._validate(surface, normals, indices)
        except InvalidInputError as e:
            self.last_status = status_for(e)
            logger.error("FPFH estimation aborted: %s", e)
            return np.zeros((0, self.n_bins))

        self.last_status = EstimationStatus.OK
        if len(indices) == 0:
            return np.zeros((0, self.n_bins))

        start = time.time()
        if spatial_index is None:
            spatial_index = KDTreeNeighbors(surface)
        executor = ChunkParallelExecutor(self.n_threads)

        full_coverage = len(indices) == len(surface) and np.array_equal(
            np.sort(indices), np.arange(len(surface))
        )
        if reduce_candidates is None:
            reduce_candidates = not full_coverage

        if reduce_candidates:
            candidates = self._candidate_indices(spatial_index, surface, indices)
        else:
            if not full_coverage:
                logger.warning(
                    "FPFH fast path requested but indices do not cover the surface; using reduction"
                )
                candidates = self._candidate_indices(spatial_index, surface, indices)
            else:
                candidates = indices

        hist_f1, hist_f2, hist_f3, lookup = self._compute_spfh(
            executor, spatial_index, surface, normals, candidates
        )
        # map_chunks has returned: every lookup slot for a candidate is written

        output = np.zeros((len(indices), self.n_bins))

        def _fpfh_chunk(begin: int, end: int) -> None:
            for row in range(begin, end):
                p_idx = int(indices[row])
                nn_idx, nn_dists = search(spatial_index, surface[p_idx], self.search_params)
                output[row] = self._weight_spfh_signature(
                    hist_f1, hist_f2, hist_f3, lookup, p_idx, nn_idx, nn_dists
                )

        executor.map_chunks(len(indices), _fpfh_chunk, self.chunk_size, label="FPFH points")

        logger.info(
            "Computed %d FPFH signatures from %d SPFH rows in %.3fs (reduction=%s)",
            len(indices),
            len(candidates),
            time.time() - start,
            bool(reduce_candidates),
        )
        return output

    # ------------------------ Passes ------------------------
    def _candidate_indices(
        self,
        spatial_index: SpatialIndex,
        surface: np.ndarray,
        indices: np.ndarray,
    ) -> np.ndarray:
        """Sorted union of the points of interest and all their neighbours."""
        seen = set(int(i) for i in indices)
        for p_idx in indices:
            nn_idx, _ = search(spatial_index, surface[p_idx], self.search_params)
            seen.update(int(i) for i in nn_idx)
        candidates = np.array(sorted(seen), dtype=np.int64)
        logger.debug(
            "SPFH candidate reduction: %d points of interest -> %d candidates",
            len(indices),
            len(candidates),
        )
        return candidates

    def _compute_spfh(
        self,
        executor: ChunkParallelExecutor,
        spatial_index: SpatialIndex,
        surface: np.ndarray,
        normals: np.ndarray,
        candidates: np.ndarray,
    ) -> Tuple[np.ndarray, np.ndarray, np.ndarray, np.ndarray]:
        n_rows = len(candidates)
        hist_f1 = np.zeros((n_rows, self.n_bins_f1))
        hist_f2 = np.zeros((n_rows, self.n_bins_f2))
        hist_f3 = np.zeros((n_rows, self.n_bins_f3))
        lookup = np.full(len(surface), -1, dtype=np.int64)

        def _spfh_chunk(begin: int, end: int) -> None:
            for row in range(begin, end):
                p_idx = int(candidates[row])
                nn_idx, _ = search(spatial_index, surface[p_idx], self.search_params)
                self._compute_point_spfh(surface, normals, p_idx, row, nn_idx, hist_f1, hist_f2, hist_f3)
                lookup[p_idx] = row

        executor.map_chunks(n_rows, _spfh_chunk, self.chunk_size, label="SPFH points")
        return hist_f1, hist_f2, hist_f3, lookup

    def _compute_point_spfh(
        self,
        surface: np.ndarray,
        normals: np.ndarray,
        p_idx: int,
        row: int,
        nn_idx: np.ndarray,
        hist_f1: np.ndarray,
        hist_f2: np.ndarray,
        hist_f3: np.ndarray,
    ) -> None:
        # Only pairs that yield a feature count towards the 100 total
        pair_features = []
        for n_idx in nn_idx:
            if int(n_idx) == p_idx:
                continue
            features = compute_pair_features(surface[p_idx], normals[p_idx], surface[n_idx], normals[n_idx])
            if features is not None:
                pair_features.append(features)
        if not pair_features:
            return
        hist_incr = _HIST_TOTAL / len(pair_features)

        for f1, f2, f3, _ in pair_features:
            hist_f1[row, _bin(f1, -np.pi, 2.0 * np.pi, self.n_bins_f1)] += hist_incr
            hist_f2[row, _bin(f2, -1.0, 2.0, self.n_bins_f2)] += hist_incr
            hist_f3[row, _bin(f3, -1.0, 2.0, self.n_bins_f3)] += hist_incr

    def _weight_spfh_signature(
        self,
        hist_f1: np.ndarray,
        hist_f2: np.ndarray,
        hist_f3: np.ndarray,
        lookup: np.ndarray,
        p_idx: int,
        nn_idx: np.ndarray,
        nn_dists: np.ndarray,
    ) -> np.ndarray:
        own_row = lookup[p_idx]
        if own_row < 0:
            raise RuntimeError(f"SPFH row missing for point of interest {p_idx}")

        acc_f1 = np.zeros(self.n_bins_f1)
        acc_f2 = np.zeros(self.n_bins_f2)
        acc_f3 = np.zeros(self.n_bins_f3)
        n_weighted = 0
        for n_idx, dist in zip(nn_idx, nn_dists):
            # Skips the query point itself
            if dist == 0.0:
                continue
            row = lookup[n_idx]
            if row < 0:
                raise RuntimeError(f"SPFH row missing for neighbour {int(n_idx)} of point {p_idx}")
            weight = 1.0 / dist
            acc_f1 += hist_f1[row] * weight
            acc_f2 += hist_f2[row] * weight
            acc_f3 += hist_f3[row] * weight
            n_weighted += 1

        parts = []
        for own, acc in ((hist_f1[own_row], acc_f1), (hist_f2[own_row], acc_f2), (hist_f3[own_row], acc_f3)):
            combined = own + acc / n_weighted if n_weighted else own.copy()
            total = combined.sum()
            if total != 0.0:
                combined = combined * (_HIST_TOTAL / total)
            parts.append(combined)
        return np.concatenate(parts)

    # ------------------------ Helpers ------------------------
    @staticmethod
    def _validate(
        surface: np.ndarray,
        normals: np.ndarray,
        indices: Optional[Sequence[int]],
    ) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
        surface = np.asarray(surface, dtype=float)
        normals = np.asarray(normals, dtype=float)
        if surface.ndim != 2 or surface.shape[1] != 3:
            raise InvalidInputError(f"Surface must be (N, 3), got shape {surface.shape}")
        if normals.shape != surface.shape:
            raise InvalidInputError(
                f"Normals shape {normals.shape} does not match surface shape {surface.shape}"
            )
        if not np.isfinite(surface).all():
            raise InvalidInputError("Surface contains non-finite coordinates")
        if indices is None:
            indices = np.arange(len(surface), dtype=np.int64)
        else:
            indices = np.asarray(indices)
            if indices.size == 0:
                indices = np.zeros(0, dtype=np.int64)
            elif indices.ndim != 1 or not np.issubdtype(indices.dtype, np.integer):
                raise InvalidInputError("Indices must be a 1-D sequence of integers")
            indices = indices.astype(np.int64, copy=False)
        if len(indices) and (indices.min() < 0 or indices.max() >= len(surface)):
            raise InvalidInputError(
                f"Indices out of range for a surface of {len(surface)} points "
                f"(min={int(indices.min())}, max={int(indices.max())})"
            )
        return surface, normals, indices


def compute_fpfh_features(
    surface: np.ndarray,
    normals: np.ndarray,
    indices: Optional[Sequence[int]] = None,
    search_params: Optional[SearchParams] = None,
    n_bins: Tuple[int, int, int] = (11, 11, 11),
    n_threads: Optional[int] = None,
) -> np.ndarray:
    """Functional wrapper around ``FPFHEstimator.compute``."""
    estimator = FPFHEstimator(
        n_bins_f1=n_bins[0],
        n_bins_f2=n_bins[1],
        n_bins_f3=n_bins[2],
        search_params=search_params,
        n_threads=n_threads,
    )
    return estimator.compute(surface, normals, indices)

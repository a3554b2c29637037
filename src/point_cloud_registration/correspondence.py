"""
Correspondence data type.

A correspondence pairs a point of the source cloud (``index_query``) with a
point of the target cloud (``index_match``) and carries a non-negative
score (``distance``). A correspondence set is a plain list; its order only
matters for stable tie-breaking.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Sequence, Tuple

import numpy as np


@dataclass(frozen=True)
class Correspondence:
    index_query: int
    index_match: int
    distance: float


Correspondences = List[Correspondence]


def correspondences_from_arrays(
    query_indices: Sequence[int],
    match_indices: Sequence[int],
    distances: Sequence[float],
) -> Correspondences:
    """
    Build a correspondence list from three parallel arrays.

    Raises:
        ValueError: If the arrays differ in length.
    """
    q = np.asarray(query_indices, dtype=np.int64).ravel()
    m = np.asarray(match_indices, dtype=np.int64).ravel()
    d = np.asarray(distances, dtype=float).ravel()
    if not (len(q) == len(m) == len(d)):
        raise ValueError(
            f"Parallel arrays differ in length (query={len(q)}, match={len(m)}, distance={len(d)})"
        )
    return [Correspondence(int(a), int(b), float(c)) for a, b, c in zip(q, m, d)]


def correspondences_to_arrays(
    correspondences: Sequence[Correspondence],
) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
    """Split a correspondence list into (query_indices, match_indices, distances)."""
    n = len(correspondences)
    q = np.fromiter((c.index_query for c in correspondences), dtype=np.int64, count=n)
    m = np.fromiter((c.index_match for c in correspondences), dtype=np.int64, count=n)
    d = np.fromiter((c.distance for c in correspondences), dtype=float, count=n)
    return q, m, d

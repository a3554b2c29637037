"""
Acceleration Module

Spatial indexing and shared-memory parallel loops used by the descriptor
engine and correspondence estimation.
"""

from .neighbors import KDTreeNeighbors, SearchParams, SpatialIndex, search
from .parallel_executor import ChunkParallelExecutor, split_range

__all__ = [
    "KDTreeNeighbors",
    "SearchParams",
    "SpatialIndex",
    "search",
    "ChunkParallelExecutor",
    "split_range",
]

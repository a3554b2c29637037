"""
Parallel execution infrastructure for per-point processing.

Provides ChunkParallelExecutor for distributing disjoint index ranges over
a shared-memory thread pool. Workers write into pre-allocated output arrays
at the rows of their own chunk, so no locking is needed.
"""

from __future__ import annotations

import logging
import os
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Callable, List, Optional, Tuple

logger = logging.getLogger(__name__)


def split_range(n_items: int, chunk_size: int) -> List[Tuple[int, int]]:
    """Split ``range(n_items)`` into consecutive ``(start, stop)`` chunks."""
    if chunk_size < 1:
        raise ValueError(f"chunk_size must be >= 1, got {chunk_size}")
    return [(start, min(start + chunk_size, n_items)) for start in range(0, n_items, chunk_size)]


class ChunkParallelExecutor:
    """
    Parallel executor for data-parallel loops over point indices.

    ``map_chunks`` returns only once every chunk has finished, so two
    consecutive calls form a barrier: the second pass never observes
    partially written state of the first.

    Example:
        executor = ChunkParallelExecutor(n_threads=4)
        executor.map_chunks(
            n_items=len(indices),
            worker_fn=lambda start, stop: fill_rows(out, start, stop),
            chunk_size=256,
        )
    """

    def __init__(self, n_threads: Optional[int] = None):
        """
        Initialize parallel executor.

        Args:
            n_threads: Number of worker threads. If None, uses the CPU count.
                Minimum is 1.
        """
        if n_threads is None:
            n_threads = os.cpu_count() or 1
        self.n_threads = max(1, int(n_threads))

        logger.debug(
            "Initialized ChunkParallelExecutor with %d threads (total CPUs: %s)",
            self.n_threads,
            os.cpu_count(),
        )

    def map_chunks(
        self,
        n_items: int,
        worker_fn: Callable[[int, int], None],
        chunk_size: int = 256,
        label: str = "items",
    ) -> None:
        """
        Apply ``worker_fn(start, stop)`` to every chunk of ``range(n_items)``.

        Args:
            n_items: Total number of items (rows) to process
            worker_fn: Function processing rows ``start..stop-1``. It must only
                write to rows of its own chunk.
            chunk_size: Rows per chunk
            label: Name used in log messages

        Raises:
            RuntimeError: If any chunk fails. All chunks are still awaited.
        """
        chunks = split_range(n_items, chunk_size)
        if not chunks:
            logger.debug("No %s to process", label)
            return

        start_time = time.time()

        # Sequential path (no pool overhead)
        if self.n_threads == 1 or len(chunks) == 1:
            for start, stop in chunks:
                try:
                    worker_fn(start, stop)
                except Exception as e:
                    logger.error("Error processing %s %d-%d: %s", label, start, stop, e, exc_info=True)
                    raise RuntimeError(f"Processing {label} failed: {e}") from e
            logger.debug(
                "Sequential processing complete: %d %s in %.3fs",
                n_items,
                label,
                time.time() - start_time,
            )
            return

        errors = []
        with ThreadPoolExecutor(max_workers=self.n_threads) as pool:
            futures = {pool.submit(worker_fn, start, stop): (start, stop) for start, stop in chunks}
            for future in as_completed(futures):
                start, stop = futures[future]
                error = future.exception()
                if error is not None:
                    errors.append((start, stop, error))
                    logger.error(
                        "Chunk %d-%d failed: %s: %s", start, stop, type(error).__name__, error
                    )

        if errors:
            error_msg = f"{len(errors)} chunks failed out of {len(chunks)}"
            logger.error(error_msg)
            raise RuntimeError(error_msg) from errors[0][2]

        logger.debug(
            "Parallel processing complete: %d %s in %d chunks on %d threads in %.3fs",
            n_items,
            label,
            len(chunks),
            self.n_threads,
            time.time() - start_time,
        )

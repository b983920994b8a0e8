"""
Parallel execution of independent loops.

Provides LoopParallelExecutor for distributing loop processing across
multiple CPU cores using multiprocessing.
"""

from __future__ import annotations

import logging
import time
from multiprocessing import Pool, cpu_count
from typing import Any, Callable, Dict, List, Optional, Tuple

logger = logging.getLogger(__name__)


def _worker_wrapper(args: Tuple[int, Any, Callable, Dict[str, Any]]) -> Tuple[int, Any, Optional[BaseException]]:
    """
    Worker wrapper function for parallel loop processing.

    Must be at module level for pickling on Windows.

    Args:
        args: Tuple of (loop_index, loop, worker_fn, worker_kwargs)

    Returns:
        Tuple of (loop_index, result, exception)
    """
    idx, item, worker_fn, worker_kwargs = args
    try:
        return (idx, worker_fn(item, **worker_kwargs), None)
    except Exception as e:
        logger.error(f"Worker error on loop {idx}: {type(e).__name__}: {e}")
        return (idx, None, e)


class LoopParallelExecutor:
    """
    Parallel executor for loop processing.

    Runs one task per loop and returns results in loop order, not completion
    order. A failing loop aborts the whole map: the exception of the first
    failing loop (by index) is re-raised unchanged once all tasks finished.

    Example:
        executor = LoopParallelExecutor(n_workers=4)
        loops = executor.map_loops(
            loops=prepared_loops,
            worker_fn=process_loop,
            worker_kwargs={'processor': processor}
        )
    """

    def __init__(self, n_workers: Optional[int] = None):
        """
        Initialize parallel executor.

        Args:
            n_workers: Number of worker processes. If None, uses cpu_count - 1
                to leave one core for coordination. Minimum is 1.
        """
        if n_workers is None:
            n_workers = max(1, cpu_count() - 1)
        else:
            n_workers = max(1, int(n_workers))

        self.n_workers = n_workers
        logger.debug(
            f"Initialized LoopParallelExecutor with {self.n_workers} workers "
            f"(total CPUs: {cpu_count()})"
        )

    @classmethod
    def from_config(cls, cfg) -> "LoopParallelExecutor":
        if not cfg.parallel.enabled:
            return cls(n_workers=1)
        return cls(n_workers=cfg.parallel.n_workers)

    def map_loops(
        self,
        loops: List[Any],
        worker_fn: Callable,
        worker_kwargs: Dict[str, Any],
        progress_callback: Optional[Callable[[int, int], None]] = None,
    ) -> List[Any]:
        """
        Map worker function over loops.

        Args:
            loops: Loops to process
            worker_fn: Function applied to each loop. Must be picklable and
                have signature: worker_fn(loop, **worker_kwargs) -> result
            worker_kwargs: Fixed keyword arguments passed to each worker call
            progress_callback: Optional callback called after each loop
                completes. Signature: callback(completed_count, total_count)

        Returns:
            List of results in same order as input loops
        """
        n_loops = len(loops)
        if n_loops == 0:
            logger.warning("No loops to process")
            return []

        logger.info(f"Processing {n_loops} loops with {self.n_workers} workers")
        start_time = time.time()

        # If only 1 worker or 1 loop, use sequential processing (no pool overhead)
        if self.n_workers == 1 or n_loops == 1:
            results = []
            for i, loop in enumerate(loops):
                results.append(worker_fn(loop, **worker_kwargs))
                if progress_callback:
                    progress_callback(i + 1, n_loops)
                self._log_progress(i + 1, n_loops, start_time)
            return results

        results = self._parallel_map(loops, worker_fn, worker_kwargs, progress_callback, start_time)
        total_time = time.time() - start_time
        logger.info(
            f"Parallel processing complete: {n_loops} loops in {total_time:.1f}s"
        )
        return results

    def _parallel_map(
        self,
        loops: List[Any],
        worker_fn: Callable,
        worker_kwargs: Dict[str, Any],
        progress_callback: Optional[Callable],
        start_time: float,
    ) -> List[Any]:
        """
        Execute parallel mapping using multiprocessing.Pool.

        Uses imap_unordered for responsiveness, then reorders results to match
        input loop order.
        """
        n_loops = len(loops)
        worker_args = [(i, loop, worker_fn, worker_kwargs) for i, loop in enumerate(loops)]

        results_dict: Dict[int, Any] = {}
        errors: Dict[int, BaseException] = {}
        try:
            with Pool(processes=min(self.n_workers, n_loops)) as pool:
                for completed, (idx, result, error) in enumerate(
                    pool.imap_unordered(_worker_wrapper, worker_args), start=1
                ):
                    if error is not None:
                        errors[idx] = error
                    else:
                        results_dict[idx] = result
                    if progress_callback:
                        progress_callback(completed, n_loops)
                    self._log_progress(completed, n_loops, start_time)
        except Exception as e:
            logger.error(f"Parallel processing failed: {e}", exc_info=True)
            raise RuntimeError(f"Parallel loop processing failed: {e}") from e

        if errors:
            logger.error(f"{len(errors)} loops failed out of {n_loops}")
            for idx in sorted(errors)[:5]:
                logger.error(f"  Loop {idx}: {type(errors[idx]).__name__}: {errors[idx]}")
            raise errors[min(errors)]

        return [results_dict[i] for i in range(n_loops)]

    @staticmethod
    def _log_progress(completed: int, total: int, start_time: float) -> None:
        elapsed = time.time() - start_time
        rate = completed / elapsed if elapsed > 0 else 0.0
        eta = (total - completed) / rate if rate > 0 else 0.0
        logger.info(
            f"Progress: {completed}/{total} loops "
            f"({100 * completed / total:.1f}%) - ETA: {eta:.1f}s"
        )

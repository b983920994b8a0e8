"""
Unit tests for parallel loop processing infrastructure.

Tests LoopParallelExecutor for correctness, ordering and error handling.
"""

from pathlib import Path
import sys

import pytest

# Ensure src is importable
sys.path.append(str(Path(__file__).parent.parent / "src"))

from edge_registration.pipeline.parallel_executor import LoopParallelExecutor
from edge_registration.utils.config import AppConfig
from edge_registration.utils.errors import CollaboratorError


# Module-level worker functions for pickling compatibility
def _simple_worker(item):
    """Simple worker that returns the item."""
    return item


def _scaling_worker(item, scale=1):
    """Worker that scales the item after a random delay."""
    import time
    import random
    time.sleep(random.uniform(0.001, 0.01))
    return item * scale


def _error_worker(item):
    """Worker that fails on odd items."""
    if item % 2:
        raise CollaboratorError(f"Intentional error on loop {item}")
    return item


class TestLoopParallelExecutor:
    """Test suite for LoopParallelExecutor."""

    def test_executor_initialization(self):
        """Test executor initializes with correct worker count."""
        executor = LoopParallelExecutor()
        assert executor.n_workers >= 1

        executor = LoopParallelExecutor(n_workers=4)
        assert executor.n_workers == 4

        # Minimum workers (should be at least 1)
        executor = LoopParallelExecutor(n_workers=0)
        assert executor.n_workers == 1

    def test_from_config(self):
        assert LoopParallelExecutor.from_config(AppConfig()).n_workers == 1
        cfg = AppConfig.model_validate({"parallel": {"enabled": True, "n_workers": 3}})
        assert LoopParallelExecutor.from_config(cfg).n_workers == 3

    def test_sequential_fallback_one_worker(self):
        executor = LoopParallelExecutor(n_workers=1)
        results = executor.map_loops(loops=list(range(5)), worker_fn=_scaling_worker, worker_kwargs={"scale": 1})
        assert results == [0, 1, 2, 3, 4]

    def test_parallel_processing_order_preserved(self):
        """Results come back in loop order, not completion order."""
        executor = LoopParallelExecutor(n_workers=2)
        results = executor.map_loops(loops=list(range(10)), worker_fn=_scaling_worker, worker_kwargs={"scale": 3})
        assert results == [i * 3 for i in range(10)]

    def test_empty_loop_list(self):
        executor = LoopParallelExecutor(n_workers=4)
        assert executor.map_loops(loops=[], worker_fn=_simple_worker, worker_kwargs={}) == []

    def test_worker_error_propagates_unchanged(self):
        executor = LoopParallelExecutor(n_workers=2)
        with pytest.raises(CollaboratorError, match="loop 1"):
            executor.map_loops(loops=list(range(5)), worker_fn=_error_worker, worker_kwargs={})

    def test_sequential_error_propagates_unchanged(self):
        executor = LoopParallelExecutor(n_workers=1)
        with pytest.raises(CollaboratorError, match="loop 1"):
            executor.map_loops(loops=list(range(5)), worker_fn=_error_worker, worker_kwargs={})

    def test_progress_callback(self):
        executor = LoopParallelExecutor(n_workers=2)
        progress_calls = []

        def progress_callback(completed, total):
            progress_calls.append((completed, total))

        executor.map_loops(
            loops=list(range(5)),
            worker_fn=_simple_worker,
            worker_kwargs={},
            progress_callback=progress_callback,
        )

        assert len(progress_calls) == 5
        assert progress_calls[-1] == (5, 5)


if __name__ == "__main__":
    pytest.main([__file__, "-v"])

"""
Pipeline Module

Loop-based registration: edge selection, loop construction, per-loop
processing and the driver that ties them together.
"""

from .loop import Loop, build_loops, check_loop_sequence
from .edge_balancer import EdgeBalancer, CameraDistanceMetric, centroid_distance, make_distance_metric
from .edge_selector import EdgeSelection, select_edges, fixed_stride_edges, positions_to_indices
from .loop_processor import LoopProcessor, process_loop
from .parallel_executor import LoopParallelExecutor
from .driver import PipelineDriver, PipelineResult

__all__ = [
    "Loop",
    "build_loops",
    "check_loop_sequence",
    "EdgeBalancer",
    "CameraDistanceMetric",
    "centroid_distance",
    "make_distance_metric",
    "EdgeSelection",
    "select_edges",
    "fixed_stride_edges",
    "positions_to_indices",
    "LoopProcessor",
    "process_loop",
    "LoopParallelExecutor",
    "PipelineDriver",
    "PipelineResult",
]

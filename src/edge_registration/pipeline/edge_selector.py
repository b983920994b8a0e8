"""
Edge selection.

Decides which frame indices bound the loops, either every
``fixed_loop_size * read_step`` frames or balanced by inter-frame distance.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional, Sequence

from .edge_balancer import DistanceMetric, EdgeBalancer, make_distance_metric
from ..preprocessing.frame_source import FrameSource
from ..utils.errors import ConfigurationError, Result
from ..utils.logging import setup_logger

logger = setup_logger(__name__)


@dataclass
class EdgeSelection:
    """Selected edges.

    Attributes:
        indices: Strictly increasing edge frame indices.
        positions: For balanced selection, the edge positions into the
            ``read(read_from, read_to, read_step)`` walk; None for fixed stride.
        stride: For fixed-stride selection, the index distance between edges.
    """

    indices: List[int]
    positions: Optional[List[int]] = None
    stride: Optional[int] = None

    @property
    def n_loops(self) -> int:
        return len(self.indices) - 1


def fixed_stride_edges(read_from: int, read_to: int, read_step: int, loop_size: int) -> List[int]:
    """Edges ``read_from + k * loop_size * read_step`` not exceeding ``read_to``."""
    stride = loop_size * read_step
    return list(range(read_from, read_to + 1, stride))


def positions_to_indices(positions: Sequence[int], read_from: int, read_step: int) -> List[int]:
    return [p * read_step + read_from for p in positions]


def validate_edges(indices: Sequence[int]) -> Result[List[int]]:
    edges = list(indices)
    if len(edges) < 2:
        return Result.failure(ConfigurationError(
            f"Edge selection produced {len(edges)} edge(s); at least two are needed for one loop. "
            "Check frames.read_from/read_to against registration.fixed_loop_size."
        ))
    for a, b in zip(edges, edges[1:]):
        if b <= a:
            return Result.failure(ConfigurationError(
                f"Edge indices must be strictly increasing, got {a} followed by {b}"
            ))
    return Result.success(edges)


def select_edges(
    cfg,
    frame_source: Optional[FrameSource] = None,
    metric: Optional[DistanceMetric] = None,
) -> Result[EdgeSelection]:
    """
    Select loop edges according to the configuration.

    Args:
        cfg: AppConfig.
        frame_source: Needed for balanced selection only.
        metric: Distance metric override for balanced selection.

    Returns:
        Result with the EdgeSelection, or a ConfigurationError.
    """
    frames_cfg = cfg.frames
    reg = cfg.registration

    if not reg.edge_balancing:
        stride = reg.fixed_loop_size * frames_cfg.read_step
        indices = fixed_stride_edges(
            frames_cfg.read_from, frames_cfg.read_to, frames_cfg.read_step, reg.fixed_loop_size
        )
        logger.info(f"Fixed-stride edges (stride {stride}): {indices}")
        return validate_edges(indices).then(
            lambda edges: Result.success(EdgeSelection(indices=edges, stride=stride))
        )

    if frame_source is None:
        return Result.failure(ConfigurationError("Balanced edge selection needs a frame source"))

    balancer = EdgeBalancer(metric or make_distance_metric(cfg), reg.fixed_loop_size)
    positions = balancer.balance(
        frame_source.read(frames_cfg.read_from, frames_cfg.read_to, frames_cfg.read_step)
    )
    indices = positions_to_indices(positions, frames_cfg.read_from, frames_cfg.read_step)
    logger.info(f"Balanced edges: {indices}")
    return validate_edges(indices).then(
        lambda edges: Result.success(EdgeSelection(indices=edges, positions=list(positions)))
    )

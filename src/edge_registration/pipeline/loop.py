"""
Loops and loop construction.

A loop is the span of the frame sequence between two consecutive edge
frames. Consecutive loops share an edge: loop ``i`` ends on the frame loop
``i + 1`` starts on. A loop aligns its full inclusive span but owns only
``[start, end)``; the last loop of a sequence also owns its end edge. Every
frame transform therefore appears exactly once across all loops.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Tuple

import numpy as np

from ..preprocessing.frame_source import Frame, KeypointsFrame
from ..utils.errors import ConfigurationError, Result


def _identity_pair() -> Tuple[np.ndarray, np.ndarray]:
    return np.eye(4), np.eye(4)


@dataclass
class Loop:
    """
    Unit of work of the registration pipeline.

    Attributes:
        edge_frame_indices: (start, end) frame indices; ``end > start``.
        includes_end_edge: True for the last loop, which also owns its end edge.
        edge_frames: Filtered edge frames, set by edge-level alignment.
        edge_keypoints: Keypoints of the start edge in its own coordinates.
        edge_transforms: Global transforms of the start and end edge.
        inner_frame_indices: Indices of the frames this loop owns.
        inner_transforms: Global transform per owned frame.
        inner_fitness_scores: Fine-stage fitness per owned frame.
        inner_keypoints: Final keypoint snapshot per owned frame.
    """

    edge_frame_indices: Tuple[int, int]
    includes_end_edge: bool = False
    edge_frames: Optional[Tuple[Frame, Frame]] = None
    edge_keypoints: Optional[KeypointsFrame] = None
    edge_transforms: Tuple[np.ndarray, np.ndarray] = field(default_factory=_identity_pair)
    inner_frame_indices: List[int] = field(default_factory=list)
    inner_transforms: List[np.ndarray] = field(default_factory=list)
    inner_fitness_scores: List[float] = field(default_factory=list)
    inner_keypoints: List[KeypointsFrame] = field(default_factory=list)

    def __post_init__(self) -> None:
        start, end = self.edge_frame_indices
        if end <= start:
            raise ConfigurationError(
                f"Loop with zero span is invalid (start={start}, end={end})"
            )
        self.edge_frame_indices = (int(start), int(end))

    @classmethod
    def create(cls, start: int, end: int, *, includes_end_edge: bool = False) -> Result["Loop"]:
        """Non-raising constructor."""
        if end <= start:
            return Result.failure(ConfigurationError(
                f"Loop with zero span is invalid (start={start}, end={end})"
            ))
        return Result.success(cls((start, end), includes_end_edge=includes_end_edge))

    @property
    def start(self) -> int:
        return self.edge_frame_indices[0]

    @property
    def end(self) -> int:
        return self.edge_frame_indices[1]

    def __repr__(self) -> str:
        return (
            f"Loop({self.start}->{self.end}, owned={len(self.inner_transforms)}, "
            f"includes_end_edge={self.includes_end_edge})"
        )


def build_loops(edge_indices: Sequence[int]) -> Result[List[Loop]]:
    """
    Build one loop per pair of consecutive edge indices.

    Args:
        edge_indices: Strictly increasing edge frame indices.

    Returns:
        Result with ``len(edge_indices) - 1`` loops, or a ConfigurationError.
    """
    edges = list(edge_indices)
    if len(edges) < 2:
        return Result.failure(ConfigurationError(
            f"At least two edges are needed to form a loop, got {len(edges)}"
        ))

    loops: List[Loop] = []
    for k in range(1, len(edges)):
        made = Loop.create(edges[k - 1], edges[k], includes_end_edge=(k == len(edges) - 1))
        if not made.ok:
            return Result.failure(made.error)
        loops.append(made.value)
    return Result.success(loops)


def check_loop_sequence(loops: Sequence[Loop], n_edge_frames: int) -> Result[None]:
    """Every loop needs exactly one following edge: ``len(loops) + 1 == n_edge_frames``."""
    if len(loops) + 1 != n_edge_frames:
        return Result.failure(ConfigurationError(
            f"Loop/edge count mismatch: {len(loops)} loops need {len(loops) + 1} edge frames, "
            f"got {n_edge_frames}"
        ))
    for prev, nxt in zip(loops, loops[1:]):
        if prev.end != nxt.start:
            return Result.failure(ConfigurationError(
                f"Loops {prev.edge_frame_indices} and {nxt.edge_frame_indices} do not share an edge"
            ))
    return Result.success(None)

"""
Shared types for sequence aligners.

An aligner registers an ordered frame sequence: frame 0 receives the seed
transform and every following frame is registered against its already
placed predecessor.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional, Protocol, Sequence

import numpy as np

from ..preprocessing.frame_source import Frame, KeypointsFrame
from ..utils.errors import CollaboratorError

MIN_POINTS = 3


@dataclass
class AlignmentResult:
    """Output of one registration stage.

    Attributes:
        transforms: One 4x4 transform per frame (frame -> global).
        frames: The input frames with their transform applied.
        keypoints: Keypoints in the input frames' coordinates.
        transformed_keypoints: Keypoints with their frame's transform applied.
        fitness_scores: Per-frame quality (RMSE) when the stage reports one.
    """

    transforms: List[np.ndarray]
    frames: List[Frame]
    keypoints: List[KeypointsFrame]
    transformed_keypoints: List[KeypointsFrame]
    fitness_scores: List[float] = field(default_factory=list)


class Aligner(Protocol):
    def align(
        self,
        frames: Sequence[Frame],
        seed: Optional[np.ndarray] = None,
        keypoints: Optional[Sequence[KeypointsFrame]] = None,
    ) -> AlignmentResult:
        ...


def check_alignment_inputs(
    stage: str,
    frames: Sequence[Frame],
    keypoints: Optional[Sequence[KeypointsFrame]] = None,
) -> None:
    """Raise CollaboratorError when a stage cannot register the given inputs."""
    if len(frames) == 0:
        raise CollaboratorError(f"{stage}: no frames to align")
    if keypoints is not None and len(keypoints) != len(frames):
        raise CollaboratorError(
            f"{stage}: got {len(keypoints)} keypoint sets for {len(frames)} frames"
        )
    for frame in frames:
        if len(frame) < MIN_POINTS:
            raise CollaboratorError(
                f"{stage}: frame {frame.index} has {len(frame)} points; at least {MIN_POINTS} are needed"
            )
    for kp in keypoints or ():
        if len(kp) < MIN_POINTS:
            raise CollaboratorError(
                f"{stage}: frame {kp.index} has {len(kp)} keypoints; at least {MIN_POINTS} are needed"
            )


def seed_transform(seed: Optional[np.ndarray]) -> np.ndarray:
    if seed is None:
        return np.eye(4)
    seed = np.asarray(seed, dtype=float)
    if seed.shape != (4, 4):
        raise ValueError(f"Seed transform must be 4x4, got {seed.shape}")
    return seed.copy()

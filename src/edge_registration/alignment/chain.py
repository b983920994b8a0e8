"""
Two-stage alignment chain.

Runs a coarse aligner and then a fine aligner over the same ordered frame
sequence and composes their per-frame transforms as
``T[i] = fine[i] @ coarse[i]`` (fine applied after coarse).
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional, Sequence

import numpy as np

from .base import Aligner, seed_transform
from .coarse_registration import CoarseAligner
from .fine_registration import FineAligner
from ..preprocessing.frame_source import Frame, KeypointsFrame
from ..utils.errors import CollaboratorError
from ..utils.logging import setup_logger

logger = setup_logger(__name__)


@dataclass
class ChainResult:
    """Composed output of the coarse and fine stages.

    Attributes:
        transforms: ``fine[i] @ coarse[i]`` for every frame.
        frames: Frames after both stages.
        keypoints: Coarse-stage keypoints in the input frames' coordinates.
        transformed_keypoints: Fine-stage keypoints after both stages.
        fitness_scores: Fine-stage fitness per frame.
    """

    transforms: List[np.ndarray]
    frames: List[Frame]
    keypoints: List[KeypointsFrame]
    transformed_keypoints: List[KeypointsFrame]
    fitness_scores: List[float]


class AlignmentChain:
    """Coarse-then-fine registration of a frame sequence."""

    def __init__(self, coarse: Aligner, fine: Aligner):
        self.coarse = coarse
        self.fine = fine

    @classmethod
    def from_config(cls, cfg) -> "AlignmentChain":
        return cls(CoarseAligner.from_config(cfg), FineAligner.from_config(cfg))

    def align(self, frames: Sequence[Frame], seed: Optional[np.ndarray] = None) -> ChainResult:
        """
        Align an ordered frame sequence.

        Args:
            frames: Frames in capture order.
            seed: Transform for the first frame (identity when None).

        Returns:
            ChainResult with one transform per input frame.
        """
        frames = list(frames)
        coarse = self.coarse.align(frames, seed_transform(seed))
        fine = self.fine.align(coarse.frames, np.eye(4), keypoints=coarse.transformed_keypoints)

        if len(coarse.transforms) != len(frames) or len(fine.transforms) != len(frames):
            raise CollaboratorError(
                f"Aligners returned {len(coarse.transforms)} coarse and {len(fine.transforms)} "
                f"fine transforms for {len(frames)} frames"
            )

        transforms = [f @ c for f, c in zip(fine.transforms, coarse.transforms)]
        fitness = list(fine.fitness_scores)
        if len(fitness) != len(frames):
            logger.warning(
                f"Fine stage reported {len(fitness)} fitness scores for {len(frames)} frames; "
                "missing scores are recorded as NaN"
            )
            fitness = (fitness + [float("nan")] * len(frames))[: len(frames)]

        return ChainResult(
            transforms=transforms,
            frames=fine.frames,
            keypoints=coarse.keypoints,
            transformed_keypoints=fine.transformed_keypoints,
            fitness_scores=fitness,
        )

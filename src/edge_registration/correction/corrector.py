"""
Loop closure corrector.

Runs two correction passes over an already aligned inner sequence and folds
their corrective transforms into the running transform chain:

    result[i] = corrective_A[i] @ result[i]      for i >= 1
    result[i] = corrective_B[i] @ result[i]      for i >= 1

The first frame coincides with the loop's start edge and is never corrected.
Pass B works on the frames and keypoints pass A produced.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Sequence

import numpy as np

from .base import CorrectionPass
from .loop_drift import LoopDriftCorrection
from .relaxation import PoseGraphRelaxation
from ..preprocessing.frame_source import Frame, KeypointsFrame
from ..utils.errors import CollaboratorError
from ..utils.logging import setup_logger

logger = setup_logger(__name__)


@dataclass
class CorrectionOutcome:
    transforms: List[np.ndarray]
    frames: List[Frame]
    transformed_keypoints: List[KeypointsFrame]


def fold_correctives(result: List[np.ndarray], correctives: Sequence[np.ndarray], name: str) -> None:
    """Left-multiply correctives onto ``result`` in place, skipping the first frame."""
    if len(correctives) != len(result):
        raise CollaboratorError(
            f"{name} returned {len(correctives)} corrective transforms for {len(result)} frames"
        )
    for i in range(1, len(result)):
        result[i] = correctives[i] @ result[i]


class LoopClosureCorrector:
    """Sequential two-pass loop closure correction."""

    def __init__(self, pass_a: CorrectionPass, pass_b: CorrectionPass):
        self.pass_a = pass_a
        self.pass_b = pass_b

    @classmethod
    def from_config(cls, cfg) -> "LoopClosureCorrector":
        return cls(LoopDriftCorrection.from_config(cfg), PoseGraphRelaxation.from_config(cfg))

    def correct(
        self,
        frames: Sequence[Frame],
        keypoints: Sequence[KeypointsFrame],
        transforms: Sequence[np.ndarray],
        edge_keypoints: KeypointsFrame,
    ) -> CorrectionOutcome:
        """
        Correct an aligned loop.

        Args:
            frames: Inner frames after alignment.
            keypoints: Their keypoints after alignment.
            transforms: Running transform per frame; not modified.
            edge_keypoints: Keypoints of the loop's start edge in its own coordinates.

        Returns:
            CorrectionOutcome with the corrected transforms and pass B's frames/keypoints.
        """
        result = [np.array(T, dtype=float, copy=True) for T in transforms]

        a = self.pass_a.correct(frames, keypoints, result, edge_keypoints)
        fold_correctives(result, a.transforms, type(self.pass_a).__name__)

        b = self.pass_b.correct(a.frames, a.transformed_keypoints, result, edge_keypoints)
        fold_correctives(result, b.transforms, type(self.pass_b).__name__)

        logger.debug(f"Loop closure correction applied to {len(result) - 1} frames")
        return CorrectionOutcome(
            transforms=result,
            frames=list(b.frames),
            transformed_keypoints=list(b.transformed_keypoints),
        )

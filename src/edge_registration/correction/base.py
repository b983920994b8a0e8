"""
Shared types for correction passes.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Protocol, Sequence

import numpy as np

from ..preprocessing.frame_source import Frame, KeypointsFrame


@dataclass
class CorrectionResult:
    """Output of one correction pass.

    Attributes:
        transforms: One corrective transform per frame, to be left-multiplied
            onto the running transform of that frame.
        frames: Input frames with their corrective transform applied.
        transformed_keypoints: Input keypoints with their corrective transform applied.
    """

    transforms: List[np.ndarray]
    frames: List[Frame]
    transformed_keypoints: List[KeypointsFrame]


class CorrectionPass(Protocol):
    def correct(
        self,
        frames: Sequence[Frame],
        keypoints: Sequence[KeypointsFrame],
        transforms: Sequence[np.ndarray],
        edge_keypoints: KeypointsFrame,
    ) -> CorrectionResult:
        ...


def apply_correctives(
    frames: Sequence[Frame],
    keypoints: Sequence[KeypointsFrame],
    correctives: Sequence[np.ndarray],
) -> CorrectionResult:
    return CorrectionResult(
        transforms=list(correctives),
        frames=[frame.transformed(C) for frame, C in zip(frames, correctives)],
        transformed_keypoints=[kp.transformed(C) for kp, C in zip(keypoints, correctives)],
    )

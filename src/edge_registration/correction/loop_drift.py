"""
Explicit loop-constraint drift correction.

The last frame of an aligned loop should coincide with the loop's starting
edge. The residual between the two (the closing error) is measured with ICP
and spread along the loop: frame ``i`` of ``n`` receives the fraction
``i / (n - 1)`` of the closing transform, so the first frame stays put and
the last frame is moved onto the start edge.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Sequence

import numpy as np

from .base import CorrectionResult, apply_correctives
from ..alignment.fine_registration import ICPRegistration
from ..preprocessing.frame_source import Frame, KeypointsFrame
from ..utils.logging import setup_logger
from ..utils.transforms import apply_transformation, interpolate_transform, rotation_angle

logger = setup_logger(__name__)


@dataclass
class LoopDriftCorrection:
    icp: ICPRegistration = field(default_factory=lambda: ICPRegistration(max_correspondence_distance=0.2))

    @classmethod
    def from_config(cls, cfg) -> "LoopDriftCorrection":
        icp_cfg = cfg.alignment.icp
        return cls(icp=ICPRegistration(
            max_iterations=cfg.correction.closure_max_iterations,
            tolerance=icp_cfg.tolerance,
            max_correspondence_distance=cfg.correction.max_correspondence_distance,
            convergence_translation_epsilon=icp_cfg.convergence_translation_epsilon,
            convergence_rotation_epsilon_deg=icp_cfg.convergence_rotation_epsilon_deg,
        ))

    def correct(
        self,
        frames: Sequence[Frame],
        keypoints: Sequence[KeypointsFrame],
        transforms: Sequence[np.ndarray],
        edge_keypoints: KeypointsFrame,
    ) -> CorrectionResult:
        n = len(frames)
        identity = [np.eye(4) for _ in range(n)]
        if n < 2:
            return apply_correctives(frames, keypoints, identity)

        # Edge keypoints are in the start edge's own coordinates
        anchor = apply_transformation(edge_keypoints.points, transforms[0])
        _, closing, err = self.icp.align_point_clouds(source=keypoints[-1].points, target=anchor)
        if not np.isfinite(err):
            logger.warning(
                f"Loop [{frames[0].index}..{frames[-1].index}]: no overlap between last frame and "
                "start edge; skipping drift correction"
            )
            return apply_correctives(frames, keypoints, identity)

        logger.info(
            f"Loop [{frames[0].index}..{frames[-1].index}]: closing error "
            f"|t|={np.linalg.norm(closing[:3, 3]):.4f}, θ={np.rad2deg(rotation_angle(closing)):.3f}° "
            f"(rmse {err:.5f})"
        )
        correctives = [interpolate_transform(closing, i / (n - 1)) for i in range(n)]
        correctives[0] = np.eye(4)
        return apply_correctives(frames, keypoints, correctives)

"""
Keypoint extraction.

Keypoints are voxel-grid centroids of a frame, capped at a maximum count.
They are what the coarse and fine aligners actually register; the dense
frame points are only transformed along.
"""

from __future__ import annotations

from dataclasses import dataclass

from ..preprocessing.filters import voxel_downsample, random_subsample
from ..preprocessing.frame_source import Frame, KeypointsFrame


@dataclass
class KeypointExtractor:
    voxel_size: float = 0.05
    max_keypoints: int = 5000
    seed: int = 0

    @classmethod
    def from_config(cls, cfg) -> "KeypointExtractor":
        k = cfg.keypoints
        return cls(voxel_size=k.voxel_size, max_keypoints=k.max_keypoints, seed=k.seed)

    def extract(self, frame: Frame) -> KeypointsFrame:
        points = voxel_downsample(frame.points, self.voxel_size)
        points = random_subsample(points, self.max_keypoints, seed=self.seed + frame.index)
        return KeypointsFrame(frame.index, points)

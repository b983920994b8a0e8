"""
Distance-balanced edge placement.

Walks a frame sequence once, measuring the distance between consecutive
frames, and places edges so that every loop covers roughly the same distance
instead of the same number of frames. The loop count and covered span are
the ones fixed-stride selection would use, so a uniform metric yields
exactly the fixed-stride edges.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable, Iterable, List, Optional

import numpy as np

from ..alignment.coarse_registration import CoarseRegistration
from ..alignment.keypoints import KeypointExtractor
from ..preprocessing.frame_source import Frame
from ..utils.logging import setup_logger
from ..utils.transforms import rotation_angle

logger = setup_logger(__name__)

DistanceMetric = Callable[[Frame, Frame], float]


def centroid_distance(previous: Frame, current: Frame) -> float:
    """Euclidean distance between frame centroids."""
    if len(previous) == 0 or len(current) == 0:
        return 0.0
    return float(np.linalg.norm(np.mean(current.points, axis=0) - np.mean(previous.points, axis=0)))


@dataclass
class CameraDistanceMetric:
    """Camera motion between two frames from a pairwise coarse registration.

    Distance is ``|t| + rotation_weight * angle``.
    """

    registration: CoarseRegistration = field(default_factory=lambda: CoarseRegistration(method="pca"))
    extractor: KeypointExtractor = field(default_factory=KeypointExtractor)
    rotation_weight: float = 1.0

    def __call__(self, previous: Frame, current: Frame) -> float:
        src = self.extractor.extract(current).points
        dst = self.extractor.extract(previous).points
        T = self.registration.compute_initial_transform(src, dst)
        return float(np.linalg.norm(T[:3, 3])) + self.rotation_weight * rotation_angle(T)


def make_distance_metric(cfg) -> DistanceMetric:
    if cfg.registration.distance_metric == "camera":
        return CameraDistanceMetric(
            registration=CoarseRegistration(
                method=cfg.alignment.coarse.method,
                voxel_size=cfg.alignment.coarse.voxel_size,
            ),
            extractor=KeypointExtractor.from_config(cfg),
            rotation_weight=cfg.registration.rotation_weight,
        )
    return centroid_distance


class EdgeBalancer:
    """
    Place edges by accumulated inter-frame distance.

    Args:
        metric: Distance between two consecutive frames.
        loop_size: Target loop size in frames of the walk.
    """

    def __init__(self, metric: DistanceMetric, loop_size: int):
        if loop_size < 1:
            raise ValueError(f"loop_size must be >= 1, got {loop_size}")
        self.metric = metric
        self.loop_size = loop_size

    def step_distances(self, frames: Iterable[Frame]) -> np.ndarray:
        """Distances between consecutive frames; only one previous frame is held."""
        distances: List[float] = []
        previous: Optional[Frame] = None
        for frame in frames:
            if previous is not None:
                distances.append(max(0.0, float(self.metric(previous, frame))))
            previous = frame
        return np.asarray(distances, dtype=float)

    def balance(self, frames: Iterable[Frame]) -> List[int]:
        """Return strictly increasing edge positions into the walked sequence."""
        d = self.step_distances(frames)
        positions = self.balance_distances(d, self.loop_size)
        logger.info(
            f"Edge balancing over {len(d) + 1} frames (total distance {float(d.sum()):.4f}): "
            f"edges at positions {positions}"
        )
        return positions

    @staticmethod
    def balance_distances(step_distances: np.ndarray, loop_size: int) -> List[int]:
        """
        Balance edges over precomputed step distances.

        Args:
            step_distances: ``n - 1`` distances for ``n`` frames.
            loop_size: Target loop size in frames.

        Returns:
            Edge positions; a single position when the walk is shorter than one loop.
        """
        n_frames = len(step_distances) + 1
        n_loops = (n_frames - 1) // loop_size
        if n_loops < 1:
            return [0]

        span = n_loops * loop_size
        cumulative = np.concatenate([[0.0], np.cumsum(step_distances)])[: span + 1]
        total = float(cumulative[span])
        if total <= 0.0:
            return [k * loop_size for k in range(n_loops + 1)]

        target = total / n_loops
        positions = [0]
        for k in range(1, n_loops):
            lo = positions[-1] + 1
            # Leave room for the remaining edges
            hi = span - (n_loops - k)
            window = cumulative[lo: hi + 1]
            positions.append(lo + int(np.argmin(np.abs(window - k * target))))
        positions.append(span)
        return positions

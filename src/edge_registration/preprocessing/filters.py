"""
Frame Filtering Utilities

Mask-based clean-up applied to every frame before alignment:
- non-finite point removal
- depth (local z) cropping
- voxel grid downsampling
- random subsampling to a point cap
"""

from __future__ import annotations

from typing import Iterable, List, Optional

import numpy as np

from .frame_source import Frame
from ..utils.logging import setup_logger

logger = setup_logger(__name__)


def create_finite_mask(points: np.ndarray) -> np.ndarray:
    """Boolean mask of points whose coordinates are all finite."""
    return np.all(np.isfinite(points), axis=1)


def create_depth_mask(
    points: np.ndarray,
    min_depth: Optional[float] = None,
    max_depth: Optional[float] = None,
) -> np.ndarray:
    """Create a boolean mask keeping points with ``min_depth <= z <= max_depth``.

    Either bound may be None to leave that side open.

    Examples:
        >>> pts = np.array([[0, 0, 0.2], [0, 0, 1.0], [0, 0, 5.0]])
        >>> create_depth_mask(pts, min_depth=0.5, max_depth=2.0)
        array([False,  True, False])
    """
    mask = np.ones(len(points), dtype=bool)
    if min_depth is not None:
        mask &= points[:, 2] >= min_depth
    if max_depth is not None:
        mask &= points[:, 2] <= max_depth
    return mask


def voxel_downsample(points: np.ndarray, voxel_size: float) -> np.ndarray:
    """Replace the points of every occupied voxel by their centroid.

    Output is ordered by voxel key, so it is deterministic for a given input.
    """
    if points.size == 0 or voxel_size is None or voxel_size <= 0:
        return points
    keys = np.floor(points / voxel_size).astype(np.int64)
    _, inverse, counts = np.unique(keys, axis=0, return_inverse=True, return_counts=True)
    inverse = inverse.reshape(-1)
    sums = np.zeros((len(counts), 3), dtype=np.float64)
    np.add.at(sums, inverse, points)
    return sums / counts[:, None]


def random_subsample(points: np.ndarray, max_points: int, seed: int = 0) -> np.ndarray:
    if max_points is None or len(points) <= max_points:
        return points
    rng = np.random.default_rng(seed)
    idx = np.sort(rng.choice(len(points), max_points, replace=False))
    return points[idx]


def get_filter_statistics(total_points: int, filtered_points: int) -> dict:
    """Summarize a filtering step for logging."""
    percentage = (filtered_points / total_points * 100.0) if total_points > 0 else 0.0
    return {
        "total_points": total_points,
        "filtered_points": filtered_points,
        "percentage": percentage,
    }


class FrameFilter:
    """
    Filter applied to frame sequences before registration.

    Args:
        enabled: If False, frames are returned unchanged.
        remove_non_finite: Drop NaN/inf points.
        min_depth / max_depth: Optional local-z crop.
        voxel_size: Optional voxel grid size.
        max_points: Optional per-frame point cap (random, seeded).
        seed: Seed for the subsampling RNG.
    """

    def __init__(
        self,
        *,
        enabled: bool = True,
        remove_non_finite: bool = True,
        min_depth: Optional[float] = None,
        max_depth: Optional[float] = None,
        voxel_size: Optional[float] = None,
        max_points: Optional[int] = None,
        seed: int = 0,
    ):
        self.enabled = enabled
        self.remove_non_finite = remove_non_finite
        self.min_depth = min_depth
        self.max_depth = max_depth
        self.voxel_size = voxel_size
        self.max_points = max_points
        self.seed = seed

    @classmethod
    def from_config(cls, cfg) -> "FrameFilter":
        f = cfg.filters
        return cls(
            enabled=f.enabled,
            remove_non_finite=f.remove_non_finite,
            min_depth=f.min_depth,
            max_depth=f.max_depth,
            voxel_size=f.voxel_size,
            max_points=f.max_points,
            seed=f.seed,
        )

    def apply(self, frames: Iterable[Frame]) -> List[Frame]:
        frames = list(frames)
        if not self.enabled:
            return frames
        return [self.filter_frame(frame) for frame in frames]

    def filter_frame(self, frame: Frame) -> Frame:
        points = frame.points
        total = len(points)

        mask = np.ones(total, dtype=bool)
        if self.remove_non_finite:
            mask &= create_finite_mask(points)
        if self.min_depth is not None or self.max_depth is not None:
            # NaN depths compare False and are dropped here as well
            mask &= create_depth_mask(points, self.min_depth, self.max_depth)
        points = points[mask]

        if self.voxel_size:
            points = voxel_downsample(points, self.voxel_size)
        if self.max_points:
            points = random_subsample(points, self.max_points, seed=self.seed + frame.index)

        stats = get_filter_statistics(total, len(points))
        logger.debug(
            f"Frame {frame.index}: kept {stats['filtered_points']} of "
            f"{stats['total_points']} points ({stats['percentage']:.1f}%)"
        )
        if total > 0 and len(points) == 0:
            logger.warning(f"Frame {frame.index}: filtering removed every point")
        return frame.with_points(points)

"""
Rigid transform helpers.

Transforms are plain 4x4 numpy arrays composed by left multiplication
(``T_new = T_second @ T_first``).
"""

from __future__ import annotations

import numpy as np
from scipy.spatial.transform import Rotation


def apply_transformation(points: np.ndarray, transform: np.ndarray) -> np.ndarray:
    """
    Apply a transformation matrix to a set of points.

    Args:
        points: Point cloud (N x 3).
        transform: Transformation matrix (4 x 4).

    Returns:
        Transformed point cloud (N x 3).
    """
    if points.size == 0:
        return points
    R = transform[:3, :3]
    t = transform[:3, 3]
    return points @ R.T + t


def rotation_angle(transform: np.ndarray) -> float:
    """Rotation magnitude of a transform in radians."""
    trace = float(np.trace(transform[:3, :3]))
    # Clamp argument to arccos to valid range to avoid NaNs
    cos_theta = max(min((trace - 1.0) * 0.5, 1.0), -1.0)
    return float(np.arccos(cos_theta))


def interpolate_transform(transform: np.ndarray, weight: float) -> np.ndarray:
    """
    Scale a rigid transform between identity (weight 0) and itself (weight 1).

    Rotation is interpolated along its axis, translation linearly.
    """
    rotvec = Rotation.from_matrix(transform[:3, :3]).as_rotvec()
    out = np.eye(4)
    out[:3, :3] = Rotation.from_rotvec(rotvec * weight).as_matrix()
    out[:3, 3] = transform[:3, 3] * weight
    return out


def invert_transform(transform: np.ndarray) -> np.ndarray:
    R = transform[:3, :3]
    t = transform[:3, 3]
    out = np.eye(4)
    out[:3, :3] = R.T
    out[:3, 3] = -R.T @ t
    return out


def estimate_rigid_transform(source_points: np.ndarray, target_points: np.ndarray) -> np.ndarray:
    """
    Estimate the least-squares rigid transform mapping source onto corresponding target points.

    Args:
        source_points: Source points (N x 3).
        target_points: Corresponding target points (N x 3).

    Returns:
        Transformation matrix (4 x 4).
    """
    source_centroid = np.mean(source_points, axis=0)
    target_centroid = np.mean(target_points, axis=0)

    H = (source_points - source_centroid).T @ (target_points - target_centroid)
    U, _, Vt = np.linalg.svd(H)
    R = Vt.T @ U.T

    # Ensure proper rotation (det(R) should be 1)
    if np.linalg.det(R) < 0:
        Vt[-1, :] *= -1
        R = Vt.T @ U.T

    t = target_centroid - R @ source_centroid

    transform = np.eye(4)
    transform[:3, :3] = R
    transform[:3, 3] = t
    return transform

"""
Generate a synthetic frame sequence for registration experiments.

- Creates a terrain-like surface with hills and noise.
- Moves a virtual camera along a path (optionally a closed circle) above it.
- Each frame holds the surface points within a radius of the camera,
  expressed in the camera's own coordinates.
- Writes data/synthetic/{index}.npy plus ground_truth_poses.npy (camera -> world).
"""
from __future__ import annotations

import argparse
import math
from pathlib import Path

import numpy as np


def make_surface(nx=200, ny=200, spacing=0.05, seed=42):
    rng = np.random.default_rng(seed)
    x = (np.arange(nx) - nx / 2) * spacing
    y = (np.arange(ny) - ny / 2) * spacing
    X, Y = np.meshgrid(x, y)
    # Gentle hills plus a few sharper bumps so ICP has structure to lock onto
    Z = 0.3 * np.sin(1.2 * X) * np.cos(0.9 * Y) + 0.1 * np.sin(3.0 * X + 0.3) + 0.08 * np.cos(2.5 * Y - 0.7)
    for cx, cy, r, h in [(-2.0, 1.0, 0.4, 0.5), (1.5, -1.5, 0.3, -0.4), (2.0, 2.0, 0.5, 0.3)]:
        Z += h * np.exp(-((X - cx) ** 2 + (Y - cy) ** 2) / (2 * r ** 2))
    Z += 0.005 * rng.standard_normal(size=Z.shape)
    return np.column_stack([X.ravel(), Y.ravel(), Z.ravel()])


def yaw_pose(x: float, y: float, z: float, yaw: float) -> np.ndarray:
    c, s = math.cos(yaw), math.sin(yaw)
    T = np.eye(4)
    T[:3, :3] = np.array([[c, -s, 0.0], [s, c, 0.0], [0.0, 0.0, 1.0]])
    T[:3, 3] = [x, y, z]
    return T


def camera_path(n_frames: int, closed: bool, radius: float = 2.0, height: float = 1.5):
    poses = []
    for k in range(n_frames):
        if closed:
            a = 2.0 * math.pi * k / n_frames
            poses.append(yaw_pose(radius * math.cos(a), radius * math.sin(a), height, a + math.pi / 2))
        else:
            poses.append(yaw_pose(-3.0 + 6.0 * k / max(1, n_frames - 1), 0.0, height, 0.0))
    return poses


def main():
    parser = argparse.ArgumentParser(description="Generate a synthetic frame sequence")
    parser.add_argument("--output", type=str, default="data/synthetic")
    parser.add_argument("--frames", type=int, default=41)
    parser.add_argument("--view-radius", type=float, default=1.5)
    parser.add_argument("--closed", action="store_true", help="Move along a closed circle")
    parser.add_argument("--seed", type=int, default=0)
    args = parser.parse_args()

    out = Path(args.output)
    out.mkdir(parents=True, exist_ok=True)
    rng = np.random.default_rng(args.seed)

    surface = make_surface()
    poses = camera_path(args.frames, args.closed)
    for index, pose in enumerate(poses):
        center = pose[:3, 3]
        visible = surface[np.linalg.norm(surface[:, :2] - center[:2], axis=1) < args.view_radius]
        # world -> camera
        R, t = pose[:3, :3], pose[:3, 3]
        local = (visible - t) @ R
        local += 0.002 * rng.standard_normal(size=local.shape)
        np.save(out / f"{index}.npy", local)

    np.save(out / "ground_truth_poses.npy", np.stack(poses))
    print(f"Wrote {len(poses)} frames to {out}")


if __name__ == "__main__":
    main()

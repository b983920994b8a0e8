"""
Global relaxation of a loop's poses.

Two methods share the same contract (frame 0 anchors the loop, one corrective
per frame):

- sweep: Gauss-Seidel sweeps over the loop. Every frame except the first is
  rigidly re-fit to the union of its neighbours' keypoints (previous, next
  and, when ``close_loop`` is set, the first frame for the last one). Sweeps
  stop after ``iterations`` or once the largest per-frame step drops below
  ``tolerance``.
- open3d: an Open3D pose graph with one node per frame, odometry edges from
  pairwise ICP between consecutive keypoint sets and, when ``close_loop`` is
  set, an uncertain closure edge from the last frame back to the first,
  optimized with Levenberg-Marquardt.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Sequence

import numpy as np
from sklearn.neighbors import NearestNeighbors

from .base import CorrectionResult, apply_correctives
from ..preprocessing.frame_source import Frame, KeypointsFrame
from ..utils.errors import ConfigurationError
from ..utils.logging import redirect_stdout_stderr_to_logger, setup_logger
from ..utils.transforms import (
    apply_transformation,
    estimate_rigid_transform,
    invert_transform,
    rotation_angle,
)

logger = setup_logger(__name__)

RELAXATION_METHODS = ("sweep", "open3d")


@dataclass
class PoseGraphRelaxation:
    iterations: int = 5
    tolerance: float = 1e-5
    max_correspondence_distance: float = 0.2
    close_loop: bool = True
    method: str = "sweep"  # sweep | open3d
    edge_prune_threshold: float = 0.25

    def __post_init__(self) -> None:
        if self.method not in RELAXATION_METHODS:
            raise ConfigurationError(
                f"Unknown relaxation method '{self.method}'; expected one of {RELAXATION_METHODS}"
            )

    @classmethod
    def from_config(cls, cfg) -> "PoseGraphRelaxation":
        c = cfg.correction
        return cls(
            iterations=c.relaxation_iterations,
            tolerance=c.relaxation_tolerance,
            max_correspondence_distance=c.max_correspondence_distance,
            close_loop=c.close_loop,
            method=c.relaxation_method,
        )

    def _neighbours(self, i: int, n: int) -> List[int]:
        out = [i - 1]
        if i + 1 < n:
            out.append(i + 1)
        elif self.close_loop and n > 2:
            out.append(0)
        return out

    def correct(
        self,
        frames: Sequence[Frame],
        keypoints: Sequence[KeypointsFrame],
        transforms: Sequence[np.ndarray],
        edge_keypoints: KeypointsFrame,
    ) -> CorrectionResult:
        points = [kp.points for kp in keypoints]
        if self.method == "open3d":
            correctives = self._open3d_correctives(points)
        else:
            correctives = self._sweep_correctives(points)
        return apply_correctives(frames, keypoints, correctives)

    # ------------------------ Methods ------------------------
    def _sweep_correctives(self, points: Sequence[np.ndarray]) -> List[np.ndarray]:
        n = len(points)
        correctives = [np.eye(4) for _ in range(n)]
        current = [p.copy() for p in points]

        for sweep in range(self.iterations):
            max_step = 0.0
            for i in range(1, n):
                target = np.vstack([current[j] for j in self._neighbours(i, n)])
                if len(current[i]) < 3 or len(target) < 3:
                    continue
                nbrs = NearestNeighbors(n_neighbors=1, algorithm="kd_tree").fit(target)
                distances, indices = nbrs.kneighbors(current[i])
                distances = distances.ravel()
                valid = distances < self.max_correspondence_distance
                if np.sum(valid) < 3:
                    continue
                delta = estimate_rigid_transform(current[i][valid], target[indices.ravel()[valid]])
                current[i] = apply_transformation(current[i], delta)
                correctives[i] = delta @ correctives[i]
                max_step = max(max_step, float(np.linalg.norm(delta[:3, 3])) + rotation_angle(delta))

            logger.debug(f"Relaxation sweep {sweep + 1}: largest step {max_step:.3e}")
            if max_step < self.tolerance:
                break

        return correctives

    def _open3d_correctives(self, points: Sequence[np.ndarray]) -> List[np.ndarray]:
        try:
            import open3d as o3d  # type: ignore
        except Exception as e:
            raise ImportError("Open3D is required for open3d pose graph relaxation") from e

        n = len(points)
        if n < 2 or self.iterations == 0:
            return [np.eye(4) for _ in range(n)]

        def to_pcd(p: np.ndarray) -> "o3d.geometry.PointCloud":
            pcd = o3d.geometry.PointCloud()
            pcd.points = o3d.utility.Vector3dVector(np.asarray(p, dtype=np.float64))
            return pcd

        reg = o3d.pipelines.registration
        pcds = [to_pcd(p) for p in points]
        max_dist = self.max_correspondence_distance

        def add_edge(graph, source_id: int, target_id: int, uncertain: bool) -> None:
            icp = reg.registration_icp(
                pcds[source_id], pcds[target_id], max_dist, np.eye(4),
                reg.TransformationEstimationPointToPoint(),
            )
            information = reg.get_information_matrix_from_point_clouds(
                pcds[source_id], pcds[target_id], max_dist, icp.transformation
            )
            graph.edges.append(
                reg.PoseGraphEdge(source_id, target_id, icp.transformation, information, uncertain=uncertain)
            )

        # Keypoints are already placed in the loop frame, so every node starts at identity
        pose_graph = reg.PoseGraph()
        with redirect_stdout_stderr_to_logger(logger):
            for _ in range(n):
                pose_graph.nodes.append(reg.PoseGraphNode(np.eye(4)))
            for i in range(n - 1):
                add_edge(pose_graph, i, i + 1, uncertain=False)
            if self.close_loop and n > 2:
                add_edge(pose_graph, n - 1, 0, uncertain=True)

            option = reg.GlobalOptimizationOption(
                max_correspondence_distance=max_dist,
                edge_prune_threshold=self.edge_prune_threshold,
                reference_node=0,
            )
            reg.global_optimization(
                pose_graph,
                reg.GlobalOptimizationLevenbergMarquardt(),
                reg.GlobalOptimizationConvergenceCriteria(),
                option,
            )

        anchor = invert_transform(np.asarray(pose_graph.nodes[0].pose))
        correctives = [np.eye(4)]
        for node in pose_graph.nodes[1:]:
            correctives.append(anchor @ np.asarray(node.pose))
        logger.debug(f"Pose graph relaxation over {n} frames with {len(pose_graph.edges)} edges")
        return correctives

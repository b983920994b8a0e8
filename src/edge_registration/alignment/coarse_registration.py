"""
Coarse Registration Methods

Provides coarse alignment strategies used as the first registration stage of
a frame sequence.

Methods implemented:
- centroid: translation-only alignment by centroids
- pca: rigid alignment by principal axes (3D), then centroid translation
- open3d_fpfh: global feature-based RANSAC via Open3D (if installed)
- none: identity

CoarseRegistration computes one pairwise 4x4 transform; CoarseAligner chains
it over an ordered frame sequence.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional, Sequence

import numpy as np
from sklearn.neighbors import NearestNeighbors

from .base import AlignmentResult, check_alignment_inputs, seed_transform
from .keypoints import KeypointExtractor
from ..preprocessing.frame_source import Frame, KeypointsFrame
from ..utils.logging import setup_logger, redirect_stdout_stderr_to_logger
from ..utils.transforms import apply_transformation

logger = setup_logger(__name__)


@dataclass
class CoarseRegistration:
    method: str = "pca"  # centroid | pca | open3d_fpfh | none
    voxel_size: float = 0.05

    def compute_initial_transform(self, source: np.ndarray, target: np.ndarray) -> np.ndarray:
        """
        Compute a coarse transform aligning source -> target.

        Args:
            source: Nx3 array
            target: Mx3 array

        Returns:
            4x4 transform matrix
        """
        if self.method == "none":
            return np.eye(4)

        if source.size == 0 or target.size == 0:
            logger.warning("CoarseRegistration: empty inputs; returning identity transform.")
            return np.eye(4)

        method = self.method.lower()
        if method == "centroid":
            return self._centroid_transform(source, target)
        if method == "pca":
            T = self._pca_transform(source, target)
            return self._validate_or_fallback(source, target, T)
        if method == "open3d_fpfh":
            try:
                T = self._open3d_fpfh_transform(source, target, voxel=self.voxel_size)
            except ImportError:
                raise
            except Exception as e:
                logger.warning(f"Open3D FPFH coarse registration failed: {e}; falling back to PCA.")
                T = self._pca_transform(source, target)
            return self._validate_or_fallback(source, target, T)

        logger.warning(f"Unknown coarse registration method '{self.method}', using identity.")
        return np.eye(4)

    # ------------------------ Methods ------------------------
    def _centroid_transform(self, src: np.ndarray, dst: np.ndarray) -> np.ndarray:
        T = np.eye(4)
        T[:3, 3] = np.mean(dst, axis=0) - np.mean(src, axis=0)
        return T

    def _pca_transform(self, src: np.ndarray, dst: np.ndarray) -> np.ndarray:
        c_src = np.mean(src, axis=0)
        c_dst = np.mean(dst, axis=0)
        A = src - c_src
        B = dst - c_dst

        # Small epsilon regularization avoids singularities on degenerate clouds
        C_A = (A.T @ A) / max(1, len(A)) + 1e-12 * np.eye(3)
        C_B = (B.T @ B) / max(1, len(B)) + 1e-12 * np.eye(3)

        wA, VA = np.linalg.eigh(C_A)
        wB, VB = np.linalg.eigh(C_B)
        VA = VA[:, np.argsort(wA)[::-1]]
        VB = VB[:, np.argsort(wB)[::-1]]

        # Principal axes are sign-ambiguous; pick the sign combination closest to identity
        # d keeps det(R) = +1 for every candidate
        d = 1.0 if np.linalg.det(VB) * np.linalg.det(VA) > 0 else -1.0
        best_R, best_trace = np.eye(3), -np.inf
        for sx in (1.0, -1.0):
            for sy in (1.0, -1.0):
                S = np.diag([sx, sy, sx * sy * d])
                R = VB @ S @ VA.T
                tr = float(np.trace(R))
                if tr > best_trace:
                    best_R, best_trace = R, tr

        T = np.eye(4)
        T[:3, :3] = best_R
        T[:3, 3] = c_dst - best_R @ c_src
        return T

    def _open3d_fpfh_transform(self, src: np.ndarray, dst: np.ndarray, *, voxel: float = 0.05) -> np.ndarray:
        try:
            import open3d as o3d  # type: ignore
        except Exception as e:
            raise ImportError("Open3D is required for open3d_fpfh coarse registration") from e

        def to_pcd(points: np.ndarray) -> "o3d.geometry.PointCloud":
            pcd = o3d.geometry.PointCloud()
            pcd.points = o3d.utility.Vector3dVector(points.astype(np.float64))
            return pcd

        src_pcd = to_pcd(src)
        dst_pcd = to_pcd(dst)
        if voxel and voxel > 0:
            src_pcd = src_pcd.voxel_down_sample(voxel)
            dst_pcd = dst_pcd.voxel_down_sample(voxel)

        reg = o3d.pipelines.registration
        with redirect_stdout_stderr_to_logger(logger):
            src_pcd.estimate_normals(o3d.geometry.KDTreeSearchParamHybrid(radius=voxel * 2.0, max_nn=30))
            dst_pcd.estimate_normals(o3d.geometry.KDTreeSearchParamHybrid(radius=voxel * 2.0, max_nn=30))
            src_fpfh = reg.compute_fpfh_feature(
                src_pcd, o3d.geometry.KDTreeSearchParamHybrid(radius=voxel * 5.0, max_nn=100)
            )
            dst_fpfh = reg.compute_fpfh_feature(
                dst_pcd, o3d.geometry.KDTreeSearchParamHybrid(radius=voxel * 5.0, max_nn=100)
            )

            distance_threshold = voxel * 1.5
            result = reg.registration_ransac_based_on_feature_matching(
                src_pcd,
                dst_pcd,
                src_fpfh,
                dst_fpfh,
                mutual_filter=True,
                max_correspondence_distance=distance_threshold,
                estimation_method=reg.TransformationEstimationPointToPoint(False),
                ransac_n=4,
                checkers=[
                    reg.CorrespondenceCheckerBasedOnEdgeLength(0.9),
                    reg.CorrespondenceCheckerBasedOnDistance(distance_threshold),
                ],
                criteria=reg.RANSACConvergenceCriteria(50000, 1000),
            )

        return np.asarray(result.transformation, dtype=float)

    # ------------------------ Helpers ------------------------
    def _validate_or_fallback(self, src: np.ndarray, dst: np.ndarray, T: np.ndarray, *, threshold: float = 1.1) -> np.ndarray:
        """Evaluate a candidate transform; fall back to centroid if clearly worse.

        Uses a small NN-based RMSE on random subsamples to score the candidate vs. centroid.
        """
        rmse_T = self._score_rmse(src, dst, T)
        T_cent = self._centroid_transform(src, dst)
        rmse_C = self._score_rmse(src, dst, T_cent)
        if not np.isfinite(rmse_T) or rmse_T > threshold * rmse_C:
            logger.debug(
                "CoarseRegistration: candidate transform worse than centroid (rmse %.4f vs %.4f). Using centroid.",
                rmse_T, rmse_C,
            )
            return T_cent
        return T

    def _score_rmse(self, src: np.ndarray, dst: np.ndarray, T: np.ndarray, *, max_pairs: int = 3000) -> float:
        if src.size == 0 or dst.size == 0:
            return float("inf")
        rng = np.random.default_rng(0)
        n_src = min(max_pairs, len(src))
        idx_s = rng.choice(len(src), n_src, replace=False) if len(src) > n_src else np.arange(len(src))
        A1 = apply_transformation(src[idx_s], T)
        nn = NearestNeighbors(n_neighbors=1, algorithm="kd_tree").fit(dst)
        d, _ = nn.kneighbors(A1)
        return float(np.sqrt(np.mean(d.reshape(-1) ** 2)))


@dataclass
class CoarseAligner:
    """
    First registration stage over an ordered frame sequence.

    Each frame's keypoints are pre-placed with the previous frame's transform
    and coarsely registered onto the previous frame's placed keypoints:
    ``T[i] = D_i @ T[i-1]`` with ``T[0] = seed``.
    """

    registration: CoarseRegistration = field(default_factory=CoarseRegistration)
    extractor: KeypointExtractor = field(default_factory=KeypointExtractor)

    @classmethod
    def from_config(cls, cfg) -> "CoarseAligner":
        return cls(
            registration=CoarseRegistration(
                method=cfg.alignment.coarse.method,
                voxel_size=cfg.alignment.coarse.voxel_size,
            ),
            extractor=KeypointExtractor.from_config(cfg),
        )

    def align(
        self,
        frames: Sequence[Frame],
        seed: Optional[np.ndarray] = None,
        keypoints: Optional[Sequence[KeypointsFrame]] = None,
    ) -> AlignmentResult:
        frames = list(frames)
        if keypoints is None:
            keypoints = [self.extractor.extract(frame) for frame in frames]
        keypoints = list(keypoints)
        check_alignment_inputs("CoarseAligner", frames, keypoints)

        logger.info(
            f"Coarse registration ({self.registration.method}) of {len(frames)} frames "
            f"[{frames[0].index}..{frames[-1].index}]"
        )

        transforms: List[np.ndarray] = [seed_transform(seed)]
        placed: List[KeypointsFrame] = [keypoints[0].transformed(transforms[0])]
        for i in range(1, len(frames)):
            source = apply_transformation(keypoints[i].points, transforms[i - 1])
            delta = self.registration.compute_initial_transform(source, placed[i - 1].points)
            transforms.append(delta @ transforms[i - 1])
            placed.append(keypoints[i].transformed(transforms[i]))
            logger.debug(
                f"Frame {frames[i].index}: coarse step |t|={np.linalg.norm(delta[:3, 3]):.4f}"
            )

        return AlignmentResult(
            transforms=transforms,
            frames=[frame.transformed(T) for frame, T in zip(frames, transforms)],
            keypoints=keypoints,
            transformed_keypoints=placed,
        )

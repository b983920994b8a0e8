"""
ICP Registration Implementation

This module implements the Iterative Closest Point (ICP) algorithm used as the
fine registration stage, and FineAligner, which chains pairwise ICP over an
already coarsely aligned frame sequence.
"""

from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Tuple
import time

import numpy as np
from sklearn.neighbors import NearestNeighbors

from .base import AlignmentResult, check_alignment_inputs, seed_transform
from ..preprocessing.frame_source import Frame, KeypointsFrame
from ..utils.logging import setup_logger
from ..utils.transforms import apply_transformation, estimate_rigid_transform, rotation_angle

logger = setup_logger(__name__)


class ICPRegistration:
    """
    Implementation of ICP algorithm for point cloud registration.

    The ICP algorithm iteratively:
    1. Finds closest point correspondences
    2. Estimates optimal transformation (rotation + translation)
    3. Applies transformation to source points
    4. Repeats until convergence
    """

    def __init__(
        self,
        max_iterations: int = 50,
        tolerance: float = 1e-6,
        max_correspondence_distance: float = 0.1,
        convergence_translation_epsilon: float = 1e-5,
        convergence_rotation_epsilon_deg: float = 0.01,
    ):
        """
        Initialize ICP parameters.

        Args:
            max_iterations: Maximum number of ICP iterations.
            tolerance: Convergence tolerance on change in mean squared error.
            max_correspondence_distance: Maximum distance for point correspondences.
            convergence_translation_epsilon: Minimum translation step below
                which the algorithm is considered converged.
            convergence_rotation_epsilon_deg: Minimum rotation step (degrees) below
                which the algorithm is considered converged.
        """
        self.max_iterations = max_iterations
        self.tolerance = tolerance
        self.max_correspondence_distance = max_correspondence_distance
        self.convergence_translation_epsilon = convergence_translation_epsilon
        # Store rotation epsilon in radians for internal use
        self.convergence_rotation_epsilon_rad = np.deg2rad(convergence_rotation_epsilon_deg)

    @classmethod
    def from_config(cls, icp_cfg) -> "ICPRegistration":
        return cls(
            max_iterations=icp_cfg.max_iterations,
            tolerance=icp_cfg.tolerance,
            max_correspondence_distance=icp_cfg.max_correspondence_distance,
            convergence_translation_epsilon=icp_cfg.convergence_translation_epsilon,
            convergence_rotation_epsilon_deg=icp_cfg.convergence_rotation_epsilon_deg,
        )

    def align_point_clouds(
        self,
        source: np.ndarray,
        target: np.ndarray,
        initial_transform: Optional[np.ndarray] = None,
    ) -> Tuple[np.ndarray, np.ndarray, float]:
        """
        Align source point cloud to target using ICP.

        Args:
            source: Source point cloud (N x 3).
            target: Target point cloud (M x 3).
            initial_transform: Initial transformation matrix (4 x 4) or None.

        Returns:
            Tuple of (aligned_source_points, transformation_matrix, final_error).
        """
        n_src = len(source)
        n_tgt = len(target)
        logger.debug(
            "Starting ICP alignment with %d source points and %d target points.",
            n_src,
            n_tgt,
        )

        transform = np.eye(4) if initial_transform is None else initial_transform.copy()

        if n_src == 0 or n_tgt == 0:
            logger.warning(
                "ICP called with empty source or target (source=%d, target=%d); "
                "returning initial transform and infinite error.",
                n_src,
                n_tgt,
            )
            return source.copy(), transform, float("inf")

        current_source = apply_transformation(source, transform)
        previous_error = float("inf")

        # Build the nearest-neighbor search structure for the target point cloud ONCE.
        nbrs = NearestNeighbors(n_neighbors=1, algorithm="kd_tree").fit(target)

        icp_start = time.time()
        n_iterations = 0

        for iteration in range(self.max_iterations):
            correspondences, distances = self.find_correspondences(current_source, nbrs=nbrs)

            valid_mask = distances < self.max_correspondence_distance
            if np.sum(valid_mask) < 3:  # Need at least 3 points to define a plane
                logger.warning("Not enough valid correspondences found. Stopping ICP.")
                break

            delta_transform = estimate_rigid_transform(
                current_source[valid_mask], target[correspondences[valid_mask]]
            )

            # new_transform = delta_transform * current_transform
            transform = delta_transform @ transform

            # Apply the cumulative transformation to the ORIGINAL source cloud
            # This prevents compounding floating point errors from repeated transforms
            current_source = apply_transformation(source, transform)

            current_error = float(np.mean(distances[valid_mask] ** 2))
            trans_step = float(np.linalg.norm(delta_transform[:3, 3]))
            rot_step = rotation_angle(delta_transform)
            n_iterations = iteration + 1

            logger.debug(
                "Iteration %d: MSE=%.6f, |Δt|=%.6e, Δθ=%.6e rad",
                n_iterations,
                current_error,
                trans_step,
                rot_step,
            )

            if abs(previous_error - current_error) < self.tolerance:
                break
            if (
                trans_step < self.convergence_translation_epsilon
                and rot_step < self.convergence_rotation_epsilon_rad
            ):
                break

            previous_error = current_error
        else:
            logger.debug("ICP did not converge after %d iterations.", self.max_iterations)

        final_error = self.compute_registration_error(current_source, target, nbrs)
        logger.debug(
            "ICP finished in %.4f s (%d iterations). Final RMSE: %.6f",
            time.time() - icp_start,
            n_iterations,
            final_error,
        )
        return current_source, transform, final_error

    def find_correspondences(
        self,
        source: np.ndarray,
        target: Optional[np.ndarray] = None,
        nbrs: Optional[NearestNeighbors] = None,
    ) -> Tuple[np.ndarray, np.ndarray]:
        """
        Find closest point correspondences between source and target.

        Args:
            source: Source point cloud (N x 3).
            target: Target point cloud (M x 3). Only used if `nbrs` is None.
            nbrs: Optional pre-built NearestNeighbors instance for the target.

        Returns:
            Tuple of (correspondence_indices, distances).
        """
        if nbrs is None:
            if target is None:
                raise ValueError("Either 'target' or a pre-built 'nbrs' must be provided.")
            nbrs = NearestNeighbors(n_neighbors=1, algorithm="kd_tree").fit(target)

        distances, indices = nbrs.kneighbors(source)
        return indices.ravel(), distances.ravel()

    def compute_registration_error(
        self,
        source: np.ndarray,
        target: np.ndarray,
        nbrs: Optional[NearestNeighbors] = None,
    ) -> float:
        """
        Compute the registration error (RMSE) between aligned source and target point clouds.

        Only correspondences closer than ``max_correspondence_distance`` count.
        Returns inf when there are none.
        """
        if source.size == 0 or target.size == 0:
            return float("inf")
        _, distances = self.find_correspondences(source, target, nbrs)
        valid_mask = distances < self.max_correspondence_distance
        if np.sum(valid_mask) == 0:
            logger.warning("No valid correspondences found for error computation.")
            return float("inf")
        return float(np.sqrt(np.mean(distances[valid_mask] ** 2)))


@dataclass
class FineAligner:
    """
    Second registration stage over a coarsely aligned frame sequence.

    Frame ``i``'s keypoints are registered by ICP onto frame ``i-1``'s refined
    keypoints, starting from ``F[i-1]``. Frame 0 gets the seed and a fitness
    of 0.0; every other frame's fitness is its ICP RMSE.
    """

    icp: ICPRegistration = field(default_factory=ICPRegistration)

    @classmethod
    def from_config(cls, cfg) -> "FineAligner":
        return cls(icp=ICPRegistration.from_config(cfg.alignment.icp))

    def align(
        self,
        frames: Sequence[Frame],
        seed: Optional[np.ndarray] = None,
        keypoints: Optional[Sequence[KeypointsFrame]] = None,
    ) -> AlignmentResult:
        frames = list(frames)
        if keypoints is None:
            keypoints = [KeypointsFrame(frame.index, frame.points) for frame in frames]
        keypoints = list(keypoints)
        check_alignment_inputs("FineAligner", frames, keypoints)

        logger.info(
            f"ICP refinement of {len(frames)} frames [{frames[0].index}..{frames[-1].index}]"
        )

        transforms: List[np.ndarray] = [seed_transform(seed)]
        refined: List[KeypointsFrame] = [keypoints[0].transformed(transforms[0])]
        fitness: List[float] = [0.0]
        for i in range(1, len(frames)):
            _, T, err = self.icp.align_point_clouds(
                source=keypoints[i].points,
                target=refined[i - 1].points,
                initial_transform=transforms[i - 1],
            )
            transforms.append(T)
            refined.append(keypoints[i].transformed(T))
            fitness.append(err)
            logger.debug(f"Frame {frames[i].index}: ICP fitness {err:.6f}")

        finite = [f for f in fitness[1:] if np.isfinite(f)]
        if finite:
            logger.info(f"ICP mean fitness {np.mean(finite):.6f} over {len(finite)} frame pairs")

        return AlignmentResult(
            transforms=transforms,
            frames=[frame.transformed(T) for frame, T in zip(frames, transforms)],
            keypoints=keypoints,
            transformed_keypoints=refined,
            fitness_scores=fitness,
        )

"""
Mesh Reconstruction Sink

Fuses every registered frame into one point cloud in the global frame and
reconstructs a surface from it with pyvista.
"""

from __future__ import annotations

from typing import List, Optional, Protocol, Sequence

import numpy as np
import pyvista as pv

from ..preprocessing.filters import FrameFilter, random_subsample, voxel_downsample
from ..preprocessing.frame_source import FrameSource
from ..utils.errors import CollaboratorError
from ..utils.logging import setup_logger
from ..utils.transforms import apply_transformation

logger = setup_logger(__name__)


class MeshSink(Protocol):
    def prepare_volume(self, frame_indices: Sequence[int], transforms: Sequence[np.ndarray]) -> None:
        ...

    def calculate_mesh(self) -> None:
        ...

    def get_mesh(self):
        ...


class PointCloudMeshSink:
    """
    Fused-cloud surface reconstruction.

    Args:
        frame_source: Source the registered frames are re-read from.
        frame_filter: Optional filter applied to each frame before fusion.
        voxel_size: Voxel size of the fused cloud (None = no downsampling).
        sample_size: Point cap of the fused cloud (None = no cap).
    """

    def __init__(
        self,
        frame_source: FrameSource,
        frame_filter: Optional[FrameFilter] = None,
        voxel_size: Optional[float] = 0.02,
        sample_size: Optional[int] = 200000,
    ):
        self.frame_source = frame_source
        self.frame_filter = frame_filter
        self.voxel_size = voxel_size
        self.sample_size = sample_size
        self.fused_points: Optional[np.ndarray] = None
        self._mesh: Optional[pv.PolyData] = None

    @classmethod
    def from_config(cls, cfg, frame_source: FrameSource) -> "PointCloudMeshSink":
        return cls(
            frame_source,
            frame_filter=FrameFilter.from_config(cfg),
            voxel_size=cfg.mesh.voxel_size,
            sample_size=cfg.mesh.sample_size,
        )

    def prepare_volume(self, frame_indices: Sequence[int], transforms: Sequence[np.ndarray]) -> None:
        """Re-read every registered frame and fuse it into the global frame."""
        if len(frame_indices) != len(transforms):
            raise ValueError(
                f"Got {len(transforms)} transforms for {len(frame_indices)} frames"
            )
        chunks: List[np.ndarray] = []
        for index, T in zip(frame_indices, transforms):
            frame = self.frame_source.read_frame(index)
            if self.frame_filter is not None:
                frame = self.frame_filter.filter_frame(frame)
            points = apply_transformation(frame.points, T)
            if self.voxel_size:
                points = voxel_downsample(points, self.voxel_size)
            chunks.append(points)

        fused = np.vstack(chunks) if chunks else np.empty((0, 3))
        if self.voxel_size:
            fused = voxel_downsample(fused, self.voxel_size)
        if self.sample_size:
            fused = random_subsample(fused, self.sample_size)
        self.fused_points = fused
        self._mesh = None
        logger.info(f"Fused {len(frame_indices)} frames into {len(fused)} points")

    def calculate_mesh(self) -> None:
        if self.fused_points is None:
            raise CollaboratorError("prepare_volume must run before calculate_mesh")
        if len(self.fused_points) < 4:
            raise CollaboratorError(
                f"Cannot reconstruct a surface from {len(self.fused_points)} points"
            )
        try:
            surface = pv.PolyData(self.fused_points).reconstruct_surface()
        except Exception as e:
            raise CollaboratorError(f"Surface reconstruction failed: {e}") from e
        self._mesh = surface
        logger.info(f"Reconstructed mesh with {surface.n_points} vertices and {surface.n_cells} faces")

    def get_mesh(self) -> pv.PolyData:
        if self._mesh is None:
            raise CollaboratorError("No mesh available; call calculate_mesh first")
        return self._mesh

"""
Edge-based registration pipeline driver.

Runs the two phases of a registration:

1. prepare_all_loops: select edges, build loops, align the edge frames
   against each other and hand every loop its edge transforms.
2. process_all_loops: align each loop's frames relative to its start edge,
   one independent task per loop.

Then aggregates the per-loop transforms into one global pose sequence and
passes it to the mesh and visualization sinks.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import TYPE_CHECKING, List, Optional, Tuple

import numpy as np

from .edge_balancer import DistanceMetric
from .edge_selector import EdgeSelection, select_edges
from .loop import Loop, build_loops, check_loop_sequence
from .loop_processor import LoopProcessor, process_loop
from .parallel_executor import LoopParallelExecutor
from ..alignment.chain import AlignmentChain
from ..correction.corrector import LoopClosureCorrector
from ..preprocessing.filters import FrameFilter
from ..preprocessing.frame_source import Frame, FrameSource, read_frames
from ..utils.errors import Result
from ..utils.logging import setup_logger

if TYPE_CHECKING:
    from ..reconstruction.mesh import MeshSink
    from ..visualization.registration import VisualizationSink

logger = setup_logger(__name__)


@dataclass
class PipelineResult:
    loops: List[Loop]
    frame_indices: List[int]
    transforms: List[np.ndarray]


class PipelineDriver:
    """
    Orchestrates edge-based registration of a frame sequence.

    Args:
        config: AppConfig used by every component.
        frame_source: Where frames are read from.
        chain: Coarse+fine aligner (defaults from config).
        frame_filter: Frame filter (defaults from config).
        corrector: Loop closure corrector (defaults from config).
        distance_metric: Metric for balanced edge selection (defaults from config).
        executor: Loop executor (defaults from config).
        mesh_sink: Optional MeshSink receiving the aggregated poses.
        visualizer: Optional visualization sink.
    """

    def __init__(
        self,
        config,
        frame_source: FrameSource,
        *,
        chain: Optional[AlignmentChain] = None,
        frame_filter: Optional[FrameFilter] = None,
        corrector: Optional[LoopClosureCorrector] = None,
        distance_metric: Optional[DistanceMetric] = None,
        executor: Optional[LoopParallelExecutor] = None,
        mesh_sink: Optional[MeshSink] = None,
        visualizer: Optional[VisualizationSink] = None,
    ):
        self.config = config
        self.frame_source = frame_source
        self.chain = chain or AlignmentChain.from_config(config)
        self.frame_filter = frame_filter or FrameFilter.from_config(config)
        self.distance_metric = distance_metric
        self.executor = executor or LoopParallelExecutor.from_config(config)
        self.mesh_sink = mesh_sink
        self.visualizer = visualizer
        self.processor = LoopProcessor(
            config,
            frame_source,
            chain=self.chain,
            frame_filter=self.frame_filter,
            corrector=corrector,
        )

    @classmethod
    def from_config(cls, config, frame_source: Optional[FrameSource] = None) -> "PipelineDriver":
        """Build a driver with the sinks the visualization section asks for."""
        from ..preprocessing.frame_source import DirectoryFrameSource

        source = frame_source or DirectoryFrameSource.from_config(config)
        visualizer = None
        mesh_sink = None
        if config.visualization.enabled:
            from ..visualization.registration import RegistrationVisualizer

            visualizer = RegistrationVisualizer.from_config(config)
            if config.visualization.draw_mesh:
                from ..reconstruction.mesh import PointCloudMeshSink

                mesh_sink = PointCloudMeshSink.from_config(config, source)
        return cls(config, source, mesh_sink=mesh_sink, visualizer=visualizer)

    # ------------------------ Phase 1 ------------------------
    def prepare_all_loops(self) -> Result[List[Loop]]:
        """
        Select edges, build loops and align the edge frames.

        Returns:
            Result with the prepared loops, or a ConfigurationError.
            Collaborator failures (I/O, alignment) raise.
        """
        selection = select_edges(self.config, self.frame_source, self.distance_metric)
        if not selection.ok:
            return Result.failure(selection.error)

        built = build_loops(selection.value.indices)
        if not built.ok:
            return Result.failure(built.error)
        loops = built.value

        edge_frames = self._read_edge_frames(selection.value)
        checked = check_loop_sequence(loops, len(edge_frames))
        if not checked.ok:
            return Result.failure(checked.error)

        edge_frames = self.frame_filter.apply(edge_frames)
        logger.info(f"Aligning {len(edge_frames)} edge frames for {len(loops)} loops")
        aligned = self.chain.align(edge_frames, np.eye(4))

        T = aligned.transforms
        kp = aligned.keypoints
        prepared = [
            replace(
                loop,
                edge_frames=(edge_frames[i], edge_frames[i + 1]),
                edge_transforms=(T[i], T[i + 1]),
                edge_keypoints=kp[i],
            )
            for i, loop in enumerate(loops)
        ]
        return Result.success(prepared)

    def _read_edge_frames(self, selection: EdgeSelection) -> List[Frame]:
        frames_cfg = self.config.frames
        if selection.positions is None:
            return list(self.frame_source.read(selection.indices[0], selection.indices[-1], selection.stride))
        return read_frames(
            self.frame_source,
            frames_cfg.read_from,
            frames_cfg.read_to,
            frames_cfg.read_step,
            positions=selection.positions,
        )

    # ------------------------ Phase 2 ------------------------
    def process_all_loops(self, loops: List[Loop]) -> List[Loop]:
        """Process every loop (possibly in parallel); results keep loop order."""
        processed = self.executor.map_loops(
            loops=loops,
            worker_fn=process_loop,
            worker_kwargs={"processor": self.processor},
        )
        if self.visualizer is not None:
            for loop in processed:
                self.visualizer.visualize_loop(loop)
        return processed

    # ------------------------ Aggregation ------------------------
    def aggregate(self, loops: List[Loop]) -> Tuple[List[int], List[np.ndarray]]:
        """
        Concatenate every loop's owned transforms in loop order and pass the
        global pose sequence to the sinks.

        Returns:
            (frame_indices, transforms)
        """
        frame_indices: List[int] = []
        transforms: List[np.ndarray] = []
        for loop in loops:
            frame_indices.extend(loop.inner_frame_indices)
            transforms.extend(T.copy() for T in loop.inner_transforms)
        logger.info(f"Aggregated {len(transforms)} transforms from {len(loops)} loops")

        self._publish(frame_indices, transforms)
        return frame_indices, transforms

    def _publish(self, frame_indices: List[int], transforms: List[np.ndarray]) -> None:
        viz = self.config.visualization
        if self.mesh_sink is not None:
            self.mesh_sink.prepare_volume(frame_indices, transforms)
        if self.visualizer is not None:
            self.visualizer.redraw()
            if viz.draw_camera_poses:
                self.visualizer.visualize_camera_poses(transforms)
        if viz.draw_mesh and self.mesh_sink is not None:
            self.mesh_sink.calculate_mesh()
            mesh = self.mesh_sink.get_mesh()
            if self.visualizer is not None:
                self.visualizer.visualize_mesh(mesh)

    # ------------------------ Entry point ------------------------
    def run(self) -> PipelineResult:
        """Run the full pipeline. Any failure aborts before aggregation."""
        loops = self.prepare_all_loops().unwrap()
        loops = self.process_all_loops(loops)
        frame_indices, transforms = self.aggregate(loops)
        return PipelineResult(loops=loops, frame_indices=frame_indices, transforms=transforms)

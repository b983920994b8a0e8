"""
End-to-end tests for the pipeline driver: edge alignment, loop processing
and aggregation.
"""

from pathlib import Path
import sys

import numpy as np
import pytest

# Ensure src is importable
sys.path.append(str(Path(__file__).parent.parent / "src"))

from conftest import STEP, make_config
from edge_registration.pipeline.driver import PipelineDriver
from edge_registration.pipeline.loop import Loop
from edge_registration.pipeline.parallel_executor import LoopParallelExecutor
from edge_registration.preprocessing.frame_source import InMemoryFrameSource
from edge_registration.utils.errors import CollaboratorError, ConfigurationError


class RecordingVisualizer:
    def __init__(self):
        self.events = []

    def visualize_loop(self, loop):
        self.events.append(("loop", loop.start))

    def redraw(self):
        self.events.append(("redraw",))

    def visualize_camera_poses(self, transforms):
        self.events.append(("poses", len(transforms)))

    def visualize_mesh(self, mesh):
        self.events.append(("mesh", mesh))


class RecordingMeshSink:
    def __init__(self):
        self.volume = None
        self.calculated = False

    def prepare_volume(self, frame_indices, transforms):
        self.volume = (list(frame_indices), list(transforms))

    def calculate_mesh(self):
        self.calculated = True

    def get_mesh(self):
        return "mesh"


def _assert_translations(transforms, indices):
    for k, T in zip(indices, transforms):
        np.testing.assert_allclose(T[:3, :3], np.eye(3), atol=1e-6)
        np.testing.assert_allclose(T[:3, 3], -k * STEP, atol=1e-6)


def test_five_frames_two_loops(translated_source):
    driver = PipelineDriver(make_config(read_to=4, loop_size=2), translated_source(5))

    result = driver.run()

    assert [l.edge_frame_indices for l in result.loops] == [(0, 2), (2, 4)]
    assert [len(l.inner_transforms) for l in result.loops] == [2, 3]
    assert result.frame_indices == [0, 1, 2, 3, 4]
    assert len(result.transforms) == 5
    _assert_translations(result.transforms, result.frame_indices)


def test_prepare_sets_edge_fields(translated_source):
    driver = PipelineDriver(make_config(read_to=6, loop_size=3), translated_source(7))

    loops = driver.prepare_all_loops().unwrap()

    assert [l.edge_frame_indices for l in loops] == [(0, 3), (3, 6)]
    np.testing.assert_allclose(loops[0].edge_transforms[0], np.eye(4), atol=1e-9)
    # Consecutive loops agree on the shared edge transform
    np.testing.assert_allclose(loops[0].edge_transforms[1], loops[1].edge_transforms[0])
    np.testing.assert_allclose(loops[1].edge_transforms[1][:3, 3], -6 * STEP, atol=1e-6)
    assert [f.index for f in loops[1].edge_frames] == [3, 6]
    assert loops[1].edge_keypoints.index == 3
    assert all(l.inner_transforms == [] for l in loops)


def test_prepare_reports_configuration_error(translated_source):
    driver = PipelineDriver(make_config(read_to=1, loop_size=2), translated_source(2))

    prepared = driver.prepare_all_loops()

    assert not prepared.ok
    assert isinstance(prepared.error, ConfigurationError)
    with pytest.raises(ConfigurationError):
        driver.run()


def test_edges_not_reaching_read_to(translated_source):
    # read_to=5 with stride 2: frame 5 lies past the last edge and is not registered
    result = PipelineDriver(make_config(read_to=5, loop_size=2), translated_source(6)).run()
    assert result.frame_indices == [0, 1, 2, 3, 4]


def test_balanced_run_matches_fixed_run_for_uniform_motion(translated_source):
    fixed = PipelineDriver(make_config(read_to=8, loop_size=4), translated_source(9)).run()
    balanced = PipelineDriver(
        make_config(read_to=8, loop_size=4, registration={"edge_balancing": True}),
        translated_source(9),
    ).run()

    assert [l.edge_frame_indices for l in balanced.loops] == [l.edge_frame_indices for l in fixed.loops]
    assert balanced.frame_indices == fixed.frame_indices
    for a, b in zip(balanced.transforms, fixed.transforms):
        np.testing.assert_allclose(a, b, atol=1e-9)


def test_run_with_correction(translated_source):
    cfg = make_config(read_to=4, loop_size=2, registration={"loop_closure_correction": True})
    result = PipelineDriver(cfg, translated_source(5)).run()

    assert result.frame_indices == [0, 1, 2, 3, 4]
    assert len(result.transforms) == 5
    np.testing.assert_allclose(result.transforms[0], np.eye(4), atol=1e-9)


def test_missing_frame_aborts_run(translated_source):
    driver = PipelineDriver(make_config(read_to=4, loop_size=2), translated_source(4))
    with pytest.raises(CollaboratorError):
        driver.run()


def test_aggregate_concatenates_in_loop_order():
    driver = PipelineDriver(make_config(), InMemoryFrameSource([]))
    first = Loop((0, 2), inner_frame_indices=[0, 1], inner_transforms=[np.eye(4) * 1, np.eye(4) * 2])
    second = Loop((2, 4), includes_end_edge=True, inner_frame_indices=[2, 3, 4],
                  inner_transforms=[np.eye(4) * 3, np.eye(4) * 4, np.eye(4) * 5])

    indices, transforms = driver.aggregate([first, second])

    assert indices == [0, 1, 2, 3, 4]
    assert [T[0, 0] for T in transforms] == [1, 2, 3, 4, 5]


def test_sinks_receive_aggregated_poses(translated_source):
    cfg = make_config(read_to=4, loop_size=2, visualization={"draw_camera_poses": True, "draw_mesh": True})
    visualizer = RecordingVisualizer()
    mesh_sink = RecordingMeshSink()
    driver = PipelineDriver(cfg, translated_source(5), visualizer=visualizer, mesh_sink=mesh_sink)

    result = driver.run()

    assert visualizer.events == [
        ("loop", 0), ("loop", 2), ("redraw",), ("poses", 5), ("mesh", "mesh"),
    ]
    assert mesh_sink.volume[0] == [0, 1, 2, 3, 4]
    assert len(mesh_sink.volume[1]) == len(result.transforms)
    assert mesh_sink.calculated


def test_parallel_run_matches_sequential(translated_source):
    cfg = make_config(read_to=8, loop_size=2)
    sequential = PipelineDriver(cfg, translated_source(9), executor=LoopParallelExecutor(n_workers=1)).run()
    parallel = PipelineDriver(cfg, translated_source(9), executor=LoopParallelExecutor(n_workers=2)).run()

    assert parallel.frame_indices == sequential.frame_indices == list(range(9))
    for a, b in zip(parallel.transforms, sequential.transforms):
        np.testing.assert_allclose(a, b, atol=1e-12)

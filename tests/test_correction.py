"""
Tests for loop closure correction: the drift pass, the relaxation pass and
how the corrector folds their corrective transforms.
"""

from pathlib import Path
import sys

import numpy as np
import pytest
from scipy.spatial.transform import Rotation

# Ensure src is importable
sys.path.append(str(Path(__file__).parent.parent / "src"))

from edge_registration.alignment.fine_registration import ICPRegistration
from edge_registration.correction.base import apply_correctives
from edge_registration.correction.corrector import LoopClosureCorrector, fold_correctives
from edge_registration.correction.loop_drift import LoopDriftCorrection
from edge_registration.correction.relaxation import PoseGraphRelaxation
from edge_registration.preprocessing.frame_source import Frame, KeypointsFrame
from edge_registration.utils.config import AppConfig
from edge_registration.utils.errors import CollaboratorError, ConfigurationError


def _scene(n: int = 300, seed: int = 0) -> np.ndarray:
    rng = np.random.default_rng(seed)
    return rng.normal(size=(n, 3)) * np.array([3.0, 2.0, 1.0])


def _rigid(rotvec, t) -> np.ndarray:
    T = np.eye(4)
    T[:3, :3] = Rotation.from_rotvec(np.asarray(rotvec, dtype=float)).as_matrix()
    T[:3, 3] = t
    return T


class PresetPass:
    """Correction pass returning fixed correctives and recording its inputs."""

    def __init__(self, correctives):
        self.correctives = correctives
        self.calls = []

    def correct(self, frames, keypoints, transforms, edge_keypoints):
        self.calls.append((list(frames), list(keypoints), [T.copy() for T in transforms]))
        return apply_correctives(frames, keypoints, self.correctives)


def _inputs(n: int = 3):
    scene = _scene(50)
    frames = [Frame(i, scene + i) for i in range(n)]
    keypoints = [KeypointsFrame(f.index, f.points) for f in frames]
    return frames, keypoints


def test_corrector_folds_passes_in_order_and_keeps_first_frame():
    frames, keypoints = _inputs(3)
    transforms = [_rigid([0.1, 0, 0], [1, 0, 0]), _rigid([0, 0.2, 0], [0, 1, 0]), _rigid([0, 0, 0.3], [0, 0, 1])]
    originals = [T.copy() for T in transforms]
    a = [_rigid([0.5, 0, 0], [9, 9, 9]), _rigid([0, 0, 0.1], [0.1, 0, 0]), _rigid([0.2, 0, 0], [0, 0.2, 0])]
    b = [_rigid([0, 0.5, 0], [7, 7, 7]), _rigid([0, 0.3, 0], [0, 0, 0.3]), _rigid([0, 0, 0.4], [0.4, 0, 0])]

    outcome = LoopClosureCorrector(PresetPass(a), PresetPass(b)).correct(
        frames, keypoints, transforms, keypoints[0]
    )

    np.testing.assert_allclose(outcome.transforms[0], originals[0])
    for i in (1, 2):
        np.testing.assert_allclose(outcome.transforms[i], b[i] @ a[i] @ originals[i])
    # Input transforms are not modified
    for T, T0 in zip(transforms, originals):
        np.testing.assert_array_equal(T, T0)


def test_second_pass_sees_first_pass_output():
    frames, keypoints = _inputs(3)
    transforms = [np.eye(4)] * 3
    a = [np.eye(4), _rigid([0, 0, 0.1], [0.5, 0, 0]), _rigid([0, 0, 0], [0, 0.5, 0])]
    pass_b = PresetPass([np.eye(4)] * 3)

    outcome = LoopClosureCorrector(PresetPass(a), pass_b).correct(frames, keypoints, transforms, keypoints[0])

    b_frames, b_keypoints, b_transforms = pass_b.calls[0]
    for i in range(3):
        expected = frames[i].transformed(a[i]).points
        np.testing.assert_allclose(b_frames[i].points, expected)
        np.testing.assert_allclose(b_keypoints[i].points, expected)
    # Pass B is handed the running transforms after pass A was folded in
    np.testing.assert_allclose(b_transforms[1], a[1])
    np.testing.assert_allclose(outcome.transformed_keypoints[2].points, frames[2].transformed(a[2]).points)


def test_fold_rejects_length_mismatch():
    with pytest.raises(CollaboratorError):
        fold_correctives([np.eye(4)] * 3, [np.eye(4)] * 2, "Stub")


def test_drift_correction_spreads_closing_error():
    scene = _scene()
    drift = np.array([0.01, -0.005, 0.002])
    n = 5
    # Frame i has accumulated i steps of drift; the last frame should coincide with the start edge
    keypoints = [KeypointsFrame(i, scene + i * drift) for i in range(n)]
    frames = [Frame(i, scene + i * drift) for i in range(n)]
    transforms = [np.eye(4) for _ in range(n)]

    correction = LoopDriftCorrection(ICPRegistration(max_iterations=100, tolerance=1e-12, max_correspondence_distance=1.0))
    result = correction.correct(frames, keypoints, transforms, KeypointsFrame(0, scene))

    assert len(result.transforms) == n
    np.testing.assert_array_equal(result.transforms[0], np.eye(4))
    for i, C in enumerate(result.transforms):
        np.testing.assert_allclose(C[:3, 3], -i * drift, atol=1e-4)
        np.testing.assert_allclose(C[:3, :3], np.eye(3), atol=1e-4)
    np.testing.assert_allclose(result.transformed_keypoints[-1].points, scene, atol=1e-3)


def test_drift_correction_uses_start_edge_transform():
    scene = _scene()
    T0 = _rigid([0, 0, 0.2], [1.0, 2.0, 0.0])
    placed = KeypointsFrame(0, scene).transformed(T0)
    keypoints = [placed, placed]
    frames = [Frame(0, placed.points), Frame(1, placed.points)]

    correction = LoopDriftCorrection(ICPRegistration(max_correspondence_distance=1.0))
    result = correction.correct(frames, keypoints, [T0, T0], KeypointsFrame(0, scene))

    # Edge keypoints placed with transforms[0] already coincide with the last frame
    np.testing.assert_allclose(result.transforms[1], np.eye(4), atol=1e-8)


def test_drift_correction_without_overlap_is_identity():
    scene = _scene()
    keypoints = [KeypointsFrame(0, scene), KeypointsFrame(1, scene + 100.0)]
    frames = [Frame(0, scene), Frame(1, scene + 100.0)]

    result = LoopDriftCorrection(ICPRegistration(max_correspondence_distance=0.1)).correct(
        frames, keypoints, [np.eye(4)] * 2, KeypointsFrame(0, scene)
    )

    for C in result.transforms:
        np.testing.assert_array_equal(C, np.eye(4))


def test_relaxation_pulls_displaced_frame_back():
    scene = _scene()
    offset = np.array([0.01, 0.0, -0.01])
    keypoints = [KeypointsFrame(0, scene), KeypointsFrame(1, scene), KeypointsFrame(2, scene + offset)]
    frames = [Frame(k.index, k.points) for k in keypoints]

    relax = PoseGraphRelaxation(iterations=50, tolerance=1e-12, max_correspondence_distance=0.2)
    result = relax.correct(frames, keypoints, [np.eye(4)] * 3, keypoints[0])

    np.testing.assert_array_equal(result.transforms[0], np.eye(4))
    np.testing.assert_allclose(result.transforms[1], np.eye(4), atol=1e-6)
    np.testing.assert_allclose(result.transforms[2][:3, 3], -offset, atol=1e-6)


def test_relaxation_neighbours():
    relax = PoseGraphRelaxation(close_loop=True)
    assert relax._neighbours(1, 4) == [0, 2]
    assert relax._neighbours(3, 4) == [2, 0]
    assert PoseGraphRelaxation(close_loop=False)._neighbours(3, 4) == [2]


def test_full_correction_keeps_consistent_loop():
    scene = _scene()
    keypoints = [KeypointsFrame(i, scene) for i in range(4)]
    frames = [Frame(i, scene) for i in range(4)]
    transforms = [_rigid([0, 0, 0.05 * i], [0.1 * i, 0, 0]) for i in range(4)]

    corrector = LoopClosureCorrector(
        LoopDriftCorrection(ICPRegistration(max_correspondence_distance=0.5)),
        PoseGraphRelaxation(max_correspondence_distance=0.5),
    )
    outcome = corrector.correct(frames, keypoints, transforms, KeypointsFrame(0, scene))

    for T, expected in zip(outcome.transforms, transforms):
        np.testing.assert_allclose(T, expected, atol=1e-6)


def test_relaxation_from_config_and_unknown_method():
    cfg = AppConfig.model_validate({"correction": {"relaxation_method": "open3d", "close_loop": False}})
    relax = PoseGraphRelaxation.from_config(cfg)
    assert relax.method == "open3d"
    assert relax.close_loop is False
    with pytest.raises(ConfigurationError, match="relaxation method"):
        PoseGraphRelaxation(method="bundle")


def test_open3d_relaxation_pulls_displaced_frame_back():
    pytest.importorskip("open3d")
    scene = _scene()
    offset = np.array([0.01, 0.0, -0.01])
    keypoints = [KeypointsFrame(0, scene), KeypointsFrame(1, scene), KeypointsFrame(2, scene + offset)]
    frames = [Frame(k.index, k.points) for k in keypoints]

    relax = PoseGraphRelaxation(method="open3d", max_correspondence_distance=0.2)
    result = relax.correct(frames, keypoints, [np.eye(4)] * 3, keypoints[0])

    np.testing.assert_array_equal(result.transforms[0], np.eye(4))
    np.testing.assert_allclose(result.transforms[1], np.eye(4), atol=1e-4)
    np.testing.assert_allclose(result.transforms[2][:3, 3], -offset, atol=1e-4)
    np.testing.assert_allclose(result.frames[2].points, scene, atol=1e-3)


def test_open3d_relaxation_keeps_consistent_loop():
    pytest.importorskip("open3d")
    scene = _scene()
    keypoints = [KeypointsFrame(i, scene) for i in range(4)]
    frames = [Frame(i, scene) for i in range(4)]

    result = PoseGraphRelaxation(method="open3d", max_correspondence_distance=0.5).correct(
        frames, keypoints, [np.eye(4)] * 4, keypoints[0]
    )
    for C in result.transforms:
        np.testing.assert_allclose(C, np.eye(4), atol=1e-6)

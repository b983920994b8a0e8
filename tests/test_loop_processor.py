"""
Tests for per-loop processing.
"""

from dataclasses import replace
from pathlib import Path
import sys

import numpy as np
import pytest

# Ensure src is importable
sys.path.append(str(Path(__file__).parent.parent / "src"))

from conftest import STEP, make_config
from edge_registration.pipeline.loop import Loop
from edge_registration.pipeline.loop_processor import LoopProcessor, process_loop
from edge_registration.preprocessing.frame_source import KeypointsFrame
from edge_registration.utils.errors import CollaboratorError


def _seeded_loop(start, end, includes_end_edge=False):
    seed = np.eye(4)
    seed[:3, 3] = -start * STEP
    return replace(Loop((start, end), includes_end_edge=includes_end_edge), edge_transforms=(seed, np.eye(4)))


class RecordingCorrector:
    def __init__(self):
        self.calls = 0

    def correct(self, frames, keypoints, transforms, edge_keypoints):
        from edge_registration.correction.corrector import CorrectionOutcome

        self.calls += 1
        return CorrectionOutcome(transforms=list(transforms), frames=list(frames), transformed_keypoints=list(keypoints))


def test_inner_loop_owns_start_but_not_end(translated_source):
    processor = LoopProcessor(make_config(), translated_source(5))
    loop = _seeded_loop(0, 2)

    out = processor.process(loop)

    assert out.inner_frame_indices == [0, 1]
    assert len(out.inner_transforms) == len(out.inner_fitness_scores) == len(out.inner_keypoints) == 2
    for k, T in zip(out.inner_frame_indices, out.inner_transforms):
        np.testing.assert_allclose(T[:3, 3], -k * STEP, atol=1e-6)
    assert out.inner_fitness_scores[0] == 0.0
    # Input loop is not modified
    assert loop.inner_transforms == []


def test_last_loop_owns_end_edge(translated_source):
    processor = LoopProcessor(make_config(), translated_source(5))

    out = process_loop(_seeded_loop(2, 4, includes_end_edge=True), processor)

    assert out.inner_frame_indices == [2, 3, 4]
    for k, T in zip(out.inner_frame_indices, out.inner_transforms):
        np.testing.assert_allclose(T[:3, 3], -k * STEP, atol=1e-6)


def test_first_transform_is_start_edge_transform(translated_source):
    processor = LoopProcessor(make_config(), translated_source(5))
    loop = _seeded_loop(2, 4)

    out = processor.process(loop)

    np.testing.assert_allclose(out.inner_transforms[0], loop.edge_transforms[0], atol=1e-9)


def test_correction_runs_only_when_enabled(translated_source):
    corrector = RecordingCorrector()
    loop = replace(_seeded_loop(0, 2), edge_keypoints=KeypointsFrame(0, translated_source(1).read_frame(0).points))

    LoopProcessor(make_config(), translated_source(5), corrector=corrector).process(loop)
    assert corrector.calls == 0

    cfg = make_config(registration={"loop_closure_correction": True})
    LoopProcessor(cfg, translated_source(5), corrector=corrector).process(loop)
    assert corrector.calls == 1


def test_correction_skipped_without_edge_keypoints(translated_source):
    corrector = RecordingCorrector()
    cfg = make_config(registration={"loop_closure_correction": True})

    out = LoopProcessor(cfg, translated_source(5), corrector=corrector).process(_seeded_loop(0, 2))

    assert corrector.calls == 0
    assert len(out.inner_transforms) == 2


def test_missing_frame_raises(translated_source):
    processor = LoopProcessor(make_config(), translated_source(3))
    with pytest.raises(CollaboratorError):
        processor.process(_seeded_loop(2, 4, includes_end_edge=True))

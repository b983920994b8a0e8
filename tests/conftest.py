"""Shared fixtures for the registration tests."""

from pathlib import Path
import sys

import numpy as np
import pytest

# Ensure src is importable
sys.path.append(str(Path(__file__).parent.parent / "src"))

from edge_registration.preprocessing.frame_source import InMemoryFrameSource
from edge_registration.utils.config import AppConfig

STEP = np.array([0.05, -0.02, 0.01])


def make_scene(n: int = 600, seed: int = 0) -> np.ndarray:
    rng = np.random.default_rng(seed)
    return rng.normal(size=(n, 3)) * np.array([5.0, 3.0, 1.0])


def make_config(read_to: int = 4, loop_size: int = 2, **sections) -> AppConfig:
    """Config tuned for exact registration of the translated test scene."""
    raw = {
        "frames": {"read_from": 0, "read_to": read_to, "read_step": 1},
        "registration": {"fixed_loop_size": loop_size, "distance_metric": "centroid"},
        "keypoints": {"voxel_size": 1e-9, "max_keypoints": 100000},
        "alignment": {
            "coarse": {"method": "centroid"},
            "icp": {"max_correspondence_distance": 0.5},
        },
        "correction": {"max_correspondence_distance": 0.5},
    }
    for name, values in sections.items():
        raw.setdefault(name, {}).update(values)
    return AppConfig.model_validate(raw)


@pytest.fixture
def translated_source():
    """Frame k sees the same scene shifted by ``k * STEP``."""

    def _make(n_frames: int = 5) -> InMemoryFrameSource:
        scene = make_scene()
        return InMemoryFrameSource([scene + k * STEP for k in range(n_frames)])

    return _make

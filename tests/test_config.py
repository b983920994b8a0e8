"""
Tests for the typed configuration and YAML loader.
"""

from pathlib import Path
import sys

import pytest

# Ensure src is importable
sys.path.append(str(Path(__file__).parent.parent / "src"))

from edge_registration.utils.config import AppConfig, load_config

REPO_ROOT = Path(__file__).parent.parent


def test_defaults():
    cfg = AppConfig()
    assert cfg.registration.fixed_loop_size == 10
    assert cfg.registration.edge_balancing is False
    assert cfg.registration.loop_closure_correction is False
    assert cfg.registration.distance_metric == "camera"
    assert cfg.correction.relaxation_method == "sweep"
    assert cfg.frames.read_step == 1
    assert cfg.alignment.coarse.method == "pca"
    assert cfg.visualization.enabled is False
    assert cfg.parallel.enabled is False


def test_load_yaml_overrides(tmp_path):
    p = tmp_path / "cfg.yaml"
    p.write_text(
        """
frames:
  data_dir: /data/scan
  read_from: 10
  read_to: 200
  read_step: 2
registration:
  fixed_loop_size: 25
  edge_balancing: true
  loop_closure_correction: true
  distance_metric: centroid
alignment:
  coarse:
    method: centroid
  icp:
    max_iterations: 30
correction:
  relaxation_method: open3d
""",
        encoding="utf-8",
    )
    cfg = load_config(p)
    assert cfg.frames.data_dir == "/data/scan"
    assert (cfg.frames.read_from, cfg.frames.read_to, cfg.frames.read_step) == (10, 200, 2)
    assert cfg.registration.fixed_loop_size == 25
    assert cfg.registration.edge_balancing is True
    assert cfg.registration.distance_metric == "centroid"
    assert cfg.alignment.coarse.method == "centroid"
    assert cfg.alignment.icp.max_iterations == 30
    assert cfg.correction.relaxation_method == "open3d"
    # Untouched sections keep their defaults
    assert cfg.alignment.icp.max_correspondence_distance == 0.1
    assert cfg.correction.relaxation_iterations == 5


def test_empty_yaml_gives_defaults(tmp_path):
    p = tmp_path / "empty.yaml"
    p.write_text("", encoding="utf-8")
    assert load_config(p) == AppConfig()


@pytest.mark.parametrize(
    "body",
    [
        "registration:\n  fixed_loop_size: 0\n",
        "frames:\n  read_step: 0\n",
        "frames:\n  read_from: 5\n  read_to: 2\n",
        "alignment:\n  coarse:\n    method: magic\n",
    ],
)
def test_invalid_config_raises_value_error(tmp_path, body):
    p = tmp_path / "bad.yaml"
    p.write_text(body, encoding="utf-8")
    with pytest.raises(ValueError, match="Invalid configuration"):
        load_config(p)


def test_missing_file(tmp_path):
    assert load_config(tmp_path / "nope.yaml") == AppConfig()
    with pytest.raises(FileNotFoundError):
        load_config(tmp_path / "nope.yaml", allow_missing=False)


@pytest.mark.parametrize(
    "name",
    ["config/default.yaml", "config/profiles/depth_camera_loop.yaml", "config/profiles/synthetic.yaml"],
)
def test_shipped_configs_load(name):
    cfg = load_config(REPO_ROOT / name, allow_missing=False)
    assert isinstance(cfg, AppConfig)
    assert cfg.registration.fixed_loop_size >= 1

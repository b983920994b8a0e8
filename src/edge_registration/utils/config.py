"""
Configuration management for edge-registration.

Provides a typed pydantic model and YAML loader with sensible defaults.
The resulting AppConfig is built once per run and passed explicitly to every
pipeline component.
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional, Literal, Any, Dict

from pydantic import BaseModel, Field, ValidationError, model_validator
import yaml


# -----------------------
# Typed config structures
# -----------------------


class FramesConfig(BaseModel):
    data_dir: str = Field(default="data/frames")
    file_pattern: str = Field(
        default="{index}.npy",
        description="Format string mapping a frame index to a file name, e.g. 'frame_{index:05d}.pcd'",
    )
    read_from: int = Field(default=0, ge=0)
    read_to: int = Field(default=0, ge=0)
    read_step: int = Field(default=1, ge=1)

    @model_validator(mode="after")
    def _check_range(self) -> "FramesConfig":
        if self.read_to < self.read_from:
            raise ValueError(
                f"frames.read_to ({self.read_to}) must not be smaller than frames.read_from ({self.read_from})"
            )
        return self


class RegistrationConfig(BaseModel):
    fixed_loop_size: int = Field(default=10, ge=1, description="Frames per loop (in read steps)")
    edge_balancing: bool = Field(
        default=False,
        description="Place edges by accumulated inter-frame distance instead of a fixed stride",
    )
    loop_closure_correction: bool = Field(
        default=False,
        description="Run loop-drift correction followed by global relaxation on every loop",
    )
    distance_metric: Literal["centroid", "camera"] = Field(
        default="camera",
        description="Step distance for edge balancing: coarse camera motion or keypoint centroid shift",
    )
    rotation_weight: float = Field(
        default=1.0,
        ge=0.0,
        description="Meters per radian used by the 'camera' distance metric",
    )


class FilterConfig(BaseModel):
    enabled: bool = Field(default=True)
    remove_non_finite: bool = Field(default=True)
    # Depth is the frame's local z coordinate
    min_depth: Optional[float] = Field(default=None)
    max_depth: Optional[float] = Field(default=None)
    voxel_size: Optional[float] = Field(default=None, description="Voxel grid downsampling size (None = off)")
    max_points: Optional[int] = Field(default=None, description="Random subsample cap per frame (None = off)")
    seed: int = Field(default=0)


class KeypointConfig(BaseModel):
    voxel_size: float = Field(default=0.05, gt=0.0)
    max_keypoints: int = Field(default=5000, ge=3)
    seed: int = Field(default=0)


class CoarseAlignmentConfig(BaseModel):
    method: Literal["centroid", "pca", "open3d_fpfh", "none"] = Field(default="pca")
    voxel_size: float = Field(default=0.05, description="Voxel size for FPFH feature computation")


class ICPConfig(BaseModel):
    max_iterations: int = Field(default=50)
    tolerance: float = Field(default=1e-6)
    max_correspondence_distance: float = Field(default=0.1)
    convergence_translation_epsilon: float = Field(
        default=1e-5,
        description="Minimum translation step to continue ICP iterations",
    )
    convergence_rotation_epsilon_deg: float = Field(
        default=0.01,
        description="Minimum rotation step (degrees) to continue ICP iterations",
    )


class AlignmentConfig(BaseModel):
    coarse: CoarseAlignmentConfig = Field(default_factory=CoarseAlignmentConfig)
    icp: ICPConfig = Field(default_factory=ICPConfig)


class CorrectionConfig(BaseModel):
    max_correspondence_distance: float = Field(default=0.2)
    closure_max_iterations: int = Field(default=50)
    relaxation_iterations: int = Field(default=5, ge=0)
    relaxation_tolerance: float = Field(default=1e-5)
    close_loop: bool = Field(
        default=True,
        description="Treat the last inner frame as a neighbour of the first during relaxation",
    )
    relaxation_method: Literal["sweep", "open3d"] = Field(
        default="sweep",
        description="Neighbour re-fit sweeps, or an Open3D pose graph optimization",
    )


class VisualizationConfig(BaseModel):
    enabled: bool = Field(default=False)
    backend: Literal["plotly", "pyvista"] = Field(default="plotly")
    sample_size: int = Field(default=50000)
    draw_camera_poses: bool = Field(default=True)
    draw_mesh: bool = Field(default=False)
    show: bool = Field(default=True, description="Open figures when drawing (disable for headless runs)")


class MeshConfig(BaseModel):
    voxel_size: Optional[float] = Field(default=0.02, description="Downsampling of the fused cloud before meshing")
    sample_size: Optional[int] = Field(default=200000)


class LoggingConfig(BaseModel):
    level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(default="INFO")
    file: Optional[str] = Field(default=None)


class ParallelConfig(BaseModel):
    enabled: bool = Field(default=False, description="Process loops on a worker pool")
    n_workers: Optional[int] = Field(default=None, description="Number of worker processes (None = cpu_count - 1)")


class OutputConfig(BaseModel):
    transforms_file: Optional[str] = Field(default=None, description="Where to save the aggregated poses (.npy or .txt)")


class AppConfig(BaseModel):
    frames: FramesConfig = Field(default_factory=FramesConfig)
    registration: RegistrationConfig = Field(default_factory=RegistrationConfig)
    filters: FilterConfig = Field(default_factory=FilterConfig)
    keypoints: KeypointConfig = Field(default_factory=KeypointConfig)
    alignment: AlignmentConfig = Field(default_factory=AlignmentConfig)
    correction: CorrectionConfig = Field(default_factory=CorrectionConfig)
    visualization: VisualizationConfig = Field(default_factory=VisualizationConfig)
    mesh: MeshConfig = Field(default_factory=MeshConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    parallel: ParallelConfig = Field(default_factory=ParallelConfig)
    output: OutputConfig = Field(default_factory=OutputConfig)


# -----------------------
# Loader
# -----------------------


def _project_root() -> Path:
    """
    Resolve the repository root directory.

    File is at: repo_root/src/edge_registration/utils/config.py
    """
    return Path(__file__).resolve().parents[3]


def load_config(path: Optional[str | Path] = None, *, allow_missing: bool = True) -> AppConfig:
    """
    Load configuration from YAML into a typed AppConfig.

    Search order when path is None:
    1) repo_root/config/default.yaml
    2) if missing and allow_missing=True: return default AppConfig()

    Args:
        path: Explicit YAML file path. Relative paths that do not exist from the
            working directory are resolved against the repository root.
        allow_missing: If True, returns defaults when file missing; otherwise raises.

    Returns:
        AppConfig instance
    """
    cfg_path: Path
    if path is None:
        cfg_path = _project_root() / "config" / "default.yaml"
    else:
        cfg_path = Path(path)
        if not cfg_path.is_absolute() and not cfg_path.exists():
            cfg_path = _project_root() / cfg_path

    if not cfg_path.exists():
        if allow_missing:
            return AppConfig()
        raise FileNotFoundError(f"Config file not found: {cfg_path}")

    with cfg_path.open("r", encoding="utf-8") as f:
        raw: Dict[str, Any] = yaml.safe_load(f) or {}

    try:
        return AppConfig.model_validate(raw)
    except ValidationError as e:
        # Re-raise with context to help users fix the YAML
        raise ValueError(f"Invalid configuration in {cfg_path}: {e}")

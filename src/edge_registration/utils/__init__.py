"""
Utility Functions Module

Common utilities used across the registration pipeline:
- Logging setup
- Configuration loading
- Error and result types
- Rigid transform helpers
- Pose export
"""

from .logging import setup_logger, configure_package_logging
from .config import AppConfig, load_config
from .errors import PipelineError, ConfigurationError, CollaboratorError, Result
from .transforms import (
    apply_transformation,
    interpolate_transform,
    invert_transform,
    estimate_rigid_transform,
    rotation_angle,
)
from .export import (
    save_transforms,
    load_transforms,
)

__all__ = [
    "setup_logger",
    "configure_package_logging",
    "AppConfig",
    "load_config",
    "PipelineError",
    "ConfigurationError",
    "CollaboratorError",
    "Result",
    "apply_transformation",
    "interpolate_transform",
    "invert_transform",
    "estimate_rigid_transform",
    "rotation_angle",
    "save_transforms",
    "load_transforms",
]

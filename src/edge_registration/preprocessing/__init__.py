"""
Frame Preprocessing Module

Reading frame sequences and cleaning them up before registration:
- Frame sources (in-memory arrays, one file per frame)
- Non-finite removal, depth cropping, voxel downsampling, subsampling
"""

from .frame_source import (
    Frame,
    KeypointsFrame,
    FrameSource,
    InMemoryFrameSource,
    DirectoryFrameSource,
    read_frames,
)
from .filters import FrameFilter, voxel_downsample, create_depth_mask

__all__ = [
    "Frame",
    "KeypointsFrame",
    "FrameSource",
    "InMemoryFrameSource",
    "DirectoryFrameSource",
    "read_frames",
    "FrameFilter",
    "voxel_downsample",
    "create_depth_mask",
]

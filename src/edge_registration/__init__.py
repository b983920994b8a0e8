"""
Edge-Based Registration Package

A Python package for registering long ordered sequences of 3D point-cloud
frames (e.g. consecutive depth-camera scans) into one coordinate frame.
Drift is bounded by splitting the sequence into loops between widely spaced
edge frames: the edge frames are aligned first, then the frames of every loop
are aligned relative to their start edge with a coarse + ICP chain, and an
optional loop closure correction spreads the remaining drift.
"""

__version__ = "0.1.0"

from .preprocessing import *
from .alignment import *
from .correction import *
from .pipeline import *
from .utils import *

__all__ = [
    "preprocessing",
    "alignment",
    "correction",
    "pipeline",
    "reconstruction",
    "utils",
    "visualization",
]

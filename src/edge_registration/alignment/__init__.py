"""
Alignment Module

Two-stage registration of ordered frame sequences: a coarse stage
(centroid / PCA / Open3D FPFH RANSAC) followed by ICP refinement, composed
by AlignmentChain.
"""

from .base import AlignmentResult, Aligner
from .keypoints import KeypointExtractor
from .coarse_registration import CoarseRegistration, CoarseAligner
from .fine_registration import ICPRegistration, FineAligner
from .chain import AlignmentChain, ChainResult

__all__ = [
    "AlignmentResult",
    "Aligner",
    "KeypointExtractor",
    "CoarseRegistration",
    "CoarseAligner",
    "ICPRegistration",
    "FineAligner",
    "AlignmentChain",
    "ChainResult",
]

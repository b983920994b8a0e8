"""
Reconstruction Module

Surface reconstruction from the registered frame sequence.
"""

from .mesh import MeshSink, PointCloudMeshSink

__all__ = [
    "MeshSink",
    "PointCloudMeshSink",
]

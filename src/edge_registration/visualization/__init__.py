"""
Visualization Module

Camera trajectory, mesh and per-loop drawings of registration results.
The module uses Plotly or PyVista as a backend for rendering.
"""

from .registration import RegistrationVisualizer, VisualizationSink

__all__ = [
    "RegistrationVisualizer",
    "VisualizationSink",
]

"""
Registration Visualization Tools

Draws camera trajectories, reconstructed meshes and per-loop alignment
results with plotly or pyvista.
"""

from typing import Optional, Protocol, Sequence
import numpy as np
import plotly.graph_objects as go
import pyvista as pv

from ..utils.logging import setup_logger

logger = setup_logger(__name__)


class VisualizationSink(Protocol):
    def redraw(self) -> None:
        ...

    def visualize_camera_poses(self, transforms: Sequence[np.ndarray]) -> None:
        ...

    def visualize_mesh(self, mesh) -> None:
        ...

    def visualize_loop(self, loop) -> None:
        ...


class RegistrationVisualizer:
    """Visualization sink for the registration pipeline."""

    def __init__(self, backend: str = 'plotly', sample_size: Optional[int] = 50000, show: bool = True):
        """
        Args:
            backend: 'plotly' or 'pyvista'
            sample_size: Maximum points drawn per cloud
            show: Open each drawing (disable for headless runs; figures are kept on the object)
        """
        if backend not in ['plotly', 'pyvista']:
            raise ValueError(
                f"Unsupported backend: '{backend}'. Choose 'plotly' or 'pyvista'."
            )
        self.backend = backend
        self.sample_size = sample_size
        self.show = show
        self.scene: list = []
        self.loop_figures: list = []
        self.figure = None

    @classmethod
    def from_config(cls, cfg) -> "RegistrationVisualizer":
        v = cfg.visualization
        return cls(backend=v.backend, sample_size=v.sample_size, show=v.show)

    # ----------------- Public API -----------------
    def redraw(self):
        """Start a new global scene."""
        self.scene = []
        self.figure = None

    def visualize_camera_poses(self, transforms: Sequence[np.ndarray], axis_length: Optional[float] = None):
        if len(transforms) == 0:
            logger.warning("No camera poses to draw")
            return
        centers = np.array([T[:3, 3] for T in transforms])
        if axis_length is None:
            extent = float(np.ptp(centers, axis=0).max()) if len(centers) > 1 else 0.0
            axis_length = 0.05 * extent if extent > 0 else 0.1
        # Viewing direction of each camera is its local +z axis
        tips = centers + axis_length * np.array([T[:3, 2] for T in transforms])

        if self.backend == 'plotly':
            self.scene.append(go.Scatter3d(
                x=centers[:, 0], y=centers[:, 1], z=centers[:, 2],
                mode='lines+markers',
                marker=dict(size=3, color='red'),
                line=dict(color='red', width=2),
                name='camera poses',
            ))
            seg = np.full((3 * len(centers), 3), np.nan)
            seg[0::3] = centers
            seg[1::3] = tips
            self.scene.append(go.Scatter3d(
                x=seg[:, 0], y=seg[:, 1], z=seg[:, 2],
                mode='lines',
                line=dict(color='black', width=1),
                name='view directions',
            ))
        else:
            self.scene.append((pv.lines_from_points(centers), dict(color='red', line_width=2)))
            self.scene.append((pv.PolyData(centers), dict(color='red', point_size=6)))
        self._render("Camera poses")

    def visualize_mesh(self, mesh: pv.PolyData):
        if self.backend == 'plotly':
            tri = mesh.triangulate()
            faces = np.asarray(tri.faces).reshape(-1, 4)[:, 1:]
            pts = np.asarray(tri.points)
            self.scene.append(go.Mesh3d(
                x=pts[:, 0], y=pts[:, 1], z=pts[:, 2],
                i=faces[:, 0], j=faces[:, 1], k=faces[:, 2],
                color='lightgray',
                opacity=1.0,
                name='mesh',
            ))
        else:
            self.scene.append((mesh, dict(color='lightgray')))
        self._render("Reconstructed mesh")

    def visualize_loop(self, loop):
        """Draw one processed loop: its placed edge frames, keypoints and camera path."""
        title = f"Loop {loop.start} -> {loop.end}"
        items = []
        if loop.edge_frames is not None:
            for frame, T, name in zip(loop.edge_frames, loop.edge_transforms, ('start edge', 'end edge')):
                pts = self._downsample(frame.transformed(T).points, self.sample_size)
                items.append((pts, name, 1))
        for kp in loop.inner_keypoints:
            pts = self._downsample(kp.points, self.sample_size)
            items.append((pts, f'keypoints {kp.index}', 2))
        centers = np.array([T[:3, 3] for T in loop.inner_transforms]) if loop.inner_transforms else np.empty((0, 3))

        if self.backend == 'plotly':
            fig = go.Figure()
            for pts, name, size in items:
                fig.add_trace(go.Scatter3d(
                    x=pts[:, 0], y=pts[:, 1], z=pts[:, 2],
                    mode='markers', marker=dict(size=size), name=name,
                ))
            if len(centers):
                fig.add_trace(go.Scatter3d(
                    x=centers[:, 0], y=centers[:, 1], z=centers[:, 2],
                    mode='lines+markers', marker=dict(size=3, color='red'), name='camera poses',
                ))
            self._layout(fig, title)
            self.loop_figures.append(fig)
            if self.show:
                fig.show(renderer="browser")
            return

        plotter = pv.Plotter(off_screen=not self.show)
        colors = ['red', 'blue', 'green', 'yellow', 'purple', 'orange']
        for i, (pts, name, _) in enumerate(items):
            if len(pts):
                plotter.add_mesh(pv.PolyData(pts), label=name, color=colors[i % len(colors)],
                                 point_size=3, lighting=False)
        if len(centers) > 1:
            plotter.add_mesh(pv.lines_from_points(centers), color='black', line_width=2)
        self.loop_figures.append(plotter)
        if self.show:
            plotter.show(title=title)

    # ----------------- Internal helpers -----------------
    def _downsample(self, point_cloud: np.ndarray, sample_size: Optional[int]) -> np.ndarray:
        if not sample_size or sample_size >= len(point_cloud):
            return point_cloud
        indices = np.random.default_rng(0).choice(len(point_cloud), sample_size, replace=False)
        return point_cloud[indices]

    @staticmethod
    def _layout(fig, title: str):
        fig.update_layout(
            title=title,
            scene=dict(
                xaxis=dict(visible=False), yaxis=dict(visible=False), zaxis=dict(visible=False), aspectmode='data'
            ),
            margin=dict(l=0, r=0, t=40, b=0),
        )

    def _render(self, title: str):
        if self.backend == 'plotly':
            fig = go.Figure(data=list(self.scene))
            self._layout(fig, title)
            self.figure = fig
            if self.show:
                fig.show(renderer="browser")
            return
        plotter = pv.Plotter(off_screen=not self.show)
        for mesh, kwargs in self.scene:
            plotter.add_mesh(mesh, **kwargs)
        self.figure = plotter
        if self.show:
            plotter.show(title=title)

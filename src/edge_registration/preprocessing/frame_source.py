"""
Frame Sources

A frame source produces the ordered point-cloud frames of a capture for an
inclusive index range at a given stride. Sources are lazy (frames are read
while iterating), finite and restartable: calling ``read`` again starts a new
pass over the files.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Iterator, List, Optional, Protocol, Sequence

import numpy as np

from ..utils.errors import CollaboratorError
from ..utils.logging import setup_logger, redirect_stdout_stderr_to_logger
from ..utils.transforms import apply_transformation

logger = setup_logger(__name__)


@dataclass(frozen=True, eq=False)
class Frame:
    """A point cloud (N x 3) together with its index in the capture sequence."""

    index: int
    points: np.ndarray

    def __post_init__(self) -> None:
        pts = np.asarray(self.points, dtype=np.float64)
        if pts.ndim != 2 or pts.shape[1] < 3:
            raise ValueError(f"Frame {self.index}: expected Nx3 points, got shape {pts.shape}")
        object.__setattr__(self, "points", pts[:, :3])

    def __len__(self) -> int:
        return len(self.points)

    def transformed(self, transform: np.ndarray) -> "Frame":
        return type(self)(self.index, apply_transformation(self.points, transform))

    def with_points(self, points: np.ndarray) -> "Frame":
        return type(self)(self.index, points)


class KeypointsFrame(Frame):
    """The keypoint subset of a frame."""


class FrameSource(Protocol):
    def read(self, start: int, end: int, step: int = 1) -> Iterator[Frame]:
        ...

    def read_frame(self, index: int) -> Frame:
        ...


def frame_indices(start: int, end: int, step: int) -> range:
    """Inclusive index range used by every frame source."""
    if step < 1:
        raise ValueError(f"Read step must be >= 1, got {step}")
    return range(start, end + 1, step)


@dataclass
class InMemoryFrameSource:
    """Frame source over arrays already held in memory.

    Array ``k`` becomes the frame with index ``first_index + k``.
    """

    clouds: Sequence[np.ndarray]
    first_index: int = 0

    def read(self, start: int, end: int, step: int = 1) -> Iterator[Frame]:
        for index in frame_indices(start, end, step):
            yield self.read_frame(index)

    def read_frame(self, index: int) -> Frame:
        k = index - self.first_index
        if k < 0 or k >= len(self.clouds):
            raise CollaboratorError(
                f"Frame {index} is outside the in-memory sequence "
                f"[{self.first_index}, {self.first_index + len(self.clouds) - 1}]"
            )
        return Frame(index, np.asarray(self.clouds[k]))

    def __len__(self) -> int:
        return len(self.clouds)


@dataclass
class DirectoryFrameSource:
    """
    Frame source backed by one file per frame in a directory.

    Supported formats:
    - ``.npy``: (N, >=3) array
    - ``.txt`` / ``.xyz`` / ``.csv``: whitespace or comma separated columns, first three are XYZ
    - ``.las`` / ``.laz``: read with laspy
    - ``.pcd`` / ``.ply``: read with Open3D (optional dependency)
    """

    data_dir: str
    file_pattern: str = "{index}.npy"

    @classmethod
    def from_config(cls, cfg) -> "DirectoryFrameSource":
        return cls(data_dir=cfg.frames.data_dir, file_pattern=cfg.frames.file_pattern)

    def path_for(self, index: int) -> Path:
        return Path(self.data_dir) / self.file_pattern.format(index=index)

    def read(self, start: int, end: int, step: int = 1) -> Iterator[Frame]:
        for index in frame_indices(start, end, step):
            yield self.read_frame(index)

    def read_frame(self, index: int) -> Frame:
        path = self.path_for(index)
        if not path.exists():
            raise CollaboratorError(f"Frame {index}: file not found: {path}")
        try:
            points = self._load_points(path)
        except CollaboratorError:
            raise
        except Exception as e:
            raise CollaboratorError(f"Frame {index}: could not read {path}: {e}") from e
        try:
            frame = Frame(index, points)
        except ValueError as e:
            raise CollaboratorError(f"Frame {index}: bad point layout in {path}: {e}") from e
        logger.debug(f"Read frame {index} ({len(frame)} points) from {path.name}")
        return frame

    # ------------------------ Loaders ------------------------
    def _load_points(self, path: Path) -> np.ndarray:
        suffix = path.suffix.lower()
        if suffix == ".npy":
            return np.load(path)
        if suffix in (".txt", ".xyz"):
            return np.loadtxt(path, ndmin=2)
        if suffix == ".csv":
            return np.loadtxt(path, delimiter=",", ndmin=2)
        if suffix in (".las", ".laz"):
            return self._load_las(path)
        if suffix in (".pcd", ".ply"):
            return self._load_open3d(path)
        raise CollaboratorError(f"Unsupported frame format: {suffix}")

    @staticmethod
    def _load_las(path: Path) -> np.ndarray:
        import laspy

        las = laspy.read(path)
        return np.column_stack([
            np.asarray(las.x, dtype=np.float64),
            np.asarray(las.y, dtype=np.float64),
            np.asarray(las.z, dtype=np.float64),
        ])

    @staticmethod
    def _load_open3d(path: Path) -> np.ndarray:
        try:
            import open3d as o3d  # type: ignore
        except Exception as e:
            raise CollaboratorError(f"Open3D is required to read {path.suffix} frames") from e

        with redirect_stdout_stderr_to_logger(logger):
            pcd = o3d.io.read_point_cloud(str(path))
        points = np.asarray(pcd.points, dtype=np.float64)
        if points.size == 0:
            raise CollaboratorError(f"Open3D read no points from {path}")
        return points


def read_frames(source: FrameSource, start: int, end: int, step: int = 1,
                positions: Optional[Sequence[int]] = None) -> List[Frame]:
    """Materialize a read. With ``positions``, keep only those positions of the walk."""
    frames = source.read(start, end, step)
    if positions is None:
        return list(frames)
    wanted = set(positions)
    return [frame for pos, frame in enumerate(frames) if pos in wanted]

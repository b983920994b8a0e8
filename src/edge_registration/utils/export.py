"""
Transform export utilities

Saves and loads whole pose sequences, so an aggregated registration result
can be handed to downstream meshing tools or compared with reference poses.
"""

from pathlib import Path
from typing import List, Sequence

import numpy as np

from .logging import setup_logger

logger = setup_logger(__name__)


def save_transforms(transforms: Sequence[np.ndarray], output_file: str) -> Path:
    """Save a pose sequence.

    ``.npy`` stores an (N, 4, 4) array; any other suffix writes stacked 4x4
    text blocks (4N rows).

    Args:
        transforms: Sequence of 4x4 matrices
        output_file: Destination path; parent directories are created

    Returns:
        Path written
    """
    stacked = np.asarray(list(transforms), dtype=float).reshape(-1, 4, 4)
    out = Path(output_file)
    out.parent.mkdir(parents=True, exist_ok=True)
    if out.suffix.lower() == ".npy":
        np.save(out, stacked)
    else:
        np.savetxt(
            out,
            stacked.reshape(-1, 4),
            fmt='%.18e',
            header=f'{len(stacked)} stacked 4x4 transformation matrices',
        )
    logger.info(f"Saved {len(stacked)} transforms to {out}")
    return out


def load_transforms(input_file: str) -> List[np.ndarray]:
    """Load a pose sequence written by :func:`save_transforms`."""
    path = Path(input_file)
    if path.suffix.lower() == ".npy":
        data = np.load(path)
    else:
        data = np.loadtxt(path, ndmin=2)
    if data.size % 16 != 0:
        raise ValueError(f"Expected a multiple of 16 values, got {data.size} in {path}")
    stacked = data.reshape(-1, 4, 4)
    logger.info(f"Loaded {len(stacked)} transforms from {path}")
    return [m.copy() for m in stacked]

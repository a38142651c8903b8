"""
Point Cloud Data Loader

Minimal point cloud container used by the matcher, and a loader for
NumPy, plain-text and LAS/LAZ files.
"""

from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import laspy
import numpy as np

from ..utils.logging import setup_logger

logger = setup_logger(__name__)

TEXT_SUFFIXES = ('.txt', '.xyz', '.csv', '.pts')
LAS_SUFFIXES = ('.las', '.laz')


@dataclass
class PointCloud:
    """
    Array of points plus a validity mask.

    Attributes:
        points: (N, D) array of coordinates
        mask: (N,) boolean array, True where the point is valid (finite)
    """

    points: np.ndarray
    mask: np.ndarray

    @classmethod
    def from_array(cls, points: np.ndarray) -> "PointCloud":
        """Wrap an (N, D) array; rows with non-finite coordinates are marked invalid."""
        points = np.asarray(points, dtype=np.float64)
        if points.ndim != 2:
            raise ValueError(f"Expected (N, D) array, got shape {points.shape}")
        mask = np.all(np.isfinite(points), axis=1)
        return cls(points=points, mask=mask)

    def __len__(self) -> int:
        return int(self.points.shape[0])

    @property
    def dimension(self) -> int:
        return int(self.points.shape[1])

    @property
    def valid_points(self) -> np.ndarray:
        return self.points[self.mask]

    @property
    def min(self) -> np.ndarray:
        valid = self.valid_points
        if valid.size == 0:
            return np.zeros(self.dimension)
        return valid.min(axis=0)

    @property
    def max(self) -> np.ndarray:
        valid = self.valid_points
        if valid.size == 0:
            return np.zeros(self.dimension)
        return valid.max(axis=0)

    @property
    def range(self) -> np.ndarray:
        """Bounding box extent per axis (zeros for an empty cloud)."""
        return self.max - self.min


class PointCloudLoader:
    """
    Load point clouds from disk.

    Supported formats:
    - ``.npy``: (N, D) float array
    - ``.txt/.xyz/.csv/.pts``: whitespace- or comma-separated columns
    - ``.las/.laz``: via laspy (LAZ requires a laspy backend such as lazrs)
    """

    def __init__(self, *, dimension: Optional[int] = None):
        """
        Args:
            dimension: If set, keep only the first ``dimension`` columns
                (e.g. 2 to project a 3-D cloud onto the XY plane)
        """
        self.dimension = dimension

    def load(self, file_path: str) -> PointCloud:
        """
        Load a point cloud file.

        Raises:
            FileNotFoundError: If the file does not exist
            ValueError: If the file format is unsupported or the data invalid
        """
        file_path = Path(file_path)

        if not file_path.exists():
            raise FileNotFoundError(f"File not found: {file_path}")

        suffix = file_path.suffix.lower()
        logger.info(f"Loading point cloud data from {file_path}")

        if suffix == '.npy':
            points = np.load(file_path)
        elif suffix in TEXT_SUFFIXES:
            delimiter = ',' if suffix == '.csv' else None
            points = np.loadtxt(file_path, delimiter=delimiter, ndmin=2)
        elif suffix in LAS_SUFFIXES:
            las = laspy.read(file_path)
            points = np.column_stack([
                np.array(las.x, dtype=np.float64),
                np.array(las.y, dtype=np.float64),
                np.array(las.z, dtype=np.float64),
            ])
        else:
            raise ValueError(f"Unsupported file format: {suffix}")

        points = np.asarray(points, dtype=np.float64)
        if points.ndim != 2 or points.shape[1] < 2:
            raise ValueError(f"Expected (N, D>=2) points in {file_path}, got shape {points.shape}")

        if self.dimension is not None:
            if points.shape[1] < self.dimension:
                raise ValueError(
                    f"{file_path} has {points.shape[1]} columns, {self.dimension} requested"
                )
            points = points[:, :self.dimension]

        cloud = PointCloud.from_array(points)
        n_invalid = len(cloud) - int(cloud.mask.sum())
        if n_invalid:
            logger.warning(f"{n_invalid} of {len(cloud)} points in {file_path} are not finite")
        logger.info(f"Loaded {len(cloud)} points ({cloud.dimension}-D) from {file_path.name}")
        return cloud

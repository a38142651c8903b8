"""
NDT Grid Map

Sparse, lazily allocated mapping from integer bundle index to CellBundle,
with point and point-cloud insertion and density queries.

The map is a single type parametrised by dimension (2 or 3), resolution
(scalar or per axis) and storage kind:
- "dynamic": unbounded hash map, grows on demand
- "static": dense storage of declared ``size``; indices outside are invalid

Every point is added to all ``2**D`` members of its bundle (overlapping
sub-lattices), and queries average the members with weight ``1 / 2**D``.
"""

from __future__ import annotations

from typing import Callable, Iterable, List, Literal, Optional, Sequence, Tuple, Union

import numpy as np

from ..utils.config import AppConfig, MapConfig
from ..utils.logging import setup_logger
from ..utils.transform import apply_transform, identity, invert_transform
from .bundle import CellBundle
from .distribution import MIN_SAMPLES, Distribution
from .storage import DynamicStorage, Index, StaticStorage

logger = setup_logger(__name__)

MapKind = Literal["static", "dynamic"]


def _resolve_dimension(origin, resolution, size) -> int:
    candidates = []
    if origin is not None:
        candidates.append(np.asarray(origin).shape[0] - 1)
    if resolution is not None and np.ndim(resolution) > 0:
        candidates.append(len(resolution))
    if size is not None:
        candidates.append(len(size))
    if not candidates:
        raise ValueError("Cannot infer map dimension; pass dim, origin, per-axis resolution or size")
    if len(set(candidates)) != 1:
        raise ValueError(f"Inconsistent dimensions from origin/resolution/size: {candidates}")
    return candidates[0]


class GridMap:
    """
    Multi-resolution NDT map over an integer bundle lattice.

    Attributes:
        dim: Dimension D of the ambient space (2 or 3)
        kind: "static" or "dynamic"
        origin: (D+1)x(D+1) homogeneous transform of the map frame in the world
        resolution: Bundle edge length per axis (D,)
        bin_count: Number of Distributions per bundle (2**D)
        div_count: Weight of each member in a density query (1 / 2**D)
    """

    def __init__(
        self,
        origin: Optional[np.ndarray] = None,
        resolution: Union[float, Sequence[float]] = 1.0,
        size: Optional[Sequence[int]] = None,
        *,
        kind: Optional[MapKind] = None,
        dim: Optional[int] = None,
    ):
        if dim is None:
            dim = _resolve_dimension(origin, resolution, size)
        if dim not in (2, 3):
            raise ValueError(f"Only 2-D and 3-D maps are supported, got dim={dim}")
        if kind is None:
            kind = "static" if size is not None else "dynamic"
        if kind == "static" and size is None:
            raise ValueError("Static maps require a size")

        self.dim = int(dim)
        self.kind: MapKind = kind
        self.origin = identity(self.dim) if origin is None else np.asarray(origin, dtype=np.float64).copy()
        if self.origin.shape != (self.dim + 1, self.dim + 1):
            raise ValueError(f"Origin must be {self.dim + 1}x{self.dim + 1}, got {self.origin.shape}")
        self._origin_inverse = invert_transform(self.origin)

        res = np.broadcast_to(np.asarray(resolution, dtype=np.float64), (self.dim,)).copy()
        if np.any(res <= 0.0):
            raise ValueError(f"Resolution must be strictly positive, got {res}")
        self.resolution = res

        self.bin_count = 2 ** self.dim
        self.div_count = 1.0 / self.bin_count

        if kind == "static":
            self._storage: Union[StaticStorage, DynamicStorage] = StaticStorage(size)
            if self._storage.dim != self.dim:
                raise ValueError(f"Size {tuple(size)} does not match dimension {self.dim}")
        else:
            self._storage = DynamicStorage(self.dim)

    @classmethod
    def from_config(
        cls,
        config: Union[AppConfig, MapConfig],
        origin: Optional[np.ndarray] = None,
        *,
        size: Optional[Sequence[int]] = None,
        dim: Optional[int] = None,
    ) -> "GridMap":
        """
        Create an empty map from the ``map`` section of the configuration.

        Args:
            config: AppConfig or its MapConfig section
            origin: Map frame in the world, identity when omitted
            size: Bundle counts overriding ``config.size`` (static maps)
            dim: Dimension, needed when neither origin, size nor a per-axis
                resolution determine it
        """
        cfg = config.map if isinstance(config, AppConfig) else config
        if size is None:
            size = cfg.size
        if cfg.kind == "dynamic":
            size = None
        return cls(origin, cfg.resolution, size, kind=cfg.kind, dim=dim)

    # ------------------------------------------------------------------
    # Indexing
    # ------------------------------------------------------------------

    @property
    def size(self) -> Optional[Tuple[int, ...]]:
        """Declared bundle extent for static maps, None for dynamic ones."""
        return self._storage.size if self.kind == "static" else None

    @property
    def bundle_size(self) -> Tuple[int, ...]:
        """Bundle extent per axis: declared size (static) or populated span (dynamic)."""
        if self.kind == "static":
            return self._storage.size
        if len(self._storage) == 0:
            return (0,) * self.dim
        return tuple(int(hi - lo + 1) for lo, hi in zip(self.min_index, self.max_index))

    @property
    def min_index(self) -> Tuple[int, ...]:
        indices = self._storage.indices()
        if not indices:
            return (0,) * self.dim
        return tuple(int(v) for v in np.min(np.asarray(indices), axis=0))

    @property
    def max_index(self) -> Tuple[int, ...]:
        indices = self._storage.indices()
        if not indices:
            return (0,) * self.dim
        return tuple(int(v) for v in np.max(np.asarray(indices), axis=0))

    def valid(self, index: Optional[Index]) -> bool:
        return index is not None and self._storage.valid(tuple(index))

    def to_bundle_indices(self, points: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
        """
        Vectorised ``to_bundle_index`` for an (N, D) array.

        Returns:
            Tuple of (indices (N, D) int64, valid mask (N,)). Rows that are
            non-finite or outside a static extent are marked invalid.
        """
        points = np.atleast_2d(np.asarray(points, dtype=np.float64))
        if points.shape[1] != self.dim:
            raise ValueError(f"Expected (N, {self.dim}) points, got {points.shape}")
        local = apply_transform(points, self._origin_inverse)
        finite = np.all(np.isfinite(local), axis=1)
        scaled = np.where(finite[:, None], local / self.resolution, 0.0)
        indices = np.floor(scaled).astype(np.int64)
        valid = finite
        if self.kind == "static":
            size = np.asarray(self._storage.size)
            valid = valid & np.all((indices >= 0) & (indices < size), axis=1)
        return indices, valid

    def to_bundle_index(self, point) -> Optional[Index]:
        """Bundle index of a point, or None if it is invalid for this map."""
        indices, valid = self.to_bundle_indices(np.asarray(point, dtype=np.float64).reshape(1, -1))
        if not valid[0]:
            return None
        return tuple(int(v) for v in indices[0])

    # ------------------------------------------------------------------
    # Storage access
    # ------------------------------------------------------------------

    def get_bundle(self, index: Index) -> Optional[CellBundle]:
        return self._storage.get(tuple(index))

    def get_allocate(self, index: Index) -> CellBundle:
        return self._storage.get_allocate(tuple(index))

    def set_bundle(self, index: Index, bundle: CellBundle) -> None:
        self._storage.insert(tuple(index), bundle)

    def get_bundle_at(self, point) -> Optional[CellBundle]:
        index = self.to_bundle_index(point)
        return None if index is None else self._storage.get(index)

    def bundle_indices(self) -> List[Index]:
        """All allocated bundle indices in lexicographic order."""
        return self._storage.indices()

    def bundles(self) -> Iterable[Tuple[Index, CellBundle]]:
        return self._storage.items()

    def traverse(self, fn: Callable[[Index, CellBundle], None]) -> None:
        self._storage.traverse(fn)

    @property
    def bundle_count(self) -> int:
        return len(self._storage)

    def __contains__(self, index) -> bool:
        return tuple(index) in self._storage

    # ------------------------------------------------------------------
    # Insertion
    # ------------------------------------------------------------------

    def insert(self, point) -> None:
        """Add a single point to every member of its bundle."""
        p = np.asarray(point, dtype=np.float64).ravel()
        index = self.to_bundle_index(p)
        if index is None:
            return
        self._storage.get_allocate(index).add(p)

    def insert_cloud(self, points: np.ndarray, origin_transform: Optional[np.ndarray] = None) -> int:
        """
        Bulk insertion of an (N, D) point cloud.

        Points are first transformed by ``origin_transform`` and aggregated into
        one temporary Distribution per distinct bundle index; each aggregate is
        then merged into every member of its bundle. The resulting statistics
        equal inserting the points one at a time.

        Args:
            points: (N, D) array of points in the cloud frame
            origin_transform: Optional (D+1)x(D+1) transform of the cloud frame

        Returns:
            Number of points that were inserted
        """
        points = np.atleast_2d(np.asarray(points, dtype=np.float64))
        if points.size == 0:
            return 0
        if origin_transform is not None:
            points = apply_transform(points, origin_transform)

        indices, valid = self.to_bundle_indices(points)
        if not np.any(valid):
            logger.debug("insert_cloud: none of %d points fall inside the map", len(points))
            return 0
        points = points[valid]
        indices = indices[valid]

        # Temporary aggregation by distinct index
        uniq, inv, counts = np.unique(indices, axis=0, return_inverse=True, return_counts=True)
        inv = inv.ravel()
        sums = np.zeros((len(uniq), self.dim), dtype=np.float64)
        outers = np.zeros((len(uniq), self.dim, self.dim), dtype=np.float64)
        np.add.at(sums, inv, points)
        np.add.at(outers, inv, points[:, :, None] * points[:, None, :])

        for k, index in enumerate(uniq):
            aggregate = Distribution(self.dim)
            aggregate.n = int(counts[k])
            aggregate.sum = sums[k]
            aggregate.sum_outer = outers[k]
            self._storage.get_allocate(tuple(int(v) for v in index)).merge(aggregate)

        logger.debug(
            "insert_cloud: %d points merged into %d bundles (%d allocated in total)",
            len(points), len(uniq), self.bundle_count,
        )
        return int(len(points))

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def _evaluate(self, point, bundle_index, normalized: bool) -> float:
        p = np.asarray(point, dtype=np.float64).ravel()
        if bundle_index is None:
            bundle_index = self.to_bundle_index(p)
        if not self.valid(bundle_index):
            return 0.0
        bundle = self._storage.get(tuple(bundle_index))
        if bundle is None:
            return 0.0
        total = 0.0
        for d in bundle:
            total += self.div_count * (d.sample(p) if normalized else d.sample_non_normalized(p))
        return float(total)

    def sample(self, point, bundle_index: Optional[Index] = None) -> float:
        """Averaged normalized density of the bundle containing ``point``."""
        return self._evaluate(point, bundle_index, normalized=True)

    def sample_non_normalized(self, point, bundle_index: Optional[Index] = None) -> float:
        """Averaged non-normalized density of the bundle containing ``point``."""
        return self._evaluate(point, bundle_index, normalized=False)

    @staticmethod
    def expand_distribution(distribution: Optional[Distribution]) -> bool:
        """True iff the distribution holds enough observations to be trusted."""
        return distribution is not None and distribution.n >= MIN_SAMPLES

    def __repr__(self) -> str:
        return (
            f"GridMap(dim={self.dim}, kind={self.kind!r}, resolution={self.resolution.tolist()}, "
            f"size={self.size}, bundles={self.bundle_count})"
        )

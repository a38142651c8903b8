"""
Grid map persistence.

Two on-disk layouts share one metadata file ``map.yaml`` holding ``origin``,
``resolution``, ``size`` and ``bundles`` (the populated bundle indices):

- "flat" (default): one ``bundles.yaml`` with every bundle and all of its
  members keyed by bundle index. Lossless for static and dynamic maps.
- "octant" (static maps only): ``2**D`` sub-directories ``0 .. 2**D - 1``, each a
  single-resolution storage mapping a storage index to the bundle member of
  that octant. Per axis ``a`` the storage index is ``bi // 2`` when bit ``a``
  of the octant is 0 and ``bi // 2 + bi % 2`` otherwise; loading maps back
  with ``clamp(2 * si, 0, size - 1)``. The forward map drops one bit per
  axis, so only ``save(load(save(m))) == save(m)`` holds, not identity:
  adjacent bundles share storage slots and come back with a neighbour's
  members.

``encode_map``/``decode_map`` give the octant form as a single in-memory node.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, List, Literal, Optional, Sequence, Tuple

import numpy as np
import yaml

from ..maps.gridmap import GridMap
from ..maps.distribution import Distribution
from ..utils.logging import setup_logger
from .distribution import (
    decode_distribution,
    decode_storage,
    encode_distribution,
    encode_storage,
    load_storage,
    save_storage,
)

logger = setup_logger(__name__)

META_FILE = "map.yaml"
FLAT_FILE = "bundles.yaml"

Index = Tuple[int, ...]
Layout = Literal["octant", "flat"]


# -----------------------
# Index mapping
# -----------------------


def storage_index(bundle_index: Sequence[int], octant: int) -> Index:
    """Forward map: bundle index -> storage index of the given octant."""
    out = []
    for axis, bi in enumerate(bundle_index):
        half, rest = divmod(int(bi), 2)
        out.append(half + rest if (octant >> axis) & 1 else half)
    return tuple(out)


def bundle_index(storage_idx: Sequence[int], bundle_size: Sequence[int]) -> Index:
    """Inverse map: storage index -> bundle index, clamped to the bundle extent."""
    return tuple(
        max(0, min(2 * int(si), int(size) - 1))
        for si, size in zip(storage_idx, bundle_size)
    )


def octant_storages(gridmap: GridMap) -> List[Dict[Index, Distribution]]:
    """
    Split a static map into its ``2**D`` octant storages.

    For octant ``i`` every populated bundle contributes member ``i`` at its
    storage index when the member holds data; the first bundle (in index
    order) to claim a storage index keeps it.
    """
    if gridmap.kind != "static":
        raise ValueError("Octant storages are only defined for static maps")

    storages: List[Dict[Index, Distribution]] = [{} for _ in range(gridmap.bin_count)]
    for index, bundle in gridmap.bundles():
        for octant, storage in enumerate(storages):
            member = bundle[octant]
            if member.n <= 0:
                continue
            si = storage_index(index, octant)
            if si not in storage:
                storage[si] = member
    return storages


def restore_from_octants(
    gridmap: GridMap,
    storages: Sequence[Dict[Index, Distribution]],
    bundles: Optional[Sequence[Sequence[int]]] = None,
) -> None:
    """
    Fill a freshly created static map from its octant storages.

    With a bundle list every listed bundle is allocated and member ``i`` is
    taken from octant ``i`` at the bundle's storage index. Without one, each
    stored entry is placed at its inverse-mapped bundle index.
    """
    if len(storages) != gridmap.bin_count:
        raise ValueError(f"Expected {gridmap.bin_count} octant storages, got {len(storages)}")

    if bundles is not None:
        for raw in bundles:
            index = tuple(int(v) for v in raw)
            if not gridmap.valid(index):
                logger.warning("Skipping bundle %s outside map extent %s", index, gridmap.size)
                continue
            bundle = gridmap.get_allocate(index)
            for octant, storage in enumerate(storages):
                d = storage.get(storage_index(index, octant))
                if d is not None:
                    bundle[octant].assign(d)
        return

    for octant, storage in enumerate(storages):
        for si, d in storage.items():
            bi = bundle_index(si, gridmap.bundle_size)
            gridmap.get_allocate(bi)[octant].assign(d)


# -----------------------
# Metadata
# -----------------------


def _metadata(gridmap: GridMap, layout: Layout) -> Dict[str, Any]:
    return {
        "dimension": gridmap.dim,
        "kind": gridmap.kind,
        "layout": layout,
        "origin": gridmap.origin.tolist(),
        "resolution": gridmap.resolution.tolist(),
        "size": list(gridmap.size) if gridmap.size is not None else None,
        "bundles": [list(index) for index in gridmap.bundle_indices()],
    }


def _map_from_metadata(meta: Dict[str, Any]) -> GridMap:
    if not isinstance(meta, dict):
        raise ValueError(f"Expected a mapping, got {type(meta).__name__}")
    try:
        origin = np.asarray(meta["origin"], dtype=np.float64)
        resolution = meta["resolution"]
        size = meta.get("size")
        kind = meta.get("kind", "static" if size is not None else "dynamic")
        dim = int(meta.get("dimension", origin.shape[0] - 1))
    except (KeyError, TypeError) as e:
        raise ValueError(f"Malformed map metadata: {e}")
    return GridMap(origin, resolution, size, kind=kind, dim=dim)


def _restore_flat_record(gridmap: GridMap, record: Dict[str, Any], source: Path) -> None:
    try:
        index = tuple(int(v) for v in record["index"])
        members = list(record["members"])
    except (KeyError, TypeError, ValueError) as e:
        raise ValueError(f"Malformed bundle record {record!r} in {source}: {e}")
    if len(index) != gridmap.dim:
        raise ValueError(f"Bundle index {index} in {source} does not match dimension {gridmap.dim}")
    if len(members) != gridmap.bin_count:
        raise ValueError(
            f"Bundle {index} in {source} has {len(members)} members, "
            f"expected {gridmap.bin_count}"
        )
    if not gridmap.valid(index):
        raise ValueError(f"Bundle {index} in {source} lies outside the map extent {gridmap.size}")

    bundle = gridmap.get_allocate(index)
    for octant, node in enumerate(members):
        bundle[octant].assign(decode_distribution(node, gridmap.dim))


# -----------------------
# Directory form
# -----------------------


def save(gridmap: GridMap, path: str | Path, layout: Optional[Layout] = None) -> Path:
    """
    Save a grid map into a directory.

    Args:
        gridmap: Map to persist
        path: Target directory (created if missing)
        layout: "flat" (default, lossless) or "octant" (static maps only)

    Returns:
        Path of the written ``map.yaml``
    """
    if layout is None:
        layout = "flat"
    if layout == "octant" and gridmap.kind != "static":
        raise ValueError("The octant layout requires a static map; use layout='flat'")
    if layout not in ("octant", "flat"):
        raise ValueError(f"Unknown layout: {layout}")

    root = Path(path)
    root.mkdir(parents=True, exist_ok=True)

    meta_path = root / META_FILE
    with meta_path.open("w", encoding="utf-8") as f:
        yaml.safe_dump(_metadata(gridmap, layout), f, default_flow_style=None, sort_keys=False)

    if layout == "octant":
        for octant, storage in enumerate(octant_storages(gridmap)):
            save_storage(storage, root / str(octant))
    else:
        records = [
            {"index": list(index), "members": [encode_distribution(d) for d in bundle]}
            for index, bundle in gridmap.bundles()
        ]
        with (root / FLAT_FILE).open("w", encoding="utf-8") as f:
            yaml.safe_dump(records, f, default_flow_style=None, sort_keys=False)

    logger.info(
        "Saved %s map with %d bundles to %s (layout=%s)",
        gridmap.kind, gridmap.bundle_count, root, layout,
    )
    return meta_path


def load(path: str | Path) -> GridMap:
    """
    Load a grid map saved with ``save``.

    Raises:
        FileNotFoundError: If the metadata file or a storage is missing
        ValueError: If the metadata or a record is malformed
    """
    root = Path(path)
    meta_path = root / META_FILE
    if not meta_path.exists():
        raise FileNotFoundError(f"Map metadata not found: {meta_path}")

    with meta_path.open("r", encoding="utf-8") as f:
        meta: Dict[str, Any] = yaml.safe_load(f) or {}

    try:
        gridmap = _map_from_metadata(meta)
    except ValueError as e:
        raise ValueError(f"Invalid map metadata in {meta_path}: {e}")

    layout = meta.get("layout", "flat")
    if layout == "octant":
        storages = []
        for octant in range(gridmap.bin_count):
            directory = root / str(octant)
            if not directory.is_dir():
                raise FileNotFoundError(f"Octant storage directory not found: {directory}")
            storages.append(load_storage(directory, gridmap.dim))
        restore_from_octants(gridmap, storages, meta.get("bundles"))
    elif layout == "flat":
        flat_path = root / FLAT_FILE
        if not flat_path.exists():
            raise FileNotFoundError(f"Bundle file not found: {flat_path}")
        with flat_path.open("r", encoding="utf-8") as f:
            records = yaml.safe_load(f) or []
        if not isinstance(records, list):
            raise ValueError(f"Expected a list of bundle records in {flat_path}")
        for record in records:
            _restore_flat_record(gridmap, record, flat_path)
    else:
        raise ValueError(f"Unknown layout {layout!r} in {meta_path}")

    logger.info(
        "Loaded %s map with %d bundles from %s (layout=%s)",
        gridmap.kind, gridmap.bundle_count, root, layout,
    )
    return gridmap


# -----------------------
# Single-node form
# -----------------------


def encode_map(gridmap: GridMap) -> Dict[str, Any]:
    """Encode a static map as ``{origin, resolution, size, storages}``."""
    return {
        "origin": gridmap.origin.tolist(),
        "resolution": gridmap.resolution.tolist(),
        "size": list(gridmap.size) if gridmap.size is not None else None,
        "storages": [encode_storage(s) for s in octant_storages(gridmap)],
    }


def decode_map(node: Dict[str, Any]) -> GridMap:
    """
    Decode the output of ``encode_map``.

    Without a bundle list, entries are placed at their inverse-mapped indices.
    """
    try:
        storages_node = node["storages"]
        gridmap = GridMap(
            np.asarray(node["origin"], dtype=np.float64),
            node["resolution"],
            node["size"],
            kind="static",
        )
    except (KeyError, TypeError) as e:
        raise ValueError(f"Malformed map node: {e}")
    storages = [decode_storage(s, gridmap.dim) for s in storages_node]
    restore_from_octants(gridmap, storages, node.get("bundles"))
    return gridmap

"""
Conversion between static and dynamic grid maps.

Bundles are copied index by index; the dynamic → static direction shifts the
origin so that the smallest populated index becomes the static index 0.
"""

from __future__ import annotations

import numpy as np

from ..utils.logging import setup_logger
from ..utils.transform import translation_transform
from .gridmap import GridMap

logger = setup_logger(__name__)


def to_dynamic(src: GridMap) -> GridMap:
    """Copy a map (usually static) into a new dynamic map with the same frame."""
    dst = GridMap(src.origin, src.resolution, kind="dynamic", dim=src.dim)
    for index, bundle in src.bundles():
        dst.set_bundle(index, bundle.copy())
    logger.debug("Converted %s map with %d bundles to dynamic", src.kind, dst.bundle_count)
    return dst


def to_static(src: GridMap) -> GridMap:
    """
    Copy a map (usually dynamic) into a new static map that spans exactly its
    populated bundles.

    Raises:
        ValueError: If the source map has no bundles (a static extent of zero
            is not representable).
    """
    if src.bundle_count == 0:
        raise ValueError("Cannot convert an empty map to a static map")

    offset = np.asarray(src.min_index, dtype=np.int64)
    size = tuple(int(s) for s in np.asarray(src.max_index) - offset + 1)
    origin = src.origin @ translation_transform(offset * src.resolution)

    dst = GridMap(origin, src.resolution, size, kind="static", dim=src.dim)
    for index, bundle in src.bundles():
        dst.set_bundle(tuple(int(v) for v in np.asarray(index) - offset), bundle.copy())
    logger.debug(
        "Converted %s map with %d bundles to static (size=%s, offset=%s)",
        src.kind, dst.bundle_count, size, tuple(offset.tolist()),
    )
    return dst

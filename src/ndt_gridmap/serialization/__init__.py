"""
Serialization Module

Persisted form of grid maps: Distribution records, octant storages and the
map directory layouts.
"""

from .distribution import (
    encode_distribution,
    decode_distribution,
    encode_storage,
    decode_storage,
    save_storage,
    load_storage,
)
from .gridmap import (
    storage_index,
    bundle_index,
    octant_storages,
    restore_from_octants,
    save,
    load,
    encode_map,
    decode_map,
)

__all__ = [
    "encode_distribution",
    "decode_distribution",
    "encode_storage",
    "decode_storage",
    "save_storage",
    "load_storage",
    "storage_index",
    "bundle_index",
    "octant_storages",
    "restore_from_octants",
    "save",
    "load",
    "encode_map",
    "decode_map",
]

"""
Persisted form of Distributions and single-resolution storages.

A Distribution is stored as ``{n, mean, covariance}`` (raw covariance), which
is enough to rebuild its sufficient statistics. A storage is a list of such
records, each with its integer ``index``, written to ``storage.yaml``.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, List, Tuple

import yaml

from ..maps.distribution import Distribution
from ..utils.logging import setup_logger

logger = setup_logger(__name__)

STORAGE_FILE = "storage.yaml"

Index = Tuple[int, ...]


def encode_distribution(distribution: Distribution) -> Dict[str, Any]:
    return {
        "n": int(distribution.n),
        "mean": distribution.mean.tolist(),
        "covariance": distribution.raw_covariance.tolist(),
    }


def decode_distribution(node: Dict[str, Any], dim: int) -> Distribution:
    try:
        n = int(node["n"])
        mean = node["mean"]
        covariance = node["covariance"]
    except (KeyError, TypeError) as e:
        raise ValueError(f"Malformed distribution record {node!r}: {e}")
    if len(mean) != dim:
        raise ValueError(f"Distribution mean has {len(mean)} components, expected {dim}")
    return Distribution.from_statistics(n, mean, covariance)


def encode_storage(storage: Dict[Index, Distribution]) -> List[Dict[str, Any]]:
    """Encode an ``index -> Distribution`` mapping as a list of records sorted by index."""
    records = []
    for index in sorted(storage):
        record = {"index": [int(i) for i in index]}
        record.update(encode_distribution(storage[index]))
        records.append(record)
    return records


def decode_storage(node: List[Dict[str, Any]], dim: int) -> Dict[Index, Distribution]:
    storage: Dict[Index, Distribution] = {}
    for record in node or []:
        try:
            index = tuple(int(i) for i in record["index"])
        except (KeyError, TypeError) as e:
            raise ValueError(f"Malformed storage record {record!r}: {e}")
        if len(index) != dim:
            raise ValueError(f"Storage index {index} does not have {dim} components")
        storage[index] = decode_distribution(record, dim)
    return storage


def save_storage(storage: Dict[Index, Distribution], directory: str | Path) -> Path:
    """Write one storage to ``directory/storage.yaml`` (directory is created)."""
    directory = Path(directory)
    directory.mkdir(parents=True, exist_ok=True)
    path = directory / STORAGE_FILE
    with path.open("w", encoding="utf-8") as f:
        yaml.safe_dump(encode_storage(storage), f, default_flow_style=None, sort_keys=False)
    logger.debug("Wrote %d distributions to %s", len(storage), path)
    return path


def load_storage(directory: str | Path, dim: int) -> Dict[Index, Distribution]:
    """Read ``directory/storage.yaml`` back into an ``index -> Distribution`` mapping."""
    path = Path(directory) / STORAGE_FILE
    if not path.exists():
        raise FileNotFoundError(f"Storage file not found: {path}")
    with path.open("r", encoding="utf-8") as f:
        node = yaml.safe_load(f)
    try:
        return decode_storage(node, dim)
    except ValueError as e:
        raise ValueError(f"Invalid storage in {path}: {e}")

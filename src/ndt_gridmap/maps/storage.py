"""
Bundle storage backends.

Both backends expose the same small interface (``get``, ``get_allocate``,
``insert``, ``valid``, ``indices``, ``items``, ``__len__``) keyed by integer
index tuples, so ``GridMap`` selects one by configuration instead of by
subclassing.
"""

from __future__ import annotations

from typing import Callable, Dict, Iterator, List, Optional, Sequence, Tuple

import numpy as np

from .bundle import CellBundle

Index = Tuple[int, ...]


class DynamicStorage:
    """Unbounded hash map from index tuple to CellBundle."""

    kind = "dynamic"

    def __init__(self, dim: int):
        self.dim = dim
        self._bundles: Dict[Index, CellBundle] = {}

    def valid(self, index: Index) -> bool:
        return len(index) == self.dim

    def get(self, index: Index) -> Optional[CellBundle]:
        return self._bundles.get(index)

    def get_allocate(self, index: Index) -> CellBundle:
        bundle = self._bundles.get(index)
        if bundle is None:
            bundle = CellBundle(self.dim)
            self._bundles[index] = bundle
        return bundle

    def insert(self, index: Index, bundle: CellBundle) -> None:
        self._bundles[index] = bundle

    def indices(self) -> List[Index]:
        return sorted(self._bundles)

    def items(self) -> Iterator[Tuple[Index, CellBundle]]:
        for index in self.indices():
            yield index, self._bundles[index]

    def traverse(self, fn: Callable[[Index, CellBundle], None]) -> None:
        for index, bundle in self.items():
            fn(index, bundle)

    def __len__(self) -> int:
        return len(self._bundles)

    def __contains__(self, index: Index) -> bool:
        return index in self._bundles


class StaticStorage:
    """
    Dense, pre-sized storage over ``[0, size_a)`` per axis.

    Slots are addressed by ``numpy.ravel_multi_index``; a slot holds None until
    the bundle is first allocated.
    """

    kind = "static"

    def __init__(self, size: Sequence[int]):
        self.size: Tuple[int, ...] = tuple(int(s) for s in size)
        if any(s <= 0 for s in self.size):
            raise ValueError(f"Static storage size must be positive per axis, got {self.size}")
        self.dim = len(self.size)
        self._slots: List[Optional[CellBundle]] = [None] * int(np.prod(self.size))
        self._count = 0

    def valid(self, index: Index) -> bool:
        if len(index) != self.dim:
            return False
        return all(0 <= i < s for i, s in zip(index, self.size))

    def _slot(self, index: Index) -> int:
        return int(np.ravel_multi_index(index, self.size))

    def get(self, index: Index) -> Optional[CellBundle]:
        if not self.valid(index):
            return None
        return self._slots[self._slot(index)]

    def get_allocate(self, index: Index) -> CellBundle:
        if not self.valid(index):
            raise IndexError(f"Index {index} outside static extent {self.size}")
        slot = self._slot(index)
        bundle = self._slots[slot]
        if bundle is None:
            bundle = CellBundle(self.dim)
            self._slots[slot] = bundle
            self._count += 1
        return bundle

    def insert(self, index: Index, bundle: CellBundle) -> None:
        if not self.valid(index):
            raise IndexError(f"Index {index} outside static extent {self.size}")
        slot = self._slot(index)
        if self._slots[slot] is None:
            self._count += 1
        self._slots[slot] = bundle

    def indices(self) -> List[Index]:
        return [
            tuple(int(v) for v in np.unravel_index(slot, self.size))
            for slot, bundle in enumerate(self._slots)
            if bundle is not None
        ]

    def items(self) -> Iterator[Tuple[Index, CellBundle]]:
        for slot, bundle in enumerate(self._slots):
            if bundle is not None:
                yield tuple(int(v) for v in np.unravel_index(slot, self.size)), bundle

    def traverse(self, fn: Callable[[Index, CellBundle], None]) -> None:
        for index, bundle in self.items():
            fn(index, bundle)

    def __len__(self) -> int:
        return self._count

    def __contains__(self, index: Index) -> bool:
        return self.get(index) is not None

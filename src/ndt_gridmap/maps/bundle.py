"""Fixed-size bundle of overlapping Distributions sharing one bundle index."""

from __future__ import annotations

from typing import Iterator, List

from .distribution import Distribution


class CellBundle:
    """
    The ``2**D`` Distributions of one coarse grid index.

    Each member stands for one of the staggered half-resolution sub-lattices.
    All members are created together and owned by the bundle.
    """

    __slots__ = ("dim", "_members")

    def __init__(self, dim: int):
        self.dim = int(dim)
        self._members: List[Distribution] = [Distribution(self.dim) for _ in range(2 ** self.dim)]

    def __len__(self) -> int:
        return len(self._members)

    def __getitem__(self, i: int) -> Distribution:
        return self._members[i]

    def __iter__(self) -> Iterator[Distribution]:
        return iter(self._members)

    def add(self, point) -> None:
        for d in self._members:
            d.add(point)

    def merge(self, distribution: Distribution) -> None:
        """Merge one aggregate into every member."""
        for d in self._members:
            d.merge(distribution)

    def copy(self) -> "CellBundle":
        b = CellBundle(self.dim)
        for mine, theirs in zip(b._members, self._members):
            mine.assign(theirs)
        return b

    @property
    def n(self) -> int:
        """Largest member count, zero for a freshly allocated bundle."""
        return max(d.n for d in self._members)

    def __repr__(self) -> str:
        return f"CellBundle(dim={self.dim}, n={[d.n for d in self._members]})"

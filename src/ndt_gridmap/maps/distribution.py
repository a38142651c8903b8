"""
Gaussian sufficient statistics for one spatial bin.

A Distribution keeps only the point count, the running sum and the running
sum of outer products. Mean, covariance, inverse covariance and the density
normalization are derived lazily and cached until the next mutation, so
merging two Distributions is exactly equivalent to replaying their points.
"""

from __future__ import annotations

from typing import Optional

import numpy as np

# Eigenvalues smaller than LAMBDA_RATIO * max eigenvalue are lifted to that value
LAMBDA_RATIO = 1e-2
# Below this largest eigenvalue the covariance is treated as degenerate
MIN_EIGENVALUE = 1e-12
# Minimum number of observations for a queryable density
MIN_SAMPLES = 3


class Distribution:
    """
    Running mean/covariance accumulator with Gaussian density evaluation.

    Attributes:
        dim: Ambient dimension D
        n: Number of accumulated points
        sum: Running sum of points (D,)
        sum_outer: Running sum of outer products (D, D)
    """

    __slots__ = ("dim", "n", "sum", "sum_outer", "_cache")

    def __init__(self, dim: int):
        self.dim = int(dim)
        self.n = 0
        self.sum = np.zeros(self.dim, dtype=np.float64)
        self.sum_outer = np.zeros((self.dim, self.dim), dtype=np.float64)
        self._cache: Optional[dict] = None

    @classmethod
    def from_points(cls, points: np.ndarray) -> "Distribution":
        points = np.atleast_2d(np.asarray(points, dtype=np.float64))
        d = cls(points.shape[1])
        d.add_points(points)
        return d

    @classmethod
    def from_statistics(cls, n: int, mean, covariance) -> "Distribution":
        """
        Rebuild a Distribution from (n, mean, covariance).

        The covariance must be the raw (unregularized) one as returned by
        ``raw_covariance``; the sufficient statistics are reconstructed from it.
        """
        mean = np.asarray(mean, dtype=np.float64).ravel()
        covariance = np.asarray(covariance, dtype=np.float64).reshape(len(mean), len(mean))
        if n < 0:
            raise ValueError(f"Distribution count must be non-negative, got {n}")
        d = cls(len(mean))
        d.n = int(n)
        d.sum = d.n * mean
        d.sum_outer = d.n * (covariance + np.outer(mean, mean))
        return d

    # ------------------------------------------------------------------
    # Mutation
    # ------------------------------------------------------------------

    def add(self, point) -> None:
        p = np.asarray(point, dtype=np.float64).ravel()
        self.n += 1
        self.sum += p
        self.sum_outer += np.outer(p, p)
        self._cache = None

    def add_points(self, points: np.ndarray) -> None:
        """Add an (N, D) block of points; same result as N calls to ``add``."""
        points = np.atleast_2d(np.asarray(points, dtype=np.float64))
        if points.size == 0:
            return
        self.n += points.shape[0]
        self.sum += points.sum(axis=0)
        self.sum_outer += points.T @ points
        self._cache = None

    def merge(self, other: "Distribution") -> "Distribution":
        """Combine sufficient statistics of ``other`` into this one (in place)."""
        if other.dim != self.dim:
            raise ValueError(f"Cannot merge {other.dim}-D into {self.dim}-D distribution")
        self.n += other.n
        self.sum += other.sum
        self.sum_outer += other.sum_outer
        self._cache = None
        return self

    def __iadd__(self, other: "Distribution") -> "Distribution":
        return self.merge(other)

    def __add__(self, other: "Distribution") -> "Distribution":
        return self.copy().merge(other)

    def copy(self) -> "Distribution":
        d = Distribution(self.dim)
        d.n = self.n
        d.sum = self.sum.copy()
        d.sum_outer = self.sum_outer.copy()
        return d

    def assign(self, other: "Distribution") -> None:
        """Overwrite this distribution's statistics with a copy of ``other``'s."""
        if other.dim != self.dim:
            raise ValueError(f"Cannot assign {other.dim}-D to {self.dim}-D distribution")
        self.n = other.n
        self.sum = other.sum.copy()
        self.sum_outer = other.sum_outer.copy()
        self._cache = None

    def reset(self) -> None:
        self.n = 0
        self.sum[:] = 0.0
        self.sum_outer[:] = 0.0
        self._cache = None

    # ------------------------------------------------------------------
    # Derived state
    # ------------------------------------------------------------------

    def _update(self) -> dict:
        if self._cache is not None:
            return self._cache

        cache = {
            "mean": np.zeros(self.dim),
            "raw_covariance": np.zeros((self.dim, self.dim)),
            "covariance": np.zeros((self.dim, self.dim)),
            "inverse_covariance": np.zeros((self.dim, self.dim)),
            "determinant": 0.0,
            "normalizer": 0.0,
            "valid": False,
        }
        if self.n > 0:
            mean = self.sum / self.n
            raw = self.sum_outer / self.n - np.outer(mean, mean)
            raw = 0.5 * (raw + raw.T)
            cache["mean"] = mean
            cache["raw_covariance"] = raw
            cache["covariance"] = raw.copy()

        if self.n >= MIN_SAMPLES:
            eigvals, eigvecs = np.linalg.eigh(cache["raw_covariance"])
            lambda_max = float(eigvals.max())
            if lambda_max > MIN_EIGENVALUE:
                eigvals = np.maximum(eigvals, LAMBDA_RATIO * lambda_max)
                covariance = (eigvecs * eigvals) @ eigvecs.T
                determinant = float(np.prod(eigvals))
                cache["covariance"] = covariance
                cache["inverse_covariance"] = (eigvecs / eigvals) @ eigvecs.T
                cache["determinant"] = determinant
                cache["normalizer"] = 1.0 / np.sqrt((2.0 * np.pi) ** self.dim * determinant)
                cache["valid"] = True

        self._cache = cache
        return cache

    @property
    def mean(self) -> np.ndarray:
        return self._update()["mean"]

    @property
    def covariance(self) -> np.ndarray:
        """Regularized covariance used for density evaluation."""
        return self._update()["covariance"]

    @property
    def raw_covariance(self) -> np.ndarray:
        """Unregularized ``sum_outer / n - mean mean^T``."""
        return self._update()["raw_covariance"]

    @property
    def inverse_covariance(self) -> np.ndarray:
        return self._update()["inverse_covariance"]

    @property
    def determinant(self) -> float:
        return self._update()["determinant"]

    @property
    def valid(self) -> bool:
        """True when the density is defined (enough samples, non-degenerate covariance)."""
        return self._update()["valid"]

    # ------------------------------------------------------------------
    # Density
    # ------------------------------------------------------------------

    def sample_non_normalized(self, point):
        """
        Evaluate ``exp(-0.5 q^T S^-1 q)`` with ``q = point - mean``.

        Accepts a single point (returns float) or an (M, D) array (returns (M,)).
        Returns zero when the density is not defined.
        """
        p = np.asarray(point, dtype=np.float64)
        single = p.ndim == 1
        cache = self._update()
        if not cache["valid"]:
            return 0.0 if single else np.zeros(p.shape[0])
        q = np.atleast_2d(p) - cache["mean"]
        exponent = np.einsum("ni,ij,nj->n", q, cache["inverse_covariance"], q)
        values = np.exp(-0.5 * exponent)
        return float(values[0]) if single else values

    def sample(self, point):
        """Normalized multivariate Gaussian density; zero when undefined."""
        cache = self._update()
        return cache["normalizer"] * self.sample_non_normalized(point)

    def __repr__(self) -> str:
        return f"Distribution(dim={self.dim}, n={self.n})"

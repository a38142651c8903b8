"""
Tests for Gaussian sufficient statistics (Distribution) and CellBundle.
"""

from pathlib import Path
import sys

import numpy as np
import pytest

# Ensure src is importable
sys.path.append(str(Path(__file__).parent.parent / "src"))

from ndt_gridmap.maps.distribution import Distribution, LAMBDA_RATIO
from ndt_gridmap.maps.bundle import CellBundle


def _cloud(n: int, seed: int, dim: int = 2) -> np.ndarray:
    rng = np.random.default_rng(seed)
    return rng.normal(size=(n, dim)) * np.array([2.0, 0.5, 1.0][:dim]) + 3.0


def _assert_same_statistics(a: Distribution, b: Distribution):
    assert a.n == b.n
    np.testing.assert_allclose(a.sum, b.sum, rtol=1e-12, atol=1e-12)
    np.testing.assert_allclose(a.sum_outer, b.sum_outer, rtol=1e-12, atol=1e-12)


def test_mean_and_covariance_match_numpy():
    pts = _cloud(200, seed=0)
    d = Distribution.from_points(pts)

    assert d.n == 200
    np.testing.assert_allclose(d.mean, pts.mean(axis=0), atol=1e-12)
    # Population covariance (divide by n)
    np.testing.assert_allclose(d.raw_covariance, np.cov(pts.T, bias=True), atol=1e-10)
    assert d.valid


def test_add_points_equals_repeated_add():
    pts = _cloud(50, seed=1, dim=3)
    one_by_one = Distribution(3)
    for p in pts:
        one_by_one.add(p)
    block = Distribution(3)
    block.add_points(pts)
    _assert_same_statistics(one_by_one, block)


def test_merge_is_commutative_and_associative():
    a = Distribution.from_points(_cloud(10, seed=2))
    b = Distribution.from_points(_cloud(15, seed=3))
    c = Distribution.from_points(_cloud(7, seed=4))

    _assert_same_statistics(a + b, b + a)
    _assert_same_statistics((a + b) + c, a + (b + c))

    # Merging equals replaying every point
    replay = Distribution(2)
    replay.add_points(np.vstack([_cloud(10, seed=2), _cloud(15, seed=3), _cloud(7, seed=4)]))
    _assert_same_statistics(a + b + c, replay)


def test_merge_does_not_touch_the_other_operand():
    a = Distribution.from_points(_cloud(10, seed=5))
    b = Distribution.from_points(_cloud(10, seed=6))
    b_sum = b.sum.copy()
    a += b
    assert a.n == 20
    assert b.n == 10
    np.testing.assert_array_equal(b.sum, b_sum)


def test_merge_rejects_dimension_mismatch():
    with pytest.raises(ValueError):
        Distribution(2).merge(Distribution(3))


def test_fewer_than_three_samples_yield_zero_density():
    d = Distribution(2)
    d.add([0.0, 0.0])
    d.add([1.0, 1.0])
    assert not d.valid
    assert d.sample([0.5, 0.5]) == 0.0
    assert d.sample_non_normalized([0.5, 0.5]) == 0.0

    d.add([1.0, 0.0])
    assert d.valid
    assert d.sample_non_normalized(d.mean) == pytest.approx(1.0)


def test_collinear_points_are_regularized():
    """Points on a line have a singular covariance; the smallest eigenvalue is lifted."""
    x = np.linspace(0.0, 1.0, 11)
    d = Distribution.from_points(np.column_stack([x, 2.0 * x]))

    assert d.valid
    eigvals = np.linalg.eigvalsh(d.covariance)
    assert eigvals.min() == pytest.approx(LAMBDA_RATIO * eigvals.max(), rel=1e-6)
    np.testing.assert_allclose(d.covariance @ d.inverse_covariance, np.eye(2), atol=1e-8)
    assert d.determinant == pytest.approx(np.prod(eigvals), rel=1e-9)
    # Raw covariance keeps the singular value
    assert np.linalg.eigvalsh(d.raw_covariance).min() == pytest.approx(0.0, abs=1e-12)


def test_identical_points_are_invalid():
    d = Distribution.from_points(np.tile([1.0, 2.0, 3.0], (5, 1)))
    assert not d.valid
    assert d.sample([1.0, 2.0, 3.0]) == 0.0


def test_sample_matches_gaussian_density():
    pts = _cloud(500, seed=7)
    d = Distribution.from_points(pts)
    x = d.mean + np.array([0.3, -0.1])
    q = x - d.mean
    expected = np.exp(-0.5 * q @ np.linalg.inv(d.covariance) @ q) / np.sqrt(
        (2 * np.pi) ** 2 * np.linalg.det(d.covariance)
    )
    assert d.sample(x) == pytest.approx(expected, rel=1e-9)


def test_sample_non_normalized_vectorised():
    d = Distribution.from_points(_cloud(100, seed=8))
    queries = _cloud(6, seed=9)
    values = d.sample_non_normalized(queries)
    assert values.shape == (6,)
    for q, v in zip(queries, values):
        assert v == pytest.approx(d.sample_non_normalized(q))


def test_from_statistics_round_trips_moments():
    d = Distribution.from_points(_cloud(40, seed=10, dim=3))
    rebuilt = Distribution.from_statistics(d.n, d.mean, d.raw_covariance)
    assert rebuilt.n == d.n
    np.testing.assert_allclose(rebuilt.mean, d.mean, atol=1e-12)
    np.testing.assert_allclose(rebuilt.raw_covariance, d.raw_covariance, atol=1e-10)


def test_cached_values_refresh_after_mutation():
    d = Distribution.from_points(_cloud(10, seed=11))
    mean_before = d.mean.copy()
    d.add([100.0, 100.0])
    assert not np.allclose(d.mean, mean_before)
    d.reset()
    assert d.n == 0
    assert not d.valid


class TestCellBundle:
    def test_bundle_has_two_to_the_d_members(self):
        assert len(CellBundle(2)) == 4
        assert len(CellBundle(3)) == 8
        assert CellBundle(3).n == 0

    def test_add_and_merge_reach_every_member(self):
        bundle = CellBundle(2)
        bundle.add([0.5, 0.5])
        bundle.merge(Distribution.from_points(_cloud(4, seed=12)))
        for member in bundle:
            assert member.n == 5
        assert bundle.n == 5

    def test_copy_is_independent(self):
        bundle = CellBundle(2)
        bundle.add([1.0, 2.0])
        clone = bundle.copy()
        clone.add([3.0, 4.0])
        assert bundle[0].n == 1
        assert clone[0].n == 2

"""
Tests for the NDT grid map: indexing, insertion and density queries.
"""

from pathlib import Path
import sys

import numpy as np
import pytest

# Ensure src is importable
sys.path.append(str(Path(__file__).parent.parent / "src"))

from ndt_gridmap.maps.distribution import Distribution
from ndt_gridmap.maps.gridmap import GridMap
from ndt_gridmap.utils.config import AppConfig, MapConfig
from ndt_gridmap.utils.transform import translation_transform


def _dyadic_cloud(n: int, seed: int, dim: int, extent: float = 4.0) -> np.ndarray:
    """Coordinates on a 1/8 lattice so that float sums are exact in any order."""
    rng = np.random.default_rng(seed)
    return rng.integers(0, int(extent * 8), size=(n, dim)) / 8.0


def _assert_maps_equal(a: GridMap, b: GridMap):
    assert a.bundle_indices() == b.bundle_indices()
    for index in a.bundle_indices():
        for da, db in zip(a.get_bundle(index), b.get_bundle(index)):
            assert da.n == db.n
            np.testing.assert_array_equal(da.sum, db.sum)
            np.testing.assert_array_equal(da.sum_outer, db.sum_outer)


def test_dimension_inference_and_validation():
    assert GridMap(resolution=[1.0, 1.0]).dim == 2
    assert GridMap(size=(2, 2, 2)).dim == 3
    assert GridMap(size=(2, 2, 2)).kind == "static"
    assert GridMap(np.eye(3)).kind == "dynamic"

    with pytest.raises(ValueError):
        GridMap()  # nothing to infer the dimension from
    with pytest.raises(ValueError):
        GridMap(np.eye(4), resolution=[1.0, 1.0])
    with pytest.raises(ValueError):
        GridMap(dim=2, resolution=0.0)
    with pytest.raises(ValueError):
        GridMap(dim=4)
    with pytest.raises(ValueError):
        GridMap(dim=2, kind="static")


def test_map_from_config():
    dynamic = GridMap.from_config(AppConfig(), dim=3)
    assert dynamic.kind == "dynamic"
    assert dynamic.dim == 3
    np.testing.assert_allclose(dynamic.resolution, [1.0, 1.0, 1.0])

    cfg = MapConfig(kind="static", resolution=[0.5, 0.25], size=[4, 8])
    static = GridMap.from_config(cfg, translation_transform([1.0, -1.0]))
    assert static.kind == "static"
    assert static.size == (4, 8)
    np.testing.assert_allclose(static.resolution, [0.5, 0.25])
    np.testing.assert_allclose(static.origin[:2, 2], [1.0, -1.0])

    # An explicit size wins over the configured one
    assert GridMap.from_config(cfg, size=(2, 3)).size == (2, 3)

    with pytest.raises(ValueError):
        GridMap.from_config(MapConfig(kind="static"), dim=2)


def test_point_goes_to_every_member_of_its_bundle():
    gridmap = GridMap(dim=2, resolution=1.0)
    gridmap.insert([0.25, 0.75])

    assert gridmap.bundle_indices() == [(0, 0)]
    bundle = gridmap.get_bundle((0, 0))
    assert len(bundle) == 4
    for member in bundle:
        assert member.n == 1
        np.testing.assert_array_equal(member.sum, [0.25, 0.75])


def test_bundle_index_uses_floor_and_origin():
    gridmap = GridMap(translation_transform([10.0, -5.0]), resolution=[2.0, 0.5])
    assert gridmap.to_bundle_index([10.0, -5.0]) == (0, 0)
    assert gridmap.to_bundle_index([13.9, -4.1]) == (1, 1)
    assert gridmap.to_bundle_index([9.9, -5.1]) == (-1, -1)
    assert gridmap.to_bundle_index([np.nan, 0.0]) is None


def test_bulk_insert_equals_single_inserts():
    pts = _dyadic_cloud(400, seed=0, dim=3)

    single = GridMap(dim=3, resolution=1.0)
    for p in pts:
        single.insert(p)

    bulk = GridMap(dim=3, resolution=1.0)
    inserted = bulk.insert_cloud(pts)

    assert inserted == len(pts)
    _assert_maps_equal(single, bulk)


def test_bulk_insert_applies_origin_transform():
    pts = _dyadic_cloud(100, seed=1, dim=2)
    shift = translation_transform([2.0, 3.0])

    shifted = GridMap(dim=2)
    shifted.insert_cloud(pts, origin_transform=shift)
    expected = GridMap(dim=2)
    expected.insert_cloud(pts + np.array([2.0, 3.0]))

    _assert_maps_equal(shifted, expected)


def test_static_map_ignores_points_out_of_range():
    gridmap = GridMap(dim=2, size=(2, 2))
    gridmap.insert([5.0, 0.5])
    gridmap.insert([-0.1, 0.5])
    assert gridmap.bundle_count == 0

    inserted = gridmap.insert_cloud(np.array([[0.5, 0.5], [1.5, 1.5], [2.5, 0.5]]))
    assert inserted == 2
    assert gridmap.bundle_indices() == [(0, 0), (1, 1)]

    assert gridmap.get_bundle((5, 0)) is None
    assert not gridmap.valid((2, 0))
    assert gridmap.sample([7.0, 7.0]) == 0.0
    with pytest.raises(IndexError):
        gridmap.get_allocate((2, 0))


def test_dynamic_map_grows_on_demand():
    gridmap = GridMap(dim=2)
    gridmap.insert_cloud(np.array([[-10.5, 3.2], [100.0, -7.0]]))
    assert gridmap.bundle_indices() == [(-11, 3), (100, -7)]
    assert gridmap.min_index == (-11, -7)
    assert gridmap.max_index == (100, 3)
    assert gridmap.bundle_size == (112, 11)
    assert gridmap.size is None


def test_sample_averages_bundle_members():
    rng = np.random.default_rng(2)
    pts = rng.uniform(0.0, 1.0, size=(50, 2))
    gridmap = GridMap(dim=2)
    gridmap.insert_cloud(pts)

    x = np.array([0.4, 0.6])
    reference = Distribution.from_points(pts)
    # All members hold the same statistics, so the average equals one member
    assert gridmap.sample(x) == pytest.approx(reference.sample(x), rel=1e-9)
    assert gridmap.sample_non_normalized(x) == pytest.approx(reference.sample_non_normalized(x), rel=1e-9)

    # Explicit bundle index bypasses the lookup
    assert gridmap.sample(x, bundle_index=(0, 0)) == pytest.approx(gridmap.sample(x))
    assert gridmap.sample(x, bundle_index=(3, 3)) == 0.0


def test_sample_is_zero_for_sparse_bundle():
    gridmap = GridMap(dim=2)
    gridmap.insert([0.1, 0.1])
    gridmap.insert([0.2, 0.3])
    assert gridmap.sample([0.15, 0.2]) == 0.0


def test_expand_distribution():
    assert not GridMap.expand_distribution(None)
    d = Distribution(2)
    d.add([0.0, 0.0])
    d.add([1.0, 0.0])
    assert not GridMap.expand_distribution(d)
    d.add([0.0, 1.0])
    assert GridMap.expand_distribution(d)


def test_traverse_visits_bundles_in_index_order():
    gridmap = GridMap(dim=2)
    gridmap.insert_cloud(np.array([[2.5, 0.5], [0.5, 0.5], [0.5, 1.5]]))
    visited = []
    gridmap.traverse(lambda index, bundle: visited.append(index))
    assert visited == [(0, 0), (0, 1), (2, 0)]
    assert (0, 1) in gridmap
    assert (1, 1) not in gridmap

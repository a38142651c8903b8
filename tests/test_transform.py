"""Tests for rigid transform helpers."""

import sys
from pathlib import Path

import numpy as np
import pytest

sys.path.append(str(Path(__file__).parent.parent / "src"))

from ndt_gridmap.utils.transform import (
    angle_from_rotation_2d,
    apply_transform,
    euler_from_rotation,
    identity,
    invert_transform,
    load_transform_matrix,
    make_transform,
    rotation_2d,
    rotation_3d,
    save_transform_matrix,
    translation_transform,
)


def test_rotation_3d_order_is_z_y_x():
    roll, pitch, yaw = 0.1, -0.2, 0.3
    rx = rotation_3d(roll, 0.0, 0.0)
    ry = rotation_3d(0.0, pitch, 0.0)
    rz = rotation_3d(0.0, 0.0, yaw)
    np.testing.assert_allclose(rotation_3d(roll, pitch, yaw), rz @ ry @ rx, atol=1e-12)
    np.testing.assert_allclose(rz[:2, :2], rotation_2d(yaw), atol=1e-12)


def test_euler_round_trip():
    angles = (0.4, -0.7, 2.5)
    recovered = euler_from_rotation(rotation_3d(*angles))
    np.testing.assert_allclose(recovered, angles, atol=1e-12)


def test_euler_at_gimbal_lock_reports_zero_roll():
    r = rotation_3d(0.0, np.pi / 2, 0.3)
    roll, pitch, yaw = euler_from_rotation(r)
    assert roll == 0.0
    assert pitch == pytest.approx(np.pi / 2)
    np.testing.assert_allclose(rotation_3d(roll, pitch, yaw), r, atol=1e-9)


def test_angle_from_rotation_2d():
    assert angle_from_rotation_2d(rotation_2d(-1.2)) == pytest.approx(-1.2)


def test_apply_and_invert():
    transform = make_transform(rotation_3d(0.2, 0.1, -0.3), [1.0, -2.0, 0.5])
    points = np.random.default_rng(0).normal(size=(10, 3))

    moved = apply_transform(points, transform)
    back = apply_transform(moved, invert_transform(transform))
    np.testing.assert_allclose(back, points, atol=1e-12)
    np.testing.assert_allclose(transform @ invert_transform(transform), identity(3), atol=1e-12)

    single = apply_transform(points[0], transform)
    np.testing.assert_allclose(single, moved[0])


def test_translation_transform():
    np.testing.assert_array_equal(
        apply_transform(np.zeros((1, 2)), translation_transform([3.0, 4.0])), [[3.0, 4.0]]
    )


def test_make_transform_rejects_mismatched_shapes():
    with pytest.raises(ValueError):
        make_transform(np.eye(3), [1.0, 2.0])


def test_transform_file_round_trip(tmp_path):
    transform = make_transform(rotation_2d(0.25), [1.5, -0.5])
    path = tmp_path / "transform.txt"
    save_transform_matrix(transform, str(path))
    np.testing.assert_allclose(load_transform_matrix(str(path)), transform, rtol=1e-15)

    np.savetxt(tmp_path / "bad.txt", np.eye(5))
    with pytest.raises(ValueError):
        load_transform_matrix(str(tmp_path / "bad.txt"))

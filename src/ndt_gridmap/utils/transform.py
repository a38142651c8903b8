"""
Rigid transform helpers.

Transforms are homogeneous ``(D+1) x (D+1)`` numpy matrices for D = 2 or 3.
3-D rotations use the ``Rz(yaw) @ Ry(pitch) @ Rx(roll)`` convention.
"""

from __future__ import annotations

from typing import Tuple

import numpy as np

from .logging import setup_logger

logger = setup_logger(__name__)


def make_transform(rotation: np.ndarray, translation: np.ndarray) -> np.ndarray:
    """Assemble a homogeneous transform from a rotation matrix and translation."""
    rotation = np.asarray(rotation, dtype=np.float64)
    translation = np.asarray(translation, dtype=np.float64).ravel()
    dim = rotation.shape[0]
    if rotation.shape != (dim, dim) or translation.shape != (dim,):
        raise ValueError(
            f"Rotation {rotation.shape} and translation {translation.shape} do not match"
        )
    transform = np.eye(dim + 1)
    transform[:dim, :dim] = rotation
    transform[:dim, dim] = translation
    return transform


def identity(dim: int) -> np.ndarray:
    return np.eye(dim + 1)


def translation_transform(translation) -> np.ndarray:
    translation = np.asarray(translation, dtype=np.float64).ravel()
    return make_transform(np.eye(len(translation)), translation)


def rotation_2d(phi: float) -> np.ndarray:
    c, s = np.cos(phi), np.sin(phi)
    return np.array([[c, -s], [s, c]])


def rotation_3d(roll: float, pitch: float, yaw: float) -> np.ndarray:
    cr, sr = np.cos(roll), np.sin(roll)
    cp, sp = np.cos(pitch), np.sin(pitch)
    cy, sy = np.cos(yaw), np.sin(yaw)
    rx = np.array([[1.0, 0.0, 0.0], [0.0, cr, -sr], [0.0, sr, cr]])
    ry = np.array([[cp, 0.0, sp], [0.0, 1.0, 0.0], [-sp, 0.0, cp]])
    rz = np.array([[cy, -sy, 0.0], [sy, cy, 0.0], [0.0, 0.0, 1.0]])
    return rz @ ry @ rx


def euler_from_rotation(rotation: np.ndarray) -> Tuple[float, float, float]:
    """
    Recover (roll, pitch, yaw) from a 3x3 rotation matrix.

    Inverse of ``rotation_3d`` away from the gimbal-lock configuration
    (|pitch| = pi/2), where roll is reported as 0.
    """
    r = np.asarray(rotation, dtype=np.float64)
    sp = -r[2, 0]
    sp = max(min(sp, 1.0), -1.0)
    pitch = float(np.arcsin(sp))
    if abs(sp) < 1.0 - 1e-12:
        roll = float(np.arctan2(r[2, 1], r[2, 2]))
        yaw = float(np.arctan2(r[1, 0], r[0, 0]))
    else:
        roll = 0.0
        yaw = float(np.arctan2(-r[0, 1], r[1, 1]))
    return roll, pitch, yaw


def angle_from_rotation_2d(rotation: np.ndarray) -> float:
    r = np.asarray(rotation, dtype=np.float64)
    return float(np.arctan2(r[1, 0], r[0, 0]))


def apply_transform(points: np.ndarray, transform: np.ndarray) -> np.ndarray:
    """
    Apply a homogeneous transform to an (N, D) array of points.

    A single point of shape (D,) is accepted as well.
    """
    points = np.asarray(points, dtype=np.float64)
    if points.size == 0:
        return points.copy()
    dim = transform.shape[0] - 1
    R = transform[:dim, :dim]
    t = transform[:dim, dim]
    return points @ R.T + t


def invert_transform(transform: np.ndarray) -> np.ndarray:
    dim = transform.shape[0] - 1
    R = transform[:dim, :dim]
    t = transform[:dim, dim]
    return make_transform(R.T, -R.T @ t)


def save_transform_matrix(transform: np.ndarray, output_file: str) -> None:
    """Save a homogeneous transform to a text file.

    Args:
        transform: (D+1)x(D+1) transformation matrix
        output_file: Path to output file
    """
    dim = transform.shape[0]
    np.savetxt(output_file, transform, fmt='%.18e', header=f'{dim}x{dim} transformation matrix')
    logger.info(f"Saved transformation matrix to {output_file}")


def load_transform_matrix(input_file: str) -> np.ndarray:
    """Load a homogeneous transform from a text file.

    Args:
        input_file: Path to input file

    Returns:
        3x3 (2-D) or 4x4 (3-D) transformation matrix
    """
    transform = np.atleast_2d(np.loadtxt(input_file))
    if transform.shape not in ((3, 3), (4, 4)):
        raise ValueError(f"Expected 3x3 or 4x4 matrix, got shape {transform.shape}")
    logger.info(f"Loaded transformation matrix from {input_file}")
    return transform

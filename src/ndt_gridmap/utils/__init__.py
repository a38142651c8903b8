"""
Utility Functions Module

Common utilities used across ndt-gridmap:
- Logging setup
- Typed YAML configuration
- Rigid transform helpers and transform file I/O
"""

from .logging import setup_logger, set_log_level
from .config import load_config, AppConfig
from .transform import (
    make_transform,
    apply_transform,
    invert_transform,
    rotation_2d,
    rotation_3d,
    euler_from_rotation,
    save_transform_matrix,
    load_transform_matrix,
)

__all__ = [
    "setup_logger",
    "set_log_level",
    "load_config",
    "AppConfig",
    "make_transform",
    "apply_transform",
    "invert_transform",
    "rotation_2d",
    "rotation_3d",
    "euler_from_rotation",
    "save_transform_matrix",
    "load_transform_matrix",
]

"""
NDT Map Module

Gaussian sufficient statistics (Distribution), overlapping cell bundles and
the static/dynamic grid map that indexes them.
"""

from .distribution import Distribution
from .bundle import CellBundle
from .gridmap import GridMap
from .conversion import to_dynamic, to_static

__all__ = [
    "Distribution",
    "CellBundle",
    "GridMap",
    "to_dynamic",
    "to_static",
]

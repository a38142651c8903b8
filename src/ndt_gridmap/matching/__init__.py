"""
Scan Matching Module

Newton-based NDT matching of a source cloud against a grid built from a
destination cloud, in 2-D (x, y, phi) and 3-D (x, y, z, roll, pitch, yaw).
"""

from .grid_matcher import (
    GridMatcher,
    GridMatcher2D,
    GridMatcher3D,
    InvalidInputError,
    MatchResult,
    MatchState,
    create_matcher,
)

__all__ = [
    "GridMatcher",
    "GridMatcher2D",
    "GridMatcher3D",
    "InvalidInputError",
    "MatchResult",
    "MatchState",
    "create_matcher",
]

"""
NDT Grid Map Package

Normal Distributions Transform (NDT) grid maps for 2-D and 3-D point clouds.
Points are accumulated into overlapping cell bundles of Gaussian statistics,
maps are stored in bounded (static) or sparse (dynamic) grids and can be
persisted to YAML. A Newton-based matcher registers a source cloud against
a map built from a destination cloud.
"""

__version__ = "0.1.0"

from .maps import *
from .matching import *
from .preprocessing import *
from .serialization import *
from .utils import *

__all__ = [
    "maps",
    "matching",
    "preprocessing",
    "serialization",
    "utils",
]

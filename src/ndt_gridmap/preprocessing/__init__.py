"""
Point Cloud Preprocessing Module

Point cloud container with validity mask and bounds, and file loading.
"""

from .loader import PointCloud, PointCloudLoader

__all__ = [
    "PointCloud",
    "PointCloudLoader",
]

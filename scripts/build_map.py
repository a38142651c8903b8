"""
Build an NDT grid map from a point cloud and save it to a directory

The map kind and resolution come from the ``map`` section of the
configuration and the on-disk layout from the ``serialization`` section.
A static map without a configured size is sized to cover the cloud, with
its origin at the cloud minimum.
"""

import sys
import argparse
import logging
from pathlib import Path

import numpy as np

# Add the src to the path to import modules
sys.path.append(str(Path(__file__).parent.parent / "src"))

from ndt_gridmap.maps import GridMap
from ndt_gridmap.preprocessing.loader import PointCloudLoader
from ndt_gridmap.serialization import save
from ndt_gridmap.utils.config import load_config, AppConfig
from ndt_gridmap.utils.logging import setup_logger, set_log_level
from ndt_gridmap.utils.transform import translation_transform


def main() -> int:
    parser = argparse.ArgumentParser(description="Build and save an NDT grid map from a point cloud")
    parser.add_argument("--input", type=str, required=True, help="Point cloud (.npy, .txt, .las, .laz)")
    parser.add_argument("--output", type=str, required=True, help="Directory to save the map into")
    parser.add_argument("--config", type=str, default=None, help="Path to YAML configuration file")
    parser.add_argument("--kind", choices=("static", "dynamic"), default=None, help="Override map kind")
    parser.add_argument("--resolution", type=float, default=None, help="Override map resolution")
    parser.add_argument("--layout", choices=("flat", "octant"), default=None, help="Override on-disk layout")
    parser.add_argument("--dimension", type=int, choices=(2, 3), default=3, help="Use x, y or x, y, z")
    args = parser.parse_args()

    cfg: AppConfig = load_config(args.config)
    if args.kind is not None:
        cfg.map.kind = args.kind
    if args.resolution is not None:
        cfg.map.resolution = args.resolution
    if args.layout is not None:
        cfg.serialization.layout = args.layout

    log_level = getattr(logging, cfg.logging.level.upper(), logging.INFO)
    logger = setup_logger(__name__, level=log_level, log_file=cfg.logging.file)
    set_log_level(log_level, cfg.logging.file)

    try:
        cloud = PointCloudLoader(dimension=args.dimension).load(args.input)
    except (FileNotFoundError, ValueError) as e:
        logger.error(f"Could not load point cloud: {e}")
        return 1
    points = cloud.valid_points
    if len(points) == 0:
        logger.error(f"No finite points in {args.input}")
        return 1

    origin = None
    size = None
    try:
        if cfg.map.kind == "static":
            origin = translation_transform(cloud.min)
            if cfg.map.size is None:
                resolution = np.broadcast_to(np.asarray(cfg.map.resolution, dtype=np.float64), (cloud.dimension,))
                size = [int(np.ceil(r / res)) + 1 for r, res in zip(cloud.range, resolution)]
        gridmap = GridMap.from_config(cfg.map, origin, size=size, dim=cloud.dimension)
        if cfg.serialization.layout == "octant" and gridmap.kind != "static":
            raise ValueError("The octant layout requires a static map")
    except ValueError as e:
        logger.error(f"Invalid map configuration: {e}")
        return 2

    gridmap.insert_cloud(points)
    logger.info(f"Inserted {len(points)} points into {gridmap.bundle_count} bundles")

    save(gridmap, args.output, layout=cfg.serialization.layout)
    print(f"Bundles: {gridmap.bundle_count}")
    print(f"Saved:   {args.output} ({cfg.serialization.layout})")
    return 0


if __name__ == "__main__":
    sys.exit(main())

"""
Register a source point cloud against a destination point cloud with NDT

Builds a static NDT grid from the destination cloud, runs the Newton grid
matcher and prints the resulting score, state and transform.
"""

import sys
import argparse
import logging
from pathlib import Path

import numpy as np

# Add the src to the path to import modules
sys.path.append(str(Path(__file__).parent.parent / "src"))

from ndt_gridmap.preprocessing.loader import PointCloudLoader
from ndt_gridmap.matching import InvalidInputError, create_matcher
from ndt_gridmap.utils.config import load_config, AppConfig
from ndt_gridmap.serialization import save as save_map
from ndt_gridmap.utils.logging import setup_logger, set_log_level
from ndt_gridmap.utils.transform import load_transform_matrix, save_transform_matrix


def main() -> int:
    """
    Main function to run NDT matching from the command line.
    """
    parser = argparse.ArgumentParser(description="NDT grid matching of two point clouds")
    parser.add_argument("--destination", type=str, required=True, help="Reference point cloud (.npy, .txt, .las, .laz)")
    parser.add_argument("--source", type=str, required=True, help="Point cloud to align onto the destination")
    parser.add_argument("--prior", type=str, default=None, help="Text file with an initial 3x3 or 4x4 transform")
    parser.add_argument(
        "--config",
        type=str,
        default=None,
        help="Path to YAML configuration file (defaults to config/default.yaml)",
    )
    parser.add_argument("--resolution", type=float, default=None, help="Override matcher grid resolution")
    parser.add_argument("--max-iterations", type=int, default=None, help="Override matcher iteration cap")
    parser.add_argument(
        "--dimension",
        type=int,
        choices=(2, 3),
        default=2,
        help="Match in 2-D (x, y, phi) or 3-D (x, y, z, roll, pitch, yaw)",
    )
    parser.add_argument("--output", type=str, default=None, help="Write the resulting transform to this file")
    parser.add_argument(
        "--save-map",
        type=str,
        default=None,
        help="Save the destination NDT map to this directory (layout from the serialization config)",
    )
    args = parser.parse_args()

    # Load configuration
    cfg: AppConfig = load_config(args.config)
    if args.resolution is not None:
        cfg.matcher.resolution = args.resolution
    if args.max_iterations is not None:
        cfg.matcher.max_iterations = args.max_iterations

    # Setup logging from config
    log_level = getattr(logging, cfg.logging.level.upper(), logging.INFO)
    logger = setup_logger(__name__, level=log_level, log_file=cfg.logging.file)
    set_log_level(log_level, cfg.logging.file)

    logger.info("NDT Grid Matching")
    logger.info("=================")

    loader = PointCloudLoader(dimension=args.dimension)
    try:
        destination = loader.load(args.destination)
        source = loader.load(args.source)
    except (FileNotFoundError, ValueError) as e:
        logger.error(f"Could not load point clouds: {e}")
        return 1

    prior = None
    if args.prior:
        prior = load_transform_matrix(args.prior)
        expected = (args.dimension + 1, args.dimension + 1)
        if prior.shape != expected:
            logger.error(f"Prior transform has shape {prior.shape}, expected {expected}")
            return 1

    matcher = create_matcher(
        args.dimension,
        resolution=cfg.matcher.resolution,
        max_iterations=cfg.matcher.max_iterations,
        convergence_translation_epsilon=cfg.matcher.convergence_translation_epsilon,
        convergence_rotation_epsilon_deg=cfg.matcher.convergence_rotation_epsilon_deg,
        min_sample=cfg.matcher.min_sample,
        condition_limit=cfg.matcher.condition_limit,
    )

    try:
        result = matcher.match(destination, source, prior_transform=prior)
    except InvalidInputError as e:
        logger.error(f"Invalid input: {e}")
        return 2

    np.set_printoptions(precision=6, suppress=True)
    print(f"State:      {result.state.value}")
    print(f"Iterations: {result.iterations}")
    print(f"Score:      {result.score:.6f}")
    if result.ill_conditioned_iterations:
        print(f"Ill-conditioned steps: {result.ill_conditioned_iterations}")
    print("Transform:")
    print(result.transform)

    if args.output:
        save_transform_matrix(result.transform, args.output)
        logger.info(f"Transform saved to {args.output}")

    if args.save_map:
        save_map(matcher.map, args.save_map, layout=cfg.serialization.layout)
        logger.info(f"Destination map saved to {args.save_map}")

    return 0


if __name__ == "__main__":
    sys.exit(main())

#!/usr/bin/env python3
"""
Example: Build the per-pixel covariate table for surface-temperature modelling.

Reads the coastline, exposure layers, boundary and DEM listed in a JSON
config, aligns everything to the working grid, and writes one CSV row per
valid cell with columns:

    X, Y, CoastDistance, TourismExposure, BuildingExposure, RoadExposure, Elevation

Usage:
    # Show execution plan (dry run)
    python examples/build_covariates.py --config config/covariates.json --explain

    # Build the table
    python examples/build_covariates.py --config config/covariates.json

    # Override output and run exposure bands in 3 processes
    python examples/build_covariates.py --output data/output/run2.csv --workers 3

    # Clear cached bands and rebuild
    python examples/build_covariates.py --clear

    # Smaller road kernel for a quick look
    python examples/build_covariates.py --radius roads=25
"""

import sys
import argparse
import logging
from pathlib import Path

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from src.config import DEFAULT_CONFIG, DEFAULT_LOG_LEVEL, DEFAULT_OUTPUT
from src.covariates.config import load_config
from src.covariates.errors import CovariateError
from src.covariates.pipeline import CovariatePipeline

logger = logging.getLogger(__name__)


def parse_args(argv=None):
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description="Build aligned per-pixel covariates for surface-temperature modelling"
    )

    parser.add_argument(
        "--config",
        "-c",
        type=Path,
        default=DEFAULT_CONFIG,
        help=f"Pipeline config JSON (default: {DEFAULT_CONFIG})",
    )
    parser.add_argument(
        "--output", "-o", type=Path, default=None, help=f"Output CSV (default: config or {DEFAULT_OUTPUT})"
    )
    parser.add_argument(
        "--explain", action="store_true", help="Show execution plan without running"
    )

    # Cache options
    parser.add_argument("--no-cache", action="store_false", dest="cache", help="Disable caching")
    parser.add_argument("--clear", action="store_true", help="Clear cache and rebuild from scratch")
    parser.add_argument(
        "--force",
        "-f",
        action="store_true",
        help="Force rebuild even if cache exists (keeps other cached data)",
    )

    # Pipeline parameters
    parser.add_argument(
        "--workers", type=int, default=None, help="Processes for exposure bands (default: config)"
    )
    parser.add_argument(
        "--radius",
        action="append",
        default=[],
        metavar="LAYER=CELLS",
        help="Override a layer's kernel radius, e.g. roads=50 (repeatable)",
    )
    parser.add_argument(
        "--log-level", default=DEFAULT_LOG_LEVEL, help=f"Logging level (default: {DEFAULT_LOG_LEVEL})"
    )

    return parser.parse_args(argv)


def apply_overrides(config, args):
    """Apply command-line overrides to a loaded config."""
    if args.output is not None:
        config.output = str(args.output)
    elif config.output is None:
        config.output = str(DEFAULT_OUTPUT)

    if args.workers is not None:
        if args.workers < 1:
            raise SystemExit(f"--workers must be >= 1, got {args.workers}")
        config.max_workers = args.workers

    layers = {layer.name: layer for layer in config.exposure_layers}
    for override in args.radius:
        name, _, value = override.partition("=")
        if name not in layers or not value.isdigit() or int(value) < 1:
            raise SystemExit(f"Invalid --radius '{override}'. Layers: {sorted(layers)}")
        layers[name].radius = int(value)

    return config


def main(argv=None):
    """Run the pipeline."""
    args = parse_args(argv)

    logging.basicConfig(
        level=getattr(logging, args.log_level.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s: %(message)s",
    )

    config = apply_overrides(load_config(args.config), args)
    pipeline = CovariatePipeline(config, cache_enabled=args.cache, force_rebuild=args.force)

    if args.clear:
        deleted = pipeline.clear_cache()
        logger.info(f"[Cache] Cleared {deleted} files")

    if args.explain:
        pipeline.explain("stack")
        return 0

    try:
        table = pipeline.run()
    except CovariateError as e:
        logger.error(f"Pipeline failed: {e}")
        return 1

    logger.info(f"Wrote {len(table)} rows x {len(table.columns)} columns to {config.output}")
    return 0


if __name__ == "__main__":
    sys.exit(main())

#!/usr/bin/env python
"""
Command-line interface for the Scent Coverage Engine

Usage:
    python cli.py polygon --lat -36.80 --lon 174.70 --wind-dir 90 --wind-speed 3
    python cli.py monitor --gpkg data/rover_data.gpkg --boundary data/forest.gpkg
    python cli.py simulate --rovers 2 --steps 120 --output output/coverage.geojson
"""

import os
import sys
import asyncio
import argparse
import time
from datetime import datetime

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from loguru import logger

from scent_coverage.aggregation import CoverageAggregator
from scent_coverage.analysis import GeometryUtils, Measurement, create_detection_polygon
from scent_coverage.collectors import (
    GeoPackageBoundaryReader,
    GeoPackageMeasurementSource,
    InMemoryMeasurementSource,
    RoverSimulator,
)
from scent_coverage.config import load_config_from_env, validate_config
from scent_coverage.export import (
    build_feature_collection,
    coverage_summary_text,
    export_feature_collection,
    polygon_to_text,
)


def setup_logging(verbose: bool = False, level: str = "INFO"):
    """Configure logging"""
    logger.remove()
    level = "DEBUG" if verbose else level
    logger.add(
        sys.stderr,
        format="<green>{time:HH:mm:ss}</green> | <level>{level: <8}</level> | <cyan>{message}</cyan>",
        level=level
    )


def _load_config(args):
    config = load_config_from_env(env_file=args.env_file)
    if getattr(args, "interval", None):
        config.aggregator.poll_interval_s = args.interval
    if getattr(args, "policy", None):
        config.union.multipolygon_policy = args.policy
    validate_config(config)
    return config


async def _write_outputs(aggregator: CoverageAggregator, output_path: str, include_polygons: bool):
    coverage = await aggregator.get_unified_coverage()
    intersection = await aggregator.get_boundary_intersection()
    boundary = aggregator.boundary.get_boundary_polygon() if aggregator.boundary else None

    coverages = [coverage] + list((await aggregator.get_all_source_coverages()).values())
    collection = build_feature_collection(
        polygons=aggregator.get_all_polygons() if include_polygons else (),
        coverages=coverages,
        boundary=boundary,
        intersection=intersection,
    )
    export_feature_collection(collection, output_path)
    return coverage, intersection


def cmd_polygon(args):
    """Build the detection polygon for a single wind sample"""
    config = _load_config(args)
    setup_logging(args.verbose, config.log_level)

    try:
        measurement = Measurement.create(
            source_id="cli",
            sequence=0,
            recorded_at=datetime.now(),
            latitude=args.lat,
            longitude=args.lon,
            wind_direction_deg=args.wind_dir,
            wind_speed_mps=args.wind_speed,
        )
    except ValueError as e:
        logger.error(f"Invalid measurement: {e}")
        return 1

    polygon = create_detection_polygon(measurement, config.detection)
    logger.info(
        f"Wind {measurement.wind_speed_mps:.1f} m/s from {measurement.wind_direction_deg:.0f}° "
        f"({GeometryUtils.angle_to_direction(measurement.wind_direction_deg)})"
    )
    logger.info(f"  Max distance: {polygon.max_distance_m:.0f} m")
    logger.info(f"  Area: {polygon.area_m2:.0f} m²")
    logger.info(f"  Vertices: {GeometryUtils.vertex_count(polygon.polygon)}")
    print(polygon_to_text(polygon.polygon))

    if args.output:
        export_feature_collection(build_feature_collection(polygons=[polygon]), args.output)
        logger.info(f"✓ Saved: {args.output}")
    return 0


async def _run_monitor(args, config) -> int:
    gpkg = args.gpkg or config.sources.measurements_path
    if not gpkg:
        logger.error("No GeoPackage given (use --gpkg or SCENT_MEASUREMENTS_PATH)")
        return 1

    source = GeoPackageMeasurementSource(gpkg, layer=config.sources.measurements_layer)
    boundary_path = args.boundary or config.sources.boundary_path
    boundary = (
        GeoPackageBoundaryReader(boundary_path, layer=config.sources.boundary_layer)
        if boundary_path else None
    )

    async with CoverageAggregator(source, boundary, config) as aggregator:
        updates = aggregator.subscribe()
        deadline = time.monotonic() + args.duration if args.duration else None
        logger.info(f"Monitoring {source.name} (Ctrl+C to stop)")

        while deadline is None or time.monotonic() < deadline:
            try:
                event = await asyncio.wait_for(updates.get(), timeout=config.aggregator.poll_interval_s)
            except asyncio.TimeoutError:
                continue
            logger.info(f"+{event.new_polygons} polygon(s) from {', '.join(event.source_ids)}")
            coverage = await aggregator.get_unified_coverage()
            intersection = await aggregator.get_boundary_intersection()
            print(coverage_summary_text(coverage, intersection))

        if args.output:
            await _write_outputs(aggregator, args.output, include_polygons=args.polygons)
    return 0


def cmd_monitor(args):
    """Follow a rover GeoPackage and report coverage as it grows"""
    config = _load_config(args)
    setup_logging(args.verbose, config.log_level)

    try:
        return asyncio.run(_run_monitor(args, config))
    except KeyboardInterrupt:
        logger.info("Stopped")
        return 0
    except Exception as e:
        logger.error(f"Monitor failed: {e}")
        if args.verbose:
            import traceback
            traceback.print_exc()
        return 1


async def _run_simulation(args, config) -> int:
    source = InMemoryMeasurementSource()
    boundary_path = args.boundary or config.sources.boundary_path
    boundary = (
        GeoPackageBoundaryReader(boundary_path, layer=config.sources.boundary_layer)
        if boundary_path else None
    )
    simulator = RoverSimulator(
        source,
        rovers=args.rovers,
        start=(args.lat, args.lon),
        boundary=boundary,
        seed=args.seed,
    )

    stop = asyncio.Event()
    async with CoverageAggregator(source, boundary, config) as aggregator:
        steps = await simulator.run(args.step_interval, stop, max_steps=args.steps)
        await aggregator.ingest_once()

        coverage = await aggregator.get_unified_coverage()
        intersection = await aggregator.get_boundary_intersection()
        logger.info(f"✓ Simulated {steps} tick(s), {aggregator.polygon_count} polygon(s)")
        print(coverage_summary_text(coverage, intersection))

        if args.output:
            await _write_outputs(aggregator, args.output, include_polygons=args.polygons)
    return 0


def cmd_simulate(args):
    """Run simulated rovers through the aggregator"""
    config = _load_config(args)
    setup_logging(args.verbose, config.log_level)

    try:
        return asyncio.run(_run_simulation(args, config))
    except KeyboardInterrupt:
        logger.info("Stopped")
        return 0
    except Exception as e:
        logger.error(f"Simulation failed: {e}")
        if args.verbose:
            import traceback
            traceback.print_exc()
        return 1


def main():
    parser = argparse.ArgumentParser(
        description="Scent Coverage Engine CLI",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  Single detection polygon:
    python cli.py polygon --lat -36.80 --lon 174.70 --wind-dir 90 --wind-speed 3

  Follow a rover GeoPackage for ten minutes:
    python cli.py monitor --gpkg data/rover_data.gpkg --duration 600 -o output/coverage.geojson

  Simulate two rovers:
    python cli.py simulate --rovers 2 --steps 120 -o output/simulated.geojson
        """
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Verbose output")
    parser.add_argument("--env-file", help=".env file with SCENT_* settings")

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    # Polygon command
    poly_parser = subparsers.add_parser("polygon", help="Build the detection polygon for one sample")
    poly_parser.add_argument("--lat", type=float, required=True, help="Latitude")
    poly_parser.add_argument("--lon", type=float, required=True, help="Longitude")
    poly_parser.add_argument("--wind-dir", type=float, required=True, help="Wind direction (degrees, blowing from)")
    poly_parser.add_argument("--wind-speed", type=float, required=True, help="Wind speed (m/s)")
    poly_parser.add_argument("--output", "-o", help="Output GeoJSON file")
    poly_parser.set_defaults(func=cmd_polygon)

    # Monitor command
    mon_parser = subparsers.add_parser("monitor", help="Follow a rover GeoPackage")
    mon_parser.add_argument("--gpkg", "-g", help="Rover GeoPackage file or folder")
    mon_parser.add_argument("--boundary", "-b", help="Boundary GeoPackage")
    mon_parser.add_argument("--interval", type=float, help="Poll interval (seconds)")
    mon_parser.add_argument("--duration", type=float, default=0, help="Stop after N seconds (0 = run until Ctrl+C)")
    mon_parser.add_argument("--policy", choices=["keep", "largest"], help="MultiPolygon handling for the aggregate")
    mon_parser.add_argument("--output", "-o", help="GeoJSON written on exit")
    mon_parser.add_argument("--polygons", action="store_true", help="Include individual polygons in the output")
    mon_parser.set_defaults(func=cmd_monitor)

    # Simulate command
    sim_parser = subparsers.add_parser("simulate", help="Run simulated rovers through the aggregator")
    sim_parser.add_argument("--rovers", type=int, default=1, help="Number of rovers")
    sim_parser.add_argument("--steps", type=int, default=60, help="Ticks to simulate")
    sim_parser.add_argument("--step-interval", type=float, default=0.05, help="Seconds between ticks")
    sim_parser.add_argument("--lat", type=float, default=-36.80, help="Start latitude")
    sim_parser.add_argument("--lon", type=float, default=174.70, help="Start longitude")
    sim_parser.add_argument("--seed", type=int, help="Random seed")
    sim_parser.add_argument("--boundary", "-b", help="Boundary GeoPackage")
    sim_parser.add_argument("--interval", type=float, help="Poll interval (seconds)")
    sim_parser.add_argument("--policy", choices=["keep", "largest"], help="MultiPolygon handling for the aggregate")
    sim_parser.add_argument("--output", "-o", help="Output GeoJSON file")
    sim_parser.add_argument("--polygons", action="store_true", help="Include individual polygons in the output")
    sim_parser.set_defaults(func=cmd_simulate)

    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        return 1

    try:
        return args.func(args)
    except ValueError as e:
        # Configuration errors
        setup_logging(args.verbose)
        logger.error(str(e))
        return 1


if __name__ == "__main__":
    sys.exit(main())

"""
Configuration settings for the Scent Coverage Engine
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional
import os

from dotenv import load_dotenv
from loguru import logger


@dataclass
class DetectionConfig:
    """Per-measurement detection polygon settings"""
    # Near-field circle around the detector, independent of wind (meters)
    omnidirectional_radius_m: float = 30.0

    # Number of arc segments in the wind fan (k -> k+1 sampled bearings)
    fan_polygon_points: int = 15

    # Lower bound on the cosine falloff so edge spokes never collapse to zero
    min_distance_multiplier: float = 0.4

    # Quarter-circle segments used when approximating the near-field circle
    buffer_resolution: int = 16


@dataclass
class UnionConfig:
    """Settings for combining detection polygons into an aggregate"""
    # Geometries merged per unary_union call
    batch_size: int = 50

    # What to do when the union falls apart into disjoint pieces:
    #   "keep"    - keep the full MultiPolygon
    #   "largest" - keep only the largest member
    multipolygon_policy: str = "keep"

    # Close-then-open smoothing of the aggregate outline (meters)
    smooth: bool = True
    smoothing_tolerance_m: float = 0.5

    # Simplify the aggregate once it grows past this many vertices
    max_vertices_before_simplify: int = 6000
    simplify_tolerance_m: float = 1.5


@dataclass
class AggregatorConfig:
    """Ingest loop and cache settings"""
    poll_interval_s: float = 1.0
    cache_ttl_s: float = 1.0

    # Pending measurement batches between the poll task and the apply task
    queue_maxsize: int = 64

    # Per-subscriber buffer for update notifications
    event_queue_size: int = 8


@dataclass
class SourceConfig:
    """File locations for the GeoPackage-backed collaborators"""
    measurements_path: Optional[str] = None
    measurements_layer: str = "rover_measurements"
    boundary_path: Optional[str] = None
    boundary_layer: str = "riverheadforest"


@dataclass
class CoverageConfig:
    """Top-level configuration"""
    detection: DetectionConfig = field(default_factory=DetectionConfig)
    union: UnionConfig = field(default_factory=UnionConfig)
    aggregator: AggregatorConfig = field(default_factory=AggregatorConfig)
    sources: SourceConfig = field(default_factory=SourceConfig)

    log_level: str = "INFO"

    # Default output location for GeoJSON exports
    output_dir: str = "output"


# Global config instance
config = CoverageConfig()


def get_config() -> CoverageConfig:
    """Get global configuration"""
    return config


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    try:
        return float(value)
    except ValueError:
        return default


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    try:
        return int(value)
    except ValueError:
        return default


def _env_str(name: str, default: Optional[str]) -> Optional[str]:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip() or default


def load_config_from_env(
    base: Optional[CoverageConfig] = None,
    env_file: Optional[str] = None
) -> CoverageConfig:
    """
    Build a configuration from SCENT_* environment variables.

    A .env file (`env_file`, or one in the working directory) is loaded first
    without overriding variables that are already set. Unset or unparsable
    variables keep the value from `base` (or the defaults).
    """
    if env_file:
        if Path(env_file).exists():
            load_dotenv(env_file, override=False)
            logger.debug(f"Loaded environment from {env_file}")
        else:
            logger.warning(f".env file not found: {env_file}")
    else:
        load_dotenv(override=False)

    cfg = base or CoverageConfig()

    cfg.detection.omnidirectional_radius_m = _env_float(
        "SCENT_BUFFER_RADIUS_M", cfg.detection.omnidirectional_radius_m
    )
    cfg.detection.fan_polygon_points = _env_int(
        "SCENT_FAN_POINTS", cfg.detection.fan_polygon_points
    )
    cfg.union.batch_size = _env_int("SCENT_UNION_BATCH_SIZE", cfg.union.batch_size)
    cfg.union.multipolygon_policy = _env_str(
        "SCENT_MULTIPOLYGON_POLICY", cfg.union.multipolygon_policy
    )
    cfg.aggregator.poll_interval_s = _env_float(
        "SCENT_POLL_INTERVAL_S", cfg.aggregator.poll_interval_s
    )
    cfg.aggregator.cache_ttl_s = _env_float("SCENT_CACHE_TTL_S", cfg.aggregator.cache_ttl_s)
    cfg.sources.measurements_path = _env_str(
        "SCENT_MEASUREMENTS_PATH", cfg.sources.measurements_path
    )
    cfg.sources.boundary_path = _env_str("SCENT_BOUNDARY_PATH", cfg.sources.boundary_path)
    cfg.log_level = (_env_str("SCENT_LOG_LEVEL", cfg.log_level) or "INFO").upper()

    return cfg


def validate_config(config: CoverageConfig) -> None:
    """
    Validate that all configuration values are usable.
    Raises ValueError if any value is missing or invalid.
    """
    errors = []

    detection = config.detection
    if detection.omnidirectional_radius_m <= 0:
        errors.append(
            f"detection.omnidirectional_radius_m must be positive, got {detection.omnidirectional_radius_m}"
        )
    if detection.fan_polygon_points < 2:
        errors.append(
            f"detection.fan_polygon_points must be at least 2, got {detection.fan_polygon_points}"
        )
    if not 0 < detection.min_distance_multiplier <= 1:
        errors.append(
            f"detection.min_distance_multiplier must be in (0, 1], got {detection.min_distance_multiplier}"
        )
    if detection.buffer_resolution < 1:
        errors.append(f"detection.buffer_resolution must be >= 1, got {detection.buffer_resolution}")

    union = config.union
    if union.batch_size < 1:
        errors.append(f"union.batch_size must be >= 1, got {union.batch_size}")
    if union.multipolygon_policy not in ("keep", "largest"):
        errors.append(
            f"union.multipolygon_policy must be 'keep' or 'largest', got {union.multipolygon_policy!r}"
        )
    if union.smoothing_tolerance_m < 0:
        errors.append(f"union.smoothing_tolerance_m must be >= 0, got {union.smoothing_tolerance_m}")
    if union.max_vertices_before_simplify < 4:
        errors.append(
            f"union.max_vertices_before_simplify must be >= 4, got {union.max_vertices_before_simplify}"
        )

    aggregator = config.aggregator
    if aggregator.poll_interval_s <= 0:
        errors.append(f"aggregator.poll_interval_s must be positive, got {aggregator.poll_interval_s}")
    if aggregator.cache_ttl_s < 0:
        errors.append(f"aggregator.cache_ttl_s must be >= 0, got {aggregator.cache_ttl_s}")
    if aggregator.queue_maxsize < 1:
        errors.append(f"aggregator.queue_maxsize must be >= 1, got {aggregator.queue_maxsize}")

    if errors:
        error_msg = "Configuration validation failed:\n" + "\n".join(f"  - {e}" for e in errors)
        raise ValueError(error_msg)

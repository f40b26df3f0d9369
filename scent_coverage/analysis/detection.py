"""
Detection polygon construction

Turns one position + wind sample into the area where a scent could plausibly
be picked up: a wind-aligned fan plus a small omnidirectional circle.

Direction convention: wind direction is the bearing the wind blows FROM
(meteorological convention, clockwise from north). The fan is centred on that
bearing, so it extends upwind: scent from sources upwind is carried to the
detector.
"""

import math
from typing import List, Optional, Tuple

from loguru import logger
from shapely.geometry import Point, Polygon

from .geometry_utils import GeometryUtils
from .models import DetectionPolygon, Measurement
from .union import largest_polygon, repair_geometry, resolve_union_outcome, union_geometries
from ..config import DetectionConfig, get_config

# Wind-speed band edges (m/s) for the distance model
DISTANCE_BREAKPOINTS = (0.5, 2.0, 5.0, 8.0)

MIN_SCENT_DISTANCE_M = 60.0
MIN_FAN_HALF_ANGLE_DEG = 5.0
MAX_FAN_HALF_ANGLE_DEG = 30.0

# Side of the last-resort square (degrees)
DEGENERATE_SQUARE_DEG = 0.001


def max_scent_distance(wind_speed_mps: float) -> float:
    """
    Maximum scent detection distance (meters) for a wind speed.

    Moderate wind carries scent furthest; above 8 m/s the scent dilutes and
    the distance falls back towards a 60 m floor. Continuous everywhere.
    """
    v = max(0.0, wind_speed_mps)

    if v < 0.5:  # Very light wind
        return 60.0 + v * 80.0
    elif v < 2.0:  # Light wind
        return 100.0 + (v - 0.5) * 20.0
    elif v < 5.0:  # Moderate wind, best transport
        return 130.0 + (v - 2.0) * 15.0
    elif v < 8.0:  # Strong wind, dilution starts
        return 175.0 + (v - 5.0) * 10.0
    else:  # Very strong wind
        return max(MIN_SCENT_DISTANCE_M, 205.0 - (v - 8.0) * 5.0)


def fan_half_angle(wind_speed_mps: float) -> float:
    """
    Half-angle of the detection fan in radians.

    Calm air spreads scent widely (30 deg); strong wind gives a narrow cone
    that never gets tighter than 5 deg.
    """
    v = max(0.0, wind_speed_mps)

    if v < 1.0:
        degrees = MAX_FAN_HALF_ANGLE_DEG
    elif v < 3.0:
        degrees = 30.0 - (v - 1.0) * 7.5
    elif v < 6.0:
        degrees = 15.0 - (v - 3.0) * 2.0
    else:
        degrees = max(MIN_FAN_HALF_ANGLE_DEG, 9.0 - (v - 6.0) * 0.5)

    return math.radians(degrees)


def fan_ring_local(
    max_distance_m: float,
    half_angle_rad: float,
    center_bearing_rad: float,
    fan_points: int,
    min_distance_multiplier: float
) -> List[Tuple[float, float]]:
    """
    Ring of the fan in local meters: origin -> sampled arc -> origin.

    Spokes shrink with the cosine of their angle off the centre line but never
    below `min_distance_multiplier` of the maximum distance.
    """
    ring = [(0.0, 0.0)]
    for i in range(fan_points + 1):
        offset = -half_angle_rad + 2.0 * half_angle_rad * i / fan_points
        bearing = center_bearing_rad + offset
        distance = max_distance_m * max(min_distance_multiplier, math.cos(abs(offset)))
        ring.append(GeometryUtils.bearing_offset(distance, bearing))
    ring.append((0.0, 0.0))
    return ring


def _degenerate_square(latitude: float, longitude: float) -> Polygon:
    return Polygon([
        (longitude, latitude),
        (longitude + DEGENERATE_SQUARE_DEG, latitude),
        (longitude + DEGENERATE_SQUARE_DEG, latitude + DEGENERATE_SQUARE_DEG),
        (longitude, latitude + DEGENERATE_SQUARE_DEG),
    ])


def _near_field_polygon(latitude: float, longitude: float, cfg: DetectionConfig) -> Polygon:
    circle = Point(0.0, 0.0).buffer(cfg.omnidirectional_radius_m, quad_segs=cfg.buffer_resolution)
    return GeometryUtils.local_to_degrees(circle, longitude, latitude)


def _fallback_polygon(latitude: float, longitude: float, cfg: DetectionConfig) -> Polygon:
    try:
        circle = _near_field_polygon(latitude, longitude, cfg)
        if isinstance(circle, Polygon) and not circle.is_empty:
            return circle
    except Exception as e:
        logger.warning(f"Near-field fallback failed at ({latitude}, {longitude}): {e}")
    return _degenerate_square(latitude, longitude)


def build_detection_polygon(
    latitude: float,
    longitude: float,
    wind_direction_deg: float,
    wind_speed_mps: float,
    config: Optional[DetectionConfig] = None
) -> Polygon:
    """
    Build the detection polygon for one sample.

    Never raises: construction faults fall back to the near-field circle and
    finally to a tiny square at the position.

    Args:
        latitude: Detector latitude (degrees)
        longitude: Detector longitude (degrees)
        wind_direction_deg: Bearing the wind blows from
        wind_speed_mps: Wind speed

    Returns:
        Polygon in EPSG:4326 (x = lon, y = lat)
    """
    cfg = config or get_config().detection

    speed = wind_speed_mps if math.isfinite(wind_speed_mps) else 0.0
    direction = wind_direction_deg if math.isfinite(wind_direction_deg) else 0.0

    try:
        max_distance = max_scent_distance(speed)
        half_angle = fan_half_angle(speed)
        center = math.radians(direction % 360.0)

        fan = Polygon(fan_ring_local(
            max_distance,
            half_angle,
            center,
            cfg.fan_polygon_points,
            cfg.min_distance_multiplier
        ))
        near_field = Point(0.0, 0.0).buffer(
            cfg.omnidirectional_radius_m, quad_segs=cfg.buffer_resolution
        )

        outcome = union_geometries([fan, near_field])
        local_polygon, used_fallback = resolve_union_outcome(
            outcome, "largest", fallback=lambda: near_field
        )
        if used_fallback:
            logger.warning(f"Fan/buffer union failed at ({latitude}, {longitude}), using buffer only")

        polygon = GeometryUtils.local_to_degrees(local_polygon, longitude, latitude)
    except Exception as e:
        logger.warning(f"Detection polygon construction failed at ({latitude}, {longitude}): {e}")
        polygon = _fallback_polygon(latitude, longitude, cfg)

    if not polygon.is_valid:
        polygon = largest_polygon(repair_geometry(polygon, "largest"))
    return polygon


def create_detection_polygon(
    measurement: Measurement,
    config: Optional[DetectionConfig] = None
) -> DetectionPolygon:
    """Build the detection polygon for a measurement, with its area and range"""
    polygon = build_detection_polygon(
        measurement.latitude,
        measurement.longitude,
        measurement.wind_direction_deg,
        measurement.wind_speed_mps,
        config
    )
    return DetectionPolygon(
        measurement=measurement,
        polygon=polygon,
        area_m2=GeometryUtils.area_m2(polygon, measurement.latitude),
        max_distance_m=max_scent_distance(measurement.wind_speed_mps),
    )

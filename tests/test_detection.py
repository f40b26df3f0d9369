"""Tests for detection polygon construction."""

import math

import numpy as np
import pytest
from shapely.geometry import Point, Polygon

from scent_coverage.analysis import (
    GeometryUtils,
    Measurement,
    UnionOutcome,
    build_detection_polygon,
    create_detection_polygon,
    fan_half_angle,
    max_scent_distance,
)
from scent_coverage.analysis import detection as detection_module
from scent_coverage.analysis.detection import DISTANCE_BREAKPOINTS

from conftest import BASE_LAT, BASE_LON, make_measurement


@pytest.mark.parametrize("breakpoint", DISTANCE_BREAKPOINTS)
def test_max_scent_distance_is_continuous(breakpoint: float) -> None:
    below = max_scent_distance(breakpoint - 1e-9)
    at = max_scent_distance(breakpoint)

    assert abs(below - at) < 1e-6


@pytest.mark.parametrize("breakpoint", [1.0, 3.0, 6.0, 14.0])
def test_fan_half_angle_is_continuous(breakpoint: float) -> None:
    assert abs(fan_half_angle(breakpoint - 1e-9) - fan_half_angle(breakpoint)) < 1e-9


def test_max_scent_distance_values() -> None:
    assert max_scent_distance(0.0) == 60.0
    assert max_scent_distance(3.0) == 145.0
    assert max_scent_distance(8.0) == 205.0
    assert max_scent_distance(50.0) == 60.0
    # Negative speed is treated as calm
    assert max_scent_distance(-2.0) == 60.0


def test_fan_half_angle_bounds() -> None:
    assert fan_half_angle(0.0) == pytest.approx(math.radians(30.0))
    assert fan_half_angle(3.0) == pytest.approx(math.radians(15.0))
    assert fan_half_angle(100.0) == pytest.approx(math.radians(5.0))

    speeds = np.linspace(0.0, 30.0, 301)
    angles = [fan_half_angle(v) for v in speeds]
    assert all(a >= b - 1e-12 for a, b in zip(angles, angles[1:]))


def test_random_samples_give_valid_simple_polygons() -> None:
    rng = np.random.default_rng(1234)

    for _ in range(200):
        speed = float(rng.uniform(0.0, 30.0))
        direction = float(rng.uniform(0.0, 360.0))
        polygon = build_detection_polygon(BASE_LAT, BASE_LON, direction, speed)

        assert isinstance(polygon, Polygon)
        assert not polygon.is_empty
        assert polygon.is_valid
        assert polygon.exterior.is_simple
        assert polygon.intersects(Point(BASE_LON, BASE_LAT))


def test_end_to_end_area_bounds() -> None:
    detection = create_detection_polygon(make_measurement(0, wind_dir=90.0, wind_speed=3.0))

    buffer_area = math.pi * 30.0 ** 2
    sector_area = max_scent_distance(3.0) ** 2 * fan_half_angle(3.0)

    assert detection.max_distance_m == 145.0
    assert detection.area_m2 > buffer_area * 0.99
    assert detection.area_m2 <= buffer_area + sector_area


def test_fan_extends_upwind() -> None:
    # Wind from the east: the fan reaches out to the east
    polygon = build_detection_polygon(BASE_LAT, BASE_LON, 90.0, 3.0)
    _, m_per_deg_lon = GeometryUtils.meters_per_degree(BASE_LAT)
    min_x, _, max_x, _ = polygon.bounds

    east_reach = (max_x - BASE_LON) * m_per_deg_lon
    west_reach = (BASE_LON - min_x) * m_per_deg_lon

    assert east_reach == pytest.approx(145.0, rel=0.01)
    assert west_reach == pytest.approx(30.0, rel=0.01)


def test_meters_to_degrees_uses_latitude_scale() -> None:
    assert GeometryUtils.meters_to_degrees(111_320.0) == pytest.approx(1.0)
    assert GeometryUtils.meters_to_degrees(0.5) == pytest.approx(0.5 / 111_320.0)


def test_non_finite_wind_falls_back_to_calm() -> None:
    polygon = build_detection_polygon(BASE_LAT, BASE_LON, float("nan"), float("inf"))

    assert polygon.is_valid
    assert not polygon.is_empty


def _near_field_area(radius_m: float = 30.0) -> float:
    return Point(0.0, 0.0).buffer(radius_m, quad_segs=16).area


def test_failed_fan_union_keeps_buffer_only(monkeypatch) -> None:
    monkeypatch.setattr(
        detection_module,
        "union_geometries",
        lambda geoms: UnionOutcome.failed("TopologyException: simulated"),
    )

    detection = create_detection_polygon(make_measurement(0, wind_dir=90.0, wind_speed=3.0))
    _, m_per_deg_lon = GeometryUtils.meters_per_degree(BASE_LAT)
    east_reach = (detection.polygon.bounds[2] - BASE_LON) * m_per_deg_lon

    assert detection.polygon.is_valid
    assert detection.area_m2 == pytest.approx(_near_field_area(), rel=1e-6)
    assert east_reach == pytest.approx(30.0, rel=1e-6)


def test_construction_fault_falls_back_to_near_field_circle(monkeypatch) -> None:
    def broken_ring(*args):
        raise ValueError("simulated construction fault")

    monkeypatch.setattr(detection_module, "fan_ring_local", broken_ring)

    polygon = build_detection_polygon(BASE_LAT, BASE_LON, 90.0, 3.0)
    area = GeometryUtils.area_m2(polygon, BASE_LAT)

    assert polygon.is_valid
    assert area == pytest.approx(_near_field_area(), rel=1e-6)


def test_construction_fault_without_circle_gives_tiny_square(monkeypatch) -> None:
    def broken(*args):
        raise ValueError("simulated construction fault")

    monkeypatch.setattr(detection_module, "fan_ring_local", broken)
    monkeypatch.setattr(detection_module, "_near_field_polygon", broken)

    polygon = build_detection_polygon(BASE_LAT, BASE_LON, 90.0, 3.0)
    side = detection_module.DEGENERATE_SQUARE_DEG

    assert polygon.is_valid
    assert polygon.bounds == pytest.approx((BASE_LON, BASE_LAT, BASE_LON + side, BASE_LAT + side))
    assert polygon.area == pytest.approx(side * side)


def test_measurement_create_normalizes_and_validates() -> None:
    measurement = make_measurement(0, wind_dir=370.0)
    assert measurement.wind_direction_deg == pytest.approx(10.0)
    assert measurement.source_name == "rover-1"

    with pytest.raises(ValueError):
        make_measurement(0, wind_speed=-1.0)
    with pytest.raises(ValueError):
        make_measurement(0, lat=float("nan"))
    with pytest.raises(ValueError):
        make_measurement(0, lat=91.0)
    with pytest.raises(ValueError):
        make_measurement(0, source_id="")


def test_naive_timestamp_is_utc() -> None:
    from datetime import datetime

    measurement = Measurement.create(
        source_id="r",
        sequence=1,
        recorded_at=datetime(2024, 1, 1, 12, 0),
        latitude=0.0,
        longitude=0.0,
        wind_direction_deg=0.0,
        wind_speed_mps=1.0,
    )

    assert measurement.recorded_at.tzinfo is not None

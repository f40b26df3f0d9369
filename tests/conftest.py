"""Shared fixtures and measurement builders."""

from datetime import datetime, timedelta, timezone
from typing import List

import pytest

from scent_coverage.analysis import GeometryUtils, Measurement
from scent_coverage.config import CoverageConfig

BASE_LAT = -36.80
BASE_LON = 174.70
T0 = datetime(2024, 5, 1, 9, 0, tzinfo=timezone.utc)


def make_measurement(
    sequence: int,
    source_id: str = "rover-1",
    lat: float = BASE_LAT,
    lon: float = BASE_LON,
    wind_dir: float = 90.0,
    wind_speed: float = 3.0,
    session_id: str = "session-1",
) -> Measurement:
    return Measurement.create(
        source_id=source_id,
        sequence=sequence,
        recorded_at=T0 + timedelta(seconds=sequence),
        latitude=lat,
        longitude=lon,
        wind_direction_deg=wind_dir,
        wind_speed_mps=wind_speed,
        session_id=session_id,
    )


def walk(
    count: int,
    source_id: str = "rover-1",
    start_sequence: int = 0,
    step_m: float = 10.0,
    lat: float = BASE_LAT,
    lon: float = BASE_LON,
    wind_speed: float = 3.0,
) -> List[Measurement]:
    """Measurements walking east `step_m` meters per sample, so polygons overlap"""
    _, m_per_deg_lon = GeometryUtils.meters_per_degree(lat)
    return [
        make_measurement(
            sequence,
            source_id=source_id,
            lat=lat,
            lon=lon + (sequence * step_m) / m_per_deg_lon,
            wind_speed=wind_speed,
        )
        for sequence in range(start_sequence, start_sequence + count)
    ]


@pytest.fixture
def config() -> CoverageConfig:
    cfg = CoverageConfig()
    cfg.aggregator.cache_ttl_s = 60.0
    cfg.aggregator.poll_interval_s = 0.05
    return cfg

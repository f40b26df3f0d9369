"""
Domain models

Data classes for measurements, detection polygons and aggregate coverage
"""

import math
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional, Tuple, Union

from shapely.geometry import MultiPolygon, Polygon

GLOBAL_SCOPE = "global"


def source_scope(source_id: str) -> str:
    """Cache scope key for a single source"""
    return f"source:{source_id}"


@dataclass(frozen=True)
class Measurement:
    """A single geolocated wind sample reported by one source (rover)"""
    source_id: str
    source_name: str
    session_id: str
    sequence: int
    recorded_at: datetime
    latitude: float
    longitude: float
    wind_direction_deg: float
    wind_speed_mps: float

    @classmethod
    def create(
        cls,
        source_id: str,
        sequence: int,
        recorded_at: datetime,
        latitude: float,
        longitude: float,
        wind_direction_deg: float,
        wind_speed_mps: float,
        source_name: str = "",
        session_id: str = "",
    ) -> "Measurement":
        """
        Validate and normalize raw values into a Measurement.

        Wind direction is folded into [0, 360). Naive timestamps are taken as UTC.

        Raises:
            ValueError: for missing ids, non-finite numbers, coordinates out of
                range or negative wind speed
        """
        if not source_id:
            raise ValueError("source_id is required")

        values = {
            "latitude": float(latitude),
            "longitude": float(longitude),
            "wind_direction_deg": float(wind_direction_deg),
            "wind_speed_mps": float(wind_speed_mps),
        }
        for name, value in values.items():
            if not math.isfinite(value):
                raise ValueError(f"{name} must be finite, got {value}")

        if not -90.0 <= values["latitude"] <= 90.0:
            raise ValueError(f"latitude out of range: {values['latitude']}")
        if not -180.0 <= values["longitude"] <= 180.0:
            raise ValueError(f"longitude out of range: {values['longitude']}")
        if values["wind_speed_mps"] < 0:
            raise ValueError(f"wind_speed_mps must be >= 0, got {values['wind_speed_mps']}")

        if recorded_at.tzinfo is None:
            recorded_at = recorded_at.replace(tzinfo=timezone.utc)

        return cls(
            source_id=str(source_id),
            source_name=source_name or str(source_id),
            session_id=str(session_id),
            sequence=int(sequence),
            recorded_at=recorded_at,
            latitude=values["latitude"],
            longitude=values["longitude"],
            wind_direction_deg=values["wind_direction_deg"] % 360.0,
            wind_speed_mps=values["wind_speed_mps"],
        )


@dataclass(frozen=True)
class DetectionPolygon:
    """Detection area derived from exactly one measurement"""
    measurement: Measurement
    polygon: Polygon  # EPSG:4326, x = lon, y = lat
    area_m2: float
    max_distance_m: float

    @property
    def source_id(self) -> str:
        return self.measurement.source_id

    @property
    def sequence(self) -> int:
        return self.measurement.sequence

    @property
    def recorded_at(self) -> datetime:
        return self.measurement.recorded_at

    @property
    def is_valid(self) -> bool:
        return (
            self.polygon is not None
            and not self.polygon.is_empty
            and self.polygon.is_valid
        )


@dataclass(frozen=True)
class AggregateCoverage:
    """Union of detection polygons sharing a scope, plus summary statistics"""
    scope: str
    geometry: Union[Polygon, MultiPolygon]
    polygon_count: int
    individual_areas_sum_m2: float
    total_area_m2: float
    vertex_count: int
    earliest: Optional[datetime]
    latest: Optional[datetime]
    source_ids: Tuple[str, ...] = ()
    source_names: Tuple[str, ...] = ()
    session_ids: Tuple[str, ...] = ()
    wind_speed_min: Optional[float] = None
    wind_speed_max: Optional[float] = None
    wind_speed_avg: Optional[float] = None
    skipped_count: int = 0
    invalid_count: int = 0
    used_fallback: bool = False
    version: int = 0
    computed_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @classmethod
    def empty(cls, scope: str = GLOBAL_SCOPE, version: int = 0) -> "AggregateCoverage":
        """The defined "no data yet" result"""
        return cls(
            scope=scope,
            geometry=Polygon(),
            polygon_count=0,
            individual_areas_sum_m2=0.0,
            total_area_m2=0.0,
            vertex_count=0,
            earliest=None,
            latest=None,
            version=version,
        )

    @property
    def is_empty(self) -> bool:
        return self.polygon_count == 0 or self.geometry.is_empty

    @property
    def is_valid(self) -> bool:
        return not self.geometry.is_empty and self.geometry.is_valid

    @property
    def coverage_efficiency(self) -> float:
        """Summed individual areas over combined area (>= 1; higher = more overlap)"""
        if self.total_area_m2 <= 0:
            return 0.0
        return self.individual_areas_sum_m2 / self.total_area_m2

    @property
    def unique_coverage_ratio(self) -> float:
        """Combined area over summed individual areas (<= 1; lower = more overlap)"""
        if self.individual_areas_sum_m2 <= 0:
            return 0.0
        return self.total_area_m2 / self.individual_areas_sum_m2

    @property
    def fragment_count(self) -> int:
        if self.geometry.is_empty:
            return 0
        if isinstance(self.geometry, MultiPolygon):
            return len(self.geometry.geoms)
        return 1

    @property
    def source_count(self) -> int:
        return len(self.source_ids)


@dataclass(frozen=True)
class BoundaryIntersection:
    """Overlap between the global coverage and the search boundary"""
    intersection_area_m2: float
    boundary_area_m2: float
    covered_area_m2: float
    coverage_version: int

    @property
    def percentage(self) -> float:
        if self.boundary_area_m2 <= 0:
            return 0.0
        return self.intersection_area_m2 / self.boundary_area_m2 * 100.0

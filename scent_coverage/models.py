"""
Pydantic models for GeoJSON export
Detection polygons, aggregate coverage and the search boundary as Features
"""

from datetime import datetime, timezone
from typing import List, Literal, Optional, Union

from pydantic import BaseModel, Field


# ============================================================
# GeoJSON Types
# ============================================================

class GeoJSONPolygon(BaseModel):
    type: Literal["Polygon"] = "Polygon"
    coordinates: List[List[List[float]]]  # [[[lon, lat], ...]]


class GeoJSONMultiPolygon(BaseModel):
    type: Literal["MultiPolygon"] = "MultiPolygon"
    coordinates: List[List[List[List[float]]]]  # [[[[lon, lat], ...]]]


GeoJSONGeometry = Union[GeoJSONPolygon, GeoJSONMultiPolygon]


# ============================================================
# Feature Properties
# ============================================================

class DetectionProperties(BaseModel):
    kind: Literal["detection"] = "detection"
    source_id: str
    source_name: str
    session_id: str
    sequence: int
    recorded_at: datetime
    latitude: float
    longitude: float
    wind_direction_deg: float
    wind_speed_mps: float
    max_distance_m: float
    area_m2: float


class CoverageProperties(BaseModel):
    kind: Literal["coverage"] = "coverage"
    scope: str
    version: int
    polygon_count: int
    total_area_m2: float
    individual_areas_sum_m2: float
    coverage_efficiency: float
    unique_coverage_ratio: float
    vertex_count: int
    fragment_count: int
    earliest: Optional[datetime] = None
    latest: Optional[datetime] = None
    source_ids: List[str] = Field(default_factory=list)
    session_ids: List[str] = Field(default_factory=list)
    wind_speed_min: Optional[float] = None
    wind_speed_max: Optional[float] = None
    wind_speed_avg: Optional[float] = None
    skipped_count: int = 0
    invalid_count: int = 0
    used_fallback: bool = False
    computed_at: datetime


class BoundaryProperties(BaseModel):
    kind: Literal["boundary"] = "boundary"
    boundary_area_m2: float
    intersection_area_m2: Optional[float] = None
    coverage_percentage: Optional[float] = None
    coverage_version: Optional[int] = None


FeatureProperties = Union[DetectionProperties, CoverageProperties, BoundaryProperties]


# ============================================================
# Features
# ============================================================

class Feature(BaseModel):
    type: Literal["Feature"] = "Feature"
    id: Optional[str] = None
    geometry: Optional[GeoJSONGeometry] = None
    properties: FeatureProperties = Field(discriminator="kind")


class FeatureCollection(BaseModel):
    type: Literal["FeatureCollection"] = "FeatureCollection"
    features: List[Feature] = Field(default_factory=list)
    generated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

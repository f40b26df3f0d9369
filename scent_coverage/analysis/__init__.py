"""
Geometry engine for the Scent Coverage Engine

- detection: one measurement -> one detection polygon
- union: many detection polygons -> aggregate coverage
- geometry_utils: equirectangular conversions and areas
"""

from .geometry_utils import GeometryUtils
from .models import (
    GLOBAL_SCOPE,
    AggregateCoverage,
    BoundaryIntersection,
    DetectionPolygon,
    Measurement,
    source_scope,
)
from .detection import (
    build_detection_polygon,
    create_detection_polygon,
    fan_half_angle,
    max_scent_distance,
)
from .union import UnionKind, UnionOutcome, resolve_union_outcome, unify_polygons

__all__ = [
    "GeometryUtils",
    "GLOBAL_SCOPE",
    "AggregateCoverage",
    "BoundaryIntersection",
    "DetectionPolygon",
    "Measurement",
    "source_scope",
    "build_detection_polygon",
    "create_detection_polygon",
    "fan_half_angle",
    "max_scent_distance",
    "UnionKind",
    "UnionOutcome",
    "resolve_union_outcome",
    "unify_polygons",
]

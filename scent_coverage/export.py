"""
GeoJSON export and text summaries for detection polygons and coverage
"""

import json
import os
from typing import Iterable, List, Optional

from loguru import logger
from shapely.geometry import MultiPolygon, Polygon
from shapely.geometry.base import BaseGeometry

from .analysis.geometry_utils import GeometryUtils
from .analysis.models import AggregateCoverage, BoundaryIntersection, DetectionPolygon
from .models import (
    BoundaryProperties,
    CoverageProperties,
    DetectionProperties,
    Feature,
    FeatureCollection,
    GeoJSONGeometry,
    GeoJSONMultiPolygon,
    GeoJSONPolygon,
)

# Vertices shown by polygon_to_text before the rest is summarized
TEXT_VERTEX_LIMIT = 10


def _ring(coords) -> List[List[float]]:
    return [[float(c[0]), float(c[1])] for c in coords]


def _polygon_rings(polygon: Polygon) -> List[List[List[float]]]:
    return [_ring(polygon.exterior.coords)] + [_ring(r.coords) for r in polygon.interiors]


def geometry_to_geojson(geom: Optional[BaseGeometry]) -> Optional[GeoJSONGeometry]:
    """Polygon / MultiPolygon to the GeoJSON model; None for empty or other types"""
    if geom is None or geom.is_empty:
        return None
    if isinstance(geom, Polygon):
        return GeoJSONPolygon(coordinates=_polygon_rings(geom))
    if isinstance(geom, MultiPolygon):
        return GeoJSONMultiPolygon(coordinates=[_polygon_rings(p) for p in geom.geoms])
    logger.debug(f"Cannot export {geom.geom_type} as polygon GeoJSON")
    return None


def detection_feature(polygon: DetectionPolygon) -> Feature:
    m = polygon.measurement
    return Feature(
        id=f"{m.source_id}:{m.sequence}",
        geometry=geometry_to_geojson(polygon.polygon),
        properties=DetectionProperties(
            source_id=m.source_id,
            source_name=m.source_name,
            session_id=m.session_id,
            sequence=m.sequence,
            recorded_at=m.recorded_at,
            latitude=m.latitude,
            longitude=m.longitude,
            wind_direction_deg=m.wind_direction_deg,
            wind_speed_mps=m.wind_speed_mps,
            max_distance_m=polygon.max_distance_m,
            area_m2=polygon.area_m2,
        ),
    )


def coverage_feature(coverage: AggregateCoverage) -> Feature:
    return Feature(
        id=f"{coverage.scope}:v{coverage.version}",
        geometry=geometry_to_geojson(coverage.geometry),
        properties=CoverageProperties(
            scope=coverage.scope,
            version=coverage.version,
            polygon_count=coverage.polygon_count,
            total_area_m2=coverage.total_area_m2,
            individual_areas_sum_m2=coverage.individual_areas_sum_m2,
            coverage_efficiency=coverage.coverage_efficiency,
            unique_coverage_ratio=coverage.unique_coverage_ratio,
            vertex_count=coverage.vertex_count,
            fragment_count=coverage.fragment_count,
            earliest=coverage.earliest,
            latest=coverage.latest,
            source_ids=list(coverage.source_ids),
            session_ids=list(coverage.session_ids),
            wind_speed_min=coverage.wind_speed_min,
            wind_speed_max=coverage.wind_speed_max,
            wind_speed_avg=coverage.wind_speed_avg,
            skipped_count=coverage.skipped_count,
            invalid_count=coverage.invalid_count,
            used_fallback=coverage.used_fallback,
            computed_at=coverage.computed_at,
        ),
    )


def boundary_feature(
    boundary: Polygon,
    intersection: Optional[BoundaryIntersection] = None
) -> Feature:
    return Feature(
        id="boundary",
        geometry=geometry_to_geojson(boundary),
        properties=BoundaryProperties(
            boundary_area_m2=GeometryUtils.area_m2(boundary, boundary.centroid.y),
            intersection_area_m2=intersection.intersection_area_m2 if intersection else None,
            coverage_percentage=intersection.percentage if intersection else None,
            coverage_version=intersection.coverage_version if intersection else None,
        ),
    )


def build_feature_collection(
    polygons: Iterable[DetectionPolygon] = (),
    coverages: Iterable[AggregateCoverage] = (),
    boundary: Optional[Polygon] = None,
    intersection: Optional[BoundaryIntersection] = None
) -> FeatureCollection:
    """Collect detection polygons, coverages and the boundary into one collection"""
    features = [detection_feature(p) for p in polygons]
    features.extend(coverage_feature(c) for c in coverages if not c.is_empty)
    if boundary is not None:
        features.append(boundary_feature(boundary, intersection))
    return FeatureCollection(features=features)


def export_feature_collection(collection: FeatureCollection, output_path: str) -> str:
    """Save a feature collection as a GeoJSON file"""
    os.makedirs(os.path.dirname(output_path) or ".", exist_ok=True)

    with open(output_path, "w", encoding="utf-8") as f:
        json.dump(collection.model_dump(mode="json", exclude_none=True), f, indent=2, ensure_ascii=False)

    logger.info(f"Saved {len(collection.features)} feature(s) to {output_path}")
    return output_path


def polygon_to_text(geom: Optional[BaseGeometry], limit: int = TEXT_VERTEX_LIMIT) -> str:
    """Short WKT-like text of the exterior ring, truncated after `limit` vertices"""
    if geom is None or geom.is_empty:
        return "POLYGON EMPTY"
    if isinstance(geom, MultiPolygon):
        parts = len(geom.geoms)
        largest = max(geom.geoms, key=lambda g: g.area)
        return f"MULTIPOLYGON[{parts} parts] largest " + polygon_to_text(largest, limit)

    coords = list(geom.exterior.coords)
    shown = " ".join(f"({x:.6f},{y:.6f})" for x, y, *_ in coords[:limit])
    text = f"POLYGON({shown}"
    if len(coords) > limit:
        text += f" ... and {len(coords) - limit} more points"
    return text + ")"


def coverage_summary_text(
    coverage: AggregateCoverage,
    intersection: Optional[BoundaryIntersection] = None
) -> str:
    """Multi-line human-readable summary of an aggregate coverage"""
    if coverage.is_empty:
        return f"COVERAGE [{coverage.scope}]: no data"

    lines = [
        f"COVERAGE [{coverage.scope}] v{coverage.version}:",
        f"  Combines: {coverage.polygon_count} individual polygons "
        f"from {coverage.source_count} source(s)",
        f"  Total Area: {coverage.total_area_m2:.0f} m² ({coverage.total_area_m2 / 10000:.2f} hectares)",
        f"  Coverage Efficiency: {coverage.coverage_efficiency:.2f}x "
        f"(unique {coverage.unique_coverage_ratio * 100:.1f}%, lower = more overlap)",
    ]
    if coverage.earliest and coverage.latest:
        minutes = (coverage.latest - coverage.earliest).total_seconds() / 60.0
        lines.append(f"  Time Range: {minutes:.1f} minutes")
    if coverage.wind_speed_avg is not None:
        lines.append(
            f"  Wind Speed: {coverage.wind_speed_avg:.1f} m/s avg "
            f"(range: {coverage.wind_speed_min:.1f}-{coverage.wind_speed_max:.1f})"
        )
    lines.extend([
        f"  Sessions: {len(coverage.session_ids)}",
        f"  Vertices: {coverage.vertex_count} in {coverage.fragment_count} fragment(s)",
        f"  Valid: {coverage.is_valid}",
    ])
    if coverage.skipped_count or coverage.invalid_count or coverage.used_fallback:
        lines.append(
            f"  Faults: {coverage.skipped_count} skipped, {coverage.invalid_count} invalid, "
            f"fallback={coverage.used_fallback}"
        )
    if intersection is not None:
        lines.append(
            f"  Boundary: {intersection.percentage:.2f}% covered "
            f"({intersection.intersection_area_m2:.0f} of {intersection.boundary_area_m2:.0f} m²)"
        )
    lines.append(f"  Geometry: {polygon_to_text(coverage.geometry)}")
    return "\n".join(lines)

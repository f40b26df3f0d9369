"""Tests for GeoJSON export and text summaries."""

import json

from shapely.geometry import MultiPolygon, box

from scent_coverage.analysis import AggregateCoverage, BoundaryIntersection, create_detection_polygon, unify_polygons
from scent_coverage.export import (
    build_feature_collection,
    coverage_summary_text,
    detection_feature,
    export_feature_collection,
    geometry_to_geojson,
    polygon_to_text,
)
from scent_coverage.models import GeoJSONMultiPolygon, GeoJSONPolygon

from conftest import walk


def test_detection_feature() -> None:
    detection = create_detection_polygon(walk(1)[0])

    feature = detection_feature(detection)

    assert feature.id == "rover-1:0"
    assert isinstance(feature.geometry, GeoJSONPolygon)
    ring = feature.geometry.coordinates[0]
    assert ring[0] == ring[-1]
    assert feature.properties.kind == "detection"
    assert feature.properties.max_distance_m == 145.0


def test_multipolygon_geometry() -> None:
    geometry = geometry_to_geojson(MultiPolygon([box(0, 0, 1, 1), box(2, 2, 3, 3)]))

    assert isinstance(geometry, GeoJSONMultiPolygon)
    assert len(geometry.coordinates) == 2
    assert geometry_to_geojson(None) is None


def test_export_feature_collection(tmp_path) -> None:
    detections = [create_detection_polygon(m) for m in walk(3)]
    coverage = unify_polygons(detections)
    boundary = box(174.69, -36.81, 174.71, -36.79)
    collection = build_feature_collection(
        polygons=detections,
        coverages=[coverage, AggregateCoverage.empty()],
        boundary=boundary,
    )
    output = tmp_path / "out" / "coverage.geojson"

    export_feature_collection(collection, str(output))

    data = json.loads(output.read_text(encoding="utf-8"))
    kinds = [f["properties"]["kind"] for f in data["features"]]
    assert data["type"] == "FeatureCollection"
    assert kinds == ["detection"] * 3 + ["coverage", "boundary"]
    assert data["features"][0]["properties"]["recorded_at"].startswith("2024-05-01T09:00:00")
    assert data["features"][3]["properties"]["polygon_count"] == 3


def test_polygon_to_text_truncates() -> None:
    detection = create_detection_polygon(walk(1)[0])
    vertices = len(detection.polygon.exterior.coords)

    text = polygon_to_text(detection.polygon)

    assert text.startswith("POLYGON((")
    assert f"... and {vertices - 10} more points" in text
    assert polygon_to_text(None) == "POLYGON EMPTY"
    assert polygon_to_text(box(0, 0, 1, 1)).count("(") == 6


def test_coverage_summary_text() -> None:
    coverage = unify_polygons([create_detection_polygon(m) for m in walk(3)])
    intersection = BoundaryIntersection(
        intersection_area_m2=100.0, boundary_area_m2=400.0, covered_area_m2=coverage.total_area_m2, coverage_version=0
    )

    text = coverage_summary_text(coverage, intersection)

    assert "Combines: 3 individual polygons" in text
    assert "Boundary: 25.00% covered" in text
    assert coverage_summary_text(AggregateCoverage.empty()) == "COVERAGE [global]: no data"

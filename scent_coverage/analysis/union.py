"""
Union of detection polygons into aggregate coverage

Implements the progressive batched union with per-item fault tolerance,
a single policy for turning union results into a usable geometry, optional
smoothing of the aggregate outline and the summary statistics.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, Iterable, List, Optional, Sequence, Tuple

from loguru import logger
from shapely.errors import GEOSException
from shapely.geometry import GeometryCollection, MultiPolygon, Polygon, box
from shapely.geometry.base import BaseGeometry
from shapely.ops import unary_union

from .geometry_utils import GeometryUtils
from .models import GLOBAL_SCOPE, AggregateCoverage, DetectionPolygon
from ..config import UnionConfig, get_config
from ..errors import NoValidPolygonsError

# Relative float slack when comparing smoothed and unsmoothed areas
SMOOTH_AREA_TOLERANCE = 1e-9


class UnionKind(Enum):
    """Shape of a union result"""
    POLYGON = "polygon"
    MULTIPOLYGON = "multipolygon"
    FAILED = "failed"


@dataclass(frozen=True)
class UnionOutcome:
    """Tagged result of a union operation"""
    kind: UnionKind
    geometry: Optional[BaseGeometry] = None
    error: Optional[str] = None

    @classmethod
    def failed(cls, error: str) -> "UnionOutcome":
        return cls(kind=UnionKind.FAILED, error=error)

    @classmethod
    def from_geometry(cls, geom: Optional[BaseGeometry]) -> "UnionOutcome":
        """Classify a geometry; polygonal parts of a collection are kept"""
        if geom is None or geom.is_empty:
            return cls.failed("union produced an empty geometry")

        if isinstance(geom, Polygon):
            return cls(kind=UnionKind.POLYGON, geometry=geom)
        if isinstance(geom, MultiPolygon):
            return cls(kind=UnionKind.MULTIPOLYGON, geometry=geom)

        if isinstance(geom, GeometryCollection):
            parts: List[Polygon] = []
            for part in geom.geoms:
                if isinstance(part, Polygon) and not part.is_empty:
                    parts.append(part)
                elif isinstance(part, MultiPolygon):
                    parts.extend(p for p in part.geoms if not p.is_empty)
            if len(parts) == 1:
                return cls(kind=UnionKind.POLYGON, geometry=parts[0])
            if parts:
                return cls(kind=UnionKind.MULTIPOLYGON, geometry=MultiPolygon(parts))

        return cls.failed(f"union produced {geom.geom_type}")

    @property
    def ok(self) -> bool:
        return self.kind is not UnionKind.FAILED


def union_geometries(geoms: Sequence[BaseGeometry]) -> UnionOutcome:
    """Union a group of geometries, never raising"""
    try:
        result = unary_union(list(geoms))
    except (GEOSException, ValueError, TypeError) as e:
        return UnionOutcome.failed(str(e))
    return UnionOutcome.from_geometry(result)


def largest_polygon(geom: BaseGeometry) -> Polygon:
    """Largest member of a MultiPolygon (or the polygon itself)"""
    if isinstance(geom, MultiPolygon):
        return max(geom.geoms, key=lambda g: g.area)
    return geom


def resolve_union_outcome(
    outcome: UnionOutcome,
    multipolygon_policy: str,
    fallback: Callable[[], BaseGeometry]
) -> Tuple[BaseGeometry, bool]:
    """
    Turn a union outcome into the geometry to use.

    Args:
        outcome: Tagged union result
        multipolygon_policy: "keep" keeps all fragments, "largest" keeps only
            the largest one
        fallback: Called only when the union failed

    Returns:
        (geometry, used_fallback)
    """
    if outcome.kind is UnionKind.POLYGON:
        return outcome.geometry, False

    if outcome.kind is UnionKind.MULTIPOLYGON:
        if multipolygon_policy == "largest":
            kept = largest_polygon(outcome.geometry)
            logger.debug(
                f"Union split into {len(outcome.geometry.geoms)} fragments, keeping the largest"
            )
            return kept, False
        return outcome.geometry, False

    logger.warning(f"Union failed ({outcome.error}), using fallback geometry")
    return fallback(), True


def repair_geometry(geom: BaseGeometry, multipolygon_policy: str = "keep") -> BaseGeometry:
    """
    Repair an invalid polygonal geometry with a zero-width buffer.

    The repaired geometry is returned even if it is still invalid; callers that
    need a guaranteed-valid result must check themselves.
    """
    if geom.is_valid:
        return geom
    try:
        repaired = geom.buffer(0)
    except (GEOSException, ValueError) as e:
        logger.warning(f"Zero-buffer repair failed: {e}")
        return geom

    outcome = UnionOutcome.from_geometry(repaired)
    if not outcome.ok:
        return geom
    if outcome.kind is UnionKind.MULTIPOLYGON and multipolygon_policy == "largest":
        return largest_polygon(outcome.geometry)
    return outcome.geometry


def progressive_union(
    geoms: Sequence[BaseGeometry],
    batch_size: int = 50
) -> Tuple[Optional[BaseGeometry], int]:
    """
    Union geometries batch by batch into a running result.

    A batch that fails as a whole is replayed one geometry at a time so a
    single bad input only costs itself.

    Returns:
        (running union or None, number of skipped geometries)
    """
    running: Optional[BaseGeometry] = None
    skipped = 0

    for start in range(0, len(geoms), batch_size):
        batch = list(geoms[start:start + batch_size])
        members = batch if running is None else [running, *batch]

        outcome = union_geometries(members)
        if outcome.ok:
            running = outcome.geometry
            continue

        logger.warning(
            f"Batch union failed for items {start}-{start + len(batch) - 1} "
            f"({outcome.error}), retrying one by one"
        )
        for offset, geom in enumerate(batch):
            if running is None:
                single = UnionOutcome.from_geometry(geom)
                if single.ok:
                    running = single.geometry
                else:
                    skipped += 1
                continue

            step = union_geometries([running, geom])
            if step.ok:
                running = step.geometry
            else:
                skipped += 1
                logger.debug(f"Skipping geometry {start + offset}: {step.error}")

    return running, skipped


def convex_hull_fallback(polygons: Sequence[DetectionPolygon]) -> BaseGeometry:
    """Convex hull of all inputs, or their padded envelope if the hull degenerates"""
    collection = GeometryCollection([p.polygon for p in polygons])
    hull = collection.convex_hull
    if isinstance(hull, Polygon) and not hull.is_empty:
        return hull

    min_x, min_y, max_x, max_y = collection.bounds
    pad = max(max_x - min_x, max_y - min_y) * 0.1 or 0.0001
    envelope = box(min_x - pad, min_y - pad, max_x + pad, max_y + pad)
    if not envelope.is_empty:
        return envelope
    return polygons[0].polygon


def smooth_geometry(
    geom: BaseGeometry,
    tolerance_deg: float,
    multipolygon_policy: str = "keep"
) -> BaseGeometry:
    """
    Buffer out then back in to take the noise out of the outline.

    The result may not cover more area than the input or change its number
    of fragments; otherwise the original is kept.
    """
    if tolerance_deg <= 0:
        return geom
    try:
        smoothed = geom.buffer(tolerance_deg, quad_segs=4).buffer(-tolerance_deg, quad_segs=4)
    except (GEOSException, ValueError) as e:
        logger.debug(f"Smoothing failed: {e}")
        return geom

    if smoothed.is_empty or not smoothed.is_valid:
        return geom
    if smoothed.area > geom.area * (1.0 + SMOOTH_AREA_TOLERANCE):
        logger.debug("Smoothing grew the outline, keeping the unsmoothed geometry")
        return geom
    if _fragment_count(smoothed) != _fragment_count(geom):
        logger.debug("Smoothing changed the fragment count, keeping the unsmoothed geometry")
        return geom
    if isinstance(smoothed, Polygon):
        return smoothed
    if isinstance(smoothed, MultiPolygon) and multipolygon_policy == "keep":
        return smoothed
    return geom


def _fragment_count(geom: BaseGeometry) -> int:
    if isinstance(geom, MultiPolygon):
        return len(geom.geoms)
    return 1


def _simplify_if_complex(geom: BaseGeometry, cfg: UnionConfig) -> BaseGeometry:
    vertices = GeometryUtils.vertex_count(geom)
    if vertices <= cfg.max_vertices_before_simplify:
        return geom

    tolerance = GeometryUtils.meters_to_degrees(cfg.simplify_tolerance_m)
    simplified = geom.simplify(tolerance, preserve_topology=True)
    if simplified.is_empty or not simplified.is_valid:
        return geom
    logger.debug(
        f"Simplified aggregate from {vertices} to {GeometryUtils.vertex_count(simplified)} vertices"
    )
    return simplified


def unify_polygons(
    polygons: Iterable[DetectionPolygon],
    config: Optional[UnionConfig] = None,
    scope: str = GLOBAL_SCOPE
) -> AggregateCoverage:
    """
    Combine detection polygons into one aggregate coverage.

    Args:
        polygons: Detection polygons of one scope
        config: Union settings (defaults to the global config)
        scope: Scope key recorded on the result

    Returns:
        AggregateCoverage with version 0; the caller assigns versions

    Raises:
        NoValidPolygonsError: if no valid polygon is given
    """
    cfg = config or get_config().union
    polygons = list(polygons)
    valid = [p for p in polygons if p.is_valid]
    invalid_count = len(polygons) - len(valid)

    if not valid:
        raise NoValidPolygonsError(
            f"No valid polygons to unify for scope '{scope}' ({len(polygons)} given)"
        )
    if invalid_count:
        logger.warning(f"Dropped {invalid_count} invalid polygon(s) before union ({scope})")

    running, skipped = progressive_union([p.polygon for p in valid], cfg.batch_size)
    outcome = UnionOutcome.from_geometry(running)
    geometry, used_fallback = resolve_union_outcome(
        outcome,
        cfg.multipolygon_policy,
        fallback=lambda: convex_hull_fallback(valid)
    )

    geometry = _simplify_if_complex(geometry, cfg)
    if cfg.smooth:
        tolerance = GeometryUtils.meters_to_degrees(cfg.smoothing_tolerance_m)
        geometry = smooth_geometry(geometry, tolerance, cfg.multipolygon_policy)
    geometry = repair_geometry(geometry, cfg.multipolygon_policy)

    wind_speeds = [p.measurement.wind_speed_mps for p in valid]
    timestamps = [p.recorded_at for p in valid]

    return AggregateCoverage(
        scope=scope,
        geometry=geometry,
        polygon_count=len(valid),
        individual_areas_sum_m2=sum(p.area_m2 for p in valid),
        total_area_m2=GeometryUtils.area_m2(geometry, geometry.centroid.y),
        vertex_count=GeometryUtils.vertex_count(geometry),
        earliest=min(timestamps),
        latest=max(timestamps),
        source_ids=tuple(dict.fromkeys(p.source_id for p in valid)),
        source_names=tuple(dict.fromkeys(p.measurement.source_name for p in valid)),
        session_ids=tuple(dict.fromkeys(p.measurement.session_id for p in valid)),
        wind_speed_min=min(wind_speeds),
        wind_speed_max=max(wind_speeds),
        wind_speed_avg=sum(wind_speeds) / len(wind_speeds),
        skipped_count=skipped,
        invalid_count=invalid_count,
        used_fallback=used_fallback,
        computed_at=datetime.now(timezone.utc),
    )

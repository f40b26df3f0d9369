"""
Coverage aggregator

Ingests measurements incrementally, keeps one detection polygon per
measurement and serves aggregate coverage per scope from a TTL cache.

Concurrency model:
    poll task  --MeasurementBatch-->  asyncio.Queue  -->  apply task
The apply task is the only writer of polygon storage and watermarks; its
commit step has no await, so readers always see a consistent store. Blocking
source reads, polygon construction and unions run in worker threads.
"""

import asyncio
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from loguru import logger
from shapely.errors import GEOSException
from shapely.geometry import Polygon

from .cache import ScopeCache
from .events import UpdateBus, polygons_updated
from ..analysis.detection import create_detection_polygon
from ..analysis.geometry_utils import GeometryUtils
from ..analysis.models import (
    GLOBAL_SCOPE,
    AggregateCoverage,
    BoundaryIntersection,
    DetectionPolygon,
    Measurement,
    source_scope,
)
from ..analysis.union import unify_polygons
from ..collectors.base import MeasurementSource
from ..collectors.boundary import BoundaryProvider
from ..config import CoverageConfig, UnionConfig, get_config
from ..errors import SourceUnavailableError

UnifyFn = Callable[[Sequence[DetectionPolygon], UnionConfig, str], AggregateCoverage]


@dataclass(frozen=True)
class MeasurementBatch:
    """New measurements of one source, handed from the poll task to the apply task"""
    source_id: str
    measurements: Tuple[Measurement, ...]


@dataclass
class IngestReport:
    """What one ingest pass did"""
    new_polygons: int = 0
    skipped_records: int = 0
    failed_sources: List[str] = field(default_factory=list)
    updated_sources: List[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failed_sources


class CoverageAggregator:
    """
    Incremental scent-coverage aggregator.

    Usage:
        async with CoverageAggregator(source, boundary) as aggregator:
            coverage = await aggregator.get_unified_coverage()
    """

    def __init__(
        self,
        source: MeasurementSource,
        boundary: Optional[BoundaryProvider] = None,
        config: Optional[CoverageConfig] = None,
        unify: UnifyFn = unify_polygons
    ):
        self.source = source
        self.boundary = boundary
        self.config = config or get_config()
        self._unify = unify

        self._by_source: Dict[str, List[DetectionPolygon]] = {}
        self._watermarks: Dict[str, int] = {}
        self._latest: Optional[DetectionPolygon] = None
        self._polygon_count = 0

        self._scopes: Dict[str, ScopeCache] = {}
        self._intersection: Optional[Tuple[int, Optional[BoundaryIntersection]]] = None

        self._bus = UpdateBus(self.config.aggregator.event_queue_size)
        self._queue: Optional[asyncio.Queue] = None
        self._shutdown: Optional[asyncio.Event] = None
        self._tasks: List[asyncio.Task] = []

    # ============================================================
    # Lifecycle
    # ============================================================

    async def __aenter__(self) -> "CoverageAggregator":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.stop()

    @property
    def is_running(self) -> bool:
        return any(not task.done() for task in self._tasks)

    async def start(self) -> None:
        """Load existing data, then start the poll and apply tasks"""
        if self.is_running:
            return
        # Loop-bound primitives are created on the running loop
        self._shutdown = asyncio.Event()
        self._queue = asyncio.Queue(maxsize=self.config.aggregator.queue_maxsize)

        report = await self.load_initial()
        logger.info(
            f"Aggregator started on {self.source.name}: {report.new_polygons} polygon(s) "
            f"from {len(report.updated_sources)} source(s)"
        )

        self._tasks = [
            asyncio.create_task(self._poll_loop(), name="coverage-poll"),
            asyncio.create_task(self._apply_loop(), name="coverage-apply"),
        ]

    async def stop(self) -> None:
        """Stop background tasks and cancel running refreshes"""
        if self._shutdown is not None:
            self._shutdown.set()
        for task in self._tasks:
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []

        for cache in list(self._scopes.values()):
            await cache.cancel()
        logger.info(f"Aggregator stopped ({self._polygon_count} polygon(s) stored)")

    # ============================================================
    # Ingest
    # ============================================================

    async def load_initial(self) -> IngestReport:
        """Read everything the source has once and store it"""
        report = IngestReport()
        result = await asyncio.to_thread(self.source.get_all_measurements)
        if result.is_failed:
            logger.warning(f"Initial load from {self.source.name} failed: {result.error}")
            report.failed_sources.append(self.source.name)
            return report

        report.skipped_records += result.skipped
        grouped: Dict[str, List[Measurement]] = defaultdict(list)
        for measurement in result.measurements:
            grouped[measurement.source_id].append(measurement)

        for source_id, measurements in grouped.items():
            batch = MeasurementBatch(source_id=source_id, measurements=tuple(measurements))
            await self._apply(batch, report)
        return report

    async def ingest_once(self) -> IngestReport:
        """Run one ingest tick inline: poll every source and commit what is new"""
        batches, report = await self._poll()
        for batch in batches:
            await self._apply(batch, report)
        return report

    async def _poll(self) -> Tuple[List[MeasurementBatch], IngestReport]:
        report = IngestReport()
        try:
            source_ids = await asyncio.to_thread(self.source.list_source_ids)
        except SourceUnavailableError as e:
            logger.warning(f"Cannot list sources of {self.source.name}: {e}")
            report.failed_sources.append(self.source.name)
            return [], report

        batches = []
        for source_id in source_ids:
            result = await asyncio.to_thread(
                self.source.get_new_measurements_since, source_id, self.watermark(source_id)
            )
            if result.is_failed:
                # Watermark and caches stay untouched; the next tick retries
                logger.warning(f"Ingest for {source_id} failed, retrying next tick: {result.error}")
                report.failed_sources.append(source_id)
                continue

            report.skipped_records += result.skipped
            if result.has_data:
                batches.append(MeasurementBatch(source_id=source_id, measurements=result.measurements))
        return batches, report

    async def _apply(self, batch: MeasurementBatch, report: Optional[IngestReport] = None) -> int:
        fresh = [m for m in batch.measurements if m.sequence > self.watermark(batch.source_id)]
        if not fresh:
            return 0

        polygons = await asyncio.to_thread(self._build_polygons, fresh)
        added = self._commit(batch.source_id, polygons)

        if report is not None and added:
            report.new_polygons += added
            report.updated_sources.append(batch.source_id)
        return added

    def _build_polygons(self, measurements: Sequence[Measurement]) -> List[DetectionPolygon]:
        detection = self.config.detection
        return [create_detection_polygon(m, detection) for m in measurements]

    def _commit(self, source_id: str, polygons: Sequence[DetectionPolygon]) -> int:
        """Store polygons and advance the watermark; no awaits, so atomic for the loop"""
        watermark = self.watermark(source_id)
        accepted = []
        for polygon in sorted(polygons, key=lambda p: p.sequence):
            if polygon.sequence > watermark:
                accepted.append(polygon)
                watermark = polygon.sequence
        if not accepted:
            return 0

        self._by_source.setdefault(source_id, []).extend(accepted)
        self._watermarks[source_id] = watermark
        self._polygon_count += len(accepted)
        self._latest = accepted[-1]

        self._scope(GLOBAL_SCOPE).mark_dirty()
        self._scope(source_scope(source_id)).mark_dirty()

        logger.debug(f"Committed {len(accepted)} polygon(s) for {source_id}, watermark -> {watermark}")
        self._bus.publish_nowait(polygons_updated([source_id], len(accepted), self._polygon_count))
        return len(accepted)

    async def _poll_loop(self) -> None:
        interval = self.config.aggregator.poll_interval_s
        while not self._shutdown.is_set():
            try:
                batches, report = await self._poll()
                for batch in batches:
                    await self._queue.put(batch)
                # Next poll must see the watermarks these batches produce
                await self._queue.join()
                if report.skipped_records:
                    logger.warning(f"Skipped {report.skipped_records} malformed record(s)")
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"Ingest tick failed: {e}")

            try:
                await asyncio.wait_for(self._shutdown.wait(), timeout=interval)
            except asyncio.TimeoutError:
                pass

    async def _apply_loop(self) -> None:
        while True:
            batch = await self._queue.get()
            try:
                added = await self._apply(batch)
                if added:
                    logger.info(f"{batch.source_id}: +{added} polygon(s), total {self._polygon_count}")
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"Failed to apply batch for {batch.source_id}: {e}")
            finally:
                self._queue.task_done()

    # ============================================================
    # Queries
    # ============================================================

    def _scope(self, scope: str) -> ScopeCache:
        cache = self._scopes.get(scope)
        if cache is None:
            cache = ScopeCache(scope, self.config.aggregator.cache_ttl_s)
            self._scopes[scope] = cache
        return cache

    async def _compute(self, scope: str, source_id: Optional[str]) -> AggregateCoverage:
        polygons = self.get_all_polygons(source_id)
        if not polygons:
            return AggregateCoverage.empty(scope)
        return await asyncio.to_thread(self._unify, polygons, self.config.union, scope)

    async def get_unified_coverage(self) -> AggregateCoverage:
        """
        Aggregate coverage over every stored polygon.

        Raises:
            CoverageUnavailableError: if the union fails and nothing was computed before
        """
        return await self._scope(GLOBAL_SCOPE).get_or_refresh(
            lambda: self._compute(GLOBAL_SCOPE, None)
        )

    async def get_source_coverage(self, source_id: str) -> AggregateCoverage:
        """Aggregate coverage of a single source"""
        scope = source_scope(source_id)
        return await self._scope(scope).get_or_refresh(lambda: self._compute(scope, source_id))

    async def get_all_source_coverages(self) -> Dict[str, AggregateCoverage]:
        """Coverage of every source with data, refreshed in parallel"""
        source_ids = self.source_ids
        coverages = await asyncio.gather(*(self.get_source_coverage(sid) for sid in source_ids))
        return dict(zip(source_ids, coverages))

    async def get_boundary_intersection(self) -> Optional[BoundaryIntersection]:
        """
        Overlap of the global coverage with the search boundary.

        None when there is no boundary or no coverage yet. Memoized per
        coverage version.
        """
        if self.boundary is None:
            return None
        coverage = await self.get_unified_coverage()
        if coverage.is_empty:
            return None
        if self._intersection is not None and self._intersection[0] == coverage.version:
            return self._intersection[1]

        boundary = await asyncio.to_thread(self.boundary.get_boundary_polygon)
        if boundary is None:
            return None

        result = await asyncio.to_thread(intersect_with_boundary, coverage, boundary)
        self._intersection = (coverage.version, result)
        return result

    # ============================================================
    # Accessors
    # ============================================================

    @property
    def latest_polygon(self) -> Optional[DetectionPolygon]:
        return self._latest

    def latest_polygon_for(self, source_id: str) -> Optional[DetectionPolygon]:
        series = self._by_source.get(source_id)
        return series[-1] if series else None

    def get_all_polygons(self, source_id: Optional[str] = None) -> List[DetectionPolygon]:
        """Stored polygons, ordered by sequence within each source"""
        if source_id is not None:
            return list(self._by_source.get(source_id, ()))
        return [p for series in self._by_source.values() for p in series]

    @property
    def polygon_count(self) -> int:
        return self._polygon_count

    def watermark(self, source_id: str) -> int:
        """Highest committed sequence of a source (-1 before any data)"""
        return self._watermarks.get(source_id, -1)

    @property
    def source_ids(self) -> List[str]:
        return list(self._by_source)

    @property
    def coverage_version(self) -> int:
        return self._scope(GLOBAL_SCOPE).version

    def subscribe(self) -> asyncio.Queue:
        """Queue receiving PolygonsUpdated events"""
        return self._bus.subscribe()

    def unsubscribe(self, queue: asyncio.Queue) -> None:
        self._bus.unsubscribe(queue)


def intersect_with_boundary(
    coverage: AggregateCoverage,
    boundary: Polygon
) -> Optional[BoundaryIntersection]:
    """Areas of the coverage/boundary overlap at the boundary's latitude"""
    geometry = coverage.geometry
    try:
        overlap = geometry.intersection(boundary)
    except GEOSException:
        try:
            overlap = geometry.buffer(0).intersection(boundary.buffer(0))
        except GEOSException as e:
            logger.warning(f"Boundary intersection failed: {e}")
            return None

    latitude = boundary.centroid.y
    return BoundaryIntersection(
        intersection_area_m2=GeometryUtils.area_m2(overlap, latitude),
        boundary_area_m2=GeometryUtils.area_m2(boundary, latitude),
        covered_area_m2=coverage.total_area_m2,
        coverage_version=coverage.version,
    )

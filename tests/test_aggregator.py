"""Tests for the incremental coverage aggregator."""

import asyncio
import threading
import time
from typing import Optional

import pytest
from shapely.geometry import box

from scent_coverage.aggregation import CoverageAggregator, PolygonsUpdated
from scent_coverage.analysis import AggregateCoverage, unify_polygons
from scent_coverage.collectors import (
    InMemoryMeasurementSource,
    NullMeasurementSource,
    ReadResult,
    StaticBoundary,
)
from scent_coverage.errors import CoverageUnavailableError

from conftest import BASE_LAT, BASE_LON, walk


class CountingUnify:
    """unify_polygons wrapper that counts calls and can be slowed down or broken"""

    def __init__(self, delay_s: float = 0.0, fail_after: Optional[int] = None):
        self.calls = 0
        self.delay_s = delay_s
        self.fail_after = fail_after
        self._lock = threading.Lock()

    def __call__(self, polygons, config, scope):
        with self._lock:
            self.calls += 1
            calls = self.calls
        if self.delay_s:
            time.sleep(self.delay_s)
        if self.fail_after is not None and calls > self.fail_after:
            raise ValueError("simulated union failure")
        return unify_polygons(polygons, config, scope)


class FlakySource(InMemoryMeasurementSource):
    """In-memory source whose incremental reads can be switched off"""

    def __init__(self, measurements=None):
        super().__init__(measurements)
        self.failing = False

    def get_new_measurements_since(self, source_id: str, sequence: int) -> ReadResult:
        if self.failing:
            return ReadResult.failed("database unreachable")
        return super().get_new_measurements_since(source_id, sequence)


def test_three_measurements_give_version_one(config) -> None:
    source = InMemoryMeasurementSource(walk(3))
    aggregator = CoverageAggregator(source, config=config)

    async def scenario():
        await aggregator.load_initial()
        return await aggregator.get_unified_coverage()

    coverage = asyncio.run(scenario())

    assert coverage.polygon_count == 3
    assert coverage.version == 1
    assert coverage.total_area_m2 > 0
    assert aggregator.polygon_count == 3
    assert aggregator.watermark("rover-1") == 2


def test_empty_source_gives_empty_coverage(config) -> None:
    aggregator = CoverageAggregator(NullMeasurementSource(), config=config)

    async def scenario():
        await aggregator.load_initial()
        return await aggregator.get_unified_coverage()

    coverage = asyncio.run(scenario())

    assert coverage.is_empty
    assert coverage.polygon_count == 0
    assert coverage.version == 0
    assert aggregator.latest_polygon is None
    assert aggregator.watermark("rover-1") == -1


def test_cached_coverage_is_reused_within_ttl(config) -> None:
    unify = CountingUnify()
    aggregator = CoverageAggregator(InMemoryMeasurementSource(walk(3)), config=config, unify=unify)

    async def scenario():
        await aggregator.load_initial()
        first = await aggregator.get_unified_coverage()
        second = await aggregator.get_unified_coverage()
        return first, second

    first, second = asyncio.run(scenario())

    assert first is second
    assert unify.calls == 1


def test_expired_ttl_recomputes_with_new_version(config) -> None:
    config.aggregator.cache_ttl_s = 0.0
    unify = CountingUnify()
    aggregator = CoverageAggregator(InMemoryMeasurementSource(walk(2)), config=config, unify=unify)

    async def scenario():
        await aggregator.load_initial()
        first = await aggregator.get_unified_coverage()
        second = await aggregator.get_unified_coverage()
        return first, second

    first, second = asyncio.run(scenario())

    assert unify.calls == 2
    assert (first.version, second.version) == (1, 2)


def test_concurrent_requests_share_one_refresh(config) -> None:
    unify = CountingUnify(delay_s=0.1)
    aggregator = CoverageAggregator(InMemoryMeasurementSource(walk(4)), config=config, unify=unify)

    async def scenario():
        await aggregator.load_initial()
        return await asyncio.gather(*(aggregator.get_unified_coverage() for _ in range(10)))

    results = asyncio.run(scenario())

    assert unify.calls == 1
    assert all(r is results[0] for r in results)


def test_ingest_marks_scope_dirty(config) -> None:
    source = InMemoryMeasurementSource(walk(2))
    aggregator = CoverageAggregator(source, config=config)

    async def scenario():
        await aggregator.load_initial()
        before = await aggregator.get_unified_coverage()
        source.extend(walk(2, start_sequence=2))
        report = await aggregator.ingest_once()
        after = await aggregator.get_unified_coverage()
        again = await aggregator.ingest_once()
        return before, report, after, again

    before, report, after, again = asyncio.run(scenario())

    assert report.new_polygons == 2
    assert report.updated_sources == ["rover-1"]
    assert (before.polygon_count, after.polygon_count) == (2, 4)
    assert after.version == before.version + 1
    assert again.new_polygons == 0
    assert aggregator.watermark("rover-1") == 3


def test_source_scopes_are_independent(config) -> None:
    source = InMemoryMeasurementSource(
        walk(2, source_id="rover-a") + walk(3, source_id="rover-b", lat=BASE_LAT + 0.01)
    )
    aggregator = CoverageAggregator(source, config=config)

    async def scenario():
        await aggregator.load_initial()
        per_source = await aggregator.get_all_source_coverages()
        unified = await aggregator.get_unified_coverage()
        return per_source, unified

    per_source, unified = asyncio.run(scenario())

    assert set(per_source) == {"rover-a", "rover-b"}
    assert per_source["rover-a"].polygon_count == 2
    assert per_source["rover-b"].polygon_count == 3
    assert per_source["rover-a"].scope == "source:rover-a"
    assert unified.polygon_count == 5
    assert [p.sequence for p in aggregator.get_all_polygons("rover-b")] == [0, 1, 2]
    assert aggregator.latest_polygon_for("rover-a").sequence == 1


def test_failed_source_keeps_watermark_and_cache(config) -> None:
    source = FlakySource(walk(2))
    aggregator = CoverageAggregator(source, config=config)

    async def scenario():
        await aggregator.load_initial()
        before = await aggregator.get_unified_coverage()

        source.extend(walk(2, start_sequence=2))
        source.failing = True
        failed = await aggregator.ingest_once()
        during = await aggregator.get_unified_coverage()
        watermark_during = aggregator.watermark("rover-1")

        source.failing = False
        recovered = await aggregator.ingest_once()
        after = await aggregator.get_unified_coverage()
        return before, failed, during, watermark_during, recovered, after

    before, failed, during, watermark_during, recovered, after = asyncio.run(scenario())

    assert failed.failed_sources == ["rover-1"]
    assert not failed.ok
    assert watermark_during == 1
    assert during is before
    assert recovered.new_polygons == 2
    assert after.polygon_count == 4


def test_failed_recompute_serves_last_good_coverage(config) -> None:
    source = InMemoryMeasurementSource(walk(2))
    aggregator = CoverageAggregator(source, config=config, unify=CountingUnify(fail_after=1))

    async def scenario():
        await aggregator.load_initial()
        good = await aggregator.get_unified_coverage()
        source.extend(walk(1, start_sequence=2))
        await aggregator.ingest_once()
        fallback = await aggregator.get_unified_coverage()
        return good, fallback

    good, fallback = asyncio.run(scenario())

    assert fallback is good
    assert fallback.polygon_count == 2


def test_failed_first_recompute_raises(config) -> None:
    aggregator = CoverageAggregator(
        InMemoryMeasurementSource(walk(2)), config=config, unify=CountingUnify(fail_after=0)
    )

    async def scenario():
        await aggregator.load_initial()
        await aggregator.get_unified_coverage()

    with pytest.raises(CoverageUnavailableError) as excinfo:
        asyncio.run(scenario())

    assert excinfo.value.scope == "global"


def test_boundary_intersection_is_memoized_per_version(config) -> None:
    boundary = StaticBoundary(box(BASE_LON - 0.01, BASE_LAT - 0.01, BASE_LON + 0.01, BASE_LAT + 0.01))
    aggregator = CoverageAggregator(InMemoryMeasurementSource(walk(3)), boundary, config=config)

    async def scenario():
        await aggregator.load_initial()
        first = await aggregator.get_boundary_intersection()
        second = await aggregator.get_boundary_intersection()
        return first, second

    first, second = asyncio.run(scenario())

    assert first is second
    assert 0.0 < first.percentage <= 100.0
    assert first.coverage_version == 1
    assert first.intersection_area_m2 <= first.covered_area_m2 * 1.001


def test_boundary_intersection_absent_without_boundary_or_data(config) -> None:
    boundary = StaticBoundary(box(0, 0, 1, 1))

    async def scenario():
        no_boundary = CoverageAggregator(InMemoryMeasurementSource(walk(1)), config=config)
        await no_boundary.load_initial()
        no_data = CoverageAggregator(NullMeasurementSource(), boundary, config=config)
        return (
            await no_boundary.get_boundary_intersection(),
            await no_data.get_boundary_intersection(),
        )

    assert asyncio.run(scenario()) == (None, None)


def test_subscribers_receive_updates(config) -> None:
    source = InMemoryMeasurementSource()
    aggregator = CoverageAggregator(source, config=config)

    async def scenario():
        updates = aggregator.subscribe()
        source.extend(walk(3))
        await aggregator.ingest_once()
        return updates.get_nowait()

    event = asyncio.run(scenario())

    assert isinstance(event, PolygonsUpdated)
    assert event.source_ids == ("rover-1",)
    assert event.new_polygons == 3
    assert event.total_polygons == 3


def test_background_loop_ingests_until_stopped(config) -> None:
    source = InMemoryMeasurementSource(walk(1))

    async def scenario():
        async with CoverageAggregator(source, config=config) as aggregator:
            assert aggregator.polygon_count == 1
            source.extend(walk(2, start_sequence=1))
            for _ in range(100):
                if aggregator.polygon_count == 3:
                    break
                await asyncio.sleep(0.02)
            coverage = await aggregator.get_unified_coverage()
        return aggregator, coverage

    aggregator, coverage = asyncio.run(scenario())

    assert coverage.polygon_count == 3
    assert not aggregator.is_running


def test_aggregator_restarts_on_a_new_event_loop(config) -> None:
    source = InMemoryMeasurementSource(walk(1))
    aggregator = CoverageAggregator(source, config=config)

    async def run_once(expected: int) -> int:
        async with aggregator:
            for _ in range(100):
                if aggregator.polygon_count == expected:
                    break
                await asyncio.sleep(0.02)
        return aggregator.polygon_count

    first = asyncio.run(run_once(1))
    source.extend(walk(1, start_sequence=1))
    second = asyncio.run(run_once(2))

    assert first == 1
    assert second == 2
    assert not aggregator.is_running


def test_ingest_report_counts_skipped_records(config) -> None:
    class SkippingSource(InMemoryMeasurementSource):
        def get_new_measurements_since(self, source_id: str, sequence: int) -> ReadResult:
            result = super().get_new_measurements_since(source_id, sequence)
            return ReadResult.ok(result.measurements, skipped=2)

    source = SkippingSource()
    aggregator = CoverageAggregator(source, config=config)
    source.extend(walk(2))

    report = asyncio.run(aggregator.ingest_once())

    assert report.new_polygons == 2
    assert report.skipped_records == 2
    assert report.updated_sources == ["rover-1"]


def test_stop_cancels_inflight_refresh(config) -> None:
    unify = CountingUnify(delay_s=0.3)
    aggregator = CoverageAggregator(InMemoryMeasurementSource(walk(2)), config=config, unify=unify)

    async def scenario():
        await aggregator.load_initial()
        reader = asyncio.create_task(aggregator.get_unified_coverage())
        await asyncio.sleep(0.05)
        await aggregator.stop()
        return await asyncio.gather(reader, return_exceptions=True)

    (result,) = asyncio.run(scenario())

    assert isinstance(result, asyncio.CancelledError)


def test_empty_coverage_helper() -> None:
    empty = AggregateCoverage.empty("source:x")

    assert empty.is_empty
    assert empty.coverage_efficiency == 0.0
    assert empty.fragment_count == 0

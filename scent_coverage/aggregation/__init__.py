"""
Incremental aggregation of detection polygons into cached coverage
"""

from .aggregator import CoverageAggregator, IngestReport, MeasurementBatch, intersect_with_boundary
from .cache import CacheEntry, ScopeCache
from .events import PolygonsUpdated, UpdateBus

__all__ = [
    "CoverageAggregator",
    "IngestReport",
    "MeasurementBatch",
    "intersect_with_boundary",
    "CacheEntry",
    "ScopeCache",
    "PolygonsUpdated",
    "UpdateBus",
]

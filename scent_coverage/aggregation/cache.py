"""
Per-scope coverage cache with single-flight refresh

Each scope ("global", "source:<id>") owns one ScopeCache. Concurrent readers
of a stale scope share one refresh task; readers never see a partially built
coverage, only the previous entry or the completed new one.
"""

import asyncio
import time
from dataclasses import dataclass, replace
from typing import Awaitable, Callable, Optional

from loguru import logger

from ..analysis.models import AggregateCoverage
from ..errors import CoverageUnavailableError


@dataclass(frozen=True)
class CacheEntry:
    """Cached coverage of one scope"""
    coverage: AggregateCoverage
    version: int
    computed_at: float  # time.monotonic()
    generation: int  # ingest generation the coverage reflects


class ScopeCache:
    """
    Cache slot for one scope.

    `generation` is bumped by every ingest that touches the scope; an entry is
    dirty when it was computed for an older generation, so data that lands
    while a refresh is running keeps the scope dirty afterwards.
    """

    def __init__(self, scope: str, ttl_s: float):
        self.scope = scope
        self.ttl_s = ttl_s
        self.entry: Optional[CacheEntry] = None
        self.generation = 0
        self._inflight: Optional[asyncio.Task] = None

    def mark_dirty(self) -> None:
        self.generation += 1

    @property
    def dirty(self) -> bool:
        return self.entry is None or self.entry.generation != self.generation

    @property
    def version(self) -> int:
        return self.entry.version if self.entry is not None else 0

    @property
    def refreshing(self) -> bool:
        return self._inflight is not None and not self._inflight.done()

    def is_fresh(self) -> bool:
        if self.dirty:
            return False
        return time.monotonic() - self.entry.computed_at < self.ttl_s

    async def get_or_refresh(
        self,
        compute: Callable[[], Awaitable[AggregateCoverage]]
    ) -> AggregateCoverage:
        """
        Cached coverage when fresh, otherwise the result of the single
        in-flight refresh (started here if none is running).
        """
        if self.is_fresh():
            return self.entry.coverage

        if not self.refreshing:
            self._inflight = asyncio.create_task(
                self._refresh(compute), name=f"refresh-{self.scope}"
            )
        return await asyncio.shield(self._inflight)

    async def _refresh(self, compute: Callable[[], Awaitable[AggregateCoverage]]) -> AggregateCoverage:
        generation = self.generation

        try:
            coverage = await compute()
        except Exception as e:
            if self.entry is None or self.entry.coverage.is_empty:
                raise CoverageUnavailableError(self.scope, str(e)) from e
            logger.warning(
                f"Recompute of '{self.scope}' failed ({e}), "
                f"serving last good coverage v{self.entry.version}"
            )
            self.entry = replace(self.entry, computed_at=time.monotonic(), generation=generation)
            return self.entry.coverage

        if not coverage.is_empty:
            coverage = replace(coverage, version=self.version + 1)
        elif coverage.version != self.version:
            coverage = replace(coverage, version=self.version)

        self.entry = CacheEntry(
            coverage=coverage,
            version=coverage.version,
            computed_at=time.monotonic(),
            generation=generation,
        )
        logger.debug(
            f"Refreshed '{self.scope}' -> v{coverage.version} "
            f"({coverage.polygon_count} polygons, {coverage.total_area_m2:.0f} m²)"
        )
        return coverage

    async def cancel(self) -> None:
        """Cancel and wait for a running refresh"""
        task = self._inflight
        if task is None or task.done():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        except Exception as e:
            logger.debug(f"Refresh of '{self.scope}' ended with {e} during cancel")

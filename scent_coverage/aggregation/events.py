"""
Update notifications

Subscribers get their own asyncio.Queue; publishing never blocks and drops
the oldest event for a subscriber that has fallen behind.
"""

import asyncio
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, List, Tuple


@dataclass(frozen=True)
class PolygonsUpdated:
    """Emitted after a batch of new detection polygons has been committed"""
    source_ids: Tuple[str, ...]
    new_polygons: int
    total_polygons: int
    emitted_at: datetime


def polygons_updated(source_ids, new_polygons: int, total_polygons: int) -> PolygonsUpdated:
    return PolygonsUpdated(
        source_ids=tuple(source_ids),
        new_polygons=new_polygons,
        total_polygons=total_polygons,
        emitted_at=datetime.now(timezone.utc),
    )


class UpdateBus:
    """Lightweight single-topic async pub/sub"""

    def __init__(self, maxsize: int = 8):
        self._maxsize = maxsize
        self._subs: List[asyncio.Queue] = []

    def subscribe(self) -> asyncio.Queue:
        q: asyncio.Queue = asyncio.Queue(maxsize=self._maxsize)
        self._subs.append(q)
        return q

    def unsubscribe(self, q: asyncio.Queue) -> None:
        self._subs = [qq for qq in self._subs if qq is not q]

    def publish_nowait(self, event: Any) -> None:
        for q in list(self._subs):
            if q.full():
                q.get_nowait()
            q.put_nowait(event)

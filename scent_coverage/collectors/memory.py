"""
In-memory measurement sources

InMemoryMeasurementSource backs tests, the simulator and embedding
applications; NullMeasurementSource keeps an app running with no data source.
"""

from threading import Lock
from typing import Dict, Iterable, List, Optional

from loguru import logger

from .base import MeasurementSource, ReadResult
from ..analysis.models import Measurement


class InMemoryMeasurementSource(MeasurementSource):
    """Thread-safe append-only store of measurements per source"""

    def __init__(self, measurements: Optional[Iterable[Measurement]] = None):
        self._by_source: Dict[str, List[Measurement]] = {}
        self._lock = Lock()
        if measurements:
            self.extend(measurements)

    def add(self, measurement: Measurement) -> None:
        """
        Append a measurement.

        Raises:
            ValueError: if the sequence does not increase within its source
        """
        with self._lock:
            series = self._by_source.setdefault(measurement.source_id, [])
            if series and measurement.sequence <= series[-1].sequence:
                raise ValueError(
                    f"Sequence {measurement.sequence} for source '{measurement.source_id}' "
                    f"is not greater than {series[-1].sequence}"
                )
            series.append(measurement)

    def extend(self, measurements: Iterable[Measurement]) -> None:
        for measurement in measurements:
            self.add(measurement)

    def count(self) -> int:
        with self._lock:
            return sum(len(series) for series in self._by_source.values())

    def list_source_ids(self) -> List[str]:
        with self._lock:
            return list(self._by_source)

    def get_all_measurements(self, source_id: Optional[str] = None) -> ReadResult:
        with self._lock:
            if source_id is None:
                snapshot = [m for series in self._by_source.values() for m in series]
            else:
                snapshot = list(self._by_source.get(source_id, ()))
        return ReadResult.ok(snapshot)

    def get_new_measurements_since(self, source_id: str, sequence: int) -> ReadResult:
        with self._lock:
            series = self._by_source.get(source_id, ())
            new = [m for m in series if m.sequence > sequence]
        if new:
            logger.debug(f"{len(new)} new measurement(s) for {source_id} after #{sequence}")
        return ReadResult.ok(new)

    def get_latest(self, source_id: str) -> Optional[Measurement]:
        with self._lock:
            series = self._by_source.get(source_id)
            return series[-1] if series else None


class NullMeasurementSource(MeasurementSource):
    """Source with no data; every read is NO_DATA"""

    def list_source_ids(self) -> List[str]:
        return []

    def get_all_measurements(self, source_id: Optional[str] = None) -> ReadResult:
        return ReadResult.no_data()

    def get_new_measurements_since(self, source_id: str, sequence: int) -> ReadResult:
        return ReadResult.no_data()

    def get_latest(self, source_id: str) -> Optional[Measurement]:
        return None

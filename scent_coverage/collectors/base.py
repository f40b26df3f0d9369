"""
Measurement source abstraction

Sources report what happened on every read through ReadResult, so the
aggregator can tell "nothing new" apart from "could not read".
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional, Sequence, Tuple

from ..analysis.models import Measurement


class ReadStatus(Enum):
    """Outcome of a source read"""
    OK = "ok"
    NO_DATA = "no_data"
    FAILED = "failed"


@dataclass(frozen=True)
class ReadResult:
    """Measurements returned by a source read plus how the read went"""
    status: ReadStatus
    measurements: Tuple[Measurement, ...] = ()
    skipped: int = 0  # malformed records dropped by the reader
    error: Optional[str] = None

    @classmethod
    def ok(cls, measurements: Sequence[Measurement], skipped: int = 0) -> "ReadResult":
        if not measurements:
            return cls(status=ReadStatus.NO_DATA, skipped=skipped)
        ordered = tuple(sorted(measurements, key=lambda m: (m.source_id, m.sequence)))
        return cls(status=ReadStatus.OK, measurements=ordered, skipped=skipped)

    @classmethod
    def no_data(cls, skipped: int = 0) -> "ReadResult":
        return cls(status=ReadStatus.NO_DATA, skipped=skipped)

    @classmethod
    def failed(cls, error: str) -> "ReadResult":
        return cls(status=ReadStatus.FAILED, error=error)

    @property
    def is_failed(self) -> bool:
        return self.status is ReadStatus.FAILED

    @property
    def has_data(self) -> bool:
        return self.status is ReadStatus.OK


class MeasurementSource(ABC):
    """
    Read-only access to rover measurements.

    Within one source id, measurements are returned in ascending sequence order.
    Implementations may block; the aggregator calls them from worker threads.
    """

    @property
    def name(self) -> str:
        return type(self).__name__

    @abstractmethod
    def list_source_ids(self) -> List[str]:
        """
        Ids of all sources with data.

        Raises:
            SourceUnavailableError: if the backing store cannot be read
        """

    @abstractmethod
    def get_all_measurements(self, source_id: Optional[str] = None) -> ReadResult:
        """All measurements, optionally restricted to one source"""

    @abstractmethod
    def get_new_measurements_since(self, source_id: str, sequence: int) -> ReadResult:
        """Measurements of `source_id` with a sequence greater than `sequence`"""

    @abstractmethod
    def get_latest(self, source_id: str) -> Optional[Measurement]:
        """Most recent measurement of a source, or None"""

"""
Data collaborators: measurement sources, search boundary and simulator
"""

from .base import MeasurementSource, ReadResult, ReadStatus
from .boundary import BoundaryProvider, GeoPackageBoundaryReader, StaticBoundary
from .geopackage import GeoPackageMeasurementSource, write_measurements
from .memory import InMemoryMeasurementSource, NullMeasurementSource
from .simulator import RoverSimulator

__all__ = [
    "MeasurementSource",
    "ReadResult",
    "ReadStatus",
    "BoundaryProvider",
    "GeoPackageBoundaryReader",
    "StaticBoundary",
    "GeoPackageMeasurementSource",
    "write_measurements",
    "InMemoryMeasurementSource",
    "NullMeasurementSource",
    "RoverSimulator",
]

"""
GeoPackage measurement source

Reads rover measurements from a GeoPackage layer written by the field
recorder. One row per measurement; rows that cannot be turned into a
Measurement are skipped and counted.
"""

from pathlib import Path
from typing import Any, List, Optional, Tuple

import geopandas as gpd
import pandas as pd
from loguru import logger

from .base import MeasurementSource, ReadResult
from ..analysis.models import Measurement
from ..errors import SourceUnavailableError

DEFAULT_FILENAME = "rover_data.gpkg"
DEFAULT_LAYER = "rover_measurements"


def _resolve_path(path: str) -> Path:
    """Accept either the .gpkg file itself or the folder that holds it"""
    resolved = Path(path)
    if resolved.suffix.lower() == ".gpkg":
        return resolved
    return resolved / DEFAULT_FILENAME


def _parse_timestamp(value: Any):
    if value is None or pd.isna(value):
        raise ValueError("recorded_at is missing")
    timestamp = pd.Timestamp(value)
    if pd.isna(timestamp):
        raise ValueError(f"recorded_at is not a timestamp: {value!r}")
    return timestamp.to_pydatetime()


def _text(value: Any) -> str:
    if value is None or (not isinstance(value, str) and pd.isna(value)):
        return ""
    return str(value)


def row_to_measurement(row: Any) -> Measurement:
    """
    Convert one GeoDataFrame row to a Measurement.

    Latitude and longitude come from their columns when present, otherwise
    from the point geometry.

    Raises:
        ValueError, KeyError, TypeError: for malformed rows
    """
    latitude = row.get("latitude")
    longitude = row.get("longitude")
    if latitude is None or longitude is None or pd.isna(latitude) or pd.isna(longitude):
        geom = row.get("geometry")
        if geom is None or geom.is_empty:
            raise ValueError("row has neither coordinates nor a geometry")
        latitude, longitude = geom.y, geom.x

    sequence = row["sequence"]
    if pd.isna(sequence):
        raise ValueError("sequence is missing")

    return Measurement.create(
        source_id=_text(row["rover_id"]),
        sequence=int(sequence),
        recorded_at=_parse_timestamp(row["recorded_at"]),
        latitude=latitude,
        longitude=longitude,
        wind_direction_deg=row["wind_direction_deg"],
        wind_speed_mps=row["wind_speed_mps"],
        source_name=_text(row.get("rover_name")),
        session_id=_text(row.get("session_id")),
    )


class GeoPackageMeasurementSource(MeasurementSource):
    """Measurement source backed by a GeoPackage layer"""

    def __init__(self, path: str, layer: str = DEFAULT_LAYER):
        self.path = _resolve_path(path)
        self.layer = layer

    @property
    def name(self) -> str:
        return f"GeoPackage({self.path.name}:{self.layer})"

    def _read_frame(self) -> gpd.GeoDataFrame:
        if not self.path.exists():
            raise SourceUnavailableError(f"GeoPackage not found: {self.path}")
        try:
            return gpd.read_file(self.path, layer=self.layer)
        except Exception as e:  # driver errors vary by I/O engine
            raise SourceUnavailableError(
                f"Failed to read layer '{self.layer}' from {self.path}: {e}"
            ) from e

    def _parse_rows(self, frame: gpd.GeoDataFrame) -> Tuple[List[Measurement], int]:
        measurements = []
        skipped = 0
        for index, row in frame.iterrows():
            try:
                measurements.append(row_to_measurement(row))
            except (ValueError, KeyError, TypeError) as e:
                skipped += 1
                logger.debug(f"Skipping malformed row {index} in {self.path.name}: {e}")
        if skipped:
            logger.warning(f"Skipped {skipped} malformed row(s) in {self.path.name}:{self.layer}")
        return measurements, skipped

    def _read(self, source_id: Optional[str] = None, after: Optional[int] = None) -> ReadResult:
        try:
            frame = self._read_frame()
        except SourceUnavailableError as e:
            logger.warning(str(e))
            return ReadResult.failed(str(e))

        if frame.empty:
            return ReadResult.no_data()
        if source_id is not None and "rover_id" in frame.columns:
            frame = frame[frame["rover_id"].astype(str) == source_id]

        measurements, skipped = self._parse_rows(frame)
        if after is not None:
            measurements = [m for m in measurements if m.sequence > after]
        return ReadResult.ok(measurements, skipped=skipped)

    def list_source_ids(self) -> List[str]:
        frame = self._read_frame()
        if frame.empty or "rover_id" not in frame.columns:
            return []
        ids = frame["rover_id"].dropna().astype(str)
        return [rover_id for rover_id in dict.fromkeys(ids) if rover_id]

    def get_all_measurements(self, source_id: Optional[str] = None) -> ReadResult:
        return self._read(source_id)

    def get_new_measurements_since(self, source_id: str, sequence: int) -> ReadResult:
        return self._read(source_id, after=sequence)

    def get_latest(self, source_id: str) -> Optional[Measurement]:
        result = self._read(source_id)
        if not result.has_data:
            return None
        return result.measurements[-1]


def write_measurements(path: str, measurements: List[Measurement], layer: str = DEFAULT_LAYER) -> Path:
    """Write measurements to a GeoPackage layer in the format the reader expects"""
    target = _resolve_path(path)
    target.parent.mkdir(parents=True, exist_ok=True)

    records = [
        {
            "rover_id": m.source_id,
            "rover_name": m.source_name,
            "session_id": m.session_id,
            "sequence": m.sequence,
            "recorded_at": m.recorded_at.isoformat(),
            "latitude": m.latitude,
            "longitude": m.longitude,
            "wind_direction_deg": m.wind_direction_deg,
            "wind_speed_mps": m.wind_speed_mps,
        }
        for m in measurements
    ]
    frame = gpd.GeoDataFrame(
        records,
        geometry=gpd.points_from_xy(
            [m.longitude for m in measurements], [m.latitude for m in measurements]
        ),
        crs="EPSG:4326",
    )
    frame.to_file(target, layer=layer, driver="GPKG")
    logger.info(f"Wrote {len(records)} measurement(s) to {target}:{layer}")
    return target

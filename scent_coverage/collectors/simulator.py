"""
Rover simulator

Drives one or more virtual rovers on a random walk and writes their wind
samples into an in-memory source, so the aggregator can be exercised without
field hardware.
"""

import asyncio
import math
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import List, Optional

import numpy as np
from loguru import logger

from .boundary import BoundaryProvider
from .memory import InMemoryMeasurementSource
from ..analysis.geometry_utils import GeometryUtils
from ..analysis.models import Measurement

DEFAULT_START = (-36.80, 174.70)  # Riverhead forest, Auckland


@dataclass
class RoverState:
    """Mutable state of one simulated rover"""
    source_id: str
    name: str
    session_id: str
    latitude: float
    longitude: float
    heading_deg: float
    wind_direction_deg: float
    wind_speed_mps: float
    sequence: int = -1


class RoverSimulator:
    """
    Random-walk rovers with smoothly drifting wind.

    Heading and wind change by Gaussian steps each tick; rovers turn around
    when their next step would leave the boundary.
    """

    def __init__(
        self,
        source: InMemoryMeasurementSource,
        rovers: int = 1,
        start: tuple = DEFAULT_START,
        boundary: Optional[BoundaryProvider] = None,
        step_m: float = 1.5,
        max_wind_mps: float = 15.0,
        seed: Optional[int] = None
    ):
        self.source = source
        self.boundary = boundary
        self.step_m = step_m
        self.max_wind_mps = max_wind_mps
        self._rng = np.random.default_rng(seed)

        lat, lon = start
        if boundary is not None:
            centroid = boundary.get_centroid()
            if centroid is not None:
                lat, lon = centroid

        session_id = uuid.uuid4().hex[:8]
        self.rovers: List[RoverState] = [
            RoverState(
                source_id=f"rover-{i + 1}",
                name=f"Rover {i + 1}",
                session_id=session_id,
                latitude=lat,
                longitude=lon,
                heading_deg=float(self._rng.uniform(0, 360)),
                wind_direction_deg=float(self._rng.uniform(0, 360)),
                wind_speed_mps=float(self._rng.uniform(1.0, 5.0)),
            )
            for i in range(rovers)
        ]

    def _move(self, rover: RoverState) -> None:
        rover.heading_deg = (rover.heading_deg + self._rng.normal(0, 15.0)) % 360.0

        east, north = GeometryUtils.bearing_offset(self.step_m, math.radians(rover.heading_deg))
        mlat, mlon = GeometryUtils.meters_per_degree(rover.latitude)
        next_lat = rover.latitude + north / mlat
        next_lon = rover.longitude + east / mlon

        if self.boundary is not None and self.boundary.get_boundary_polygon() is not None:
            if not self.boundary.contains(next_lat, next_lon):
                rover.heading_deg = (rover.heading_deg + 180.0) % 360.0
                return

        rover.latitude = next_lat
        rover.longitude = next_lon

    def _drift_wind(self, rover: RoverState) -> None:
        rover.wind_direction_deg = (rover.wind_direction_deg + self._rng.normal(0, 10.0)) % 360.0
        speed = rover.wind_speed_mps + self._rng.normal(0, 0.5)
        rover.wind_speed_mps = float(np.clip(speed, 0.0, self.max_wind_mps))

    def step(self, recorded_at: Optional[datetime] = None) -> List[Measurement]:
        """Advance every rover one tick and record its measurement"""
        now = recorded_at or datetime.now(timezone.utc)
        produced = []
        for rover in self.rovers:
            self._move(rover)
            self._drift_wind(rover)
            rover.sequence += 1
            measurement = Measurement.create(
                source_id=rover.source_id,
                sequence=rover.sequence,
                recorded_at=now,
                latitude=rover.latitude,
                longitude=rover.longitude,
                wind_direction_deg=rover.wind_direction_deg,
                wind_speed_mps=rover.wind_speed_mps,
                source_name=rover.name,
                session_id=rover.session_id,
            )
            self.source.add(measurement)
            produced.append(measurement)
        return produced

    async def run(
        self,
        interval_s: float,
        stop_event: asyncio.Event,
        max_steps: Optional[int] = None
    ) -> int:
        """Step until `stop_event` is set or `max_steps` ticks ran; returns ticks run"""
        steps = 0
        logger.info(f"Simulating {len(self.rovers)} rover(s) every {interval_s}s")
        while not stop_event.is_set():
            if max_steps is not None and steps >= max_steps:
                break
            self.step()
            steps += 1
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=interval_s)
            except asyncio.TimeoutError:
                pass
        logger.info(f"Simulator stopped after {steps} tick(s)")
        return steps

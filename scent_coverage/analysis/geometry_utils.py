"""
Geometry utilities for coordinate transformations and calculations

All conversions use a flat equirectangular approximation around a
reference latitude, which is accurate enough at detection-polygon scale
(hundreds of meters).
"""

import math
from typing import Tuple

import shapely
from shapely import affinity
from shapely.geometry.base import BaseGeometry

METERS_PER_DEG_LAT = 111_320.0


class GeometryUtils:
    """Utility functions for geometric operations"""

    @staticmethod
    def meters_per_degree(latitude: float) -> Tuple[float, float]:
        """Return (meters per degree latitude, meters per degree longitude)"""
        m_per_deg_lon = METERS_PER_DEG_LAT * math.cos(math.radians(latitude))
        return METERS_PER_DEG_LAT, m_per_deg_lon

    @staticmethod
    def local_to_degrees(
        geom: BaseGeometry,
        ref_lon: float,
        ref_lat: float
    ) -> BaseGeometry:
        """
        Map a geometry in local [x, y] meters (origin at the reference point,
        x east, y north) to [lon, lat] degrees
        """
        m_per_deg_lat, m_per_deg_lon = GeometryUtils.meters_per_degree(ref_lat)
        return affinity.affine_transform(
            geom,
            [1.0 / m_per_deg_lon, 0.0, 0.0, 1.0 / m_per_deg_lat, ref_lon, ref_lat]
        )

    @staticmethod
    def area_m2(geom: BaseGeometry, latitude: float) -> float:
        """Planar area in square meters of a geometry in degrees, corrected for latitude"""
        if geom is None or geom.is_empty:
            return 0.0
        m_per_deg_lat, m_per_deg_lon = GeometryUtils.meters_per_degree(latitude)
        return geom.area * m_per_deg_lat * m_per_deg_lon

    @staticmethod
    def meters_to_degrees(meters: float) -> float:
        """
        Convert a distance to degrees using the latitude scale.

        Longitude degrees are longer in meters than latitude degrees away from
        the equator, so this is the conservative (smaller) conversion.
        """
        return meters / METERS_PER_DEG_LAT

    @staticmethod
    def bearing_offset(distance_m: float, bearing_rad: float) -> Tuple[float, float]:
        """Local (x, y) offset for a distance along a bearing (0 = north, clockwise)"""
        return distance_m * math.sin(bearing_rad), distance_m * math.cos(bearing_rad)

    @staticmethod
    def vertex_count(geom: BaseGeometry) -> int:
        """Number of coordinates in a geometry, including ring closing points"""
        if geom is None or geom.is_empty:
            return 0
        return int(shapely.get_num_coordinates(geom))

    @staticmethod
    def angle_to_direction(angle: float) -> str:
        """Convert bearing angle to cardinal direction"""
        angle = angle % 360
        if angle < 22.5 or angle >= 337.5:
            return "north"
        elif angle < 67.5:
            return "northeast"
        elif angle < 112.5:
            return "east"
        elif angle < 157.5:
            return "southeast"
        elif angle < 202.5:
            return "south"
        elif angle < 247.5:
            return "southwest"
        elif angle < 292.5:
            return "west"
        else:
            return "northwest"

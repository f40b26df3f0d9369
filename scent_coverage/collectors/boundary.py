"""
Search-area boundary providers

The boundary is the forest (or other search area) outline that coverage is
measured against. It is loaded lazily on first use and kept for the process
lifetime.
"""

from abc import ABC, abstractmethod
from pathlib import Path
from threading import Lock
from typing import Optional, Tuple

import geopandas as gpd
from loguru import logger
from shapely.geometry import MultiPolygon, Point, Polygon

from ..analysis.union import largest_polygon

DEFAULT_BOUNDARY_LAYER = "riverheadforest"


class BoundaryProvider(ABC):
    """Supplies the search boundary polygon, or None when there is none"""

    @abstractmethod
    def get_boundary_polygon(self) -> Optional[Polygon]:
        """Boundary polygon in EPSG:4326 (x = lon, y = lat)"""

    def get_bounding_box(self) -> Optional[Tuple[float, float, float, float]]:
        """(min_lon, min_lat, max_lon, max_lat) of the boundary"""
        polygon = self.get_boundary_polygon()
        return polygon.bounds if polygon is not None else None

    def get_centroid(self) -> Optional[Tuple[float, float]]:
        """(lat, lon) of the boundary centroid"""
        polygon = self.get_boundary_polygon()
        if polygon is None:
            return None
        centroid = polygon.centroid
        return centroid.y, centroid.x

    def contains(self, latitude: float, longitude: float) -> bool:
        polygon = self.get_boundary_polygon()
        return polygon is not None and polygon.contains(Point(longitude, latitude))


class StaticBoundary(BoundaryProvider):
    """Boundary given directly as a polygon"""

    def __init__(self, polygon: Optional[Polygon]):
        if isinstance(polygon, MultiPolygon):
            polygon = largest_polygon(polygon)
        self._polygon = polygon

    def get_boundary_polygon(self) -> Optional[Polygon]:
        return self._polygon


class GeoPackageBoundaryReader(BoundaryProvider):
    """
    Reads the boundary from a GeoPackage layer.

    The first feature of the layer is used; a MultiPolygon is reduced to its
    largest member. A missing file or unreadable layer gives None.
    """

    def __init__(self, path: str, layer: str = DEFAULT_BOUNDARY_LAYER):
        self.path = Path(path)
        self.layer = layer
        self._polygon: Optional[Polygon] = None
        self._loaded = False
        self._lock = Lock()

    def get_boundary_polygon(self) -> Optional[Polygon]:
        with self._lock:
            if not self._loaded:
                self._polygon = self._load()
                self._loaded = True
            return self._polygon

    def _load(self) -> Optional[Polygon]:
        if not self.path.exists():
            logger.warning(f"Boundary GeoPackage not found: {self.path}")
            return None

        try:
            gdf = gpd.read_file(self.path, layer=self.layer)
        except Exception as e:  # driver errors vary by I/O engine
            logger.warning(f"Failed to read boundary layer '{self.layer}' from {self.path}: {e}")
            return None

        if gdf.empty:
            logger.warning(f"Boundary layer '{self.layer}' in {self.path} has no features")
            return None

        if gdf.crs is None:
            logger.debug("Boundary layer has no CRS, assuming EPSG:4326")
            gdf = gdf.set_crs("EPSG:4326")
        elif gdf.crs.to_epsg() != 4326:
            logger.warning(f"Boundary layer is in {gdf.crs}, expected EPSG:4326 longitude/latitude")
            return None

        geom = gdf.geometry.iloc[0]
        if isinstance(geom, MultiPolygon):
            logger.debug(f"Boundary is a MultiPolygon with {len(geom.geoms)} parts, using the largest")
            geom = largest_polygon(geom)
        if not isinstance(geom, Polygon) or geom.is_empty:
            logger.warning(f"Boundary feature is not a polygon ({geom.geom_type if geom is not None else None})")
            return None

        logger.info(f"Loaded boundary from {self.path.name}:{self.layer} ({len(geom.exterior.coords)} vertices)")
        return geom

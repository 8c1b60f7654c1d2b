from __future__ import annotations

import math
from functools import lru_cache
from typing import Any, Sequence

from pyproj import Geod, Transformer
from shapely.geometry import LineString, Point, mapping, shape
from shapely.errors import ShapelyError
from shapely.geometry.base import BaseGeometry
from shapely.ops import transform

from .route_types import AvoidZone

EARTH_RADIUS_M = 6_371_000.0
WGS84 = Geod(ellps="WGS84")

# Vertex count of the polygon approximating a geodesic circle.
_BUFFER_RESOLUTION = 16


def haversine_m(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    dphi = phi2 - phi1
    dlambda = math.radians(lon2 - lon1)
    a = (
        math.sin(dphi / 2.0) ** 2
        + (math.cos(phi1) * math.cos(phi2) * (math.sin(dlambda / 2.0) ** 2))
    )
    return 2.0 * EARTH_RADIUS_M * math.asin(min(1.0, math.sqrt(max(0.0, a))))


def geodesic_distance_m(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    _, _, distance = WGS84.inv(lon1, lat1, lon2, lat2)
    return float(distance)


@lru_cache(maxsize=512)
def _projections(lat: float, lon: float) -> tuple[Transformer, Transformer]:
    """Azimuthal equidistant projection centred on (lat, lon).

    Distances from the centre are true ellipsoidal ground distances in metres,
    so a metric buffer drawn there is a geodesic buffer once projected back.
    """
    local = f"+proj=aeqd +lat_0={lat:.9f} +lon_0={lon:.9f} +datum=WGS84 +units=m +no_defs"
    forward = Transformer.from_crs("EPSG:4326", local, always_xy=True)
    inverse = Transformer.from_crs(local, "EPSG:4326", always_xy=True)
    return forward, inverse


def edge_geometry(
    geometry: dict[str, Any] | None,
    coordinates: Sequence[tuple[float, float]] | None = None,
) -> BaseGeometry | None:
    """Shapely geometry (lon/lat) from a GeoJSON mapping or a raw [lon, lat] sequence."""
    if geometry:
        try:
            return shape(geometry)
        except (ShapelyError, KeyError, TypeError, ValueError, AttributeError):
            return None
    if coordinates:
        coords = [(float(lon), float(lat)) for lon, lat in coordinates]
        if len(coords) == 1:
            return Point(coords[0])
        return LineString(coords)
    return None


def geometry_within_zone(geom: BaseGeometry | None, zone: AvoidZone) -> bool:
    """True when the geometry comes within the zone's radius of its centre."""
    if geom is None or geom.is_empty:
        return False
    forward, _ = _projections(zone.center_latitude, zone.center_longitude)
    projected = transform(forward.transform, geom)
    return projected.distance(Point(0.0, 0.0)) <= float(zone.radius_meters)


def geodesic_buffer(zone: AvoidZone) -> BaseGeometry:
    """Polygon (lon/lat) covering every point within radius_meters of the zone centre."""
    _, inverse = _projections(zone.center_latitude, zone.center_longitude)
    circle = Point(0.0, 0.0).buffer(float(zone.radius_meters), _BUFFER_RESOLUTION)
    return transform(inverse.transform, circle)


def geodesic_buffer_geojson(zone: AvoidZone) -> dict[str, Any]:
    return dict(mapping(geodesic_buffer(zone)))

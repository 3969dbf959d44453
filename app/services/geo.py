# File: app/services/geo.py
"""Distance and point-in-polygon helpers used by routing, dedup and the geofence guard."""
import logging
from math import radians, cos, sin, atan2, sqrt, pi
from typing import Optional

from shapely.geometry import Point, shape
from shapely.errors import ShapelyError
from sqlalchemy.orm import Session

from app.models.ward import Ward

logger = logging.getLogger(__name__)

EARTH_RADIUS_M = 6371000
# on the same sphere as haversine, so the box never undercuts the circle
METERS_PER_DEGREE_LAT = EARTH_RADIUS_M * pi / 180
BOX_PADDING = 1.01


def haversine(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Great-circle distance in metres."""
    lat1, lon1, lat2, lon2 = map(radians, [lat1, lon1, lat2, lon2])
    dlat = lat2 - lat1
    dlon = lon2 - lon1
    a = sin(dlat / 2) ** 2 + cos(lat1) * cos(lat2) * sin(dlon / 2) ** 2
    return EARTH_RADIUS_M * 2 * atan2(sqrt(a), sqrt(1 - a))


def bounding_box(lat: float, lon: float, radius_m: float) -> tuple[float, float, float, float]:
    """(min_lat, max_lat, min_lon, max_lon) enclosing a circle of radius_m; used as an index prefilter."""
    radius_m = radius_m * BOX_PADDING
    dlat = radius_m / METERS_PER_DEGREE_LAT
    # near the poles the longitude span blows up; clamp to the whole range
    c = cos(radians(lat))
    dlon = 180.0 if c < 1e-6 else min(180.0, radius_m / (METERS_PER_DEGREE_LAT * c))
    return lat - dlat, lat + dlat, lon - dlon, lon + dlon


def ward_contains(ward: Ward, lat: float, lon: float) -> bool:
    if not ward.boundary:
        return False
    try:
        polygon = shape(ward.boundary)
    except (ShapelyError, ValueError, KeyError, TypeError, AttributeError):
        logger.warning("Ward #%s has an unreadable boundary, skipping", ward.id)
        return False
    # GeoJSON is lon/lat; points on the edge are not "inside"
    return polygon.contains(Point(lon, lat))


def resolve_ward(db: Session, lat: Optional[float], lon: Optional[float]) -> Optional[Ward]:
    """First ward whose polygon strictly contains the point, or None.

    Wards are not expected to overlap; ordering by id keeps the answer stable if they do.
    """
    if lat is None or lon is None:
        return None
    for ward in db.query(Ward).order_by(Ward.id.asc()).all():
        if ward_contains(ward, lat, lon):
            return ward
    return None

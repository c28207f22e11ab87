"""
Geofence validation service.
Uses Haversine formula to calculate distance between points.
"""
import math
from typing import Optional, Tuple
from ..config import settings


def haversine_distance(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """
    Calculate the great circle distance between two points on Earth.

    Args:
        lat1: Latitude of first point
        lon1: Longitude of first point
        lat2: Latitude of second point
        lon2: Longitude of second point

    Returns:
        Distance in meters
    """
    # Earth radius in meters
    R = 6371000

    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    delta_phi = math.radians(lat2 - lat1)
    delta_lambda = math.radians(lon2 - lon1)

    a = (
        math.sin(delta_phi / 2) ** 2 +
        math.cos(phi1) * math.cos(phi2) * math.sin(delta_lambda / 2) ** 2
    )
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))

    return R * c


def round_meters(distance: float) -> int:
    """Whole meters, halves rounded up."""
    return int(math.floor(distance + 0.5))


def check_geofence(
    point_lat: Optional[float],
    point_lng: Optional[float],
    site_lat: Optional[float],
    site_lng: Optional[float],
    radius_m: Optional[float] = None,
) -> Tuple[bool, Optional[float]]:
    """
    Check whether a point lies within a site's geofence.

    Args:
        point_lat: Reported latitude (optional)
        point_lng: Reported longitude (optional)
        site_lat: Site latitude (optional)
        site_lng: Site longitude (optional)
        radius_m: Site radius in meters (falsy means the default radius)

    Returns:
        Tuple of (is_inside, distance_m). When either side lacks coordinates the
        check is skipped and (True, None) is returned.
    """
    if None in (point_lat, point_lng, site_lat, site_lng):
        return True, None
    radius = float(radius_m) if radius_m else float(settings.geo_radius_m_default)
    distance = haversine_distance(float(point_lat), float(point_lng), float(site_lat), float(site_lng))
    return distance <= radius, distance


def outside_reason(action: str, distance: float) -> str:
    return f"{action} outside geofence ({round_meters(distance)}m from site)"

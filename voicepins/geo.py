import math
from typing import Iterable, Tuple

EARTH_RADIUS_M = 6371000.0
MAX_PIN_OFFSET_METERS = 50.0


def haversine_distance(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    """Great-circle distance in meters."""
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    d_phi = math.radians(lat2 - lat1)
    d_lambda = math.radians(lng2 - lng1)
    a = math.sin(d_phi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2) ** 2
    return EARTH_RADIUS_M * 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))


def total_distance(points: Iterable[Tuple[float, float]]) -> float:
    """Sum of consecutive leg distances, in the order given."""
    total = 0.0
    prev = None
    for lat, lng in points:
        if prev is not None:
            total += haversine_distance(prev[0], prev[1], lat, lng)
        prev = (lat, lng)
    return total


def clamp_offset(
    center_lat: float,
    center_lng: float,
    lat: float,
    lng: float,
    max_meters: float = MAX_PIN_OFFSET_METERS,
) -> Tuple[float, float]:
    """
    Pull (lat, lng) back toward the centre so it lies within max_meters.
    Points already inside the circle are returned unchanged.
    """
    dist = haversine_distance(center_lat, center_lng, lat, lng)
    if dist <= max_meters:
        return lat, lng
    scale = max_meters / dist
    new_lat = center_lat + (lat - center_lat) * scale
    new_lng = center_lng + (lng - center_lng) * scale
    return max(-90.0, min(90.0, new_lat)), max(-180.0, min(180.0, new_lng))

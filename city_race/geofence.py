"""Great-circle geometry on a spherical Earth."""

from __future__ import annotations

import math

from city_race.models import GeoPoint

EARTH_RADIUS_M = 6_371_000


def _check(*points: GeoPoint) -> None:
    for p in points:
        if not (math.isfinite(p.lat) and math.isfinite(p.lng)):
            raise ValueError(f"non-finite coordinates: {p.lat}, {p.lng}")


def distance_m(a: GeoPoint, b: GeoPoint) -> float:
    """Haversine distance in meters."""
    _check(a, b)
    phi1, phi2 = math.radians(a.lat), math.radians(b.lat)
    dphi = math.radians(b.lat - a.lat)
    dlmb = math.radians(b.lng - a.lng)
    h = math.sin(dphi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(dlmb / 2) ** 2
    return 2 * EARTH_RADIUS_M * math.atan2(math.sqrt(h), math.sqrt(1 - h))


def bearing_deg(a: GeoPoint, b: GeoPoint) -> float:
    """Initial bearing from a to b, degrees clockwise from north in [0, 360)."""
    _check(a, b)
    phi1, phi2 = math.radians(a.lat), math.radians(b.lat)
    dlmb = math.radians(b.lng - a.lng)
    y = math.sin(dlmb) * math.cos(phi2)
    x = math.cos(phi1) * math.sin(phi2) - math.sin(phi1) * math.cos(phi2) * math.cos(dlmb)
    return (math.degrees(math.atan2(y, x)) + 360) % 360


def is_inside(position: GeoPoint, target: GeoPoint, radius_m: float) -> bool:
    if not math.isfinite(radius_m) or radius_m < 0:
        raise ValueError(f"invalid radius: {radius_m}")
    return distance_m(position, target) <= radius_m

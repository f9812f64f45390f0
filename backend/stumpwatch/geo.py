"""Small geodesic helpers (metres)."""
from __future__ import annotations

from math import asin, cos, radians, sin, sqrt
from typing import Iterable

EARTH_RADIUS_M = 6371000.0


def haversine_m(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    dlat = radians(lat2 - lat1)
    dlng = radians(lng2 - lng1)
    a = sin(dlat / 2) ** 2 + cos(radians(lat1)) * cos(radians(lat2)) * sin(dlng / 2) ** 2
    return 2 * EARTH_RADIUS_M * asin(sqrt(a))


def centroid(points: Iterable[tuple[float, float]]) -> tuple[float, float]:
    """Arithmetic mean of (lat, lng) pairs. Fine at street scale."""
    pts = list(points)
    if not pts:
        raise ValueError("centroid of an empty point set")
    return (
        sum(p[0] for p in pts) / len(pts),
        sum(p[1] for p in pts) / len(pts),
    )

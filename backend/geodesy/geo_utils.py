# geo_utils.py
import math

from common.types import Coordinate

EARTH_RADIUS_M = 6371000


def normalize_degrees(angle: float) -> float:
    """Wrap any finite angle into [0, 360)."""
    wrapped = angle % 360.0
    # Tiny negative inputs can round up to exactly 360.0.
    if wrapped >= 360.0:
        return 0.0
    return wrapped


def signed_angular_difference(from_deg: float, to_deg: float) -> float:
    """Smallest rotation from ``from_deg`` to ``to_deg`` in (-180, 180].

    Positive means clockwise. A half turn reads as +180, never -180.
    """
    d = normalize_degrees(to_deg) - normalize_degrees(from_deg)
    wrapped = (d + 540.0) % 360.0 - 180.0
    if wrapped == -180.0:
        return 180.0
    return wrapped


def initial_bearing(a: Coordinate, b: Coordinate) -> float:
    """Forward azimuth from ``a`` to ``b``; meaningless (0) when a == b."""
    phi1, phi2 = math.radians(a.latitude), math.radians(b.latitude)
    dlambda = math.radians(b.longitude - a.longitude)

    y = math.sin(dlambda) * math.cos(phi2)
    x = math.cos(phi1)*math.sin(phi2) - math.sin(phi1)*math.cos(phi2)*math.cos(dlambda)
    return normalize_degrees(math.degrees(math.atan2(y, x)))


def great_circle_distance(a: Coordinate, b: Coordinate) -> float:
    """Haversine distance in meters."""
    phi1, phi2 = math.radians(a.latitude), math.radians(b.latitude)
    dphi = math.radians(b.latitude - a.latitude)
    dlambda = math.radians(b.longitude - a.longitude)

    h = math.sin(dphi/2)**2 + math.cos(phi1)*math.cos(phi2)*math.sin(dlambda/2)**2
    return 2 * EARTH_RADIUS_M * math.asin(math.sqrt(min(h, 1.0)))

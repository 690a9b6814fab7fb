"""Spherical-earth angle and distance helpers."""

from .geo_utils import (
    EARTH_RADIUS_M,
    great_circle_distance,
    initial_bearing,
    normalize_degrees,
    signed_angular_difference,
)

__all__ = [
    "EARTH_RADIUS_M",
    "great_circle_distance",
    "initial_bearing",
    "normalize_degrees",
    "signed_angular_difference",
]

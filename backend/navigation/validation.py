"""Boundary validation for coordinates entered by the user."""
from __future__ import annotations

import math

from common.types import Coordinate
from navigation.exceptions import InvalidCoordinateError


def _to_float(value, name: str) -> float:
    if isinstance(value, str):
        value = value.strip()
    if value is None or value == "" or isinstance(value, bool):
        raise InvalidCoordinateError(f"Invalid target {name}")
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise InvalidCoordinateError(f"Invalid target {name}") from None
    if not math.isfinite(number):
        raise InvalidCoordinateError(f"Invalid target {name}")
    return number


def parse_coordinate(latitude, longitude) -> Coordinate:
    """Validate raw latitude/longitude input and build a Coordinate.

    Accepts numbers or numeric strings. Raises InvalidCoordinateError for
    missing, non-numeric, non-finite or out-of-range values.
    """
    lat = _to_float(latitude, "latitude")
    lon = _to_float(longitude, "longitude")
    if lat < -90 or lat > 90 or lon < -180 or lon > 180:
        raise InvalidCoordinateError("Target lat/lon out of range")
    return Coordinate(latitude=lat, longitude=lon)


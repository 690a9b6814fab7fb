"""
Core value types shared by the navigation and peer layers.
"""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


@dataclass(frozen=True)
class Coordinate:
    """A WGS84 position in decimal degrees. Equality is exact."""

    latitude: float
    longitude: float

    def to_dict(self) -> dict:
        return {"latitude": self.latitude, "longitude": self.longitude}


class TargetSource(str, Enum):
    MANUAL = "manual"
    SELF = "self"
    PERSISTED = "persisted"
    PEER = "peer"


@dataclass(frozen=True)
class Target:
    """The single authoritative destination; the latest write wins."""

    coordinate: Coordinate
    source: TargetSource


@dataclass(frozen=True)
class NavigationResult:
    bearing: float          # Degrees clockwise from north, [0, 360)
    distance: float         # Meters along the great circle
    delta: float | None     # Relative turn, (-180, 180], None without heading

    def to_dict(self) -> dict:
        return {
            "bearing": self.bearing,
            "distance": self.distance,
            "delta": self.delta,
        }

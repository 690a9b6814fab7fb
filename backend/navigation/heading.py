"""Raw orientation sample to compass heading conversion."""
from __future__ import annotations

import math
from dataclasses import dataclass

from geodesy import normalize_degrees


@dataclass(frozen=True)
class OrientationSample:
    """One raw reading from the orientation source.

    Attributes:
        compass_heading: Heading already referenced to north, clockwise-positive
                         (iOS ``webkitCompassHeading``)
        alpha: Rotation around the vertical axis, counter-clockwise-positive
        absolute: Whether the client read ``alpha`` from an earth-referenced
                  source. Informational only; it does not change the heading.
    """
    compass_heading: float | None = None
    alpha: float | None = None
    absolute: bool = False


def _usable(value: float | None) -> bool:
    return value is not None and math.isfinite(value)


def heading_from_sample(sample: OrientationSample) -> float | None:
    """Return the heading in [0, 360) or None when no field is usable.

    A direct compass heading wins over ``alpha``; the two are never blended.
    """
    if _usable(sample.compass_heading):
        return normalize_degrees(sample.compass_heading)
    if _usable(sample.alpha):
        return normalize_degrees(360.0 - sample.alpha)
    return None

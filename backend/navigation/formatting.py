"""Human-readable values for the indicator panel."""
from __future__ import annotations

import math

MISSING = "—"


def format_degrees(value: float | None) -> str:
    if value is None or math.isnan(value):
        return MISSING
    return f"{value:.1f}°"


def format_distance(meters: float | None) -> str:
    if meters is None or math.isnan(meters):
        return MISSING
    if meters < 1000:
        return f"{round(meters)} m"
    return f"{meters / 1000:.2f} km"

"""Position and orientation source contracts and push-fed implementations."""

from .base import (
    OrientationSource,
    PositionError,
    PositionErrorCode,
    PositionFix,
    PositionOptions,
    PositionSource,
)
from .push import PushOrientationSource, PushPositionSource

__all__ = [
    "OrientationSource",
    "PositionError",
    "PositionErrorCode",
    "PositionFix",
    "PositionOptions",
    "PositionSource",
    "PushOrientationSource",
    "PushPositionSource",
]

"""Navigation layer: heading fusion, validation and the result aggregator."""

from .aggregator import NavigationAggregator, compute_navigation
from .events import HeadingUpdated, NavigationEvent, PositionUpdated, TargetChanged
from .exceptions import (
    CapabilityUnavailableError,
    InvalidCoordinateError,
    NavigationError,
    OrientationPermissionDeniedError,
)
from .heading import OrientationSample, heading_from_sample
from .validation import parse_coordinate

__all__ = [
    "CapabilityUnavailableError",
    "HeadingUpdated",
    "InvalidCoordinateError",
    "NavigationAggregator",
    "NavigationError",
    "NavigationEvent",
    "OrientationPermissionDeniedError",
    "OrientationSample",
    "PositionUpdated",
    "TargetChanged",
    "compute_navigation",
    "heading_from_sample",
    "parse_coordinate",
]

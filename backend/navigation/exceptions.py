"""Custom exceptions for the navigation layer."""


class NavigationError(Exception):
    """Base navigation exception."""


class InvalidCoordinateError(NavigationError):
    """Raised when a latitude/longitude pair is non-finite or out of range."""


class CapabilityUnavailableError(NavigationError):
    """Raised when the platform lacks a position or orientation source."""


class OrientationPermissionDeniedError(NavigationError):
    """Raised when the user refuses the one-time orientation grant."""

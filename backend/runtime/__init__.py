"""Runtime wiring for the compass device backend."""

from .runtime import CompassRuntime

__all__ = ["CompassRuntime"]

"""
Abstract contracts for the platform position and orientation sources.
"""

from __future__ import annotations

import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable

from common.config import (
    POSITION_HIGH_ACCURACY,
    POSITION_MAXIMUM_AGE_SECONDS,
    POSITION_TIMEOUT_SECONDS,
)
from common.types import Coordinate
from navigation.heading import OrientationSample


class PositionErrorCode(str, Enum):
    PERMISSION_DENIED = "permission-denied"
    UNAVAILABLE = "unavailable"
    TIMEOUT = "timeout"


class PositionError(Exception):
    """Typed failure reported by a position source."""

    def __init__(self, code: PositionErrorCode, message: str = ""):
        super().__init__(message or code.value)
        self.code = code
        self.message = message or code.value


@dataclass(frozen=True)
class PositionOptions:
    high_accuracy: bool = POSITION_HIGH_ACCURACY
    timeout_seconds: float = POSITION_TIMEOUT_SECONDS
    maximum_age_seconds: float = POSITION_MAXIMUM_AGE_SECONDS


@dataclass(frozen=True)
class PositionFix:
    coordinate: Coordinate
    accuracy_m: float | None = None
    timestamp: float = field(default_factory=time.time)


FixHandler = Callable[[PositionFix], None]
ErrorHandler = Callable[[PositionError], None]
SampleHandler = Callable[[OrientationSample], None]


class PositionSource(ABC):
    @property
    @abstractmethod
    def available(self) -> bool:
        """Whether the platform exposes positioning at all."""

    @abstractmethod
    async def get_current_position(self, options: PositionOptions | None = None) -> PositionFix:
        """
        Resolve one fix.

        Raises:
            PositionError: on denial, unavailability or timeout
        """

    @abstractmethod
    def watch_position(
        self,
        on_fix: FixHandler,
        on_error: ErrorHandler,
        options: PositionOptions | None = None,
    ) -> int:
        """Subscribe to fixes; returns a watch id for ``clear_watch``."""

    @abstractmethod
    def clear_watch(self, watch_id: int) -> None:
        """Stop a watch. No handler of that watch runs after this returns."""


class OrientationSource(ABC):
    @property
    @abstractmethod
    def available(self) -> bool:
        """Whether the platform delivers orientation samples."""

    @property
    @abstractmethod
    def requires_permission(self) -> bool:
        """Whether a one-time user grant is needed before subscribing."""

    @abstractmethod
    async def request_permission(self) -> bool:
        """Ask for the grant; returns True when granted."""

    @abstractmethod
    def subscribe(self, handler: SampleHandler) -> int:
        """Start delivering samples; returns a token for ``unsubscribe``."""

    @abstractmethod
    def unsubscribe(self, token: int) -> None:
        """Stop delivering samples to the handler registered under ``token``."""

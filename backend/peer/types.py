"""Types for the peer session lifecycle and retry policy."""
from __future__ import annotations

from dataclasses import dataclass, replace
from enum import Enum

from common.config import (
    RETRY_BACKOFF_FACTOR,
    RETRY_BASE_DELAY_MS,
    RETRY_MAX_ATTEMPTS,
    RETRY_MAX_DELAY_MS,
)


class SessionState(str, Enum):
    IDLE = "idle"
    INITIALIZING = "initializing"
    AWAITING_OPEN = "awaiting_open"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    CLOSED = "closed"
    FAILED = "failed"


@dataclass(frozen=True)
class BackoffPolicy:
    """Bounded exponential backoff for connect attempts."""

    base_delay_ms: int = RETRY_BASE_DELAY_MS
    factor: float = RETRY_BACKOFF_FACTOR
    max_delay_ms: int = RETRY_MAX_DELAY_MS
    max_attempts: int = RETRY_MAX_ATTEMPTS

    def delay_ms(self, attempt: int) -> int:
        """Delay before retry ``attempt`` (1-indexed)."""
        if attempt < 1:
            return 0
        delay = self.base_delay_ms * self.factor ** (attempt - 1)
        return int(round(min(delay, self.max_delay_ms)))

    def exhausted(self, attempt: int) -> bool:
        return attempt >= self.max_attempts


@dataclass(frozen=True)
class RetryState:
    attempt: int = 0
    next_delay_ms: int = 0

    def advance(self, policy: BackoffPolicy) -> RetryState:
        attempt = self.attempt + 1
        return replace(self, attempt=attempt, next_delay_ms=policy.delay_ms(attempt))

    def to_dict(self) -> dict:
        return {"attempt": self.attempt, "next_delay_ms": self.next_delay_ms}

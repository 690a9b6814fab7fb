"""
Sources fed from outside the process.

The browser owns the real sensors; it forwards each sample to the API, which
pushes it into these sources on the event loop.
"""
from __future__ import annotations

import asyncio
import itertools
import logging

from navigation.heading import OrientationSample
from sensors.base import (
    ErrorHandler,
    FixHandler,
    OrientationSource,
    PositionError,
    PositionErrorCode,
    PositionFix,
    PositionOptions,
    PositionSource,
    SampleHandler,
)

logger = logging.getLogger(__name__)


class PushPositionSource(PositionSource):
    def __init__(self, loop: asyncio.AbstractEventLoop, available: bool = True):
        self._loop = loop
        self._available = available
        self._ids = itertools.count(1)
        self._watches: dict[int, tuple[FixHandler, ErrorHandler]] = {}
        self._waiters: set[asyncio.Future] = set()
        self._latest: PositionFix | None = None
        self._latest_at: float | None = None

    @property
    def available(self) -> bool:
        return self._available

    def set_available(self, available: bool):
        self._available = available

    @property
    def watch_count(self) -> int:
        return len(self._watches)

    def push_fix(self, fix: PositionFix):
        self._latest = fix
        self._latest_at = self._loop.time()
        for waiter in list(self._waiters):
            if not waiter.done():
                waiter.set_result(fix)
        for on_fix, _ in list(self._watches.values()):
            on_fix(fix)

    def push_error(self, error: PositionError):
        logger.debug("Position error pushed: %s", error.code.value)
        for waiter in list(self._waiters):
            if not waiter.done():
                waiter.set_exception(error)
        for _, on_error in list(self._watches.values()):
            on_error(error)

    async def get_current_position(self, options: PositionOptions | None = None) -> PositionFix:
        options = options or PositionOptions()
        if not self._available:
            raise PositionError(PositionErrorCode.UNAVAILABLE, "Geolocation not supported.")
        if (
            self._latest is not None
            and self._loop.time() - self._latest_at <= options.maximum_age_seconds
        ):
            return self._latest

        waiter = self._loop.create_future()
        self._waiters.add(waiter)
        try:
            return await asyncio.wait_for(waiter, timeout=options.timeout_seconds)
        except asyncio.TimeoutError:
            raise PositionError(PositionErrorCode.TIMEOUT, "Timed out waiting for a position fix") from None
        finally:
            self._waiters.discard(waiter)

    def watch_position(
        self,
        on_fix: FixHandler,
        on_error: ErrorHandler,
        options: PositionOptions | None = None,
    ) -> int:
        watch_id = next(self._ids)
        self._watches[watch_id] = (on_fix, on_error)
        return watch_id

    def clear_watch(self, watch_id: int):
        self._watches.pop(watch_id, None)


class PushOrientationSource(OrientationSource):
    def __init__(self, available: bool = True, requires_permission: bool = False):
        self._available = available
        self._requires_permission = requires_permission
        self._granted: bool | None = None
        self._ids = itertools.count(1)
        self._handlers: dict[int, SampleHandler] = {}

    @property
    def available(self) -> bool:
        return self._available

    @property
    def requires_permission(self) -> bool:
        return self._requires_permission

    @property
    def subscriber_count(self) -> int:
        return len(self._handlers)

    def configure(self, available: bool | None = None, requires_permission: bool | None = None):
        if available is not None:
            self._available = available
        if requires_permission is not None:
            self._requires_permission = requires_permission

    def record_permission(self, granted: bool):
        """Store the grant decision the browser obtained from the user."""
        self._granted = granted

    async def request_permission(self) -> bool:
        if not self._requires_permission:
            return True
        return bool(self._granted)

    def push_sample(self, sample: OrientationSample):
        for handler in list(self._handlers.values()):
            handler(sample)

    def subscribe(self, handler: SampleHandler) -> int:
        token = next(self._ids)
        self._handlers[token] = handler
        return token

    def unsubscribe(self, token: int):
        self._handlers.pop(token, None)

"""Outbound coordinate throttle and heartbeat loop for the peer session."""
from __future__ import annotations

import asyncio
import logging

from common.config import COORDINATE_THROTTLE_SECONDS, HEARTBEAT_INTERVAL_SECONDS
from common.types import Coordinate
from peer.messages import coordinates_message, heartbeat_message
from peer.session import PeerSession
from peer.types import SessionState

logger = logging.getLogger(__name__)


class SyncScheduler:
    """
    Decides when local state is pushed to the peer.

    Coordinates go out at most once per throttle window (measured on the
    loop's monotonic clock); anything arriving inside the window is dropped,
    not queued. Heartbeats run on their own period while the session is
    connected. Nothing is buffered while the channel is down.
    """

    def __init__(
        self,
        session: PeerSession,
        loop: asyncio.AbstractEventLoop,
        throttle_seconds: float = COORDINATE_THROTTLE_SECONDS,
        heartbeat_interval_seconds: float = HEARTBEAT_INTERVAL_SECONDS,
    ):
        self._session = session
        self._loop = loop
        self._throttle_seconds = throttle_seconds
        self._heartbeat_interval_seconds = heartbeat_interval_seconds
        self._last_sent_at: float | None = None
        self._heartbeat_handle: asyncio.TimerHandle | None = None
        self._stopped = False
        session.add_state_listener(self._on_session_state)

    @property
    def last_sent_at(self) -> float | None:
        return self._last_sent_at

    @property
    def heartbeat_running(self) -> bool:
        return self._heartbeat_handle is not None

    def on_position(self, coordinate: Coordinate) -> bool:
        """Offer a fresh local position. Returns True if it was sent."""
        if not self._session.is_open:
            return False
        now = self._loop.time()
        if self._last_sent_at is not None and now - self._last_sent_at < self._throttle_seconds:
            return False
        if not self._session.send(coordinates_message(coordinate)):
            return False
        self._last_sent_at = now
        return True

    def stop(self):
        """Cancel the heartbeat timer; no tick fires after this returns."""
        self._stopped = True
        self._cancel_heartbeat()

    def resume(self):
        self._stopped = False
        if self._session.state is SessionState.CONNECTED:
            self._schedule_heartbeat()

    def _on_session_state(self, state: SessionState, _reason: str | None):
        if state is SessionState.CONNECTED and not self._stopped:
            self._schedule_heartbeat()
        else:
            self._cancel_heartbeat()

    def _schedule_heartbeat(self):
        self._cancel_heartbeat()
        self._heartbeat_handle = self._loop.call_later(
            self._heartbeat_interval_seconds, self._heartbeat_tick
        )

    def _cancel_heartbeat(self):
        if self._heartbeat_handle is not None:
            self._heartbeat_handle.cancel()
            self._heartbeat_handle = None

    def _heartbeat_tick(self):
        self._heartbeat_handle = None
        if self._stopped or self._session.state is not SessionState.CONNECTED:
            return
        try:
            self._session.send(heartbeat_message())
        except Exception as exc:
            logger.debug("Heartbeat send failed: %s", exc)
        self._schedule_heartbeat()

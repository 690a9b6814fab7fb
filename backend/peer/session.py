"""Peer session: one direct data channel with bounded connect retries."""
from __future__ import annotations

import asyncio
import logging
from typing import Callable

from common.types import Coordinate
from peer.events import (
    ChannelClosed,
    ChannelError,
    ChannelOpened,
    ConnectRequested,
    DataReceived,
    InboundOffer,
    SessionEvent,
    SignalingError,
    SignalingOpened,
    Teardown,
)
from peer.exceptions import (
    MalformedMessageError,
    PeerAlreadyConnectedError,
    SessionNotReadyError,
)
from peer.messages import CoordinatesMessage, parse_message
from peer.types import BackoffPolicy, RetryState, SessionState
from signaling.base import ChannelClosedError, DataConnection, SignalingClient

logger = logging.getLogger(__name__)

StateListener = Callable[[SessionState, "str | None"], None]
CoordinatesListener = Callable[[Coordinate, float], None]


class PeerSession:
    """
    State machine for a single point-to-point peer link.

    Every input, from the signaling collaborator or from callers, goes
    through ``dispatch``. Each handler runs to completion on the event loop,
    so no locking is needed. At most one remote connection is held; a second
    inbound offer is closed immediately.
    """

    def __init__(
        self,
        signaling: SignalingClient,
        loop: asyncio.AbstractEventLoop,
        policy: BackoffPolicy | None = None,
    ):
        self._signaling = signaling
        self._loop = loop
        self._policy = policy or BackoffPolicy()
        self._state = SessionState.IDLE
        self._retry = RetryState()
        self._retry_handle: asyncio.TimerHandle | None = None
        self._peer_id: str | None = None
        self._address: str | None = None
        self._remote_address: str | None = None
        self._pending_connect: str | None = None
        self._outbound = False
        self._connection: DataConnection | None = None
        self._last_error: str | None = None
        self._last_heartbeat_at: float | None = None
        self._state_listeners: list[StateListener] = []
        self._coordinates_listeners: list[CoordinatesListener] = []
        self._handlers = {
            SignalingOpened: self._on_signaling_opened,
            SignalingError: self._on_signaling_error,
            InboundOffer: self._on_inbound_offer,
            ConnectRequested: self._on_connect_requested,
            ChannelOpened: self._on_channel_opened,
            ChannelError: self._on_channel_error,
            ChannelClosed: self._on_channel_closed,
            DataReceived: self._on_data_received,
            Teardown: self._on_teardown,
        }

    # ---------- Read-only views ----------

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def retry(self) -> RetryState:
        return self._retry

    @property
    def address(self) -> str | None:
        return self._address

    @property
    def remote_address(self) -> str | None:
        return self._remote_address

    @property
    def last_error(self) -> str | None:
        return self._last_error

    @property
    def last_heartbeat_at(self) -> float | None:
        return self._last_heartbeat_at

    @property
    def is_open(self) -> bool:
        return (
            self._state is SessionState.CONNECTED
            and self._connection is not None
            and self._connection.is_open
        )

    @property
    def has_pending_retry(self) -> bool:
        return self._retry_handle is not None

    def to_dict(self) -> dict:
        return {
            "state": self._state.value,
            "address": self._address,
            "remote_address": self._remote_address,
            "last_error": self._last_error,
            "retry": self._retry.to_dict(),
            "retry_pending": self.has_pending_retry,
            "last_heartbeat_at_monotonic": self._last_heartbeat_at,
        }

    # ---------- Listeners ----------

    def add_state_listener(self, listener: StateListener):
        self._state_listeners.append(listener)

    def add_coordinates_listener(self, listener: CoordinatesListener):
        self._coordinates_listeners.append(listener)

    # ---------- Commands ----------

    def start(self, peer_id: str):
        if self._state not in (SessionState.IDLE, SessionState.CLOSED):
            raise SessionNotReadyError(f"Session already started (state={self._state.value})")
        self._peer_id = peer_id
        self._retry = RetryState()
        self._last_error = None
        self._set_state(SessionState.INITIALIZING)
        self._open_signaling()

    def connect(self, address: str):
        if self._state is SessionState.CLOSED:
            raise SessionNotReadyError("Session is closed")
        if self._state is SessionState.CONNECTED:
            raise PeerAlreadyConnectedError(
                f"Already connected to '{self._remote_address}'"
            )
        self.dispatch(ConnectRequested(address=address))

    def send(self, payload: dict) -> bool:
        """Send on the open channel. Returns False when nothing is open."""
        if not self.is_open:
            return False
        try:
            self._connection.send(payload)
        except ChannelClosedError:
            return False
        return True

    def teardown(self):
        self.dispatch(Teardown())

    def dispatch(self, event: SessionEvent):
        handler = self._handlers.get(type(event))
        if handler is None:
            raise TypeError(f"Unsupported session event: {type(event).__name__}")
        handler(event)

    # ---------- Transitions ----------

    def _on_signaling_opened(self, event: SignalingOpened):
        if self._state is not SessionState.INITIALIZING:
            logger.debug("Ignoring signaling open in state %s", self._state.value)
            return
        self._cancel_retry()
        self._retry = RetryState()
        self._address = event.address
        logger.info("Signaling open, reachable as '%s'", event.address)
        self._set_state(SessionState.AWAITING_OPEN)

        pending, self._pending_connect = self._pending_connect, None
        if pending:
            self.dispatch(ConnectRequested(address=pending))

    def _on_signaling_error(self, event: SignalingError):
        if self._state is SessionState.INITIALIZING:
            self._handle_failure(event.reason, self._open_signaling)
        elif self._state in (
            SessionState.AWAITING_OPEN,
            SessionState.CONNECTING,
            SessionState.CONNECTED,
        ):
            self._on_signaling_lost(event.reason)
        else:
            logger.debug(
                "Ignoring signaling error in state %s: %s", self._state.value, event.reason
            )

    def _on_signaling_lost(self, reason: str):
        # The inbox is gone: nothing can reach this peer until signaling reopens.
        logger.warning("Signaling lost in state %s: %s", self._state.value, reason)
        if self._state is SessionState.CONNECTING or (
            self._state is SessionState.CONNECTED and self._outbound
        ):
            self._pending_connect = self._remote_address
        self._cancel_retry()
        self._drop_connection()
        self._address = None
        self._set_state(SessionState.INITIALIZING, reason)
        self._handle_failure(reason, self._open_signaling)

    def _on_inbound_offer(self, event: InboundOffer):
        offer = event.connection
        if self._state is not SessionState.AWAITING_OPEN:
            logger.info(
                "Rejected connection from '%s' (state=%s)",
                offer.peer_address,
                self._state.value,
            )
            offer.close()
            return

        offer.accept()
        self._connection = offer
        self._outbound = False
        self._remote_address = offer.peer_address
        self._retry = RetryState()
        self._last_error = None
        logger.info("Accepted connection from '%s'", offer.peer_address)
        self._set_state(SessionState.CONNECTED)

    def _on_connect_requested(self, event: ConnectRequested):
        if self._state in (SessionState.IDLE, SessionState.INITIALIZING):
            # Replayed once signaling opens.
            self._pending_connect = event.address
            logger.info("Connect to '%s' queued until signaling opens", event.address)
            return
        if self._state in (SessionState.CONNECTED, SessionState.CLOSED):
            logger.warning(
                "Ignoring connect to '%s' in state %s", event.address, self._state.value
            )
            return
        if self._state is SessionState.CONNECTING and event.address == self._remote_address:
            return
        if self._state is SessionState.FAILED and self._address is None:
            # No live inbox: reopen signaling and replay the connect afterwards.
            self._pending_connect = event.address
            self._retry = RetryState()
            self._last_error = None
            self._set_state(SessionState.INITIALIZING)
            self._open_signaling()
            return

        self._cancel_retry()
        self._drop_connection()
        self._remote_address = event.address
        self._outbound = True
        self._retry = RetryState()
        self._last_error = None
        self._set_state(SessionState.CONNECTING)
        self._attempt_connect()

    def _on_channel_opened(self, event: ChannelOpened):
        if self._state is not SessionState.CONNECTING or event.connection is not self._connection:
            return
        self._cancel_retry()
        self._retry = RetryState()
        self._last_error = None
        logger.info("Connected to '%s'", event.connection.peer_address)
        self._set_state(SessionState.CONNECTED)

    def _on_channel_error(self, event: ChannelError):
        current = event.connection is None or event.connection is self._connection
        if self._state is SessionState.CONNECTING and current:
            self._drop_connection()
            self._handle_failure(event.reason, self._attempt_connect)
        elif self._state is SessionState.CONNECTED and event.connection is self._connection:
            logger.warning("Channel error on open connection: %s", event.reason)
            self._drop_connection()
            self._set_state(SessionState.AWAITING_OPEN, event.reason)
        else:
            logger.debug("Ignoring stale channel error: %s", event.reason)

    def _on_channel_closed(self, event: ChannelClosed):
        if event.connection is not self._connection:
            return
        if self._state is SessionState.CONNECTED:
            logger.info("Connection to '%s' closed", event.connection.peer_address)
            self._connection = None
            self._set_state(SessionState.AWAITING_OPEN)
        elif self._state is SessionState.CONNECTING:
            self._connection = None
            self._handle_failure("channel closed before opening", self._attempt_connect)

    def _on_data_received(self, event: DataReceived):
        if self._state is not SessionState.CONNECTED or event.connection is not self._connection:
            return
        try:
            message = parse_message(event.payload)
        except MalformedMessageError as exc:
            logger.warning("Discarded malformed peer message: %s", exc)
            return

        if isinstance(message, CoordinatesMessage):
            for listener in list(self._coordinates_listeners):
                try:
                    listener(message.coordinate, message.timestamp)
                except Exception:
                    logger.exception("Coordinates listener failed")
        else:
            self._last_heartbeat_at = self._loop.time()

    def _on_teardown(self, _event: Teardown):
        if self._state is SessionState.CLOSED:
            return
        self._cancel_retry()
        self._pending_connect = None
        self._drop_connection()
        try:
            self._signaling.close()
        except Exception:
            logger.exception("Failed to close signaling client")
        self._set_state(SessionState.CLOSED)

    # ---------- Helpers ----------

    def _open_signaling(self):
        self._retry_handle = None
        if self._state is not SessionState.INITIALIZING:
            return
        try:
            self._signaling.open(self._peer_id, self.dispatch)
        except Exception as exc:
            logger.exception("Signaling open raised")
            self.dispatch(SignalingError(reason=str(exc)))

    def _attempt_connect(self):
        self._retry_handle = None
        if self._state is not SessionState.CONNECTING:
            return
        logger.info(
            "Connecting to '%s' (attempt %d)", self._remote_address, self._retry.attempt + 1
        )
        try:
            self._connection = self._signaling.connect(self._remote_address)
        except Exception as exc:
            self.dispatch(ChannelError(connection=None, reason=str(exc)))

    def _handle_failure(self, reason: str, retry_callback: Callable[[], None]):
        self._retry = self._retry.advance(self._policy)
        if self._policy.exhausted(self._retry.attempt):
            self._cancel_retry()
            self._pending_connect = None
            if self._state is SessionState.INITIALIZING:
                target = "rendezvous service"
            else:
                target = self._remote_address
            self._last_error = (
                f"Could not reach '{target}' after {self._retry.attempt} attempts: {reason}"
            )
            logger.error("%s", self._last_error)
            self._set_state(SessionState.FAILED, self._last_error)
            return

        delay_ms = self._retry.next_delay_ms
        logger.warning(
            "Attempt %d failed (%s). Retrying in %.1fs",
            self._retry.attempt,
            reason,
            delay_ms / 1000,
        )
        self._schedule_retry(delay_ms, retry_callback)

    def _schedule_retry(self, delay_ms: int, callback: Callable[[], None]):
        self._cancel_retry()
        self._retry_handle = self._loop.call_later(delay_ms / 1000, callback)

    def _cancel_retry(self):
        if self._retry_handle is not None:
            self._retry_handle.cancel()
            self._retry_handle = None

    def _drop_connection(self):
        connection, self._connection = self._connection, None
        if connection is not None:
            try:
                connection.close()
            except Exception:
                logger.exception("Failed to close connection to '%s'", connection.peer_address)

    def _set_state(self, state: SessionState, reason: str | None = None):
        if state is self._state:
            return
        previous, self._state = self._state, state
        logger.debug("Session %s -> %s", previous.value, state.value)
        for listener in list(self._state_listeners):
            try:
                listener(state, reason)
            except Exception:
                logger.exception("Session state listener failed")

"""
Redis rendezvous for peer sessions.

Each peer registers a short-lived key under its address and listens on its own
pub/sub inbox channel. Channel setup is a three-message handshake carried in
JSON envelopes:

    {"type": "offer" | "accept" | "data" | "close",
     "from": <sender address>, "connection_id": <id>, "payload": <any>}

Data envelopes are relayed through the same inboxes once a connection is open.
"""
from __future__ import annotations

import asyncio
import json
import logging
from uuid import uuid4

from redis.asyncio import Redis as AsyncRedis
from redis.exceptions import RedisError

from common.config import (
    CONNECT_TIMEOUT_SECONDS,
    RENDEZVOUS_TTL_SECONDS,
    inbox_channel,
    rendezvous_key,
)
from peer.events import (
    ChannelClosed,
    ChannelError,
    ChannelOpened,
    DataReceived,
    InboundOffer,
    SignalingError,
    SignalingOpened,
)
from signaling.base import ChannelClosedError, DataConnection, Dispatch, SignalingClient

logger = logging.getLogger(__name__)

ENVELOPE_TYPES = {"offer", "accept", "data", "close"}


class RedisDataConnection(DataConnection):
    """A logical channel to one remote address, relayed through Redis inboxes."""

    def __init__(self, client: RedisSignalingClient, peer_address: str, connection_id: str):
        super().__init__(peer_address)
        self.connection_id = connection_id
        self._client = client
        self._open = False
        self._closed = False
        self._timeout_handle: asyncio.TimerHandle | None = None

    @property
    def is_open(self) -> bool:
        return self._open and not self._closed

    @property
    def is_closed(self) -> bool:
        return self._closed

    def accept(self):
        if self._closed or self._open:
            return
        self._open = True
        self._client._send_envelope(self, "accept")

    def send(self, payload: dict):
        if not self.is_open:
            raise ChannelClosedError(f"Channel to '{self.peer_address}' is not open")
        self._client._send_envelope(self, "data", payload)

    def close(self):
        if self._closed:
            return
        self._mark_closed()
        self._client._forget(self)
        self._client._send_envelope(self, "close")

    def _mark_open(self):
        self._cancel_timeout()
        self._open = True

    def _mark_closed(self):
        self._cancel_timeout()
        self._open = False
        self._closed = True

    def _cancel_timeout(self):
        if self._timeout_handle is not None:
            self._timeout_handle.cancel()
            self._timeout_handle = None


class RedisSignalingClient(SignalingClient):
    def __init__(
        self,
        redis: AsyncRedis,
        loop: asyncio.AbstractEventLoop,
        connect_timeout_seconds: float = CONNECT_TIMEOUT_SECONDS,
        rendezvous_ttl_seconds: int = RENDEZVOUS_TTL_SECONDS,
    ):
        self._redis = redis
        self._loop = loop
        self._connect_timeout_seconds = connect_timeout_seconds
        self._rendezvous_ttl_seconds = rendezvous_ttl_seconds
        self._local_address: str | None = None
        self._dispatch: Dispatch | None = None
        self._connections: dict[str, RedisDataConnection] = {}
        self._listener_task: asyncio.Task | None = None
        self._tasks: set[asyncio.Task] = set()

    @property
    def local_address(self) -> str | None:
        return self._local_address

    def open(self, peer_id: str, dispatch: Dispatch):
        self._cancel_listener()
        self._local_address = peer_id
        self._dispatch = dispatch
        self._listener_task = self._loop.create_task(self._listen(peer_id))

    def connect(self, address: str) -> RedisDataConnection:
        connection = RedisDataConnection(self, address, uuid4().hex)
        self._connections[connection.connection_id] = connection
        connection._timeout_handle = self._loop.call_later(
            self._connect_timeout_seconds, self._on_connect_timeout, connection
        )
        self._spawn(self._offer(connection))
        return connection

    def close(self):
        for connection in list(self._connections.values()):
            connection.close()
        self._connections.clear()
        self._cancel_listener()
        address, self._local_address = self._local_address, None
        self._dispatch = None
        if address:
            self._spawn(self._unregister(address))

    # ---------- Background work ----------

    async def _listen(self, peer_id: str):
        pubsub = self._redis.pubsub()
        refresh_task: asyncio.Task | None = None
        try:
            await self._redis.set(
                rendezvous_key(peer_id), peer_id, ex=self._rendezvous_ttl_seconds
            )
            await pubsub.subscribe(inbox_channel(peer_id))
            refresh_task = self._loop.create_task(self._refresh_registration(peer_id))
            self._emit(SignalingOpened(address=peer_id))

            async for message in pubsub.listen():
                if message.get("type") != "message":
                    continue
                self._handle_envelope(message.get("data"))
        except asyncio.CancelledError:
            raise
        except RedisError as exc:
            logger.warning("Signaling channel for '%s' failed: %s", peer_id, exc)
            # Stop advertising an address whose inbox is no longer read.
            self._spawn(self._unregister(peer_id))
            self._emit(SignalingError(reason=f"{type(exc).__name__}: {exc}"))
        finally:
            if refresh_task:
                refresh_task.cancel()
            try:
                await pubsub.unsubscribe()
                await pubsub.aclose()
            except Exception:
                logger.debug("Failed to clean up pubsub for '%s'", peer_id, exc_info=True)

    async def _refresh_registration(self, peer_id: str):
        interval = max(self._rendezvous_ttl_seconds / 2, 1)
        while True:
            await asyncio.sleep(interval)
            try:
                await self._redis.expire(rendezvous_key(peer_id), self._rendezvous_ttl_seconds)
            except RedisError as exc:
                logger.warning("Could not refresh rendezvous key for '%s': %s", peer_id, exc)

    async def _offer(self, connection: RedisDataConnection):
        try:
            reachable = await self._redis.exists(rendezvous_key(connection.peer_address))
        except RedisError as exc:
            self._fail(connection, f"Rendezvous lookup failed: {exc}")
            return
        if not reachable:
            self._fail(connection, f"Peer '{connection.peer_address}' is not reachable")
            return
        await self._publish(connection, "offer", self._envelope(connection, "offer"))

    async def _publish(self, connection: RedisDataConnection, kind: str, message: str):
        try:
            await self._redis.publish(inbox_channel(connection.peer_address), message)
        except RedisError as exc:
            if kind == "close":
                logger.debug("Close notice to '%s' not delivered: %s", connection.peer_address, exc)
                return
            self._fail(connection, f"Publish failed: {exc}")

    async def _unregister(self, address: str):
        try:
            await self._redis.delete(rendezvous_key(address))
        except RedisError as exc:
            logger.debug("Could not remove rendezvous key for '%s': %s", address, exc)

    # ---------- Envelope handling ----------

    def _handle_envelope(self, raw):
        try:
            envelope = json.loads(raw)
        except (TypeError, json.JSONDecodeError):
            logger.warning("Discarded non-JSON signaling envelope")
            return
        if not isinstance(envelope, dict) or envelope.get("type") not in ENVELOPE_TYPES:
            logger.warning("Discarded unknown signaling envelope")
            return

        kind = envelope["type"]
        sender = envelope.get("from")
        connection_id = envelope.get("connection_id")
        if not sender or not connection_id:
            logger.warning("Discarded signaling envelope without sender or connection id")
            return

        if kind == "offer":
            connection = RedisDataConnection(self, sender, connection_id)
            self._connections[connection_id] = connection
            self._emit(InboundOffer(connection=connection))
            return

        connection = self._connections.get(connection_id)
        if connection is None or connection.peer_address != sender:
            logger.debug("Envelope '%s' for unknown connection %s", kind, connection_id)
            return

        if kind == "accept":
            if connection.is_open:
                return
            connection._mark_open()
            self._emit(ChannelOpened(connection=connection))
        elif kind == "data":
            if connection.is_open:
                self._emit(DataReceived(connection=connection, payload=envelope.get("payload")))
        elif kind == "close":
            was_open = connection.is_open
            connection._mark_closed()
            self._forget(connection)
            if was_open:
                self._emit(ChannelClosed(connection=connection))
            else:
                self._emit(ChannelError(connection=connection, reason="Connection rejected by peer"))

    def _on_connect_timeout(self, connection: RedisDataConnection):
        connection._timeout_handle = None
        if connection.is_open or connection.is_closed:
            return
        self._fail(connection, f"Timed out waiting for '{connection.peer_address}'")

    # ---------- Helpers ----------

    def _envelope(self, connection: RedisDataConnection, kind: str, payload=None) -> str:
        envelope = {
            "type": kind,
            "from": self._local_address,
            "connection_id": connection.connection_id,
        }
        if payload is not None:
            envelope["payload"] = payload
        return json.dumps(envelope)

    def _send_envelope(self, connection: RedisDataConnection, kind: str, payload=None):
        # Built now so the sender address survives a concurrent close().
        self._spawn(self._publish(connection, kind, self._envelope(connection, kind, payload)))

    def _fail(self, connection: RedisDataConnection, reason: str):
        if connection.is_closed:
            return
        connection._mark_closed()
        self._forget(connection)
        self._emit(ChannelError(connection=connection, reason=reason))

    def _forget(self, connection: RedisDataConnection):
        current = self._connections.get(connection.connection_id)
        if current is connection:
            del self._connections[connection.connection_id]

    def _emit(self, event):
        if self._dispatch is None:
            return
        self._dispatch(event)

    def _spawn(self, coro):
        task = self._loop.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    def _cancel_listener(self):
        if self._listener_task is not None:
            self._listener_task.cancel()
            self._listener_task = None

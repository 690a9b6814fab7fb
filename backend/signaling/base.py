"""
Abstract contracts for the signaling/rendezvous collaborator.

The peer session only talks to these interfaces, so the Redis transport can be
swapped for an in-memory double in tests.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Callable

if TYPE_CHECKING:
    from peer.events import SessionEvent

Dispatch = Callable[["SessionEvent"], None]


class ChannelClosedError(Exception):
    """Raised when sending on a data channel that is not open."""


class DataConnection(ABC):
    """One direct data channel to a remote peer address."""

    def __init__(self, peer_address: str):
        self.peer_address = peer_address

    @property
    @abstractmethod
    def is_open(self) -> bool:
        """Whether payloads can currently be sent."""

    @abstractmethod
    def accept(self) -> None:
        """Accept an inbound offer, opening the channel."""

    @abstractmethod
    def send(self, payload: dict) -> None:
        """
        Send one JSON-serialisable payload.

        Raises:
            ChannelClosedError: if the channel is not open
        """

    @abstractmethod
    def close(self) -> None:
        """Close the channel. Closing twice is a no-op."""


class SignalingClient(ABC):
    """
    Maps a local peer identity to a reachable address and opens channels.

    Lifecycle results are never returned directly: they are delivered later as
    session events through the ``dispatch`` callback passed to ``open``, never
    synchronously from inside ``open`` or ``connect``.
    """

    @abstractmethod
    def open(self, peer_id: str, dispatch: Dispatch) -> None:
        """Register with the rendezvous service; emits SignalingOpened or SignalingError."""

    @abstractmethod
    def connect(self, address: str) -> DataConnection:
        """Start an outbound channel; emits ChannelOpened or ChannelError for it."""

    @abstractmethod
    def close(self) -> None:
        """Leave the rendezvous service and stop delivering events."""

"""Events consumed by PeerSession.dispatch."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Union

from signaling.base import DataConnection


@dataclass(frozen=True)
class SignalingOpened:
    address: str


@dataclass(frozen=True)
class SignalingError:
    reason: str


@dataclass(frozen=True)
class InboundOffer:
    connection: DataConnection


@dataclass(frozen=True)
class ConnectRequested:
    address: str


@dataclass(frozen=True)
class ChannelOpened:
    connection: DataConnection


@dataclass(frozen=True)
class ChannelError:
    connection: DataConnection | None
    reason: str


@dataclass(frozen=True)
class ChannelClosed:
    connection: DataConnection


@dataclass(frozen=True)
class DataReceived:
    connection: DataConnection
    payload: Any


@dataclass(frozen=True)
class Teardown:
    pass


SessionEvent = Union[
    SignalingOpened,
    SignalingError,
    InboundOffer,
    ConnectRequested,
    ChannelOpened,
    ChannelError,
    ChannelClosed,
    DataReceived,
    Teardown,
]

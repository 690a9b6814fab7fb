"""Peer session package: lifecycle, wire protocol and sync scheduling."""

from .exceptions import (
    MalformedMessageError,
    PeerAlreadyConnectedError,
    PeerSessionError,
    SessionNotReadyError,
)
from .session import PeerSession
from .sync import SyncScheduler
from .types import BackoffPolicy, RetryState, SessionState

__all__ = [
    "BackoffPolicy",
    "MalformedMessageError",
    "PeerAlreadyConnectedError",
    "PeerSession",
    "PeerSessionError",
    "RetryState",
    "SessionNotReadyError",
    "SessionState",
    "SyncScheduler",
]

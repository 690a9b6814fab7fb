"""Signaling collaborator contracts and transports."""

from .base import ChannelClosedError, DataConnection, Dispatch, SignalingClient

__all__ = [
    "ChannelClosedError",
    "DataConnection",
    "Dispatch",
    "SignalingClient",
]

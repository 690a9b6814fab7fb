"""Custom exceptions for the peer session."""


class PeerSessionError(Exception):
    """Base peer session exception."""


class SessionNotReadyError(PeerSessionError):
    """Raised when an operation needs a started, non-closed session."""


class PeerAlreadyConnectedError(PeerSessionError):
    """Raised when connecting while a remote connection is already held."""


class MalformedMessageError(PeerSessionError):
    """Raised when an inbound payload matches no known message shape."""

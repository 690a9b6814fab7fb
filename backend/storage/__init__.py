"""Durable device state: saved target and local identities."""

from .state_store import Identity, StateStore, derive_peer_id

__all__ = ["Identity", "StateStore", "derive_peer_id"]

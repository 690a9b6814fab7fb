"""Redis configuration and helpers for the signaling rendezvous."""
from __future__ import annotations

import os

from redis.asyncio import Redis as AsyncRedis

REDIS_URL = os.getenv("REDIS_URL", "redis://localhost:6379/0")
REDIS_SIGNALING_PREFIX = os.getenv("REDIS_SIGNALING_PREFIX", "compass")
RENDEZVOUS_TTL_SECONDS = int(os.getenv("RENDEZVOUS_TTL_SECONDS", "60"))


def rendezvous_key(peer_id: str) -> str:
    """Registry key marking a peer address as reachable."""
    return f"{REDIS_SIGNALING_PREFIX}:rendezvous:{peer_id}"


def inbox_channel(peer_id: str) -> str:
    """Build pub/sub channel name a peer listens on."""
    return f"{REDIS_SIGNALING_PREFIX}:inbox:{peer_id}"


def create_async_redis_client() -> AsyncRedis:
    """Create an async Redis client for the signaling collaborator."""
    return AsyncRedis.from_url(REDIS_URL, decode_responses=True)

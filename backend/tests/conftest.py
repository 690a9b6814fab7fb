"""Shared test fixtures for backend tests.

Uses an in-memory SQLite database for persisted state and in-memory doubles
for signaling, so tests run without Redis or a browser.
"""
from __future__ import annotations

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from db.database import Base
from peer.session import PeerSession
from peer.sync import SyncScheduler
from peer.types import BackoffPolicy
from storage.state_store import StateStore
from tests.fakes import FakeLoop, FakeSignalingClient


# ---------- Database fixtures ----------

@pytest.fixture()
def db_engine():
    engine = create_engine(
        "sqlite://",
        echo=False,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture()
def session_factory(db_engine):
    return sessionmaker(bind=db_engine, autocommit=False, autoflush=False, class_=Session)


@pytest.fixture()
def store(session_factory) -> StateStore:
    return StateStore(session_factory)


# ---------- Peer fixtures ----------

@pytest.fixture()
def loop() -> FakeLoop:
    return FakeLoop()


@pytest.fixture()
def signaling() -> FakeSignalingClient:
    return FakeSignalingClient()


@pytest.fixture()
def policy() -> BackoffPolicy:
    return BackoffPolicy(base_delay_ms=1000, factor=1.5, max_delay_ms=10000, max_attempts=10)


@pytest.fixture()
def peer_session(signaling, loop, policy) -> PeerSession:
    return PeerSession(signaling, loop, policy)


@pytest.fixture()
def open_session(peer_session, signaling):
    """A session whose signaling has opened, reachable as 'peer-a'."""
    from peer.events import SignalingOpened

    peer_session.start("peer-a")
    signaling.emit(SignalingOpened(address="peer-a"))
    return peer_session


@pytest.fixture()
def scheduler(peer_session, loop) -> SyncScheduler:
    return SyncScheduler(peer_session, loop, throttle_seconds=1.0, heartbeat_interval_seconds=5.0)


# ---------- FastAPI test client ----------

@pytest.fixture()
def app_client(monkeypatch, db_engine, session_factory):
    """TestClient for the full api.app with Redis and signaling replaced."""
    import api

    class _FakeRedis:
        async def aclose(self):
            return None

    signaling_clients: list[FakeSignalingClient] = []

    def _fake_signaling(_redis_client, _loop):
        client = FakeSignalingClient()
        signaling_clients.append(client)
        return client

    monkeypatch.setattr(api, "create_async_redis_client", lambda: _FakeRedis())
    monkeypatch.setattr(api, "create_signaling_client", _fake_signaling)
    monkeypatch.setattr(api, "SessionLocal", session_factory)
    monkeypatch.setattr(api, "init_db", lambda: None)

    with TestClient(api.app) as c:
        c.signaling = signaling_clients[0]
        yield c

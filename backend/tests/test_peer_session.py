"""Peer session lifecycle: transitions, single connection, bounded retries."""
from __future__ import annotations

import pytest

from common.types import Coordinate
from peer.events import (
    ChannelClosed,
    ChannelError,
    ChannelOpened,
    DataReceived,
    InboundOffer,
    SignalingError,
    SignalingOpened,
)
from peer.exceptions import PeerAlreadyConnectedError, SessionNotReadyError
from peer.types import SessionState
from tests.fakes import FakeConnection


def _connect_inbound(session, signaling, address="peer-b") -> FakeConnection:
    offer = FakeConnection(address)
    signaling.emit(InboundOffer(connection=offer))
    return offer


def _fail_current(signaling, reason="unreachable"):
    signaling.emit(ChannelError(connection=signaling.last_connection, reason=reason))


class TestStartup:
    def test_start_opens_signaling(self, peer_session, signaling):
        peer_session.start("peer-a")
        assert peer_session.state is SessionState.INITIALIZING
        assert signaling.opened == ["peer-a"]

    def test_signaling_open_moves_to_awaiting(self, open_session):
        assert open_session.state is SessionState.AWAITING_OPEN
        assert open_session.address == "peer-a"
        assert open_session.retry.attempt == 0

    def test_start_twice_is_rejected(self, open_session):
        with pytest.raises(SessionNotReadyError):
            open_session.start("peer-a")

    def test_signaling_error_retries_open_with_backoff(self, peer_session, signaling, loop):
        peer_session.start("peer-a")
        signaling.emit(SignalingError(reason="redis down"))

        assert peer_session.state is SessionState.INITIALIZING
        assert peer_session.retry.attempt == 1
        assert loop.pending_delays() == [1.0]

        loop.advance(1.0)
        assert signaling.opened == ["peer-a", "peer-a"]

    def test_open_raising_is_treated_as_signaling_error(self, peer_session, signaling, loop):
        signaling.open_error = RuntimeError("no route")
        peer_session.start("peer-a")
        assert peer_session.retry.attempt == 1
        assert len(loop.pending) == 1

    def test_connect_before_signaling_opens_is_replayed(self, peer_session, signaling):
        peer_session.start("peer-a")
        peer_session.connect("peer-b")
        assert signaling.connections == []

        signaling.emit(SignalingOpened(address="peer-a"))
        assert peer_session.state is SessionState.CONNECTING
        assert signaling.last_connection.peer_address == "peer-b"


class TestInboundConnections:
    def test_first_offer_is_accepted(self, open_session, signaling):
        offer = _connect_inbound(open_session, signaling)
        assert offer.accepted
        assert open_session.state is SessionState.CONNECTED
        assert open_session.remote_address == "peer-b"
        assert open_session.is_open

    def test_second_offer_is_closed_immediately(self, open_session, signaling):
        first = _connect_inbound(open_session, signaling, "peer-b")
        second = _connect_inbound(open_session, signaling, "peer-c")

        assert second.closed
        assert not second.accepted
        assert not first.closed
        assert open_session.state is SessionState.CONNECTED
        assert open_session.remote_address == "peer-b"

    def test_remote_close_returns_to_awaiting(self, open_session, signaling):
        offer = _connect_inbound(open_session, signaling)
        signaling.emit(ChannelClosed(connection=offer))
        assert open_session.state is SessionState.AWAITING_OPEN
        assert not open_session.is_open

    def test_channel_error_while_connected_returns_to_awaiting(self, open_session, signaling):
        offer = _connect_inbound(open_session, signaling)
        signaling.emit(ChannelError(connection=offer, reason="ice failed"))
        assert open_session.state is SessionState.AWAITING_OPEN
        assert offer.closed


class TestOutboundConnections:
    def test_connect_then_open(self, open_session, signaling):
        open_session.connect("peer-b")
        assert open_session.state is SessionState.CONNECTING

        connection = signaling.last_connection
        connection.set_open()
        signaling.emit(ChannelOpened(connection=connection))

        assert open_session.state is SessionState.CONNECTED
        assert open_session.retry.attempt == 0

    def test_connect_while_connected_is_rejected(self, open_session, signaling):
        _connect_inbound(open_session, signaling)
        with pytest.raises(PeerAlreadyConnectedError):
            open_session.connect("peer-c")

    def test_open_event_for_stale_connection_is_ignored(self, open_session, signaling):
        open_session.connect("peer-b")
        stale = FakeConnection("peer-b", open=True)
        signaling.emit(ChannelOpened(connection=stale))
        assert open_session.state is SessionState.CONNECTING

    def test_close_before_open_counts_as_failure(self, open_session, signaling):
        open_session.connect("peer-b")
        signaling.emit(ChannelClosed(connection=signaling.last_connection))
        assert open_session.state is SessionState.CONNECTING
        assert open_session.retry.attempt == 1

    def test_connect_raising_schedules_retry(self, open_session, signaling, loop):
        signaling.connect_error = RuntimeError("bad address")
        open_session.connect("peer-b")
        assert open_session.retry.attempt == 1
        assert loop.pending_delays() == [1.0]


class TestRetryBackoff:
    def test_delays_grow_by_factor(self, open_session, signaling, loop):
        open_session.connect("peer-b")
        observed = []
        for _ in range(4):
            _fail_current(signaling)
            observed.append(open_session.retry.next_delay_ms)
            loop.advance(open_session.retry.next_delay_ms / 1000)

        assert observed == [1000, 1500, 2250, 3375]
        assert len(signaling.connections) == 5

    def test_gives_up_after_ten_failed_attempts(self, open_session, signaling, loop):
        open_session.connect("peer-b")
        for _ in range(10):
            assert len(loop.pending) <= 1
            _fail_current(signaling)
            if open_session.state is SessionState.FAILED:
                break
            loop.advance(open_session.retry.next_delay_ms / 1000)

        assert open_session.state is SessionState.FAILED
        assert len(signaling.connections) == 10
        assert loop.pending == []
        assert "after 10 attempts" in open_session.last_error

        loop.advance(60)
        assert len(signaling.connections) == 10

    def test_success_resets_attempts(self, open_session, signaling, loop):
        open_session.connect("peer-b")
        _fail_current(signaling)
        loop.advance(1.0)

        connection = signaling.last_connection
        connection.set_open()
        signaling.emit(ChannelOpened(connection=connection))
        assert open_session.retry.attempt == 0
        assert open_session.retry.next_delay_ms == 0

    def test_new_connect_replaces_pending_timer(self, open_session, signaling, loop):
        open_session.connect("peer-b")
        _fail_current(signaling)
        assert len(loop.pending) == 1

        open_session.connect("peer-c")
        assert loop.pending == []
        assert signaling.last_connection.peer_address == "peer-c"
        assert open_session.retry.attempt == 0

    def test_connect_from_failed_starts_fresh(self, open_session, signaling, loop):
        open_session.connect("peer-b")
        for _ in range(10):
            _fail_current(signaling)
            loop.advance(10)
        assert open_session.state is SessionState.FAILED

        open_session.connect("peer-b")
        assert open_session.state is SessionState.CONNECTING
        assert open_session.retry.attempt == 0
        assert open_session.last_error is None


class TestSignalingLoss:
    def test_loss_while_awaiting_reopens_with_backoff(self, open_session, signaling, loop):
        signaling.emit(SignalingError(reason="ConnectionError: inbox dropped"))

        assert open_session.state is SessionState.INITIALIZING
        assert open_session.address is None
        assert open_session.retry.attempt == 1
        assert loop.pending_delays() == [1.0]

        loop.advance(1.0)
        assert signaling.opened == ["peer-a", "peer-a"]
        signaling.emit(SignalingOpened(address="peer-a"))
        assert open_session.state is SessionState.AWAITING_OPEN
        assert open_session.retry.attempt == 0

    def test_loss_while_connecting_replays_connect(self, open_session, signaling, loop):
        open_session.connect("peer-b")
        _fail_current(signaling)
        attempt = signaling.last_connection
        loop.advance(1.0)

        signaling.emit(SignalingError(reason="inbox dropped"))
        assert signaling.last_connection.closed
        assert attempt is not signaling.last_connection
        assert open_session.state is SessionState.INITIALIZING
        assert open_session.retry.attempt == 2
        assert loop.pending_delays() == [1.5]

        loop.advance(1.5)
        assert len(signaling.opened) == 2
        signaling.emit(SignalingOpened(address="peer-a"))
        assert open_session.state is SessionState.CONNECTING
        assert signaling.last_connection.peer_address == "peer-b"
        assert not signaling.last_connection.closed

    def test_loss_while_connected_inbound_only_reopens(self, open_session, signaling, loop):
        offer = _connect_inbound(open_session, signaling)
        signaling.emit(SignalingError(reason="inbox dropped"))

        assert offer.closed
        assert open_session.state is SessionState.INITIALIZING
        assert not open_session.is_open

        loop.advance(1.0)
        signaling.emit(SignalingOpened(address="peer-a"))
        assert open_session.state is SessionState.AWAITING_OPEN
        assert signaling.connections == []

    def test_loss_while_connected_outbound_reconnects(self, open_session, signaling, loop):
        open_session.connect("peer-b")
        first = signaling.last_connection
        first.set_open()
        signaling.emit(ChannelOpened(connection=first))
        assert open_session.state is SessionState.CONNECTED

        signaling.emit(SignalingError(reason="inbox dropped"))
        assert first.closed
        assert open_session.state is SessionState.INITIALIZING

        loop.advance(1.0)
        signaling.emit(SignalingOpened(address="peer-a"))
        assert open_session.state is SessionState.CONNECTING
        assert signaling.last_connection is not first
        assert signaling.last_connection.peer_address == "peer-b"

    def test_connect_after_exhausted_reopen_reinitializes(self, open_session, signaling, loop):
        signaling.emit(SignalingError(reason="inbox dropped"))
        for _ in range(9):
            loop.advance(10)
            signaling.emit(SignalingError(reason="redis down"))
        assert open_session.state is SessionState.FAILED
        assert "rendezvous service" in open_session.last_error
        assert loop.pending == []

        opened = len(signaling.opened)
        open_session.connect("peer-b")
        assert open_session.state is SessionState.INITIALIZING
        assert len(signaling.opened) == opened + 1
        assert signaling.connections == []

        signaling.emit(SignalingOpened(address="peer-a"))
        assert open_session.state is SessionState.CONNECTING
        assert signaling.last_connection.peer_address == "peer-b"


class TestTeardown:
    def test_teardown_cancels_retry_and_closes(self, open_session, signaling, loop):
        open_session.connect("peer-b")
        _fail_current(signaling)
        assert len(loop.pending) == 1
        assert open_session.to_dict()["retry_pending"] is True

        open_session.teardown()
        assert open_session.state is SessionState.CLOSED
        assert loop.pending == []
        assert not open_session.has_pending_retry
        assert signaling.close_count == 1

    def test_teardown_is_idempotent(self, open_session, signaling):
        open_session.teardown()
        open_session.teardown()
        assert signaling.close_count == 1

    def test_teardown_closes_open_connection(self, open_session, signaling):
        offer = _connect_inbound(open_session, signaling)
        open_session.teardown()
        assert offer.closed

    def test_connect_after_teardown_is_rejected(self, open_session):
        open_session.teardown()
        with pytest.raises(SessionNotReadyError):
            open_session.connect("peer-b")


class TestInboundData:
    def test_coordinates_reach_listeners(self, open_session, signaling):
        received = []
        open_session.add_coordinates_listener(lambda coord, ts: received.append((coord, ts)))
        offer = _connect_inbound(open_session, signaling)

        signaling.emit(
            DataReceived(
                connection=offer,
                payload={"kind": "coordinates", "latitude": 1.5, "longitude": 2.5, "timestamp": 9},
            )
        )
        assert received == [(Coordinate(1.5, 2.5), 9)]

    def test_heartbeat_records_liveness(self, open_session, signaling, loop):
        offer = _connect_inbound(open_session, signaling)
        loop.advance(3.0)
        signaling.emit(DataReceived(connection=offer, payload={"kind": "heartbeat", "timestamp": 1}))
        assert open_session.last_heartbeat_at == 3.0

    def test_malformed_payload_is_discarded(self, open_session, signaling, caplog):
        received = []
        open_session.add_coordinates_listener(lambda coord, ts: received.append(coord))
        offer = _connect_inbound(open_session, signaling)

        signaling.emit(DataReceived(connection=offer, payload={"kind": "unknown"}))
        signaling.emit(DataReceived(connection=offer, payload="not json"))

        assert received == []
        assert open_session.state is SessionState.CONNECTED
        assert not offer.closed
        assert "malformed" in caplog.text.lower()

    def test_data_from_other_connection_is_ignored(self, open_session, signaling):
        received = []
        open_session.add_coordinates_listener(lambda coord, ts: received.append(coord))
        _connect_inbound(open_session, signaling)

        stranger = FakeConnection("peer-x", open=True)
        signaling.emit(
            DataReceived(
                connection=stranger,
                payload={"kind": "coordinates", "latitude": 1, "longitude": 2, "timestamp": 3},
            )
        )
        assert received == []


class TestStateListeners:
    def test_listener_sees_transitions_with_reason(self, peer_session, signaling, loop):
        seen = []
        peer_session.add_state_listener(lambda state, reason: seen.append((state, reason)))
        peer_session.start("peer-a")
        signaling.emit(SignalingOpened(address="peer-a"))
        peer_session.connect("peer-b")
        for _ in range(10):
            _fail_current(signaling)
            loop.advance(10)

        states = [state for state, _ in seen]
        assert states == [
            SessionState.INITIALIZING,
            SessionState.AWAITING_OPEN,
            SessionState.CONNECTING,
            SessionState.FAILED,
        ]
        assert seen[-1][1] == peer_session.last_error

    def test_failing_listener_does_not_break_session(self, open_session, signaling):
        def _boom(state, reason):
            raise RuntimeError("listener bug")

        open_session.add_state_listener(_boom)
        _connect_inbound(open_session, signaling)
        assert open_session.state is SessionState.CONNECTED

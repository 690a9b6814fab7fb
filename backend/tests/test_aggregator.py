from __future__ import annotations

import pytest

from common.types import Coordinate, Target, TargetSource
from navigation.aggregator import NavigationAggregator, compute_navigation
from navigation.events import HeadingUpdated, PositionUpdated, TargetChanged

ORIGIN = Coordinate(0.0, 0.0)
EAST = Coordinate(0.0, 1.0)


def _target(coord: Coordinate, source=TargetSource.MANUAL) -> TargetChanged:
    return TargetChanged(Target(coord, source))


class TestComputeNavigation:
    def test_neutral_without_position_or_target(self):
        assert compute_navigation(None, 0.0, EAST) is None
        assert compute_navigation(ORIGIN, 0.0, None) is None

    def test_delta_is_none_without_heading(self):
        result = compute_navigation(ORIGIN, None, EAST)
        assert result.bearing == pytest.approx(90.0)
        assert result.delta is None

    def test_delta_relative_to_heading(self):
        result = compute_navigation(ORIGIN, 60.0, EAST)
        assert result.delta == pytest.approx(30.0)

    def test_target_directly_behind_reads_plus_180(self):
        result = compute_navigation(ORIGIN, 270.0, EAST)
        assert result.delta == 180.0


class TestNavigationAggregator:
    def test_recomputes_on_every_event(self):
        agg = NavigationAggregator()
        assert agg.dispatch(PositionUpdated(ORIGIN)) is None
        assert agg.dispatch(_target(EAST)) is not None
        result = agg.dispatch(HeadingUpdated(90.0))
        assert result.delta == pytest.approx(0.0)
        assert agg.result is result

    def test_listeners_receive_results(self):
        agg = NavigationAggregator()
        seen = []
        agg.subscribe(seen.append)
        agg.dispatch(PositionUpdated(ORIGIN))
        agg.dispatch(_target(EAST))
        assert seen[0] is None
        assert seen[1].distance == pytest.approx(111_195, rel=1e-3)

    def test_unsubscribe_stops_delivery(self):
        agg = NavigationAggregator()
        seen = []
        unsubscribe = agg.subscribe(seen.append)
        unsubscribe()
        unsubscribe()
        agg.dispatch(PositionUpdated(ORIGIN))
        assert seen == []

    def test_clearing_heading_keeps_bearing(self):
        agg = NavigationAggregator()
        agg.dispatch(PositionUpdated(ORIGIN))
        agg.dispatch(_target(EAST))
        agg.dispatch(HeadingUpdated(10.0))
        result = agg.dispatch(HeadingUpdated(None))
        assert result.delta is None
        assert result.bearing == pytest.approx(90.0)

    def test_latest_target_wins(self):
        agg = NavigationAggregator()
        agg.dispatch(PositionUpdated(ORIGIN))
        agg.dispatch(_target(EAST))
        agg.dispatch(_target(Coordinate(1.0, 0.0), TargetSource.PEER))
        assert agg.target.source is TargetSource.PEER
        assert agg.result.bearing == pytest.approx(0.0)

    def test_clearing_target_returns_to_neutral(self):
        agg = NavigationAggregator()
        agg.dispatch(PositionUpdated(ORIGIN))
        agg.dispatch(_target(EAST))
        assert agg.dispatch(TargetChanged(None)) is None

    def test_failing_listener_does_not_block_others(self):
        agg = NavigationAggregator()
        seen = []

        def _boom(_result):
            raise RuntimeError("render failed")

        agg.subscribe(_boom)
        agg.subscribe(seen.append)
        agg.dispatch(PositionUpdated(ORIGIN))
        assert seen == [None]

    def test_unknown_event_is_rejected(self):
        with pytest.raises(TypeError):
            NavigationAggregator().dispatch(object())

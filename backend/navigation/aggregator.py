"""Navigation aggregator: position + heading + target -> bearing/distance/delta."""
from __future__ import annotations

import logging
from typing import Callable

from common.types import Coordinate, NavigationResult, Target
from geodesy import great_circle_distance, initial_bearing, signed_angular_difference
from navigation.events import HeadingUpdated, NavigationEvent, PositionUpdated, TargetChanged

logger = logging.getLogger(__name__)

ResultListener = Callable[[NavigationResult | None], None]


def compute_navigation(
    position: Coordinate | None,
    heading: float | None,
    target: Coordinate | None,
) -> NavigationResult | None:
    if position is None or target is None:
        return None

    bearing = initial_bearing(position, target)
    distance = great_circle_distance(position, target)
    delta = None if heading is None else signed_angular_difference(heading, bearing)
    return NavigationResult(bearing=bearing, distance=distance, delta=delta)


class NavigationAggregator:
    """Holds the latest inputs and recomputes on every change.

    State is only mutated through ``dispatch``; listeners receive the new
    result (or None for the neutral state) after each event.
    """

    def __init__(self):
        self._position: Coordinate | None = None
        self._heading: float | None = None
        self._target: Target | None = None
        self._result: NavigationResult | None = None
        self._listeners: list[ResultListener] = []
        self._handlers = {
            PositionUpdated: self._on_position,
            HeadingUpdated: self._on_heading,
            TargetChanged: self._on_target,
        }

    @property
    def position(self) -> Coordinate | None:
        return self._position

    @property
    def heading(self) -> float | None:
        return self._heading

    @property
    def target(self) -> Target | None:
        return self._target

    @property
    def result(self) -> NavigationResult | None:
        return self._result

    def subscribe(self, listener: ResultListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def _unsubscribe():
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def dispatch(self, event: NavigationEvent) -> NavigationResult | None:
        handler = self._handlers.get(type(event))
        if handler is None:
            raise TypeError(f"Unsupported navigation event: {type(event).__name__}")
        handler(event)
        return self._recompute()

    def _on_position(self, event: PositionUpdated):
        self._position = event.coordinate

    def _on_heading(self, event: HeadingUpdated):
        self._heading = event.heading

    def _on_target(self, event: TargetChanged):
        self._target = event.target
        if event.target is not None:
            logger.debug(
                "Target set from %s: %s, %s",
                event.target.source.value,
                event.target.coordinate.latitude,
                event.target.coordinate.longitude,
            )

    def _recompute(self) -> NavigationResult | None:
        target = self._target.coordinate if self._target else None
        self._result = compute_navigation(self._position, self._heading, target)
        for listener in list(self._listeners):
            try:
                listener(self._result)
            except Exception:
                logger.exception("Navigation listener failed")
        return self._result

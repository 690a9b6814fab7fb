"""Input events consumed by the navigation aggregator."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Union

from common.types import Coordinate, Target


@dataclass(frozen=True)
class PositionUpdated:
    coordinate: Coordinate | None


@dataclass(frozen=True)
class HeadingUpdated:
    heading: float | None


@dataclass(frozen=True)
class TargetChanged:
    target: Target | None


NavigationEvent = Union[PositionUpdated, HeadingUpdated, TargetChanged]

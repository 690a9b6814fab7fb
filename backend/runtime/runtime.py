"""Compass runtime: one object owning sensors, navigation and the peer link."""
from __future__ import annotations

import asyncio
import logging
from typing import Callable

from common.types import Coordinate, NavigationResult, Target, TargetSource
from navigation.aggregator import NavigationAggregator
from navigation.events import HeadingUpdated, PositionUpdated, TargetChanged
from navigation.exceptions import CapabilityUnavailableError, OrientationPermissionDeniedError
from navigation.formatting import format_degrees, format_distance
from navigation.heading import OrientationSample, heading_from_sample
from navigation.validation import parse_coordinate
from peer.session import PeerSession
from peer.share_link import build_share_link, extract_peer_address
from peer.sync import SyncScheduler
from peer.types import BackoffPolicy
from sensors.base import (
    OrientationSource,
    PositionError,
    PositionFix,
    PositionOptions,
    PositionSource,
)
from signaling.base import SignalingClient
from storage.state_store import Identity, StateStore

logger = logging.getLogger(__name__)


class CompassRuntime:
    """
    Explicit replacement for page-level globals.

    Event handlers receive this object by reference and mutate state only
    through the aggregator and session dispatch functions. Everything runs on
    one event loop.
    """

    def __init__(
        self,
        loop: asyncio.AbstractEventLoop,
        signaling: SignalingClient,
        store: StateStore,
        position_source: PositionSource,
        orientation_source: OrientationSource,
        share_base_url: str = "http://localhost:5173/",
        policy: BackoffPolicy | None = None,
        sync_options: dict | None = None,
        position_options: PositionOptions | None = None,
    ):
        self._loop = loop
        self._store = store
        self._position_source = position_source
        self._orientation_source = orientation_source
        self._share_base_url = share_base_url
        self._position_options = position_options or PositionOptions()
        self._identity: Identity | None = None
        self._position_watch: int | None = None
        self._orientation_token: int | None = None
        self._reported_missing: set[str] = set()

        self.aggregator = NavigationAggregator()
        self.session = PeerSession(signaling, loop, policy)
        self.scheduler = SyncScheduler(self.session, loop, **(sync_options or {}))
        self.session.add_coordinates_listener(self._on_peer_coordinates)
        self.session.add_state_listener(self._on_session_state)

    # ---------- Lifecycle ----------

    def boot(self):
        """Read persisted state once and open the signaling session."""
        saved = self._store.load_target()
        if saved:
            self.aggregator.dispatch(TargetChanged(Target(saved, TargetSource.PERSISTED)))
            logger.info("Loaded target: %s, %s", saved.latitude, saved.longitude)
        else:
            self.aggregator.dispatch(TargetChanged(None))
            logger.info("No saved target.")

        self._identity = self._store.load_or_create_identity()
        self.session.start(self._identity.peer_id)

    def shutdown(self):
        """Stop sensors and tear the session down; no timer fires afterwards."""
        self.stop_monitoring()
        self.session.teardown()

    @property
    def identity(self) -> Identity | None:
        return self._identity

    @property
    def monitoring(self) -> bool:
        return self._position_watch is not None or self._orientation_token is not None

    # ---------- Sensors ----------

    async def start_monitoring(self):
        """
        Request the orientation grant if needed, then subscribe to both sources.

        Raises:
            OrientationPermissionDeniedError: the grant was refused; nothing
                new is subscribed and any running position watch is kept
        """
        if (
            self._orientation_source.available
            and self._orientation_token is None
            and self._orientation_source.requires_permission
        ):
            granted = await self._orientation_source.request_permission()
            if not granted:
                logger.warning("Start failed: Device orientation permission denied.")
                raise OrientationPermissionDeniedError("Device orientation permission denied.")

        self._start_orientation()
        self._start_position()
        self.scheduler.resume()
        logger.info("Sensors started.")

    def stop_monitoring(self):
        self._stop_orientation()
        self._stop_position()
        self.scheduler.stop()
        # The connect retry timer belongs to the session; shutdown cancels it.
        logger.info("Stopped.")

    def _start_orientation(self):
        if not self._orientation_source.available:
            self._report_missing("orientation", "DeviceOrientation not supported.")
            return
        if self._orientation_token is not None:
            return
        self._orientation_token = self._orientation_source.subscribe(self.on_orientation_sample)
        logger.info("Orientation listener started.")

    def _stop_orientation(self):
        if self._orientation_token is None:
            return
        self._orientation_source.unsubscribe(self._orientation_token)
        self._orientation_token = None
        self.aggregator.dispatch(HeadingUpdated(None))
        logger.info("Orientation listener stopped.")

    def _start_position(self):
        if not self._position_source.available:
            self._report_missing("position", "Geolocation not supported.")
            return
        if self._position_watch is not None:
            return
        self._position_watch = self._position_source.watch_position(
            self.on_position_fix,
            self.on_position_error,
            self._position_options,
        )
        logger.info("Geolocation watch started.")

    def _stop_position(self):
        if self._position_watch is None:
            return
        self._position_source.clear_watch(self._position_watch)
        self._position_watch = None
        logger.info("Geolocation watch stopped.")

    def _report_missing(self, capability: str, message: str):
        if capability in self._reported_missing:
            return
        self._reported_missing.add(capability)
        logger.warning(message)

    def on_position_fix(self, fix: PositionFix):
        self.aggregator.dispatch(PositionUpdated(fix.coordinate))
        self.scheduler.on_position(fix.coordinate)

    def on_position_error(self, error: PositionError):
        logger.warning("Geolocation error: %s", error.message)

    def on_orientation_sample(self, sample: OrientationSample):
        self.aggregator.dispatch(HeadingUpdated(heading_from_sample(sample)))

    # ---------- Target ----------

    def save_target(self, latitude, longitude, source: TargetSource = TargetSource.MANUAL) -> Target:
        """
        Validate, persist and apply a new target.

        Raises:
            InvalidCoordinateError: for non-finite or out-of-range input
        """
        coordinate = parse_coordinate(latitude, longitude)
        return self._apply_target(coordinate, source)

    async def use_current_location(self) -> Target:
        """
        Save a one-shot position read as the target.

        Raises:
            CapabilityUnavailableError: no position source on this platform
            PositionError: the read failed
        """
        if not self._position_source.available:
            raise CapabilityUnavailableError("Geolocation not supported.")
        options = PositionOptions(
            high_accuracy=self._position_options.high_accuracy,
            timeout_seconds=self._position_options.timeout_seconds,
            maximum_age_seconds=0.0,
        )
        try:
            fix = await self._position_source.get_current_position(options)
        except PositionError as exc:
            logger.warning("Geolocation error: %s", exc.message)
            raise
        return self._apply_target(fix.coordinate, TargetSource.SELF)

    def _apply_target(self, coordinate: Coordinate, source: TargetSource) -> Target:
        self._store.save_target(coordinate)
        target = Target(coordinate, source)
        self.aggregator.dispatch(TargetChanged(target))
        if source is not TargetSource.PEER:
            logger.info("Saved target: %s, %s", coordinate.latitude, coordinate.longitude)
        return target

    def _on_peer_coordinates(self, coordinate: Coordinate, _timestamp: float):
        self._apply_target(coordinate, TargetSource.PEER)

    # ---------- Peer ----------

    def connect(self, address: str):
        self.session.connect(address.strip())

    def open_share_link(self, url: str) -> tuple[str | None, str]:
        """Connect to the peer named in ``url`` (if any) and return the stripped URL."""
        address, stripped = extract_peer_address(url)
        if address and address != self.session.address:
            logger.info("Connecting to shared peer '%s'", address)
            self.connect(address)
        return address, stripped

    @property
    def share_link(self) -> str | None:
        if not self.session.address:
            return None
        return build_share_link(self._share_base_url, self.session.address)

    def _on_session_state(self, state, reason: str | None):
        if reason:
            logger.info("Peer session %s: %s", state.value, reason)
        else:
            logger.info("Peer session %s", state.value)

    # ---------- Views ----------

    def subscribe(self, listener: Callable[[NavigationResult | None], None]) -> Callable[[], None]:
        return self.aggregator.subscribe(listener)

    def snapshot(self) -> dict:
        result = self.aggregator.result
        position = self.aggregator.position
        target = self.aggregator.target
        heading = self.aggregator.heading
        return {
            "heading": heading,
            "position": position.to_dict() if position else None,
            "target": (
                {**target.coordinate.to_dict(), "source": target.source.value}
                if target
                else None
            ),
            "result": result.to_dict() if result else None,
            "display": {
                "heading": format_degrees(heading),
                "bearing": format_degrees(result.bearing if result else None),
                "delta": format_degrees(result.delta if result else None),
                "distance": format_distance(result.distance if result else None),
                "arrow_rotation_deg": result.delta if result and result.delta is not None else 0.0,
            },
            "monitoring": self.monitoring,
        }

    def session_info(self) -> dict:
        return {**self.session.to_dict(), "share_link": self.share_link}

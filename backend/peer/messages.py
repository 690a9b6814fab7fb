"""
Pydantic models for the peer wire protocol.

Two JSON shapes travel over the data channel, told apart by ``kind``.
"""
from __future__ import annotations

import json
import time
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

from common.types import Coordinate
from peer.exceptions import MalformedMessageError


class CoordinatesMessage(BaseModel):
    """Live position of the sending peer."""

    model_config = ConfigDict(allow_inf_nan=False)

    kind: Literal["coordinates"]
    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)
    timestamp: float  # Milliseconds since the Unix epoch

    @property
    def coordinate(self) -> Coordinate:
        return Coordinate(latitude=self.latitude, longitude=self.longitude)


class HeartbeatMessage(BaseModel):
    """Liveness ping; carries nothing else."""

    model_config = ConfigDict(allow_inf_nan=False)

    kind: Literal["heartbeat"]
    timestamp: float


PeerMessage = Annotated[
    Union[CoordinatesMessage, HeartbeatMessage],
    Field(discriminator="kind"),
]

_peer_message_adapter = TypeAdapter(PeerMessage)


def _now_ms() -> float:
    return time.time() * 1000


def parse_message(payload: Any) -> CoordinatesMessage | HeartbeatMessage:
    """Decode a raw channel payload (dict, str or bytes)."""
    if isinstance(payload, bytes):
        payload = payload.decode("utf-8", errors="replace")
    if isinstance(payload, str):
        try:
            payload = json.loads(payload)
        except json.JSONDecodeError as exc:
            raise MalformedMessageError(f"Payload is not JSON: {exc}") from exc
    if not isinstance(payload, dict):
        raise MalformedMessageError(f"Payload must be an object, got {type(payload).__name__}")
    try:
        return _peer_message_adapter.validate_python(payload)
    except ValidationError as exc:
        raise MalformedMessageError(
            f"Unrecognised peer message (kind={payload.get('kind')!r})"
        ) from exc


def coordinates_message(coordinate: Coordinate, timestamp_ms: float | None = None) -> dict:
    return CoordinatesMessage(
        kind="coordinates",
        latitude=coordinate.latitude,
        longitude=coordinate.longitude,
        timestamp=_now_ms() if timestamp_ms is None else timestamp_ms,
    ).model_dump()


def heartbeat_message(timestamp_ms: float | None = None) -> dict:
    return HeartbeatMessage(
        kind="heartbeat",
        timestamp=_now_ms() if timestamp_ms is None else timestamp_ms,
    ).model_dump()

"""
Persisted device state backed by the key/value table.

Three values survive restarts: the last saved target, the locally generated
session identity and the peer identity derived from it. They are read once at
startup and written only on explicit save or when a peer sends coordinates.
"""
from __future__ import annotations

import hashlib
import json
import logging
from dataclasses import dataclass
from typing import Callable
from uuid import uuid4

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from common.types import Coordinate
from db.models import PersistedValue
from navigation.exceptions import InvalidCoordinateError
from navigation.validation import parse_coordinate

logger = logging.getLogger(__name__)

TARGET_KEY = "compass_target_v1"
SESSION_ID_KEY = "compass_session_id_v1"
PEER_ID_KEY = "compass_peer_id_v1"
PEER_ID_PREFIX = "compass"


@dataclass(frozen=True)
class Identity:
    session_id: str
    peer_id: str


def derive_peer_id(session_id: str) -> str:
    """Stable, shareable peer address derived from the session identity."""
    digest = hashlib.sha256(session_id.encode("utf-8")).hexdigest()
    return f"{PEER_ID_PREFIX}-{digest[:16]}"


class StateStore:
    def __init__(self, session_factory: Callable[[], Session]):
        self._session_factory = session_factory

    def _get(self, key: str) -> str | None:
        with self._session_factory() as db:
            row = db.get(PersistedValue, key)
            return row.value if row else None

    def _put(self, key: str, value: str):
        with self._session_factory() as db:
            row = db.get(PersistedValue, key)
            if row is None:
                db.add(PersistedValue(key=key, value=value))
            else:
                row.value = value
            db.commit()

    def load_target(self) -> Coordinate | None:
        """Return the saved target, or None when missing or unusable."""
        try:
            raw = self._get(TARGET_KEY)
        except SQLAlchemyError:
            logger.exception("Failed to read saved target")
            return None
        if not raw:
            return None
        try:
            data = json.loads(raw)
            return parse_coordinate(data["latitude"], data["longitude"])
        except (json.JSONDecodeError, KeyError, TypeError, InvalidCoordinateError):
            logger.warning("Ignoring unreadable saved target")
            return None

    def save_target(self, coordinate: Coordinate):
        self._put(TARGET_KEY, json.dumps(coordinate.to_dict()))

    def load_or_create_identity(self) -> Identity:
        session_id = self._get(SESSION_ID_KEY)
        if not session_id:
            session_id = uuid4().hex
            self._put(SESSION_ID_KEY, session_id)
            logger.info("Generated new session identity")

        peer_id = self._get(PEER_ID_KEY)
        if not peer_id:
            peer_id = derive_peer_id(session_id)
            self._put(PEER_ID_KEY, peer_id)
        return Identity(session_id=session_id, peer_id=peer_id)

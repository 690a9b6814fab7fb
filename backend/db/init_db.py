from __future__ import annotations

from sqlalchemy.engine import Engine

from db.database import Base, engine
from db import models  # noqa: F401 - ensure metadata is registered


def init_db(bind: Engine | None = None) -> None:
    """Create the persisted-state tables if they do not exist yet."""
    Base.metadata.create_all(bind=bind or engine)

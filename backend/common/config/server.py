"""HTTP server settings."""
from __future__ import annotations

import os
from dataclasses import dataclass

from .paths import DEFAULT_DATABASE_PATH

_DEFAULT_CORS_ORIGINS = [
    "http://localhost:5173",
    "http://localhost:3000",
    "http://127.0.0.1:5173",
    "http://127.0.0.1:3000",
]


def _parse_cors_origins() -> list[str]:
    raw = os.getenv("CORS_ORIGINS", "")
    if raw.strip():
        return [o.strip() for o in raw.split(",") if o.strip()]
    return list(_DEFAULT_CORS_ORIGINS)


@dataclass(frozen=True)
class Settings:
    database_url: str = os.getenv("DATABASE_URL", f"sqlite:///{DEFAULT_DATABASE_PATH}")
    share_base_url: str = os.getenv("SHARE_BASE_URL", "http://localhost:5173/")
    status_log_capacity: int = int(os.getenv("STATUS_LOG_CAPACITY", "200"))
    cors_origins: tuple[str, ...] = tuple(_parse_cors_origins())


settings = Settings()

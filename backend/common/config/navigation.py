"""Timing and retry tuning for the navigation and peer layers."""
from __future__ import annotations

import os

# Outbound coordinate throttle and liveness
COORDINATE_THROTTLE_SECONDS = float(os.getenv("COORDINATE_THROTTLE_SECONDS", "1.0"))
HEARTBEAT_INTERVAL_SECONDS = float(os.getenv("HEARTBEAT_INTERVAL_SECONDS", "5.0"))

# Connect retry backoff: min(base * factor^(n-1), cap)
RETRY_BASE_DELAY_MS = int(os.getenv("RETRY_BASE_DELAY_MS", "1000"))
RETRY_BACKOFF_FACTOR = float(os.getenv("RETRY_BACKOFF_FACTOR", "1.5"))
RETRY_MAX_DELAY_MS = int(os.getenv("RETRY_MAX_DELAY_MS", "10000"))
RETRY_MAX_ATTEMPTS = int(os.getenv("RETRY_MAX_ATTEMPTS", "10"))
CONNECT_TIMEOUT_SECONDS = float(os.getenv("CONNECT_TIMEOUT_SECONDS", "10"))

# Position source request options
POSITION_HIGH_ACCURACY = True
POSITION_TIMEOUT_SECONDS = float(os.getenv("POSITION_TIMEOUT_SECONDS", "15"))
POSITION_MAXIMUM_AGE_SECONDS = float(os.getenv("POSITION_MAXIMUM_AGE_SECONDS", "0.5"))

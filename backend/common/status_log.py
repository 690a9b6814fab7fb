"""
Rolling, user-facing status log.

A logging handler that keeps the most recent records as short timestamped
lines, newest first, for the status panel.
"""
from __future__ import annotations

import logging
from collections import deque
from datetime import datetime

_STATUS_LOGGERS = ("runtime", "peer")


class StatusLog(logging.Handler):
    def __init__(self, capacity: int = 200, level: int = logging.INFO):
        super().__init__(level=level)
        self._lines: deque[str] = deque(maxlen=capacity)

    def emit(self, record: logging.LogRecord) -> None:
        try:
            ts = datetime.fromtimestamp(record.created).strftime("%H:%M:%S")
            self._lines.appendleft(f"[{ts}] {record.getMessage()}")
        except Exception:
            self.handleError(record)

    def lines(self, limit: int | None = None) -> list[str]:
        items = list(self._lines)
        return items if limit is None else items[:limit]


def install_status_log(capacity: int = 200, logger_names=_STATUS_LOGGERS) -> StatusLog:
    """Attach a StatusLog to the runtime and peer loggers."""
    handler = StatusLog(capacity=capacity)
    for name in logger_names:
        target = logging.getLogger(name)
        if target.level == logging.NOTSET or target.level > logging.INFO:
            target.setLevel(logging.INFO)
        target.addHandler(handler)
    return handler


def remove_status_log(handler: StatusLog, logger_names=_STATUS_LOGGERS) -> None:
    for name in logger_names:
        logging.getLogger(name).removeHandler(handler)

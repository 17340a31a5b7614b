from __future__ import annotations

import json
import logging
from collections import deque
from datetime import datetime, timezone

RECENT_LOG_LIMIT = 300

# Newest first; served by the monitoring endpoint.
recent_logs: deque = deque(maxlen=RECENT_LOG_LIMIT)

logger = logging.getLogger("stackinsights")
if not logger.handlers:
    logger.setLevel(logging.INFO)
    _handler = logging.StreamHandler()
    _handler.setFormatter(logging.Formatter("%(message)s"))
    logger.addHandler(_handler)

_WARNING_SUFFIXES = ("_failed", "_corrupt", "_mismatch")


def log_event(event: str, **fields: object) -> None:
    """Emit one JSON line per engine event.

    Failure events (``*_failed``, ``*_corrupt``, ``*_mismatch``) go out at
    WARNING so storage and sink degradation shows up without INFO noise.
    """
    entry = {"ts": datetime.now(timezone.utc).isoformat(), "event": event}
    entry.update(fields)
    recent_logs.appendleft(entry)
    level = logging.WARNING if event.endswith(_WARNING_SUFFIXES) else logging.INFO
    logger.log(level, json.dumps(entry, default=str))

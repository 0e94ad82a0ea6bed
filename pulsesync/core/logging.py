"""PulseSync — Structured JSON Logging.

One JSON object per line on stdout. Sync context (day partition, batch,
attempt, failing store operation, event kind) rides along as whitelisted
`extra=` fields so log queries can filter on them.
"""

import logging
import json
import sys
from datetime import datetime, timezone
from pulsesync.config import settings

SERVICE_NAME = "pulsesync"

EXTRA_FIELDS = (
    "day_key",
    "batch_index",
    "attempt",
    "mode",
    "duration_ms",
    "status_code",
    "operation",
    "event_kind",
    "record_id",
)


class JSONFormatter(logging.Formatter):
    """Sync engine log line: when it happened, where, and for which partition."""

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            # Time the event was logged, not when the handler got to it
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "service": SERVICE_NAME,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.levelno >= logging.ERROR:
            log_entry["location"] = f"{record.module}:{record.lineno}"
        if record.exc_info and record.exc_info[0] is not None:
            log_entry["exception"] = self.formatException(record.exc_info)
        for key in EXTRA_FIELDS:
            value = getattr(record, key, None)
            if value is not None:
                log_entry[key] = value
        return json.dumps(log_entry, default=str)


def get_logger(name: str) -> logging.Logger:
    """`pulsesync.<name>` logger writing JSON lines at the configured level."""
    logger = logging.getLogger(f"{SERVICE_NAME}.{name}")
    if not logger.handlers:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(JSONFormatter())
        logger.addHandler(handler)
    logger.setLevel(getattr(logging, settings.log_level.upper(), logging.INFO))
    return logger

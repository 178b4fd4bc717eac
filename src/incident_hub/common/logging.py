"""Structured JSON logging for Incident Hub.

Every module logs under the ``incident_hub`` tree (``incident_hub.auth``,
``incident_hub.incidents``, ``incident_hub.realtime.manager`` ...), so one
handler on that logger covers the whole service. Context passed through
``extra=`` (acting user, incident, realtime room and event) is emitted as
top-level JSON keys.
"""

import logging
import json
import sys
from datetime import datetime, timezone

CONTEXT_FIELDS = ("user_id", "incident_id", "room", "event")


class JSONFormatter(logging.Formatter):
    """Format log records as JSON lines."""

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for key in CONTEXT_FIELDS:
            value = getattr(record, key, None)
            if value is not None:
                log_entry[key] = value
        if record.exc_info and record.exc_info[1]:
            log_entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(log_entry, default=str)


def setup_logging(level: str = "INFO") -> None:
    """Attach the JSON handler to the ``incident_hub`` tree once."""
    root = logging.getLogger("incident_hub")
    root.setLevel(getattr(logging, level.upper(), logging.INFO))
    if any(isinstance(h.formatter, JSONFormatter) for h in root.handlers):
        return

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JSONFormatter())
    root.addHandler(handler)
    root.propagate = False


def get_logger(name: str) -> logging.Logger:
    """Get a logger scoped under incident_hub."""
    return logging.getLogger(f"incident_hub.{name}")

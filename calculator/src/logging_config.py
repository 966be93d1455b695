"""
Structured JSON logging configuration for the calculator daemon.

Each log record is emitted as a single JSON line containing
``timestamp``, ``level``, ``logger``, ``thread`` and ``message``. When a
record was logged with ``extra={"facility_id": ...}`` the facility is
included, and exceptions are rendered into an ``exc_info`` field so one
engine's failure stays on one line.

CHANGELOG:
- 2026-10-17: Initial creation

TODO:
- None
"""

import json
import logging
from datetime import UTC, datetime

# Extra record attributes copied into the JSON line when present.
_CONTEXT_FIELDS = ("facility_id", "instance_key")


class JSONFormatter(logging.Formatter):
    """Logging formatter that outputs a single JSON object per line."""

    def format(self, record: logging.LogRecord) -> str:
        """Render *record* as one JSON line.

        Args:
            record: Record emitted by any calculator logger.

        Returns:
            JSON text without embedded newlines.
        """
        payload = {
            "timestamp": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "thread": record.threadName,
            "message": record.getMessage(),
        }
        for field in _CONTEXT_FIELDS:
            value = getattr(record, field, None)
            if value is not None:
                payload[field] = value
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


def setup_logging(level: int = logging.INFO) -> None:
    """Configure the root logger with structured JSON output.

    Removes any existing handlers on the root logger and installs
    a single ``StreamHandler`` using :class:`JSONFormatter`. The
    InfluxDB client's own loggers are capped at WARNING.

    Args:
        level: Logging level for the root logger.
    """
    root = logging.getLogger()
    root.setLevel(level)

    for handler in root.handlers[:]:
        root.removeHandler(handler)

    handler = logging.StreamHandler()
    handler.setFormatter(JSONFormatter())
    root.addHandler(handler)

    logging.getLogger("influxdb_client").setLevel(logging.WARNING)
    logging.getLogger("urllib3").setLevel(logging.WARNING)

"""Logging setup for the Hiraeth server.

Lifecycle code logs with ``extra={"object_id": ...}`` and friends; the
formatters here surface those fields. JSON output puts them at the top
level of each line. Text output appends them as ``key=value`` pairs so an
object can be followed through a plain log with grep.
"""

import json
import logging
import sys
from datetime import datetime, timezone

# Record attributes copied into the output, in this order.
_EXTRA_FIELDS = (
    "service",
    "request_id",
    "method",
    "path",
    "status",
    "duration_ms",
    "object_id",
    "owner_id",
    "reason",
    "expiry",
    "size",
)

# Library loggers that are chatty at INFO or DEBUG.
_QUIET_LOGGERS = ("aiosqlite", "multipart", "python_multipart")


def _extras(record: logging.LogRecord) -> dict[str, object]:
    fields = {}
    for key in _EXTRA_FIELDS:
        value = getattr(record, key, None)
        if value is not None:
            fields[key] = value
    return fields


class ServiceFilter(logging.Filter):
    """Stamp every record with the service name."""

    def __init__(self, service: str) -> None:
        super().__init__()
        self.service = service

    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, "service"):
            record.service = self.service
        return True


class JSONFormatter(logging.Formatter):
    """Formats log records as single-line JSON objects.

    Fields: timestamp, level, logger, message, plus any known extras.
    """

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        entry.update(_extras(record))
        if record.exc_info and record.exc_info[1] is not None:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


class TextFormatter(logging.Formatter):
    """Human-readable lines with lifecycle fields appended.

    The service name is left out; it is the same on every line.
    """

    def __init__(self) -> None:
        super().__init__("%(asctime)s %(levelname)s %(name)s: %(message)s")

    def format(self, record: logging.LogRecord) -> str:
        message = super().format(record)
        fields = _extras(record)
        fields.pop("service", None)
        # The request log line already spells these out.
        for key in ("method", "path", "status", "duration_ms"):
            fields.pop(key, None)
        if not fields:
            return message
        suffix = " ".join(f"{key}={value}" for key, value in fields.items())
        return f"{message} [{suffix}]"


def configure_logging(level: str = "INFO", fmt: str = "text", service: str | None = None) -> None:
    """Install a single stderr handler on the root logger.

    Calling it again replaces the handler, so the CLI can set up a basic
    logger for config errors first and reconfigure once the config is read.

    Args:
        level: Log level name. Unknown names fall back to INFO.
        fmt: ``"json"`` for one JSON object per line, anything else for text.
        service: Name stamped on every record, usually ``server.name``.
    """
    numeric_level = getattr(logging, str(level).upper(), None)
    if not isinstance(numeric_level, int):
        numeric_level = logging.INFO

    root = logging.getLogger()
    root.setLevel(numeric_level)
    for existing in root.handlers[:]:
        root.removeHandler(existing)

    handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(numeric_level)
    handler.setFormatter(JSONFormatter() if fmt == "json" else TextFormatter())
    if service:
        handler.addFilter(ServiceFilter(service))
    root.addHandler(handler)

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(numeric_level, logging.WARNING))

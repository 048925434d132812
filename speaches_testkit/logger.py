"""
Structured logging setup for the speaches test service.

Provides JSON and text logging formats with configurable levels. Context is
attached to records through ``extra={...}`` and rendered by both formatters.
"""

import json
import logging
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict

from speaches_testkit.config import LogConfig

# Attributes every LogRecord carries; anything else came in through ``extra``.
_RECORD_ATTRIBUTES = frozenset([
    "name", "msg", "args", "created", "filename", "funcName",
    "levelname", "levelno", "lineno", "module", "msecs",
    "message", "pathname", "process", "processName", "relativeCreated",
    "thread", "threadName", "exc_info", "exc_text", "stack_info", "taskName",
])

# Chatty client libraries, kept at WARNING unless explicitly reconfigured.
_QUIET_LOGGERS = ("httpx", "httpcore", "docker", "urllib3")


def _extra_fields(record: logging.LogRecord) -> Dict[str, Any]:
    """Collect user-supplied fields from a log record."""
    return {
        key: value
        for key, value in record.__dict__.items()
        if key not in _RECORD_ATTRIBUTES and not key.startswith("_") and value is not None
    }


class JSONFormatter(logging.Formatter):
    """JSON formatter for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON."""
        log_data: Dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        log_data.update(_extra_fields(record))

        return json.dumps(log_data, default=str)


class TextFormatter(logging.Formatter):
    """Human-readable text formatter for logging."""

    def __init__(self):
        super().__init__(
            fmt="%(asctime)s [%(levelname)-8s] %(name)s: %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as text, appending extra fields as JSON."""
        message = super().format(record)

        extra_fields = _extra_fields(record)
        if extra_fields:
            message += f" | {json.dumps(extra_fields, default=str)}"

        return message


def setup_logging(config: LogConfig):
    """
    Setup logging configuration.

    Args:
        config: Logging configuration
    """
    log_level = getattr(logging, config.level.upper(), logging.INFO)

    if config.format == "json":
        formatter = JSONFormatter()
    else:
        formatter = TextFormatter()

    if config.output == "stdout" or config.output == "":
        handler = logging.StreamHandler(sys.stdout)
    else:
        log_file = Path(config.output)
        log_file.parent.mkdir(parents=True, exist_ok=True)
        handler = logging.FileHandler(log_file)

    handler.setFormatter(formatter)
    handler.setLevel(log_level)

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    root_logger.handlers = [handler]  # Replace existing handlers

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

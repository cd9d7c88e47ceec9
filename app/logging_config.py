"""
Logging setup for the pipeline process.

Two output modes:
- text: one human-readable line per record, pipeline context appended as
  ``[table=user_metrics topic=...]``
- JSON: one object per line for log aggregators

Pipeline code attaches context with ``extra=``:

```python
logger.warning("Dropping record", extra={"table": record.table, "topic": record.topic})
```
"""

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any, Dict

from core.exceptions import ConfigurationError

# Record attributes lifted out of ``extra=`` when present
CONTEXT_FIELDS = ("table", "category", "operation", "topic", "subscriber_id")

# Third-party loggers pinned to their own level
LIBRARY_LEVELS = {
    "uvicorn.access": logging.INFO,
    "uvicorn.error": logging.INFO,
    "asyncio": logging.WARNING,
}

TEXT_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
TEXT_DATEFMT = "%Y-%m-%d %H:%M:%S"


def context_of(record: logging.LogRecord) -> Dict[str, Any]:
    """Pipeline context attached to a record, in CONTEXT_FIELDS order."""
    return {name: getattr(record, name) for name in CONTEXT_FIELDS if hasattr(record, name)}


class ContextTextFormatter(logging.Formatter):
    """Text formatter that appends pipeline context to the message line."""

    def __init__(self) -> None:
        super().__init__(fmt=TEXT_FORMAT, datefmt=TEXT_DATEFMT)

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        context = context_of(record)
        if not context:
            return line

        suffix = " ".join(f"{key}={value}" for key, value in context.items())
        head, sep, tail = line.partition("\n")
        return f"{head} [{suffix}]{sep}{tail}"


class JSONFormatter(logging.Formatter):
    """
    Formatter emitting one JSON object per record.

    Keys: timestamp (record creation time, UTC, ``Z`` suffix), level, logger,
    message, any pipeline context, ``extra_fields`` entries, exception text
    and the emitting source location.
    """

    def format(self, record: logging.LogRecord) -> str:
        created = datetime.fromtimestamp(record.created, tz=timezone.utc)
        payload: Dict[str, Any] = {
            "timestamp": created.isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        payload.update(context_of(record))

        extra_fields = getattr(record, "extra_fields", None)
        if isinstance(extra_fields, dict):
            payload.update(extra_fields)

        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)

        payload["source"] = {
            "file": record.pathname,
            "line": record.lineno,
            "function": record.funcName,
        }
        # Events and row images may carry datetimes
        return json.dumps(payload, default=str)


def resolve_level(level: str) -> int:
    """
    Map a level name such as ``info`` to its logging constant.

    Raises:
        ConfigurationError: If the name is not a standard level.
    """
    value = logging.getLevelName(level.strip().upper())
    if not isinstance(value, int):
        raise ConfigurationError(f"Unknown log level: {level!r}", {"level": level})
    return value


def configure_structured_logging(
    level: str = "INFO",
    enable_json: bool = False,
) -> None:
    """
    Replace the root handlers with a single stdout handler.

    Args:
        level: Root level name (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        enable_json: JSON lines instead of text
    """
    root_level = resolve_level(level)
    root_logger = logging.getLogger()
    root_logger.setLevel(root_level)

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(root_level)
    handler.setFormatter(JSONFormatter() if enable_json else ContextTextFormatter())
    root_logger.addHandler(handler)

    for name, library_level in LIBRARY_LEVELS.items():
        logging.getLogger(name).setLevel(library_level)

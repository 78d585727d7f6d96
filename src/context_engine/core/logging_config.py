"""Logging configuration and diagnostic line sinks.

All context-engine components log through standard module loggers
(``logging.getLogger(__name__)``) under the ``context_engine`` namespace.
Components additionally accept an optional line-oriented *sink*: any
callable taking a string, or an object exposing ``append_line`` or
``write``. When a sink is present every diagnostic line is mirrored to it;
when absent, behaviour is unchanged and only the logger sees the line.

Usage:
    from context_engine.core.logging_config import configure_logging

    configure_logging(level="DEBUG", format="human")
    logger = logging.getLogger(__name__)
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional, Protocol, TextIO, Union, runtime_checkable

__all__ = [
    "HumanReadableFormatter",
    "LineSink",
    "LogSink",
    "StructuredFormatter",
    "configure_logging",
    "emit_diagnostic",
    "resolve_sink",
]

ROOT_LOGGER_NAME = "context_engine"


# =============================================================================
# Formatters
# =============================================================================


class StructuredFormatter(logging.Formatter):
    """JSON-structured log formatter for machine-readable output.

    Example output:
        {"timestamp":"2024-01-15T10:30:45.123+00:00","level":"INFO",
         "logger":"context_engine.core.feeder","message":"Excluded ..."}
    """

    _STANDARD_ATTRS = frozenset(
        {
            "name",
            "msg",
            "args",
            "levelname",
            "levelno",
            "pathname",
            "filename",
            "module",
            "lineno",
            "funcName",
            "created",
            "msecs",
            "relativeCreated",
            "thread",
            "threadName",
            "processName",
            "process",
            "message",
            "exc_info",
            "exc_text",
            "stack_info",
            "taskName",
        }
    )

    def __init__(self, *, include_extra: bool = True, timestamp_format: str = "iso"):
        """Initialize the structured formatter.

        Args:
            include_extra: Include extra record attributes
            timestamp_format: "iso" for ISO 8601, "unix" for Unix timestamp
        """
        super().__init__()
        self.include_extra = include_extra
        self.timestamp_format = timestamp_format

    def format(self, record: logging.LogRecord) -> str:
        log_entry: Dict[str, Any] = {}

        if self.timestamp_format == "iso":
            log_entry["timestamp"] = datetime.fromtimestamp(
                record.created, tz=timezone.utc
            ).isoformat()
        else:
            log_entry["timestamp"] = record.created

        log_entry["level"] = record.levelname
        log_entry["logger"] = record.name
        log_entry["message"] = record.getMessage()

        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)

        if self.include_extra:
            extra = {}
            for key, value in record.__dict__.items():
                if key in self._STANDARD_ATTRS:
                    continue
                try:
                    json.dumps(value)
                    extra[key] = value
                except (TypeError, ValueError):
                    extra[key] = str(value)
            if extra:
                log_entry["extra"] = extra

        return json.dumps(log_entry, default=str)


class HumanReadableFormatter(logging.Formatter):
    """Human-readable formatter.

    Produces logs in format:
        2024-01-15 10:30:45 [INFO] core.feeder: message
    """

    def __init__(self, *, include_timestamp: bool = True, include_location: bool = False):
        super().__init__()
        self.include_timestamp = include_timestamp
        self.include_location = include_location

    def format(self, record: logging.LogRecord) -> str:
        parts = []

        if self.include_timestamp:
            ts = datetime.fromtimestamp(record.created).strftime("%Y-%m-%d %H:%M:%S")
            parts.append(ts)

        parts.append(f"[{record.levelname}]")

        logger_name = record.name
        prefix = ROOT_LOGGER_NAME + "."
        if logger_name.startswith(prefix):
            logger_name = logger_name[len(prefix):]
        parts.append(f"{logger_name}:")

        parts.append(record.getMessage())

        if self.include_location:
            parts.append(f"({record.filename}:{record.lineno})")

        result = " ".join(parts)
        if record.exc_info:
            result += "\n" + self.formatException(record.exc_info)
        return result


def configure_logging(
    *,
    level: Union[int, str] = logging.INFO,
    format: str = "structured",  # "structured" or "human"
    stream: Optional[TextIO] = None,
) -> logging.Logger:
    """Configure the root context_engine logger.

    Args:
        level: Log level (default: INFO)
        format: Output format ("structured" for JSON, "human" for readable)
        stream: Output stream (default: stderr)

    Returns:
        Configured root logger for context_engine
    """
    if isinstance(level, str):
        level = getattr(logging, level.upper(), logging.INFO)

    logger = logging.getLogger(ROOT_LOGGER_NAME)
    logger.setLevel(level)
    logger.handlers.clear()

    handler = logging.StreamHandler(stream or sys.stderr)
    handler.setLevel(level)
    if format == "structured":
        handler.setFormatter(StructuredFormatter())
    else:
        handler.setFormatter(HumanReadableFormatter())

    logger.addHandler(handler)
    return logger


# =============================================================================
# Line Sinks
# =============================================================================


@runtime_checkable
class LineSink(Protocol):
    """Object-style sink, e.g. an editor output channel."""

    def append_line(self, line: str) -> None: ...


LogSink = Union[Callable[[str], Any], LineSink, TextIO]


def resolve_sink(sink: Optional[LogSink]) -> Optional[Callable[[str], Any]]:
    """Normalize a sink into a single-argument callable (or None).

    Raises:
        TypeError: If the object is neither callable nor exposes
            ``append_line``/``write``
    """
    if sink is None:
        return None
    if hasattr(sink, "append_line"):
        return sink.append_line
    if hasattr(sink, "write"):
        writer = sink.write
        return lambda line: writer(line + "\n")
    if callable(sink):
        return sink
    raise TypeError(
        f"Log sink must be callable or expose append_line/write, got {type(sink).__name__}"
    )


def emit_diagnostic(
    logger: logging.Logger,
    sink: Optional[Callable[[str], Any]],
    message: str,
    level: int = logging.DEBUG,
) -> None:
    """Log a diagnostic line and mirror it to the sink when one is attached."""
    logger.log(level, message)
    if sink is not None:
        sink(message)

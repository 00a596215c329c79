"""Structured logging utilities for copyforce."""

from __future__ import annotations

import json
import logging
import sys
import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, timezone
from time import perf_counter
from typing import Any, TextIO

TEXT_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"

NOISY_LOGGERS = ("simple_salesforce", "urllib3", "azure", "requests")

_STANDARD_ATTRS = frozenset({
    "name", "msg", "args", "created", "filename", "funcName",
    "levelname", "levelno", "lineno", "module", "msecs", "pathname",
    "process", "processName", "relativeCreated", "stack_info",
    "exc_info", "exc_text", "thread", "threadName", "taskName",
    "message", "correlation_id",
})


class JSONFormatter(logging.Formatter):
    """Format log records as one JSON object per line."""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        if getattr(record, "correlation_id", None):
            log_data["correlation_id"] = record.correlation_id

        for key, value in record.__dict__.items():
            if key in _STANDARD_ATTRS or key.startswith("_"):
                continue
            if isinstance(value, datetime):
                log_data[key] = value.isoformat()
            elif hasattr(value, "__dict__"):
                log_data[key] = str(value)
            else:
                try:
                    json.dumps(value)
                    log_data[key] = value
                except (TypeError, ValueError):
                    log_data[key] = str(value)

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


class CorrelationIdFilter(logging.Filter):
    """Stamp every log record with the id of the current extraction run."""

    _correlation_id: str | None = None

    @classmethod
    def set_correlation_id(cls, correlation_id: str | None) -> None:
        cls._correlation_id = correlation_id

    @classmethod
    def get_correlation_id(cls) -> str | None:
        return cls._correlation_id

    @classmethod
    def generate_correlation_id(cls) -> str:
        correlation_id = str(uuid.uuid4())
        cls._correlation_id = correlation_id
        return correlation_id

    def filter(self, record: logging.LogRecord) -> bool:
        record.correlation_id = self._correlation_id
        return True


def setup_logging(level: str = "ERROR", json_format: bool = False, stream: TextIO | None = None) -> None:
    """Configure the root logger.

    Logs go to stderr by default so they never mix with data written to
    stdout by shell pipelines.
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(level.upper())
    root_logger.handlers.clear()

    handler = logging.StreamHandler(stream if stream is not None else sys.stderr)
    handler.setLevel(level.upper())

    if json_format:
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(logging.Formatter(TEXT_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))

    handler.addFilter(CorrelationIdFilter())
    root_logger.addHandler(handler)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    """Get a logger with the given name."""
    return logging.getLogger(name)


@contextmanager
def log_operation(logger: logging.Logger, operation: str, **context: Any) -> Iterator[dict[str, Any]]:
    """Log the start and end of an operation with its duration.

    Yields the context dict; keys added to it inside the block (row counts,
    batch counts) are included in the completion or failure record.
    """
    start_time = perf_counter()
    logger.info(f"Starting {operation}", extra=dict(context))

    try:
        yield context
    except Exception as e:
        context["duration_ms"] = int((perf_counter() - start_time) * 1000)
        logger.error(f"Failed {operation}", extra={**context, "error": str(e)})
        raise
    context["duration_ms"] = int((perf_counter() - start_time) * 1000)
    logger.info(f"Completed {operation}", extra=context)

"""
Logging utilities for couchhouse.

JSON-structured log records with a run-scoped correlation ID. Structured fields
passed through ``extra=`` are emitted as top-level JSON keys.
"""

import json
import logging
import sys
import uuid
from typing import Optional, Dict, Any
from datetime import datetime, timezone
from contextvars import ContextVar

# Context variable for correlation ID propagation
_correlation_id: ContextVar[Optional[str]] = ContextVar('correlation_id', default=None)

# Attributes every LogRecord has; anything else came from ``extra``
_RESERVED_ATTRS = frozenset(vars(logging.LogRecord("", 0, "", 0, "", (), None))) | {
    "message", "asctime", "taskName",
}


def get_correlation_id() -> Optional[str]:
    """Get the current correlation ID from context."""
    return _correlation_id.get()


def set_correlation_id(correlation_id: Optional[str] = None) -> str:
    """Set correlation ID in context.

    Args:
        correlation_id: Optional correlation ID. If None, generates a new UUID.

    Returns:
        The correlation ID that was set
    """
    if correlation_id is None:
        correlation_id = str(uuid.uuid4())
    _correlation_id.set(correlation_id)
    return correlation_id


def clear_correlation_id():
    _correlation_id.set(None)


class JSONFormatter(logging.Formatter):
    """JSON formatter for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        log_data: Dict[str, Any] = {
            'timestamp': datetime.now(timezone.utc).isoformat(),
            'level': record.levelname,
            'logger': record.name,
            'message': record.getMessage(),
            'module': record.module,
            'function': record.funcName,
            'line': record.lineno,
        }

        correlation_id = get_correlation_id()
        if correlation_id:
            log_data['correlation_id'] = correlation_id

        if record.exc_info:
            log_data['exception'] = self.formatException(record.exc_info)

        for key, value in record.__dict__.items():
            if key not in _RESERVED_ATTRS and not key.startswith("_"):
                log_data[key] = value

        return json.dumps(log_data, default=str)


def get_logger(name: str) -> logging.Logger:
    """Get a logger under the ``couchhouse`` hierarchy.

    Handlers are attached once by :func:`configure_logging`; module loggers
    only propagate to it.
    """
    return logging.getLogger(name)


def configure_logging(level: str = "INFO", stream=None) -> logging.Logger:
    """Attach a JSON handler to the ``couchhouse`` logger.

    Logs go to stderr by default so stdout stays free for progress lines.

    Args:
        level: Log level name
        stream: Output stream (default: sys.stderr)

    Returns:
        The configured ``couchhouse`` logger
    """
    logger = logging.getLogger("couchhouse")
    logger.setLevel(level.upper())

    for handler in list(logger.handlers):
        if getattr(handler, "_couchhouse", False):
            logger.removeHandler(handler)

    handler = logging.StreamHandler(stream or sys.stderr)
    handler.setFormatter(JSONFormatter())
    handler._couchhouse = True
    logger.addHandler(handler)
    logger.propagate = False
    return logger


class CorrelationContext:
    """Context manager for correlation ID propagation.

    Example:
        >>> with CorrelationContext() as run_id:
        ...     pipeline.run()
    """

    def __init__(self, correlation_id: Optional[str] = None):
        self.correlation_id = correlation_id
        self._previous_id: Optional[str] = None

    def __enter__(self) -> str:
        self._previous_id = get_correlation_id()
        return set_correlation_id(self.correlation_id)

    def __exit__(self, exc_type, exc_val, exc_tb):
        if self._previous_id is not None:
            set_correlation_id(self._previous_id)
        else:
            clear_correlation_id()

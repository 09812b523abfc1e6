"""
Logging utility module for partsync.

Provides JSON-structured logging with a run ID stamped on every record
emitted by a replication run.
"""

import json
import logging
import uuid
from typing import Optional, Dict, Any
from datetime import datetime
from contextvars import ContextVar

# Context variable for run ID propagation
_run_id: ContextVar[Optional[str]] = ContextVar('run_id', default=None)

# Attributes every LogRecord has; anything else came in through ``extra=``
_RESERVED_ATTRS = frozenset(vars(logging.LogRecord("", 0, "", 0, "", (), None))) | {"message", "asctime"}


def get_run_id() -> Optional[str]:
    """Get the current run ID from context."""
    return _run_id.get()


def set_run_id(run_id: Optional[str] = None) -> str:
    """Set run ID in context.

    Args:
        run_id: Optional run ID. If None, generates a new UUID.

    Returns:
        The run ID that was set
    """
    if run_id is None:
        run_id = uuid.uuid4().hex
    _run_id.set(run_id)
    return run_id


def clear_run_id():
    """Clear the run ID from context."""
    _run_id.set(None)


class JSONFormatter(logging.Formatter):
    """JSON formatter for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        log_data: Dict[str, Any] = {
            'timestamp': datetime.utcnow().isoformat() + 'Z',
            'level': record.levelname,
            'logger': record.name,
            'message': record.getMessage(),
            'module': record.module,
            'function': record.funcName,
            'line': record.lineno,
        }

        run_id = get_run_id()
        if run_id:
            log_data['run_id'] = run_id

        if record.exc_info:
            log_data['exception'] = self.formatException(record.exc_info)

        # Fields passed with extra={...}
        for key, value in record.__dict__.items():
            if key not in _RESERVED_ATTRS and key not in log_data:
                log_data[key] = value

        return json.dumps(log_data, default=str)


def configure_logging(level: str = "INFO", json_format: bool = True) -> logging.Logger:
    """Configure the ``partsync`` logger hierarchy.

    Args:
        level: Logging level name
        json_format: Emit JSON lines instead of plain text

    Returns:
        The configured package logger
    """
    logger = logging.getLogger("partsync")
    logger.setLevel(level.upper())

    for handler in list(logger.handlers):
        logger.removeHandler(handler)

    handler = logging.StreamHandler()
    if json_format:
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(logging.Formatter(
            "%(asctime)s %(levelname)s [%(threadName)s] %(name)s: %(message)s"
        ))
    logger.addHandler(handler)
    logger.propagate = False  # Prevent duplicate logs from the root logger

    return logger


class RunContext:
    """Context manager binding a run ID to log records in this context."""

    def __init__(self, run_id: Optional[str] = None):
        self.run_id = run_id
        self._previous_id: Optional[str] = None

    def __enter__(self) -> str:
        self._previous_id = get_run_id()
        return set_run_id(self.run_id)

    def __exit__(self, exc_type, exc_val, exc_tb):
        if self._previous_id is not None:
            set_run_id(self._previous_id)
        else:
            clear_run_id()

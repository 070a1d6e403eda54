#!/usr/bin/env python3
"""
Unified logging utility for RevoltBot services.

Provides setup_logger(name, logfile) to configure a rotating file handler and
console handler with consistent formatting. Idempotent: reuses existing handlers
if already configured for the logger.

Supports both traditional and structured JSON logging.
"""
from __future__ import annotations

import json
import logging
import os
import time
import traceback
import uuid
from datetime import datetime
from logging.handlers import RotatingFileHandler
from typing import Optional

_RESERVED_ATTRS = frozenset({
    'name', 'msg', 'args', 'levelname', 'levelno', 'pathname', 'filename',
    'module', 'exc_info', 'exc_text', 'stack_info', 'lineno', 'funcName',
    'created', 'msecs', 'relativeCreated', 'thread', 'threadName',
    'processName', 'process', 'message', 'request_id', 'error_details',
    'taskName',
})


def _structured_default() -> bool:
    return os.environ.get("REVOLTBOT_STRUCTURED_LOGS", "0").strip().lower() in {"1", "true", "yes", "on"}


def setup_logger(name: str, logfile: str, level: int = logging.INFO, structured: Optional[bool] = None) -> logging.Logger:
    """Create or return a configured logger with rotating file + console handlers.

    Args:
        name: Logger name
        logfile: Log file path
        level: Log level
        structured: Whether to use structured JSON logging (defaults to the
            REVOLTBOT_STRUCTURED_LOGS environment switch)
    """
    logger = logging.getLogger(name)
    if logger.handlers:
        return logger

    logger.setLevel(level)

    if structured is None:
        structured = _structured_default()

    # Ensure logs directory exists
    logdir = os.path.dirname(logfile)
    try:
        if logdir:
            os.makedirs(logdir, exist_ok=True)
    except OSError:
        pass

    if structured:
        fmt: logging.Formatter = JSONFormatter()
    else:
        fmt = logging.Formatter('%(asctime)s - %(name)s - %(levelname)s - %(message)s')

    # File handler
    try:
        fh = RotatingFileHandler(logfile, maxBytes=2_000_000, backupCount=3)
        fh.setFormatter(fmt)
        logger.addHandler(fh)
    except OSError:
        # Read-only working directory: console only
        pass

    ch = logging.StreamHandler()
    ch.setFormatter(fmt)
    logger.addHandler(ch)

    return logger


def enable_structured_logging(prefix: str = "revoltbot") -> int:
    """Switch every already-configured logger under `prefix` to JSON output.

    Returns the number of handlers updated.
    """
    updated = 0
    fmt = JSONFormatter()
    for name, candidate in list(logging.Logger.manager.loggerDict.items()):
        if not isinstance(candidate, logging.Logger):
            continue
        if name != prefix and not name.startswith(prefix + "."):
            continue
        for handler in candidate.handlers:
            handler.setFormatter(fmt)
            updated += 1
    return updated


def set_log_level(level: int, prefix: str = "revoltbot") -> None:
    """Apply `level` to every configured logger under `prefix`"""
    for name, candidate in list(logging.Logger.manager.loggerDict.items()):
        if isinstance(candidate, logging.Logger) and (name == prefix or name.startswith(prefix + ".")):
            candidate.setLevel(level)


class JSONFormatter(logging.Formatter):
    """JSON formatter for structured logging"""

    def __init__(self, include_request_id: bool = True):
        super().__init__()
        self.include_request_id = include_request_id

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            'timestamp': datetime.fromtimestamp(record.created).isoformat(),
            'level': record.levelname,
            'logger': record.name,
            'message': record.getMessage(),
        }

        if self.include_request_id and hasattr(record, 'request_id'):
            log_entry['request_id'] = record.request_id

        if getattr(record, 'error_details', None):
            log_entry['error_details'] = record.error_details

        for key, value in record.__dict__.items():
            if key not in _RESERVED_ATTRS:
                log_entry[key] = value

        return json.dumps(log_entry, default=str)


def log_with_context(logger: logging.Logger, level: int, message: str, **context) -> None:
    """Log message with additional context"""
    request_id = context.pop('request_id', None) or str(uuid.uuid4())[:8]

    record = logger.makeRecord(
        logger.name,
        level,
        fn="",
        lno=0,
        msg=message,
        args=(),
        exc_info=None,
    )
    record.request_id = request_id
    for key, value in context.items():
        setattr(record, key, value)

    logger.handle(record)


def log_error_with_context(logger: logging.Logger, error: Exception, message: Optional[str] = None, **context) -> str:
    """Log error with context and return error ID"""
    if message is None:
        message = f"Error in {context.get('component', 'unknown')}: {error}"

    error_id = f"ERR_{int(time.time() * 1000000)}"
    context['error_id'] = error_id
    context['error_type'] = error.__class__.__name__
    context['error_message'] = str(error)

    if error.__traceback__ is not None:
        context['traceback'] = traceback.format_exception(type(error), error, error.__traceback__)

    log_with_context(logger, logging.ERROR, message, **context)
    return error_id


__all__ = [
    "setup_logger",
    "enable_structured_logging",
    "set_log_level",
    "JSONFormatter",
    "log_with_context",
    "log_error_with_context",
]

"""
Logging Configuration Module

This module provides the logging setup with:
- Structured JSON logging with request context
- Request-scoped correlation tracking
- Sensitive data filtering (user phone numbers and birth dates included)
- Exception handling with full tracebacks
- Environment-aware formatting
"""

import contextlib
import logging
import logging.config
import sys
import time
import traceback
from contextvars import ContextVar
from datetime import datetime, UTC
from logging import LogRecord
from typing import Any, Dict, Iterator, Optional, Set

from pythonjsonlogger.json import JsonFormatter
from typing_extensions import Protocol

from flagkeeper.core.settings import settings

# Context variables for request-scoped data
correlation_id: ContextVar[str] = ContextVar('correlation_id', default='')

# Sensitive fields that should be masked in logs
SENSITIVE_FIELDS: Set[str] = {
    'password', 'token', 'secret', 'authorization', 'api_key',
    'phone', 'birth'
}


class LoggerProtocol(Protocol):
    """Protocol defining the interface for loggers."""
    def debug(self, msg: str, *args: Any, **kwargs: Any) -> None: ...
    def info(self, msg: str, *args: Any, **kwargs: Any) -> None: ...
    def warning(self, msg: str, *args: Any, **kwargs: Any) -> None: ...
    def error(self, msg: str, *args: Any, **kwargs: Any) -> None: ...
    def critical(self, msg: str, *args: Any, **kwargs: Any) -> None: ...


class ContextualJsonFormatter(JsonFormatter):
    """
    JSON formatter that adds correlation context and masks sensitive data.
    """

    def __init__(
        self,
        *args: Any,
        sensitive_fields: Optional[Set[str]] = None,
        **kwargs: Any
    ) -> None:
        super().__init__(*args, **kwargs)
        self.sensitive_fields = sensitive_fields or SENSITIVE_FIELDS

    def add_fields(
        self,
        log_record: Dict[str, Any],
        record: LogRecord,
        message_dict: Dict[str, Any]
    ) -> None:
        super().add_fields(log_record, record, message_dict)

        log_record['timestamp'] = datetime.fromtimestamp(record.created, UTC).isoformat()
        log_record['level'] = record.levelname
        log_record['environment'] = settings.app.ENVIRONMENT

        cid = correlation_id.get()
        if cid:
            log_record['correlation_id'] = cid

        if hasattr(record, 'duration_ms'):
            log_record['duration_ms'] = record.duration_ms

        if record.exc_info:
            exc_type, exc_value, exc_tb = record.exc_info
            log_record['exception'] = {
                'type': exc_type.__name__,
                'message': str(exc_value),
                'traceback': traceback.format_exception(exc_type, exc_value, exc_tb)
            }

        if hasattr(record, 'tags') and record.tags:
            log_record['tags'] = record.tags

        self._mask_sensitive_data(log_record)

    def _mask_sensitive_data(self, log_record: Dict[str, Any]) -> None:
        """
        Recursively mask sensitive data in the log record.
        """
        def mask_dict(d: Dict[str, Any]) -> None:
            for k, v in d.items():
                if isinstance(k, str) and any(field in k.lower() for field in self.sensitive_fields):
                    d[k] = '***MASKED***'
                elif isinstance(v, dict):
                    mask_dict(v)
                elif isinstance(v, list):
                    for item in v:
                        if isinstance(item, dict):
                            mask_dict(item)

        mask_dict(log_record)


@contextlib.contextmanager
def log_duration(logger: LoggerProtocol, operation: str) -> Iterator[None]:
    """
    Context manager to log operation duration.
    """
    start_time = time.perf_counter()
    try:
        yield
    finally:
        duration = (time.perf_counter() - start_time) * 1000
        logger.info(
            f"{operation} completed",
            extra={'duration_ms': duration, 'operation': operation}
        )


def setup_logging() -> None:
    """
    Configure logging with the JSON formatter and a stdout handler.
    """
    formatter = 'json' if settings.logging.JSON_LOGS else 'plain'
    logging.config.dictConfig({
        'version': 1,
        'disable_existing_loggers': False,
        'formatters': {
            'json': {
                '()': ContextualJsonFormatter,
                'format': '%(timestamp)s %(level)s %(name)s %(message)s',
                'json_ensure_ascii': False
            },
            'plain': {
                'format': '%(asctime)s %(levelname)s %(name)s %(message)s'
            }
        },
        'handlers': {
            'console': {
                'class': 'logging.StreamHandler',
                'stream': sys.stdout,
                'formatter': formatter
            }
        },
        'root': {
            'level': settings.logging.LEVEL,
            'handlers': ['console']
        },
        'loggers': {
            'uvicorn': {'level': 'WARNING'},
            'sqlalchemy.engine': {'level': 'WARNING'},
        }
    })

    get_logger(__name__).info(
        "Logging configured",
        extra={
            'tags': ['startup', 'logging'],
            'log_level': settings.logging.LEVEL
        }
    )


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger instance with the given name.

    Args:
        name: The name of the logger (typically __name__)

    Returns:
        A configured logger instance
    """
    return logging.getLogger(name)

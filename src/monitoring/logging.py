"""
Structured Logging Configuration

structlog on top of the standard logging module, shared by every component.
JSON output for production log aggregation, a console renderer for local
development, and a correlation id carried through each request so the log
lines of one authorization decision can be tied to its audit record and to the
client error_id.

Components:
- CorrelationManager: correlation id generation and context propagation
- setup_structured_logging(): processor chain and stdlib handler setup
- init_request_logging(): Flask hooks assigning the correlation id and logging
  request completion
- get_logger(): named structlog logger
"""

import logging
import logging.config
import re
import time
import uuid
from contextvars import ContextVar
from typing import Callable, Optional

import structlog
from flask import Flask, g, has_request_context, request

from src import APPLICATION_NAME

CORRELATION_HEADER = 'X-Correlation-ID'

# Caller-supplied ids are echoed into logs and response headers
MAX_CORRELATION_ID_LENGTH = 128
_CORRELATION_ID_PATTERN = re.compile(r'^[A-Za-z0-9._:\-]+$')

correlation_id_context: ContextVar[Optional[str]] = ContextVar('correlation_id', default=None)


class CorrelationManager:
    """
    Correlation ids for request tracking.

    An id sent by the caller is reused when it is short and made of safe
    characters; otherwise a fresh uuid4 hex id is generated. The id lives in a
    ContextVar, mirrored on flask.g while a request is active.
    """

    @staticmethod
    def accept(candidate: Optional[str]) -> Optional[str]:
        if not candidate or len(candidate) > MAX_CORRELATION_ID_LENGTH:
            return None
        if not _CORRELATION_ID_PATTERN.match(candidate):
            return None
        return candidate

    def set_correlation_id(self, correlation_id: Optional[str] = None) -> str:
        correlation_id = self.accept(correlation_id) or uuid.uuid4().hex
        correlation_id_context.set(correlation_id)
        if has_request_context():
            g.correlation_id = correlation_id
        return correlation_id

    def get_correlation_id(self) -> Optional[str]:
        if has_request_context() and 'correlation_id' in g:
            return g.correlation_id
        return correlation_id_context.get()

    def clear_correlation_id(self) -> None:
        correlation_id_context.set(None)
        if has_request_context():
            g.pop('correlation_id', None)


correlation_manager = CorrelationManager()


def create_correlation_processor() -> Callable:
    """structlog processor adding the correlation id and the application name."""

    def processor(logger, method_name, event_dict):
        correlation_id = correlation_manager.get_correlation_id()
        if correlation_id:
            event_dict.setdefault('correlation_id', correlation_id)
        event_dict.setdefault('service', APPLICATION_NAME)
        return event_dict

    return processor


def setup_structured_logging(
    log_level: str = 'INFO',
    log_format: str = 'json'
) -> structlog.stdlib.BoundLogger:
    """
    Configure structlog and the root stdlib logger.

    Args:
        log_level: Root log level name
        log_format: 'json' or 'console'

    Returns:
        Application logger
    """
    renderer = (
        structlog.dev.ConsoleRenderer(colors=False)
        if log_format == 'console'
        else structlog.processors.JSONRenderer()
    )

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            create_correlation_processor(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
        context_class=dict,
        cache_logger_on_first_use=True,
    )

    logging.config.dictConfig({
        'version': 1,
        'disable_existing_loggers': False,
        'formatters': {'message_only': {'format': '%(message)s'}},
        'handlers': {
            'stdout': {
                'class': 'logging.StreamHandler',
                'formatter': 'message_only',
                'stream': 'ext://sys.stdout',
            },
        },
        'root': {'handlers': ['stdout'], 'level': log_level.upper()},
    })

    logger = structlog.get_logger(APPLICATION_NAME)
    logger.info("Structured logging initialized", log_level=log_level, log_format=log_format)
    return logger


def init_request_logging(app: Flask) -> None:
    """Assign a correlation id per request and log each completed request."""
    request_logger = get_logger('src.requests')

    @app.before_request
    def assign_correlation_id():
        correlation_manager.set_correlation_id(request.headers.get(CORRELATION_HEADER))
        g.request_started_at = time.perf_counter()

    @app.after_request
    def log_request(response):
        correlation_id = correlation_manager.get_correlation_id()
        if correlation_id:
            response.headers[CORRELATION_HEADER] = correlation_id

        started_at = g.get('request_started_at')
        elapsed_ms = round((time.perf_counter() - started_at) * 1000, 2) if started_at else None
        request_logger.info(
            "Request completed",
            method=request.method,
            path=request.path,
            status_code=response.status_code,
            duration_ms=elapsed_ms,
        )
        return response

    @app.teardown_request
    def clear_correlation_id(exc):
        correlation_manager.clear_correlation_id()


def get_logger(name: Optional[str] = None) -> structlog.stdlib.BoundLogger:
    """Named structured logger, defaults to the application logger."""
    return structlog.get_logger(name or APPLICATION_NAME)


def set_correlation_id(correlation_id: Optional[str] = None) -> str:
    return correlation_manager.set_correlation_id(correlation_id)


def get_correlation_id() -> Optional[str]:
    return correlation_manager.get_correlation_id()


__all__ = [
    'CorrelationManager',
    'setup_structured_logging',
    'init_request_logging',
    'get_logger',
    'set_correlation_id',
    'get_correlation_id',
    'CORRELATION_HEADER',
]

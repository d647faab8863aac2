"""
Audit Store Exception Handling

Exception hierarchy and retry policy for the audit trail persistence layer.
Transient PyMongo failures (lost primary, network timeouts, server selection
timeouts) are retried with exponential backoff through tenacity; anything that
still fails is converted into a DatabaseException subclass so callers never
have to know about driver exception types.

The audit sink treats every DatabaseException raised on the write path as a
lost audit record: it is logged and counted, never propagated into the access
decision.
"""

import time
from datetime import datetime, timezone
from enum import Enum
from functools import wraps
from typing import Any, Callable, Dict, Optional, Type

import pymongo.errors
import structlog
from prometheus_client import Counter, Histogram
from tenacity import (
    Retrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

logger = structlog.get_logger(__name__)

database_errors_total = Counter(
    'authz_audit_store_errors_total',
    'Total audit store errors by type and operation',
    ['error_type', 'operation']
)

database_retry_attempts = Counter(
    'authz_audit_store_retry_attempts_total',
    'Total audit store retry attempts',
    ['operation']
)

database_operation_duration = Histogram(
    'authz_audit_store_operation_duration_seconds',
    'Audit store operation duration including retries',
    ['operation']
)


class DatabaseOperationType(Enum):
    """Audit store operation kinds, used for retry tuning and metric labels."""

    READ = "read"
    WRITE = "write"
    INDEX = "index"


class DatabaseException(Exception):
    """
    Base exception for audit store failures.

    Args:
        message: Description of the failure
        operation: Operation kind that failed
        collection: Collection the operation targeted
        original_error: Driver exception that caused the failure
    """

    def __init__(
        self,
        message: str,
        operation: Optional[DatabaseOperationType] = None,
        collection: Optional[str] = None,
        original_error: Optional[Exception] = None
    ):
        super().__init__(message)
        self.message = message
        self.operation = operation
        self.collection = collection
        self.original_error = original_error
        self.timestamp = datetime.now(timezone.utc)

        database_errors_total.labels(
            error_type=self.__class__.__name__,
            operation=operation.value if operation else "unknown"
        ).inc()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "operation": self.operation.value if self.operation else None,
            "collection": self.collection,
            "timestamp": self.timestamp.isoformat(),
            "original_error": str(self.original_error) if self.original_error else None,
        }


class ConnectionException(DatabaseException):
    """Store unreachable after all retries."""


class AuditWriteException(DatabaseException):
    """An audit record could not be persisted."""


class AuditQueryException(DatabaseException):
    """An audit trail search or aggregation failed."""


TRANSIENT_ERRORS = (
    pymongo.errors.AutoReconnect,
    pymongo.errors.NetworkTimeout,
    pymongo.errors.ServerSelectionTimeoutError,
    pymongo.errors.ExecutionTimeout,
)


def classify_pymongo_error(
    error: Exception,
    operation: DatabaseOperationType
) -> Type[DatabaseException]:
    """Map a driver exception to the exception type raised to callers."""
    if isinstance(error, (pymongo.errors.ConnectionFailure, pymongo.errors.ServerSelectionTimeoutError)):
        return ConnectionException
    if operation == DatabaseOperationType.WRITE:
        return AuditWriteException
    if operation == DatabaseOperationType.READ:
        return AuditQueryException
    return DatabaseException


class DatabaseRetryConfig:
    """Configuration for audit store retry logic"""

    def __init__(
        self,
        max_attempts: int = 3,
        min_wait: float = 0.5,
        max_wait: float = 5.0,
        multiplier: float = 2.0
    ):
        self.max_attempts = max_attempts
        self.min_wait = min_wait
        self.max_wait = max_wait
        self.multiplier = multiplier


READ_RETRY_CONFIG = DatabaseRetryConfig(max_attempts=3, min_wait=0.5, max_wait=5.0)
WRITE_RETRY_CONFIG = DatabaseRetryConfig(max_attempts=2, min_wait=0.2, max_wait=2.0)


def create_retrying(config: DatabaseRetryConfig, operation: DatabaseOperationType) -> Retrying:
    """Build a tenacity Retrying for transient driver errors."""

    def before_sleep(retry_state):
        exception = retry_state.outcome.exception() if retry_state.outcome else None
        database_retry_attempts.labels(operation=operation.value).inc()
        logger.warning(
            "Audit store operation retry",
            operation=operation.value,
            attempt=retry_state.attempt_number,
            max_attempts=config.max_attempts,
            exception_type=exception.__class__.__name__ if exception else None,
        )

    return Retrying(
        stop=stop_after_attempt(config.max_attempts),
        wait=wait_exponential(
            multiplier=config.multiplier,
            min=config.min_wait,
            max=config.max_wait
        ),
        retry=retry_if_exception_type(TRANSIENT_ERRORS),
        before_sleep=before_sleep,
        reraise=True,
    )


def with_database_retry(
    operation_type: DatabaseOperationType = DatabaseOperationType.READ,
    custom_config: Optional[DatabaseRetryConfig] = None
) -> Callable:
    """
    Decorator adding retry and error translation to audit store operations.

    Args:
        operation_type: Operation kind, selects the default retry config
        custom_config: Retry configuration overriding the default

    Example:
        @with_database_retry(DatabaseOperationType.WRITE)
        def append(self, record):
            self._collection.insert_one(record.to_mongo_dict())
    """
    if custom_config:
        config = custom_config
    elif operation_type == DatabaseOperationType.WRITE:
        config = WRITE_RETRY_CONFIG
    else:
        config = READ_RETRY_CONFIG

    def decorator(func: Callable) -> Callable:
        @wraps(func)
        def wrapper(*args, **kwargs):
            start_time = time.perf_counter()
            try:
                for attempt in create_retrying(config, operation_type):
                    with attempt:
                        return func(*args, **kwargs)
            except pymongo.errors.PyMongoError as e:
                exception_class = classify_pymongo_error(e, operation_type)
                raise exception_class(
                    f"Audit store operation failed: {e}",
                    operation=operation_type,
                    original_error=e
                ) from e
            finally:
                database_operation_duration.labels(
                    operation=operation_type.value
                ).observe(time.perf_counter() - start_time)

        return wrapper
    return decorator


__all__ = [
    'DatabaseOperationType',
    'DatabaseException',
    'ConnectionException',
    'AuditWriteException',
    'AuditQueryException',
    'DatabaseRetryConfig',
    'classify_pymongo_error',
    'with_database_retry',
]

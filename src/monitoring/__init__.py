"""
Monitoring Package

structlog configuration with request correlation ids, and the Prometheus
exposition endpoint for the authorization and audit metrics.
"""

from src.monitoring.logging import (
    get_correlation_id,
    get_logger,
    init_request_logging,
    set_correlation_id,
    setup_structured_logging,
)
from src.monitoring.metrics import init_metrics

__all__ = [
    'setup_structured_logging',
    'init_request_logging',
    'get_logger',
    'set_correlation_id',
    'get_correlation_id',
    'init_metrics',
]

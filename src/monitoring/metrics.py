"""
Prometheus Metrics Exposure

Serves the default prometheus_client registry, which holds the authorization
decision counters and latency histogram, the audit sink counters and the audit
store retry and error counters.
"""

import structlog
from flask import Flask, Response
from prometheus_client import CONTENT_TYPE_LATEST, REGISTRY, generate_latest

logger = structlog.get_logger(__name__)


def init_metrics(app: Flask, endpoint: str = '/metrics') -> None:
    """Register the Prometheus exposition endpoint."""

    def prometheus_metrics():
        try:
            return Response(generate_latest(REGISTRY), mimetype=CONTENT_TYPE_LATEST, status=200)
        except Exception as e:
            logger.error("Error generating Prometheus metrics", error=str(e))
            return Response("Error generating metrics", mimetype='text/plain', status=500)

    app.add_url_rule(endpoint, 'prometheus_metrics', prometheus_metrics, methods=['GET'])
    logger.info("Prometheus metrics endpoint registered", endpoint=endpoint)


__all__ = ['init_metrics']

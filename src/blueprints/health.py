"""
Health Check Endpoints

Liveness and readiness checks for load balancers and orchestrators. Readiness
reflects the audit store: a service that cannot persist audit records still
answers requests (audit failures never block decisions) but reports itself as
degraded so operators notice.
"""

import time
from datetime import datetime, timezone
from typing import Any, Dict, Tuple

import structlog
from flask import Blueprint, current_app, jsonify

from src.auth.audit import AUDIT_SERVICE_EXTENSION_KEY
from src.auth.authorization import ENGINE_EXTENSION_KEY

logger = structlog.get_logger(__name__)

health_blueprint = Blueprint('health', __name__, url_prefix='/health')


def _readiness() -> Tuple[Dict[str, Any], int]:
    start_time = time.perf_counter()
    service = current_app.extensions.get(AUDIT_SERVICE_EXTENSION_KEY)
    if service is None:
        audit_store = {'status': 'unhealthy', 'error': 'audit store not configured'}
    else:
        audit_store = service.store.health_check()

    engine = current_app.extensions.get(ENGINE_EXTENSION_KEY)
    sink_stats = engine.audit_sink.get_audit_statistics() if engine else None

    status = 'healthy' if audit_store.get('status') == 'healthy' else 'degraded'
    response = {
        'status': status,
        'timestamp': datetime.now(timezone.utc).isoformat(),
        'response_time_ms': round((time.perf_counter() - start_time) * 1000, 2),
        'dependencies': {'audit_store': audit_store},
        'audit_sink': sink_stats,
    }
    if status != 'healthy':
        logger.warning("Readiness check degraded", audit_store=audit_store)
    return response, 200 if status == 'healthy' else 503


@health_blueprint.route('/live', methods=['GET'])
def liveness_check():
    return jsonify({
        'status': 'healthy',
        'timestamp': datetime.now(timezone.utc).isoformat(),
    }), 200


@health_blueprint.route('/ready', methods=['GET'])
def readiness_check():
    response_data, status_code = _readiness()
    return jsonify(response_data), status_code


@health_blueprint.route('', methods=['GET'])
@health_blueprint.route('/', methods=['GET'])
def general_health():
    response_data, status_code = _readiness()
    response_data['endpoint'] = 'general_health'
    return jsonify(response_data), status_code


__all__ = ['health_blueprint']

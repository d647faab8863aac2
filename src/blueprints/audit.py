"""
Audit Trail Reporting Blueprint

Read-only compliance reporting over the role access audit trail. Every
endpoint is guarded by the RequirePlatformStaff policy, so reading the audit
trail is itself an audited access decision.

Endpoints:
    GET /api/audit                                 whole trail, optional role filter
    GET /api/audit/users/<user_id>                 one user's decisions
    GET /api/audit/organizations/<organizationId>  decisions targeting one organization
    GET /api/audit/statistics                      aggregate counts

Query parameters:
    start, end   ISO-8601 timestamps (UTC assumed when no offset is given)
    granted      'true' or 'false'
    role         raw role string, /api/audit only
    page         1-based page number (default 1)
    pageSize     records per page (default 50, max 500)
"""

from datetime import datetime
from typing import Any, Dict, Optional

import structlog
from flask import Blueprint, current_app, jsonify, request
from pydantic import ValidationError

from src.auth.audit import AUDIT_SERVICE_EXTENSION_KEY, AccessAuditService
from src.auth.authorization import REQUIRE_PLATFORM_STAFF, require_policy
from src.data.models import DEFAULT_PAGE_SIZE

logger = structlog.get_logger(__name__)

audit_bp = Blueprint('audit', __name__, url_prefix='/api/audit')


class QueryParameterError(ValueError):
    """A query parameter could not be parsed."""


def _get_audit_service() -> AccessAuditService:
    service = current_app.extensions.get(AUDIT_SERVICE_EXTENSION_KEY)
    if service is None:
        raise RuntimeError("Audit service is not initialized for this application")
    return service


def _parse_datetime(name: str) -> Optional[datetime]:
    raw = request.args.get(name)
    if not raw:
        return None
    try:
        return datetime.fromisoformat(raw.replace('Z', '+00:00'))
    except ValueError:
        raise QueryParameterError(f"{name} must be an ISO-8601 timestamp") from None


def _parse_bool(name: str) -> Optional[bool]:
    raw = request.args.get(name)
    if raw is None or raw == '':
        return None
    lowered = raw.strip().lower()
    if lowered == 'true':
        return True
    if lowered == 'false':
        return False
    raise QueryParameterError(f"{name} must be 'true' or 'false'")


def _parse_int(name: str, default: int) -> int:
    raw = request.args.get(name)
    if raw is None or raw == '':
        return default
    try:
        return int(raw)
    except ValueError:
        raise QueryParameterError(f"{name} must be an integer") from None


def _paging_filters() -> Dict[str, Any]:
    return {
        'start': _parse_datetime('start'),
        'end': _parse_datetime('end'),
        'access_granted': _parse_bool('granted'),
        'page': _parse_int('page', 1),
        'page_size': _parse_int('pageSize', DEFAULT_PAGE_SIZE),
    }


@audit_bp.errorhandler(QueryParameterError)
def handle_query_parameter_error(error: QueryParameterError):
    return jsonify({'error': 'Invalid query parameters', 'details': str(error)}), 400


@audit_bp.errorhandler(ValidationError)
def handle_validation_error(error: ValidationError):
    details = [
        {'field': '.'.join(str(part) for part in item['loc']), 'message': item['msg']}
        for item in error.errors()
    ]
    return jsonify({'error': 'Invalid query parameters', 'details': details}), 400


@audit_bp.route('', methods=['GET'])
@require_policy(REQUIRE_PLATFORM_STAFF)
def get_all_audit_logs():
    page = _get_audit_service().get_all_audit_logs(
        role=request.args.get('role') or None,
        **_paging_filters()
    )
    return jsonify(page.to_response()), 200


@audit_bp.route('/users/<user_id>', methods=['GET'])
@require_policy(REQUIRE_PLATFORM_STAFF)
def get_user_audit_logs(user_id: str):
    page = _get_audit_service().get_user_audit_logs(user_id, **_paging_filters())
    return jsonify(page.to_response()), 200


@audit_bp.route('/organizations/<organizationId>', methods=['GET'])
@require_policy(REQUIRE_PLATFORM_STAFF)
def get_organization_audit_logs(organizationId: str):
    page = _get_audit_service().get_organization_audit_logs(organizationId, **_paging_filters())
    return jsonify(page.to_response()), 200


@audit_bp.route('/statistics', methods=['GET'])
@require_policy(REQUIRE_PLATFORM_STAFF)
def get_audit_statistics():
    organization_id = request.args.get('organizationId') or None
    statistics = _get_audit_service().get_audit_statistics(
        organization_id=organization_id,
        start=_parse_datetime('start'),
        end=_parse_datetime('end'),
    )
    logger.info(
        "Audit statistics generated",
        organization_id=organization_id,
        total_attempts=statistics.total_attempts,
    )
    return jsonify(statistics.model_dump(mode='json')), 200


__all__ = ['audit_bp']

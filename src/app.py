"""
Flask Application Factory

Builds the portal access control service:

1. configuration class for the environment (python-dotenv backed)
2. structlog logging and per-request correlation ids
3. bearer token authentication (Flask-Login request loader, PyJWT)
4. audit store (MongoDB or in-memory) and the access audit sink
5. policy registry, frozen after the standard policies are registered
6. authorization engine and audit reporting service
7. blueprints, Prometheus endpoint and JSON error handlers

Usage:
    # Development server
    export FLASK_ENV=development
    flask --app app run

    # Production WSGI deployment
    gunicorn --config gunicorn.conf.py "app:application"

    # Tests
    app = create_app('testing', audit_store=InMemoryAuditStore())
"""

from datetime import datetime, timezone
from typing import Optional

import structlog
from flask import Flask, jsonify, request
from werkzeug.exceptions import HTTPException

from src.auth.audit import AUDIT_SERVICE_EXTENSION_KEY, AccessAuditService, AccessAuditSink
from src.auth.authentication import init_authentication
from src.auth.authorization import (
    AuthorizationEngine,
    build_default_registry,
    init_authorization_engine,
)
from src.auth.exceptions import SecurityException, create_safe_error_response
from src.blueprints import register_blueprints
from src.config.settings import create_app_config
from src.data.audit_store import AuditStore, create_audit_store
from src.data.exceptions import DatabaseException
from src.monitoring.logging import init_request_logging, setup_structured_logging
from src.monitoring.metrics import init_metrics

logger = structlog.get_logger(__name__)


def _create_audit_store(app: Flask) -> AuditStore:
    store = create_audit_store(
        app.config['AUTHZ_AUDIT_STORE'],
        uri=app.config.get('MONGODB_URI'),
        database_name=app.config.get('MONGODB_DATABASE'),
        collection_name=app.config['AUTHZ_AUDIT_COLLECTION'],
    )
    if app.config.get('AUTHZ_AUDIT_ENSURE_INDEXES'):
        try:
            store.ensure_indexes()
        except DatabaseException as e:
            # Audit failures never block startup, same as they never block requests
            logger.warning("Audit index creation failed", error=str(e))
    return store


def _configure_error_handlers(app: Flask) -> None:

    @app.errorhandler(SecurityException)
    def handle_security_exception(error: SecurityException):
        logger.warning(
            "Access control rejection",
            status_code=error.http_status,
            method=request.method,
            path=request.path,
            **{k: v for k, v in error.metadata.items() if k != 'timestamp'}
        )
        return jsonify(create_safe_error_response(error)), error.http_status

    @app.errorhandler(HTTPException)
    def handle_http_exception(error: HTTPException):
        return jsonify({
            'error': error.name,
            'message': error.description,
            'status_code': error.code,
            'timestamp': datetime.now(timezone.utc).isoformat(),
        }), error.code

    @app.errorhandler(Exception)
    def handle_unexpected_exception(error: Exception):
        logger.error(
            "Unhandled exception",
            error_type=type(error).__name__,
            error=str(error),
            method=request.method,
            path=request.path,
            exc_info=True,
        )
        return jsonify({
            'error': 'Internal Server Error',
            'message': 'An unexpected error occurred',
            'status_code': 500,
            'timestamp': datetime.now(timezone.utc).isoformat(),
        }), 500


def create_app(
    config_name: Optional[str] = None,
    audit_store: Optional[AuditStore] = None,
    **config_overrides
) -> Flask:
    """
    Create the Flask application.

    The caller owns the audit sink and closes it on shutdown through
    app.extensions["authorization_engine"].audit_sink (gunicorn does this in
    worker_exit).

    Args:
        config_name: Environment name (development, testing, production)
        audit_store: Store to use instead of the configured backend
        **config_overrides: Config keys overriding the environment class

    Raises:
        ValueError: Invalid configuration outside debug mode
        PolicyConfigurationError: Invalid policy wiring
    """
    config_class = create_app_config(config_name)

    app = Flask(__name__)
    app.config.from_object(config_class)
    app.config.update(config_overrides)
    config_class.init_app(app)

    setup_structured_logging(app.config['LOG_LEVEL'], app.config['LOG_FORMAT'])
    init_request_logging(app)
    init_authentication(app)

    store = audit_store if audit_store is not None else _create_audit_store(app)
    audit_sink = AccessAuditSink(
        store,
        mode=app.config['AUTHZ_AUDIT_MODE'],
        buffer_size=app.config['AUTHZ_AUDIT_BUFFER_SIZE'],
        flush_interval=app.config['AUTHZ_AUDIT_FLUSH_INTERVAL'],
    )

    engine = AuthorizationEngine(
        registry=build_default_registry(),
        audit_sink=audit_sink,
        organization_param=app.config['AUTHZ_ORGANIZATION_PARAM'],
    )
    init_authorization_engine(app, engine)
    app.extensions[AUDIT_SERVICE_EXTENSION_KEY] = AccessAuditService(store)

    register_blueprints(app)
    if app.config.get('METRICS_ENABLED'):
        init_metrics(app)
    _configure_error_handlers(app)

    logger.info(
        "Flask application created",
        config_class=config_class.__name__,
        audit_store=type(store).__name__,
        audit_mode=audit_sink.mode,
    )
    return app


def create_wsgi_application() -> Flask:
    """Application for WSGI servers, environment taken from FLASK_ENV."""
    return create_app()


__all__ = ['create_app', 'create_wsgi_application']

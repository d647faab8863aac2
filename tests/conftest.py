"""
Global pytest Configuration and Fixture Definitions

Shared fixtures for the portal access control test suite:

- request context builders for the decision engine (no Flask required)
- an in-memory audit store and a synchronous audit sink
- a Flask application built by the real application factory with the testing
  configuration, plus a test client
- signed bearer tokens for Director, Finance and PlatformStaff callers

Unit tests run without any external service. MongoDB interaction is exercised
against mocked PyMongo collections only.
"""

from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Optional

import jwt
import pytest
from flask import Flask
from flask.testing import FlaskClient

from src.app import create_app
from src.auth.audit import AccessAuditService, AccessAuditSink
from src.auth.authorization import AuthorizationEngine, build_default_registry
from src.auth.context import StaticRequestContext
from src.config.settings import TestingConfig
from src.data.audit_store import InMemoryAuditStore

ORG_ACME = "org-acme"
ORG_GLOBEX = "org-globex"


def pytest_configure(config):
    """Register custom markers for test categorization."""
    config.addinivalue_line(
        "markers",
        "unit: Unit tests with isolated component testing"
    )
    config.addinivalue_line(
        "markers",
        "integration: Integration tests through the Flask application factory"
    )


def build_claims(
    user_id: Optional[str] = "user-1",
    role: Optional[str] = "Director",
    organization_id: Optional[str] = ORG_ACME,
    **extra: Any
) -> Dict[str, Any]:
    """Claims dict, omitting claims passed as None."""
    claims: Dict[str, Any] = {}
    if user_id is not None:
        claims["sub"] = user_id
    if role is not None:
        claims["role"] = role
    if organization_id is not None:
        claims["organizationId"] = organization_id
    claims.update(extra)
    return claims


@pytest.fixture
def make_context() -> Callable[..., StaticRequestContext]:
    """Factory for StaticRequestContext instances with sensible defaults."""

    def _make_context(
        claims: Optional[Dict[str, Any]] = None,
        route_params: Optional[Dict[str, Any]] = None,
        query_params: Optional[Dict[str, Any]] = None,
        method: str = "GET",
        path: str = "/api/orders",
        **kwargs: Any
    ) -> StaticRequestContext:
        kwargs.setdefault("ip_address", "203.0.113.7")
        kwargs.setdefault("user_agent", "pytest-client/1.0")
        return StaticRequestContext(
            method=method,
            path=path,
            claims=claims,
            route_params=route_params or {},
            query_params=query_params or {},
            **kwargs
        )

    return _make_context


@pytest.fixture
def director_claims() -> Dict[str, Any]:
    return build_claims("director-1", "Director", ORG_ACME)


@pytest.fixture
def finance_claims() -> Dict[str, Any]:
    return build_claims("finance-1", "Finance", ORG_ACME)


@pytest.fixture
def staff_claims() -> Dict[str, Any]:
    return build_claims("staff-1", "PlatformStaff", None)


@pytest.fixture
def audit_store() -> InMemoryAuditStore:
    return InMemoryAuditStore()


@pytest.fixture
def audit_sink(audit_store: InMemoryAuditStore):
    sink = AccessAuditSink(audit_store, mode="sync")
    yield sink
    sink.close()


@pytest.fixture
def engine(audit_sink: AccessAuditSink) -> AuthorizationEngine:
    return AuthorizationEngine(registry=build_default_registry(), audit_sink=audit_sink)


@pytest.fixture
def audit_service(audit_store: InMemoryAuditStore) -> AccessAuditService:
    return AccessAuditService(audit_store)


@pytest.fixture
def app(audit_store: InMemoryAuditStore) -> Flask:
    """Flask application from the real factory with the testing configuration."""
    application = create_app('testing', audit_store=audit_store)
    yield application
    application.extensions['authorization_engine'].audit_sink.close()


@pytest.fixture
def client(app: Flask) -> FlaskClient:
    return app.test_client()


@pytest.fixture
def make_token() -> Callable[..., str]:
    """Sign claims with the testing JWT secret."""

    def _make_token(claims: Dict[str, Any], expires_in: int = 300) -> str:
        payload = dict(claims)
        payload.setdefault("exp", datetime.now(timezone.utc) + timedelta(seconds=expires_in))
        return jwt.encode(payload, TestingConfig.JWT_SECRET_KEY, algorithm=TestingConfig.JWT_ALGORITHM)

    return _make_token


@pytest.fixture
def auth_headers(make_token) -> Callable[[Dict[str, Any]], Dict[str, str]]:
    def _auth_headers(claims: Dict[str, Any]) -> Dict[str, str]:
        return {"Authorization": f"Bearer {make_token(claims)}"}

    return _auth_headers

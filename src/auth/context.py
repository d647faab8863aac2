"""
Request Context Abstraction for Authorization Decisions

The decision engine never touches Flask directly. Everything it needs to know
about the current request is read through the narrow RequestContext protocol
defined here:

- claim lookup on the authenticated identity (user id, role, organization id)
- route parameter and query parameter lookup
- HTTP method, path, client IP, user agent and session id for the audit trail

Two implementations are provided. StaticRequestContext is plain data and is
what unit tests and non-HTTP callers construct. FlaskRequestContext adapts the
active Flask request and the Flask-Login current_user populated by the upstream
authentication layer.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional, Protocol

from flask import current_app, has_request_context, request
from flask_login import current_user


# Claim names issued by the identity provider
USER_ID_CLAIM = "sub"
ROLE_CLAIM = "role"
ORGANIZATION_ID_CLAIM = "organizationId"
SESSION_ID_CLAIM = "sid"


class RequestContext(Protocol):
    """Read-only view of one inbound request as seen by the decision engine."""

    def has_identity(self) -> bool:
        """False when no authenticated identity reached the engine at all."""

    def get_claim(self, name: str) -> Optional[str]:
        """Value of a claim on the authenticated identity, or None."""

    def get_route_param(self, name: str) -> Optional[str]:
        """Value of a route parameter, or None."""

    def get_query_param(self, name: str) -> Optional[str]:
        """First value of a query string parameter, or None."""

    @property
    def method(self) -> str: ...

    @property
    def path(self) -> str: ...

    @property
    def ip_address(self) -> Optional[str]: ...

    @property
    def user_agent(self) -> Optional[str]: ...

    @property
    def session_id(self) -> Optional[str]: ...


def _as_text(value: Any) -> Optional[str]:
    if value is None:
        return None
    return value if isinstance(value, str) else str(value)


@dataclass(frozen=True)
class StaticRequestContext:
    """
    Plain-data RequestContext.

    claims=None means the request carries no authenticated identity at all,
    which is distinct from an identity whose claims are empty.
    """

    method: str = "GET"
    path: str = "/"
    claims: Optional[Mapping[str, Any]] = None
    route_params: Mapping[str, Any] = field(default_factory=dict)
    query_params: Mapping[str, Any] = field(default_factory=dict)
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    session_id: Optional[str] = None

    def has_identity(self) -> bool:
        return self.claims is not None

    def get_claim(self, name: str) -> Optional[str]:
        if self.claims is None:
            return None
        return _as_text(self.claims.get(name))

    def get_route_param(self, name: str) -> Optional[str]:
        return _as_text(self.route_params.get(name))

    def get_query_param(self, name: str) -> Optional[str]:
        value = self.query_params.get(name)
        if isinstance(value, (list, tuple)):
            value = value[0] if value else None
        return _as_text(value)


class FlaskRequestContext:
    """
    RequestContext over the active Flask request.

    The identity comes from Flask-Login's current_user. Users are expected to
    expose get_claim(name); plain claims mappings on a `claims` attribute are
    accepted as well.
    """

    def __init__(self):
        if not has_request_context():
            raise RuntimeError("FlaskRequestContext requires an active request context")
        self._request = request._get_current_object()
        user = None
        if getattr(current_app, "login_manager", None) is not None:
            user = current_user._get_current_object()
        self._user = user if getattr(user, "is_authenticated", False) else None

    def has_identity(self) -> bool:
        return self._user is not None

    def get_claim(self, name: str) -> Optional[str]:
        if self._user is None:
            return None
        getter = getattr(self._user, "get_claim", None)
        if callable(getter):
            return _as_text(getter(name))
        claims = getattr(self._user, "claims", None) or {}
        return _as_text(claims.get(name))

    def get_route_param(self, name: str) -> Optional[str]:
        return _as_text((self._request.view_args or {}).get(name))

    def get_query_param(self, name: str) -> Optional[str]:
        return _as_text(self._request.args.get(name))

    @property
    def method(self) -> str:
        return self._request.method

    @property
    def path(self) -> str:
        return self._request.path

    @property
    def ip_address(self) -> Optional[str]:
        return self._request.remote_addr

    @property
    def user_agent(self) -> Optional[str]:
        return self._request.headers.get("User-Agent")

    @property
    def session_id(self) -> Optional[str]:
        return self.get_claim(SESSION_ID_CLAIM)


def describe_request(context: RequestContext) -> Dict[str, Any]:
    """Request provenance fields shared by log lines and audit records."""
    return {
        "method": context.method,
        "path": context.path,
        "ip_address": context.ip_address,
        "user_agent": context.user_agent,
    }


__all__ = [
    'RequestContext',
    'StaticRequestContext',
    'FlaskRequestContext',
    'describe_request',
    'USER_ID_CLAIM',
    'ROLE_CLAIM',
    'ORGANIZATION_ID_CLAIM',
    'SESSION_ID_CLAIM',
]

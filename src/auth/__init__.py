"""
Authorization and Audit Package

Request flow for a guarded endpoint:

    upstream authentication (bearer token, Flask-Login)
      -> principal extraction        src.auth.principal
      -> organization resolution     src.auth.resolver
      -> decision                    src.auth.authorization.decide
      -> audit record                src.auth.audit.AccessAuditSink
      -> handler runs (grant) or 401/403 JSON response (deny)

The engine itself only depends on the RequestContext protocol, so every step
above the Flask adapter can be exercised with StaticRequestContext.
"""

from src.auth.audit import AccessAuditService, AccessAuditSink, build_audit_record
from src.auth.authorization import (
    AuthorizationEngine,
    PolicyRegistry,
    build_default_registry,
    decide,
    get_authorization_engine,
    init_authorization_engine,
    require_any_portal_role,
    require_director,
    require_finance,
    require_organization_access,
    require_platform_staff,
    require_policy,
)
from src.auth.context import FlaskRequestContext, RequestContext, StaticRequestContext
from src.auth.exceptions import (
    AuthenticationException,
    AuthorizationException,
    PolicyConfigurationError,
    SecurityErrorCode,
    SecurityException,
)
from src.auth.models import Decision, ExtractionFailure, Principal, ReasonCode, Requirement
from src.auth.principal import extract_principal
from src.auth.resolver import organizations_match, resolve_organization
from src.auth.roles import DEFAULT_ROLE_HIERARCHY, RoleHierarchy, UserRole, parse_role

__all__ = [
    # Roles
    'UserRole',
    'RoleHierarchy',
    'DEFAULT_ROLE_HIERARCHY',
    'parse_role',
    # Request context
    'RequestContext',
    'StaticRequestContext',
    'FlaskRequestContext',
    # Data model
    'ReasonCode',
    'Principal',
    'ExtractionFailure',
    'Requirement',
    'Decision',
    # Pipeline
    'extract_principal',
    'resolve_organization',
    'organizations_match',
    'decide',
    'PolicyRegistry',
    'build_default_registry',
    'AuthorizationEngine',
    'init_authorization_engine',
    'get_authorization_engine',
    # Flask route guards
    'require_policy',
    'require_director',
    'require_finance',
    'require_organization_access',
    'require_platform_staff',
    'require_any_portal_role',
    # Audit
    'AccessAuditSink',
    'AccessAuditService',
    'build_audit_record',
    # Exceptions
    'SecurityErrorCode',
    'SecurityException',
    'AuthenticationException',
    'AuthorizationException',
    'PolicyConfigurationError',
]

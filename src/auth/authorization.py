"""
Role and Organization Authorization Engine

Decides, for every guarded request, whether the authenticated caller may act on
the organization the request targets, and hands every decision to the audit
sink before returning it.

Evaluation order (first matching branch decides):

1. NO_CONTEXT      no authenticated identity at all
2. MISSING_CLAIMS  identity present but user id or role claim empty
   INVALID_ROLE    role claim names no known role
3. ROLE_DENIED     role not allowed, directly or through the role hierarchy
4. GRANTED_NO_ORG_CHECK  organization match not required, or the request
                         carries no organization context
5. GRANTED_CROSS_ORG     PlatformStaff on a requirement allowing
                         cross-organization access
6. GRANTED_ORG_MATCH / ORG_MISMATCH  caller organization compared with the
                         targeted organization

Denials are ordinary Decision values inside the engine. Only the Flask route
guard at the edge turns a denial into an exception, and the reason code never
reaches the client.

Components:
- decide(): the pure decision function
- PolicyRegistry: named Requirements, registered once at startup and frozen
- AuthorizationEngine: extraction, resolution, decision and audit per request
- require_policy(): Flask route guard resolving the engine from the app
"""

import time
from functools import wraps
from typing import Any, Callable, Dict, Iterator, List, Optional

import structlog
from flask import current_app, g
from prometheus_client import Counter, Histogram

from src.auth.audit import AccessAuditSink
from src.auth.context import FlaskRequestContext, RequestContext, describe_request
from src.auth.exceptions import (
    AuthenticationException,
    AuthorizationException,
    PolicyConfigurationError,
)
from src.auth.models import (
    Decision,
    ExtractionFailure,
    Principal,
    PrincipalOrFailure,
    ReasonCode,
    Requirement,
)
from src.auth.principal import extract_principal
from src.auth.resolver import (
    DEFAULT_ORGANIZATION_PARAM,
    organizations_match,
    resolve_organization,
)
from src.auth.roles import (
    DEFAULT_ROLE_HIERARCHY,
    RoleHierarchy,
    UserRole,
    has_cross_organization_access,
)

logger = structlog.get_logger(__name__)

ENGINE_EXTENSION_KEY = 'authorization_engine'

authorization_metrics = {
    'decisions_total': Counter(
        'authz_decisions_total',
        'Total authorization decisions by outcome',
        ['decision', 'reason', 'policy']
    ),
    'decision_duration': Histogram(
        'authz_decision_duration_seconds',
        'Time spent evaluating a policy, audit write included',
        ['policy'],
        buckets=[0.0005, 0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0]
    ),
}

# Policy names bound at startup
REQUIRE_DIRECTOR = "RequireRole_Director"
REQUIRE_FINANCE = "RequireRole_Finance"
REQUIRE_PLATFORM_STAFF_ROLE = "RequireRole_PlatformStaff"
REQUIRE_DIRECTOR_OR_FINANCE = "RequireRoles_Director_Finance"
REQUIRE_ORGANIZATION_ACCESS = "RequireOrganizationAccess"
REQUIRE_PLATFORM_STAFF = "RequirePlatformStaff"
REQUIRE_ANY_PORTAL_ROLE = "RequireAnyPortalRole"


def decide(
    has_identity: bool,
    principal_or_failure: PrincipalOrFailure,
    resolved_organization_id: Optional[str],
    requirement: Requirement,
    hierarchy: RoleHierarchy = DEFAULT_ROLE_HIERARCHY
) -> Decision:
    """
    Evaluate one requirement against one caller and one target organization.

    Pure: no I/O, no logging, identical inputs give equal Decisions.

    Args:
        has_identity: Whether the request carries any authenticated identity
        principal_or_failure: Result of principal extraction, None when there
            is no identity
        resolved_organization_id: Organization targeted by the request, if any
        requirement: Requirement bound to the endpoint
        hierarchy: Role partial order used for implied roles

    Returns:
        Decision carrying the grant flag and the reason code
    """
    if not has_identity or principal_or_failure is None:
        return Decision.deny(
            ReasonCode.NO_CONTEXT,
            resolved_organization_id,
            "no authenticated identity",
        )

    if isinstance(principal_or_failure, ExtractionFailure):
        return Decision.deny(
            principal_or_failure.reason,
            resolved_organization_id,
            principal_or_failure.message,
        )

    principal: Principal = principal_or_failure

    if not hierarchy.satisfies(principal.role, requirement.allowed_roles):
        return Decision.deny(
            ReasonCode.ROLE_DENIED,
            resolved_organization_id,
            f"role {principal.role.value} not permitted (requires {requirement.describe_roles()})",
        )

    if not requirement.require_organization_match or resolved_organization_id is None:
        return Decision.grant(
            ReasonCode.GRANTED_NO_ORG_CHECK,
            resolved_organization_id,
            f"role {principal.role.value} permitted, no organization check",
        )

    if requirement.allow_cross_organization and has_cross_organization_access(principal.role):
        return Decision.grant(
            ReasonCode.GRANTED_CROSS_ORG,
            resolved_organization_id,
            f"cross-organization access to {resolved_organization_id}",
        )

    if organizations_match(principal.organization_id, resolved_organization_id):
        return Decision.grant(
            ReasonCode.GRANTED_ORG_MATCH,
            resolved_organization_id,
            f"organization {resolved_organization_id} matches",
        )

    return Decision.deny(
        ReasonCode.ORG_MISMATCH,
        resolved_organization_id,
        f"user organization {principal.organization_id or '<none>'} "
        f"does not match {resolved_organization_id}",
    )


class PolicyRegistry:
    """
    Named Requirements, registered once at startup.

    After freeze() the registry is read-only and safe to share between
    request threads.
    """

    def __init__(self):
        self._policies: Dict[str, Requirement] = {}
        self._frozen = False

    def register(self, name: str, requirement: Requirement) -> None:
        if self._frozen:
            raise PolicyConfigurationError(f"Cannot register policy {name!r}: registry is frozen")
        if not name or not name.strip():
            raise PolicyConfigurationError("Policy name must not be empty")
        if not isinstance(requirement, Requirement):
            raise PolicyConfigurationError(f"Policy {name!r} must be bound to a Requirement")
        if name in self._policies:
            raise PolicyConfigurationError(f"Policy {name!r} is already registered")

        self._policies[name] = requirement
        logger.debug("Authorization policy registered", policy_name=name, **requirement.to_dict())

    def register_roles(
        self,
        name: str,
        *roles: UserRole,
        require_organization_match: bool = True,
        allow_cross_organization: bool = True
    ) -> Requirement:
        requirement = Requirement.for_roles(
            *roles,
            require_organization_match=require_organization_match,
            allow_cross_organization=allow_cross_organization,
        )
        self.register(name, requirement)
        return requirement

    def get(self, name: str) -> Requirement:
        try:
            return self._policies[name]
        except KeyError:
            raise PolicyConfigurationError(f"Unknown authorization policy {name!r}") from None

    def freeze(self) -> 'PolicyRegistry':
        self._frozen = True
        return self

    @property
    def frozen(self) -> bool:
        return self._frozen

    def names(self) -> List[str]:
        return sorted(self._policies)

    def __contains__(self, name: object) -> bool:
        return name in self._policies

    def __iter__(self) -> Iterator[str]:
        return iter(self.names())

    def __len__(self) -> int:
        return len(self._policies)


def build_default_registry(freeze: bool = True) -> PolicyRegistry:
    """Registry holding the portal's standard policies."""
    registry = PolicyRegistry()

    registry.register_roles(REQUIRE_DIRECTOR, UserRole.DIRECTOR)
    registry.register_roles(REQUIRE_FINANCE, UserRole.FINANCE)
    registry.register_roles(REQUIRE_PLATFORM_STAFF_ROLE, UserRole.PLATFORM_STAFF)
    registry.register_roles(REQUIRE_DIRECTOR_OR_FINANCE, UserRole.DIRECTOR, UserRole.FINANCE)
    registry.register_roles(REQUIRE_ORGANIZATION_ACCESS, UserRole.DIRECTOR, UserRole.FINANCE)
    registry.register_roles(
        REQUIRE_PLATFORM_STAFF,
        UserRole.PLATFORM_STAFF,
        require_organization_match=False,
    )
    registry.register_roles(
        REQUIRE_ANY_PORTAL_ROLE,
        UserRole.DIRECTOR,
        UserRole.FINANCE,
        UserRole.PLATFORM_STAFF,
    )

    if freeze:
        registry.freeze()
    return registry


class AuthorizationEngine:
    """
    Evaluates named policies for requests and audits every decision.

    Args:
        registry: Policy registry, normally frozen
        audit_sink: Sink receiving exactly one record per evaluation
        hierarchy: Role partial order
        organization_param: Route/query parameter carrying the target
            organization id
    """

    def __init__(
        self,
        registry: PolicyRegistry,
        audit_sink: AccessAuditSink,
        hierarchy: RoleHierarchy = DEFAULT_ROLE_HIERARCHY,
        organization_param: str = DEFAULT_ORGANIZATION_PARAM
    ):
        self.registry = registry
        self.audit_sink = audit_sink
        self.hierarchy = hierarchy
        self.organization_param = organization_param

    def evaluate(self, requirement_name: str, context: RequestContext) -> Decision:
        """
        Extract, resolve, decide and audit, in that order.

        Raises:
            PolicyConfigurationError: requirement_name is not registered. No
                audit record is written for a wiring error.
        """
        requirement = self.registry.get(requirement_name)
        start_time = time.perf_counter()

        has_identity = context.has_identity()
        principal_or_failure: PrincipalOrFailure = (
            extract_principal(context) if has_identity else None
        )
        resolved_organization_id = resolve_organization(context, self.organization_param)

        decision = decide(
            has_identity,
            principal_or_failure,
            resolved_organization_id,
            requirement,
            self.hierarchy,
        )

        self.audit_sink.record(decision, principal_or_failure, context, policy_name=requirement_name)

        authorization_metrics['decisions_total'].labels(
            decision='granted' if decision.granted else 'denied',
            reason=decision.reason.value,
            policy=requirement_name
        ).inc()
        authorization_metrics['decision_duration'].labels(
            policy=requirement_name
        ).observe(time.perf_counter() - start_time)

        self._log_decision(requirement_name, decision, principal_or_failure, context)
        return decision

    def _log_decision(
        self,
        requirement_name: str,
        decision: Decision,
        principal_or_failure: PrincipalOrFailure,
        context: RequestContext
    ) -> None:
        log_context: Dict[str, Any] = {
            'policy_name': requirement_name,
            'reason': decision.reason.value,
            **describe_request(context),
            'resolved_organization_id': decision.resolved_organization_id,
        }
        if isinstance(principal_or_failure, Principal):
            log_context.update(user_id=principal_or_failure.user_id, role=principal_or_failure.role.value)
        elif isinstance(principal_or_failure, ExtractionFailure):
            log_context.update(user_id=principal_or_failure.raw_user_id, role=principal_or_failure.raw_role)

        if decision.granted:
            logger.info("Authorization granted", **log_context)
        else:
            logger.warning("Authorization denied", details=decision.details, **log_context)

    def get_authorization_statistics(self) -> Dict[str, Any]:
        return {
            'policies': self.registry.names(),
            'registry_frozen': self.registry.frozen,
            'organization_param': self.organization_param,
            'role_hierarchy': [
                [superior.value, inferior.value] for superior, inferior in sorted(self.hierarchy.pairs)
            ],
            'audit': self.audit_sink.get_audit_statistics(),
        }


def init_authorization_engine(app, engine: AuthorizationEngine) -> AuthorizationEngine:
    """Attach the engine to a Flask application."""
    app.extensions[ENGINE_EXTENSION_KEY] = engine
    logger.info(
        "Authorization engine initialized",
        policies=engine.registry.names(),
        audit_mode=engine.audit_sink.mode,
        organization_param=engine.organization_param,
    )
    return engine


def get_authorization_engine() -> AuthorizationEngine:
    """
    Engine of the current Flask application.

    Raises:
        RuntimeError: If no engine was attached to the application
    """
    engine = current_app.extensions.get(ENGINE_EXTENSION_KEY)
    if engine is None:
        raise RuntimeError("Authorization engine is not initialized for this application")
    return engine


def require_policy(policy_name: str) -> Callable:
    """
    Decorator guarding a Flask view with a named policy.

    The decision is available to the view as `g.authorization_decision`.

    Raises:
        AuthenticationException: No authenticated identity (401)
        AuthorizationException: Any other denial (403)

    Example:
        @bp.route('/organizations/<organizationId>/orders')
        @require_policy(REQUIRE_ORGANIZATION_ACCESS)
        def list_orders(organizationId):
            ...
    """
    def decorator(func: Callable) -> Callable:
        @wraps(func)
        def wrapper(*args, **kwargs):
            engine = get_authorization_engine()
            decision = engine.evaluate(policy_name, FlaskRequestContext())
            g.authorization_decision = decision

            if decision.granted:
                return func(*args, **kwargs)

            if decision.reason == ReasonCode.NO_CONTEXT:
                raise AuthenticationException(
                    message=f"No authenticated identity for policy {policy_name}",
                    metadata={'policy_name': policy_name},
                )
            raise AuthorizationException(
                message=f"Policy {policy_name} denied: {decision.details}",
                policy_name=policy_name,
                reason=decision.reason.value,
            )

        return wrapper
    return decorator


# Convenience decorators for the standard policies
def require_director(func: Callable) -> Callable:
    return require_policy(REQUIRE_DIRECTOR)(func)


def require_finance(func: Callable) -> Callable:
    return require_policy(REQUIRE_FINANCE)(func)


def require_organization_access(func: Callable) -> Callable:
    return require_policy(REQUIRE_ORGANIZATION_ACCESS)(func)


def require_platform_staff(func: Callable) -> Callable:
    return require_policy(REQUIRE_PLATFORM_STAFF)(func)


def require_any_portal_role(func: Callable) -> Callable:
    return require_policy(REQUIRE_ANY_PORTAL_ROLE)(func)


__all__ = [
    'decide',
    'PolicyRegistry',
    'build_default_registry',
    'AuthorizationEngine',
    'init_authorization_engine',
    'get_authorization_engine',
    'require_policy',
    'require_director',
    'require_finance',
    'require_organization_access',
    'require_platform_staff',
    'require_any_portal_role',
    'authorization_metrics',
    'REQUIRE_DIRECTOR',
    'REQUIRE_FINANCE',
    'REQUIRE_PLATFORM_STAFF_ROLE',
    'REQUIRE_DIRECTOR_OR_FINANCE',
    'REQUIRE_ORGANIZATION_ACCESS',
    'REQUIRE_PLATFORM_STAFF',
    'REQUIRE_ANY_PORTAL_ROLE',
]

"""
Authentication and Authorization Exception Classes

Exception taxonomy for the portal access layer. Inside the decision engine a
denial is an ordinary value, never an exception; the classes here exist for the
edges of the system:

- the Flask route guard turns a denied Decision into an AuthorizationException
  (or an AuthenticationException when no identity was present) so that Flask
  error handlers can render a generic access-denied response
- PolicyConfigurationError reports wiring mistakes detected at startup, such as
  a requirement without roles or a policy name registered twice

Client responses never echo the machine readable denial reason; that detail is
kept in the audit trail only, so tenant boundaries are not disclosed.
"""

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional


class SecurityErrorCode(Enum):
    """
    Error codes returned to clients and used as metric labels.

    The codes are deliberately coarse: every authorization denial maps to the
    same code regardless of its underlying reason.
    """

    # Authentication Error Codes (1000-1999)
    AUTH_IDENTITY_MISSING = "AUTH_1001"

    # Authorization Error Codes (2000-2999)
    AUTHZ_ACCESS_DENIED = "AUTHZ_2001"


class SecurityException(Exception):
    """
    Base exception for access control failures surfaced to HTTP clients.

    Args:
        message: Detailed description for logs (never sent to the client)
        error_code: Coarse error code for the client and for metrics
        user_message: Safe message for the client response
        metadata: Additional context for structured logging
        http_status: HTTP status used by the Flask error handler
    """

    def __init__(
        self,
        message: str,
        error_code: SecurityErrorCode,
        user_message: str = "Access denied",
        metadata: Optional[Dict[str, Any]] = None,
        http_status: int = 403
    ) -> None:
        super().__init__(message)

        self.error_id = str(uuid.uuid4())
        self.error_code = error_code
        self.user_message = user_message
        self.metadata = metadata or {}
        self.http_status = http_status
        self.timestamp = datetime.now(timezone.utc)

        self.metadata.update({
            'error_id': self.error_id,
            'error_code': self.error_code.value,
            'timestamp': self.timestamp.isoformat(),
            'exception_type': self.__class__.__name__,
        })


class AuthenticationException(SecurityException):
    """Raised when a guarded route is reached without any authenticated identity."""

    def __init__(
        self,
        message: str,
        error_code: SecurityErrorCode = SecurityErrorCode.AUTH_IDENTITY_MISSING,
        user_message: str = "Authentication required",
        **kwargs
    ) -> None:
        kwargs.setdefault('http_status', 401)
        super().__init__(message, error_code, user_message, **kwargs)


class AuthorizationException(SecurityException):
    """
    Raised by the route guard when the decision engine denies access.

    The policy name and the internal reason stay in metadata for logging; the
    client only ever sees the generic user_message.
    """

    def __init__(
        self,
        message: str,
        error_code: SecurityErrorCode = SecurityErrorCode.AUTHZ_ACCESS_DENIED,
        policy_name: Optional[str] = None,
        reason: Optional[str] = None,
        user_id: Optional[str] = None,
        **kwargs
    ) -> None:
        kwargs.setdefault('user_message', 'Access denied')
        super().__init__(message, error_code, **kwargs)

        self.policy_name = policy_name
        self.reason = reason
        self.metadata.update({
            'policy_name': policy_name,
            'reason': reason,
            'user_id': user_id,
        })


class PolicyConfigurationError(ValueError):
    """
    Invalid authorization wiring.

    Raised for requirements without roles, duplicate or unknown policy names
    and registration after the registry was frozen. These are programming
    errors and are never converted into a deny.
    """


def get_error_category(error_code: SecurityErrorCode) -> str:
    """Category label for an error code, used in responses and metrics."""
    if error_code.value.startswith("AUTH_"):
        return "authentication"
    if error_code.value.startswith("AUTHZ_"):
        return "authorization"
    return "unknown"


def create_safe_error_response(exception: SecurityException) -> Dict[str, Any]:
    """
    Build a client-safe error body.

    Only the generic message, coarse code and correlation id are included.

    Example:
        try:
            guarded_view()
        except SecurityException as e:
            return jsonify(create_safe_error_response(e)), e.http_status
    """
    return {
        'error': True,
        'error_code': exception.error_code.value,
        'message': exception.user_message,
        'error_id': exception.error_id,
        'timestamp': exception.timestamp.isoformat(),
        'category': get_error_category(exception.error_code),
    }


__all__ = [
    'SecurityErrorCode',
    'SecurityException',
    'AuthenticationException',
    'AuthorizationException',
    'PolicyConfigurationError',
    'get_error_category',
    'create_safe_error_response',
]

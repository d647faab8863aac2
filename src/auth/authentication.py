"""
Bearer Token Authentication

Upstream authentication for the portal API. A Flask-Login request loader reads
the `Authorization: Bearer <jwt>` header, verifies the token with PyJWT and
exposes its claims as the current user. The authorization engine only ever
reads those claims; it never calls into this module.

A request without a valid token stays anonymous, which the engine reports as
NO_CONTEXT. A valid token with missing or odd claims is still an authenticated
identity: claim validation belongs to principal extraction, not here.

Token issuance, refresh and server-side sessions are handled by the identity
provider and are not implemented in this service.
"""

from typing import Any, Dict, List, Mapping, Optional

import jwt
import structlog
from flask import Flask, Request
from flask_login import LoginManager, UserMixin

from src.auth.context import USER_ID_CLAIM

logger = structlog.get_logger(__name__)

BEARER_PREFIX = "bearer "


class ClaimsUser(UserMixin):
    """
    Flask-Login user backed by verified token claims.

    Attributes:
        claims: Decoded JWT payload
    """

    def __init__(self, claims: Mapping[str, Any]):
        self.claims: Dict[str, Any] = dict(claims)

    @property
    def id(self) -> Optional[str]:
        value = self.claims.get(USER_ID_CLAIM)
        return str(value) if value is not None else None

    def get_id(self) -> Optional[str]:
        return self.id

    def get_claim(self, name: str) -> Optional[Any]:
        return self.claims.get(name)

    def __repr__(self) -> str:
        return f"ClaimsUser(sub={self.id!r})"


def extract_bearer_token(request: Request) -> Optional[str]:
    """Token from the Authorization header, or None."""
    header = request.headers.get('Authorization', '')
    if not header.lower().startswith(BEARER_PREFIX):
        return None
    token = header[len(BEARER_PREFIX):].strip()
    return token or None


def decode_bearer_token(
    token: str,
    secret_key: str,
    algorithms: List[str],
    leeway: int = 0,
    audience: Optional[str] = None
) -> Dict[str, Any]:
    """
    Verify a token signature and expiry and return its claims.

    Raises:
        jwt.InvalidTokenError: Signature, expiry or audience check failed
    """
    options = {'verify_aud': audience is not None}
    return jwt.decode(
        token,
        secret_key,
        algorithms=algorithms,
        audience=audience,
        options=options,
        leeway=leeway,
    )


def init_authentication(app: Flask) -> LoginManager:
    """
    Register the bearer token request loader on the application.

    Reads JWT_SECRET_KEY, JWT_ALGORITHM, JWT_LEEWAY and JWT_AUDIENCE from the
    app config.
    """
    login_manager = LoginManager()
    login_manager.init_app(app)

    @login_manager.user_loader
    def load_user(user_id: str) -> None:
        # No server-side sessions: identities only come from bearer tokens
        return None

    @login_manager.request_loader
    def load_user_from_request(request: Request) -> Optional[ClaimsUser]:
        token = extract_bearer_token(request)
        if token is None:
            return None

        secret_key = app.config.get('JWT_SECRET_KEY')
        if not secret_key:
            logger.error("JWT_SECRET_KEY is not configured, rejecting bearer token")
            return None

        try:
            claims = decode_bearer_token(
                token,
                secret_key,
                algorithms=[app.config.get('JWT_ALGORITHM', 'HS256')],
                leeway=app.config.get('JWT_LEEWAY', 0),
                audience=app.config.get('JWT_AUDIENCE'),
            )
        except jwt.ExpiredSignatureError:
            logger.info("Bearer token expired", path=request.path)
            return None
        except jwt.InvalidTokenError as e:
            logger.warning(
                "Bearer token rejected",
                path=request.path,
                error_type=e.__class__.__name__,
            )
            return None

        return ClaimsUser(claims)

    logger.info(
        "Bearer token authentication initialized",
        algorithm=app.config.get('JWT_ALGORITHM', 'HS256'),
        audience_check=app.config.get('JWT_AUDIENCE') is not None,
    )
    return login_manager


__all__ = [
    'ClaimsUser',
    'extract_bearer_token',
    'decode_bearer_token',
    'init_authentication',
]

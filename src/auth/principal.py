"""
Principal Extraction

Reads the identity attached to a request by the upstream authentication layer
and turns it into a Principal. Extraction is a pure read: nothing is looked up
and nothing is cached, the Principal is rebuilt from claims on every request.

Failure modes:
- MISSING_CLAIMS when the user id claim or the role claim is absent or empty
  (both are checked, independently)
- INVALID_ROLE when the role claim is present but names no known role

The organization id claim is optional and its absence is never a failure by
itself. Platform staff are not tenant-bound: an organization claim sent with an
unscoped role is dropped.
"""

from typing import Optional, Union

import structlog

from src.auth.context import (
    ORGANIZATION_ID_CLAIM,
    ROLE_CLAIM,
    SESSION_ID_CLAIM,
    USER_ID_CLAIM,
    RequestContext,
)
from src.auth.models import ExtractionFailure, Principal, ReasonCode
from src.auth.roles import is_organization_scoped, parse_role

logger = structlog.get_logger(__name__)


def _blank_to_none(value: Optional[str]) -> Optional[str]:
    if value is None or not value.strip():
        return None
    return value


def extract_principal(context: RequestContext) -> Union[Principal, ExtractionFailure]:
    """
    Build the Principal for the current request.

    The caller is responsible for checking context.has_identity() first; an
    identity-less context simply yields MISSING_CLAIMS here.

    Args:
        context: Request context exposing the authenticated claims

    Returns:
        Principal on success, otherwise an ExtractionFailure carrying the raw
        (possibly partial) claim values
    """
    raw_user_id = context.get_claim(USER_ID_CLAIM)
    raw_role = context.get_claim(ROLE_CLAIM)
    organization_id = _blank_to_none(context.get_claim(ORGANIZATION_ID_CLAIM))
    session_id = context.get_claim(SESSION_ID_CLAIM) or context.session_id

    missing = []
    if not raw_user_id:
        missing.append(USER_ID_CLAIM)
    if not raw_role:
        missing.append(ROLE_CLAIM)

    if missing:
        logger.debug(
            "Principal extraction failed: missing claims",
            missing_claims=missing,
            raw_user_id=raw_user_id,
        )
        return ExtractionFailure(
            reason=ReasonCode.MISSING_CLAIMS,
            raw_user_id=raw_user_id,
            raw_role=raw_role,
            organization_id=organization_id,
            session_id=session_id,
            message=f"missing claims: {', '.join(missing)}",
        )

    role = parse_role(raw_role)
    if role is None:
        logger.debug(
            "Principal extraction failed: unknown role",
            raw_user_id=raw_user_id,
            raw_role=raw_role,
        )
        return ExtractionFailure(
            reason=ReasonCode.INVALID_ROLE,
            raw_user_id=raw_user_id,
            raw_role=raw_role,
            organization_id=organization_id,
            session_id=session_id,
            message=f"raw role claim {raw_role!r}",
        )

    if organization_id is not None and not is_organization_scoped(role):
        # Staff are not tenant-bound; a stray organization claim is ignored
        logger.debug(
            "Organization claim ignored for unscoped role",
            raw_user_id=raw_user_id,
            role=role.value,
        )
        organization_id = None

    return Principal(
        user_id=raw_user_id,
        role=role,
        organization_id=organization_id,
        session_id=session_id,
    )


__all__ = ['extract_principal']

"""
Authorization Data Model

Value types exchanged between the principal extractor, the organization
resolver, the decision engine and the audit sink. All of them are immutable
and are rebuilt for every request, except Requirement instances which are
built once at startup and shared by every request to the guarded endpoint.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, FrozenSet, Optional, Union

from src.auth.exceptions import PolicyConfigurationError
from src.auth.roles import UserRole


class ReasonCode(str, Enum):
    """Machine readable outcome of one evaluation."""

    GRANTED_NO_ORG_CHECK = "GRANTED_NO_ORG_CHECK"
    GRANTED_CROSS_ORG = "GRANTED_CROSS_ORG"
    GRANTED_ORG_MATCH = "GRANTED_ORG_MATCH"
    NO_CONTEXT = "NO_CONTEXT"
    MISSING_CLAIMS = "MISSING_CLAIMS"
    INVALID_ROLE = "INVALID_ROLE"
    ROLE_DENIED = "ROLE_DENIED"
    ORG_MISMATCH = "ORG_MISMATCH"

    @property
    def is_grant(self) -> bool:
        return self.value.startswith("GRANTED_")

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class Principal:
    """Authenticated caller of one request, rebuilt from claims every time."""

    user_id: str
    role: UserRole
    organization_id: Optional[str] = None
    session_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'user_id': self.user_id,
            'role': self.role.value,
            'organization_id': self.organization_id,
        }


@dataclass(frozen=True)
class ExtractionFailure:
    """
    Principal extraction that did not yield a usable Principal.

    The raw claim values are kept as they were found, including empty strings,
    so a denial can still be attributed to whoever attempted it.
    """

    reason: ReasonCode
    raw_user_id: Optional[str] = None
    raw_role: Optional[str] = None
    organization_id: Optional[str] = None
    session_id: Optional[str] = None
    message: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            'reason': self.reason.value,
            'raw_user_id': self.raw_user_id,
            'raw_role': self.raw_role,
            'organization_id': self.organization_id,
        }


PrincipalOrFailure = Union[Principal, ExtractionFailure, None]


@dataclass(frozen=True)
class Requirement:
    """
    Declarative access rule bound to one permission name.

    Attributes:
        allowed_roles: Roles that may satisfy the requirement (never empty)
        require_organization_match: Caller organization must equal the
            targeted organization unless the cross-organization override applies
        allow_cross_organization: Whether PlatformStaff bypass the match check
    """

    allowed_roles: FrozenSet[UserRole]
    require_organization_match: bool = True
    allow_cross_organization: bool = True

    def __post_init__(self):
        roles = self.allowed_roles
        if isinstance(roles, (str, UserRole)):
            roles = [roles]
        try:
            normalized = frozenset(UserRole(role) for role in (roles or ()))
        except ValueError as e:
            raise PolicyConfigurationError(f"Unknown role in requirement: {e}") from e
        if not normalized:
            raise PolicyConfigurationError("A requirement must allow at least one role")
        object.__setattr__(self, 'allowed_roles', normalized)

    @classmethod
    def for_roles(
        cls,
        *roles: Union[UserRole, str],
        require_organization_match: bool = True,
        allow_cross_organization: bool = True
    ) -> 'Requirement':
        return cls(
            allowed_roles=frozenset(roles),
            require_organization_match=require_organization_match,
            allow_cross_organization=allow_cross_organization,
        )

    def describe_roles(self) -> str:
        return ", ".join(sorted(role.value for role in self.allowed_roles))

    def to_dict(self) -> Dict[str, Any]:
        return {
            'allowed_roles': sorted(role.value for role in self.allowed_roles),
            'require_organization_match': self.require_organization_match,
            'allow_cross_organization': self.allow_cross_organization,
        }


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class Decision:
    """
    Transient grant/deny result of one evaluation.

    The timestamp and the human explanation are excluded from equality so that
    evaluating the same inputs twice yields equal decisions.
    """

    granted: bool
    reason: ReasonCode
    resolved_organization_id: Optional[str] = None
    explanation: str = field(default="", compare=False)
    timestamp: datetime = field(default_factory=_utcnow, compare=False)

    @property
    def details(self) -> str:
        """Reason code and explanation as stored in the audit trail."""
        if self.explanation:
            return f"{self.reason.value}: {self.explanation}"
        return self.reason.value

    @classmethod
    def grant(cls, reason: ReasonCode, resolved_organization_id: Optional[str], explanation: str = "") -> 'Decision':
        return cls(True, reason, resolved_organization_id, explanation)

    @classmethod
    def deny(cls, reason: ReasonCode, resolved_organization_id: Optional[str], explanation: str = "") -> 'Decision':
        return cls(False, reason, resolved_organization_id, explanation)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'granted': self.granted,
            'reason': self.reason.value,
            'resolved_organization_id': self.resolved_organization_id,
            'details': self.details,
            'timestamp': self.timestamp.isoformat(),
        }


__all__ = [
    'ReasonCode',
    'Principal',
    'ExtractionFailure',
    'PrincipalOrFailure',
    'Requirement',
    'Decision',
]

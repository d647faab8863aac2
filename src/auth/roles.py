"""
Portal User Roles and Role Hierarchy

This module defines the closed set of roles known to the client portal and the
partial order between them. Role parsing and display text come from explicit
lookup tables so that a role claim either maps to exactly one known role or is
rejected outright.

Roles:
- Director: full access to the data of their own organization
- Finance: payment and financial operations within their own organization
- PlatformStaff: internal staff managing orders across all organizations

Hierarchy:
- Modelled as a set of (superior, inferior) pairs
- Director satisfies anything Finance satisfies; no other pair exists
- PlatformStaff is never implicitly privileged and must be listed explicitly
"""

from enum import Enum
from typing import Dict, FrozenSet, Iterable, Optional, Tuple


class UserRole(str, Enum):
    """Closed enumeration of portal roles carried in the role claim."""

    DIRECTOR = "Director"
    FINANCE = "Finance"
    PLATFORM_STAFF = "PlatformStaff"

    def __str__(self) -> str:
        return self.value


_ROLE_BY_CLAIM: Dict[str, UserRole] = {
    "Director": UserRole.DIRECTOR,
    "Finance": UserRole.FINANCE,
    "PlatformStaff": UserRole.PLATFORM_STAFF,
}

_ROLE_DESCRIPTIONS: Dict[UserRole, str] = {
    UserRole.DIRECTOR: "Director - Full access to organization data and operations",
    UserRole.FINANCE: "Finance User - Access to financial and payment operations",
    UserRole.PLATFORM_STAFF: "Platform Staff - Cross-organization order management access",
}

ORGANIZATION_SCOPED_ROLES: FrozenSet[UserRole] = frozenset(
    {UserRole.DIRECTOR, UserRole.FINANCE}
)


def parse_role(raw_role: Optional[str]) -> Optional[UserRole]:
    """
    Parse a raw role claim into a UserRole.

    Matching is exact against the lookup table; surrounding whitespace is not
    trimmed and case is significant.

    Args:
        raw_role: Role claim string as issued by the identity provider

    Returns:
        The matching UserRole, or None when the claim names no known role
    """
    if raw_role is None:
        return None
    return _ROLE_BY_CLAIM.get(raw_role)


def role_to_string(role: UserRole) -> str:
    """Claim string for a role."""
    return role.value


def get_role_description(role: UserRole) -> str:
    """Human readable description for display in admin screens."""
    return _ROLE_DESCRIPTIONS[role]


def is_organization_scoped(role: UserRole) -> bool:
    """True for roles bound to a single organization."""
    return role in ORGANIZATION_SCOPED_ROLES


def has_cross_organization_access(role: UserRole) -> bool:
    """True for roles that may act across every organization."""
    return role == UserRole.PLATFORM_STAFF


class RoleHierarchy:
    """
    Partial order over roles expressed as (superior, inferior) pairs.

    A role satisfies a set of allowed roles when it is listed in the set or
    when it is a (transitive) superior of any listed role. The pair set is
    fixed at construction and the instance is safe to share between threads.
    """

    def __init__(self, pairs: Iterable[Tuple[UserRole, UserRole]] = ()):
        pairs = frozenset(pairs)
        for superior, inferior in pairs:
            if superior == inferior:
                raise ValueError(f"Role {superior} cannot be its own superior")
        self._pairs: FrozenSet[Tuple[UserRole, UserRole]] = pairs
        self._inferiors: Dict[UserRole, FrozenSet[UserRole]] = {
            role: frozenset(self._collect_inferiors(role)) for role in UserRole
        }

    @property
    def pairs(self) -> FrozenSet[Tuple[UserRole, UserRole]]:
        return self._pairs

    def _collect_inferiors(self, role: UserRole) -> set:
        seen = set()
        pending = [role]
        while pending:
            current = pending.pop()
            for superior, inferior in self._pairs:
                if superior == current and inferior not in seen:
                    seen.add(inferior)
                    pending.append(inferior)
        return seen

    def inferiors_of(self, role: UserRole) -> FrozenSet[UserRole]:
        """Every role that the given role outranks."""
        return self._inferiors[role]

    def satisfies(self, role: UserRole, allowed_roles: Iterable[UserRole]) -> bool:
        """Check whether role meets an allowed-role set directly or through the hierarchy."""
        allowed = frozenset(allowed_roles)
        if role in allowed:
            return True
        return bool(self._inferiors[role] & allowed)

    def __repr__(self) -> str:
        rendered = ", ".join(
            f"{superior.value}>{inferior.value}"
            for superior, inferior in sorted(self._pairs)
        )
        return f"RoleHierarchy({rendered})"


DEFAULT_ROLE_HIERARCHY = RoleHierarchy([(UserRole.DIRECTOR, UserRole.FINANCE)])


__all__ = [
    'UserRole',
    'RoleHierarchy',
    'DEFAULT_ROLE_HIERARCHY',
    'ORGANIZATION_SCOPED_ROLES',
    'parse_role',
    'role_to_string',
    'get_role_description',
    'is_organization_scoped',
    'has_cross_organization_access',
]

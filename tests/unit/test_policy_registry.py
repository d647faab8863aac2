"""
Unit tests for requirements and the policy registry.
"""

import pytest

from src.auth.authorization import (
    REQUIRE_ANY_PORTAL_ROLE,
    REQUIRE_DIRECTOR,
    REQUIRE_DIRECTOR_OR_FINANCE,
    REQUIRE_FINANCE,
    REQUIRE_ORGANIZATION_ACCESS,
    REQUIRE_PLATFORM_STAFF,
    REQUIRE_PLATFORM_STAFF_ROLE,
    PolicyRegistry,
    build_default_registry,
)
from src.auth.exceptions import PolicyConfigurationError
from src.auth.models import Requirement
from src.auth.roles import UserRole


@pytest.mark.unit
class TestRequirement:

    def test_roles_normalized_from_strings(self):
        requirement = Requirement.for_roles("Director", UserRole.FINANCE)
        assert requirement.allowed_roles == frozenset({UserRole.DIRECTOR, UserRole.FINANCE})

    def test_defaults(self):
        requirement = Requirement.for_roles(UserRole.DIRECTOR)
        assert requirement.require_organization_match is True
        assert requirement.allow_cross_organization is True

    def test_empty_roles_rejected(self):
        with pytest.raises(PolicyConfigurationError):
            Requirement.for_roles()

    def test_unknown_role_rejected(self):
        with pytest.raises(PolicyConfigurationError):
            Requirement.for_roles("Owner")

    def test_to_dict(self):
        requirement = Requirement.for_roles(UserRole.FINANCE, UserRole.DIRECTOR, require_organization_match=False)
        assert requirement.to_dict() == {
            'allowed_roles': ["Director", "Finance"],
            'require_organization_match': False,
            'allow_cross_organization': True,
        }


@pytest.mark.unit
class TestPolicyRegistry:

    def test_register_and_get(self):
        registry = PolicyRegistry()
        requirement = registry.register_roles("RequireAuditor", UserRole.FINANCE)

        assert registry.get("RequireAuditor") is requirement
        assert "RequireAuditor" in registry
        assert len(registry) == 1

    def test_unknown_name(self):
        with pytest.raises(PolicyConfigurationError):
            PolicyRegistry().get("Missing")

    def test_duplicate_name(self):
        registry = PolicyRegistry()
        registry.register_roles("RequireX", UserRole.DIRECTOR)
        with pytest.raises(PolicyConfigurationError):
            registry.register_roles("RequireX", UserRole.FINANCE)

    def test_empty_name(self):
        with pytest.raises(PolicyConfigurationError):
            PolicyRegistry().register(" ", Requirement.for_roles(UserRole.DIRECTOR))

    def test_non_requirement(self):
        with pytest.raises(PolicyConfigurationError):
            PolicyRegistry().register("RequireX", {"allowed_roles": ["Director"]})

    def test_frozen_registry_rejects_registration(self):
        registry = PolicyRegistry().freeze()
        assert registry.frozen
        with pytest.raises(PolicyConfigurationError):
            registry.register_roles("Late", UserRole.DIRECTOR)


@pytest.mark.unit
class TestDefaultRegistry:

    def test_standard_policies(self):
        registry = build_default_registry()

        assert registry.frozen
        assert set(registry) == {
            REQUIRE_DIRECTOR,
            REQUIRE_FINANCE,
            REQUIRE_PLATFORM_STAFF_ROLE,
            REQUIRE_DIRECTOR_OR_FINANCE,
            REQUIRE_ORGANIZATION_ACCESS,
            REQUIRE_PLATFORM_STAFF,
            REQUIRE_ANY_PORTAL_ROLE,
        }

    def test_organization_access_policy(self):
        requirement = build_default_registry().get(REQUIRE_ORGANIZATION_ACCESS)
        assert requirement.allowed_roles == frozenset({UserRole.DIRECTOR, UserRole.FINANCE})
        assert requirement.require_organization_match

    def test_platform_staff_policy_skips_organization_check(self):
        requirement = build_default_registry().get(REQUIRE_PLATFORM_STAFF)
        assert requirement.allowed_roles == frozenset({UserRole.PLATFORM_STAFF})
        assert not requirement.require_organization_match

    def test_unfrozen_registry_can_be_extended(self):
        registry = build_default_registry(freeze=False)
        registry.register_roles("RequireInvoices", UserRole.FINANCE)
        assert "RequireInvoices" in registry.names()

"""Tests for role capabilities."""

import pytest

from procureflow.core.roles import (
    Capability,
    NON_DELEGATE_ROLES,
    UserRole,
    can_approve,
    has_capability,
    roles_with,
)


class TestRoleCapabilities:

    @pytest.mark.parametrize("role", [UserRole.MD, UserRole.CEO, UserRole.ADMIN])
    def test_approver_roles(self, role):
        assert can_approve(role)

    @pytest.mark.parametrize("role", [UserRole.PROPERTY_MANAGER, UserRole.ACCOUNTS])
    def test_non_approver_roles(self, role):
        assert not can_approve(role)

    def test_accepts_role_strings(self):
        assert has_capability("ACCOUNTS", Capability.MARK_PAID)
        assert not has_capability("PROPERTY_MANAGER", Capability.MARK_PAID)

    def test_unknown_role_has_nothing(self):
        assert not has_capability("JANITOR", Capability.APPROVE)

    def test_accounts_notice_recipients(self):
        assert roles_with(Capability.RECEIVE_ACCOUNTS_NOTICES) == [UserRole.ADMIN, UserRole.ACCOUNTS]

    def test_only_admin_manages_workflows(self):
        assert roles_with(Capability.MANAGE_WORKFLOWS) == [UserRole.ADMIN]

    def test_ceo_cannot_be_delegate(self):
        assert UserRole.CEO in NON_DELEGATE_ROLES
        assert UserRole.MD not in NON_DELEGATE_ROLES

"""User roles and their approval capabilities.

Roles are a closed enumeration; what a role may do is looked up in
``ROLE_CAPABILITIES`` instead of comparing role strings at call sites.

    PROPERTY_MANAGER  raises purchase orders, uploads invoices
    MD                approves (first line)
    CEO               approves (high value)
    ADMIN             approves, configures workflows, runs sweeps
    ACCOUNTS          receives approved work, marks invoices paid
"""

from enum import Enum
from typing import Dict, FrozenSet, Union


class UserRole(str, Enum):
    """Roles a user can hold within an organisation."""

    PROPERTY_MANAGER = "PROPERTY_MANAGER"
    MD = "MD"
    CEO = "CEO"
    ADMIN = "ADMIN"
    ACCOUNTS = "ACCOUNTS"


class Capability(str, Enum):
    """Things a role may do inside the routing engine."""

    APPROVE = "approve"
    MARK_PAID = "mark_paid"
    RECEIVE_ACCOUNTS_NOTICES = "receive_accounts_notices"
    MANAGE_WORKFLOWS = "manage_workflows"
    RUN_SWEEPS = "run_sweeps"
    DELEGATE = "delegate"


ROLE_CAPABILITIES: Dict[UserRole, FrozenSet[Capability]] = {
    UserRole.PROPERTY_MANAGER: frozenset(),
    UserRole.MD: frozenset({
        Capability.APPROVE,
        Capability.DELEGATE,
    }),
    UserRole.CEO: frozenset({
        Capability.APPROVE,
        Capability.DELEGATE,
    }),
    UserRole.ADMIN: frozenset({
        Capability.APPROVE,
        Capability.DELEGATE,
        Capability.MARK_PAID,
        Capability.RECEIVE_ACCOUNTS_NOTICES,
        Capability.MANAGE_WORKFLOWS,
        Capability.RUN_SWEEPS,
    }),
    UserRole.ACCOUNTS: frozenset({
        Capability.MARK_PAID,
        Capability.RECEIVE_ACCOUNTS_NOTICES,
    }),
}

# Roles that may never receive delegated approval authority
NON_DELEGATE_ROLES: FrozenSet[UserRole] = frozenset({UserRole.CEO})


def _coerce(role: Union[UserRole, str]) -> UserRole:
    return role if isinstance(role, UserRole) else UserRole(role)


def has_capability(role: Union[UserRole, str], capability: Capability) -> bool:
    """Check whether a role carries a capability."""
    try:
        return capability in ROLE_CAPABILITIES[_coerce(role)]
    except ValueError:
        return False


def can_approve(role: Union[UserRole, str]) -> bool:
    return has_capability(role, Capability.APPROVE)


def roles_with(capability: Capability) -> list[UserRole]:
    """All roles carrying a capability, in declaration order."""
    return [role for role in UserRole if capability in ROLE_CAPABILITIES[role]]

"""
access.py - Role-based access control as an explicit capability map

Roles are held in a plain mapping ``role -> set of accounts``. Every check
is a pure predicate over that mapping, so permission logic can be tested
without a ledger.

DEFAULT_ADMIN_ROLE administers every role, including itself. Roles not
listed in ROLE_ADMINS fall back to DEFAULT_ADMIN_ROLE as their admin.
"""

from __future__ import annotations
from typing import AbstractSet, Dict, FrozenSet, Mapping

from .core import (
    DEFAULT_ADMIN_ROLE, MINTER_ROLE, APPROVER_ROLE,
    ValidationError,
)


RoleMap = Mapping[str, AbstractSet[str]]

ROLE_ADMINS: Dict[str, str] = {
    DEFAULT_ADMIN_ROLE: DEFAULT_ADMIN_ROLE,
    MINTER_ROLE: DEFAULT_ADMIN_ROLE,
    APPROVER_ROLE: DEFAULT_ADMIN_ROLE,
}


def has_role(roles: RoleMap, role: str, account: str) -> bool:
    """True if `account` currently holds `role`."""
    return account in roles.get(role, ())


def admin_role_of(role: str) -> str:
    """Return the role whose holders may grant and revoke `role`."""
    return ROLE_ADMINS.get(role, DEFAULT_ADMIN_ROLE)


def can_administer(roles: RoleMap, role: str, account: str) -> bool:
    """True if `account` may grant or revoke `role`."""
    return has_role(roles, admin_role_of(role), account)


def require_role(roles: RoleMap, role: str, account: str) -> None:
    """
    Check that `account` holds `role`.

    Raises:
        ValidationError: If the role is missing
    """
    if not has_role(roles, role, account):
        raise ValidationError(f"Missing role {role}")


def require_admin_of(roles: RoleMap, role: str, account: str) -> None:
    """
    Check that `account` holds the admin role of `role`.

    Raises:
        ValidationError: If the admin role is missing
    """
    admin = admin_role_of(role)
    if not has_role(roles, admin, account):
        raise ValidationError(f"Missing role {admin}")


def freeze_roles(roles: RoleMap) -> Dict[str, FrozenSet[str]]:
    """Copy a role map into frozensets, dropping roles with no members."""
    return {role: frozenset(members) for role, members in roles.items() if members}

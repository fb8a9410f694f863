"""
Role hierarchy evaluation.

Answers "can this role do X" using the hierarchical permission sets from
contracts_portal.core.permissions. Every function is a boolean gate: unknown or
missing roles and unknown permission ids evaluate to False, never raise.
"""

from typing import Iterable, List, Union

from contracts_portal.core.permissions import permission_ids_for_role
from contracts_portal.core.roles import Role, parse_role, role_level, roles_by_level

RoleLike = Union[Role, str, None]


def has_permission(role: RoleLike, permission: str) -> bool:
    return permission in permission_ids_for_role(role)


def has_any_permission(role: RoleLike, permissions: Iterable[str]) -> bool:
    granted = permission_ids_for_role(role)
    return any(p in granted for p in permissions)


def has_all_permissions(role: RoleLike, permissions: Iterable[str]) -> bool:
    """True when every listed permission is held. An empty list is trivially satisfied."""
    granted = permission_ids_for_role(role)
    return all(p in granted for p in permissions)


def has_role_level(role: RoleLike, required_role: RoleLike) -> bool:
    """True when role sits at or above required_role. Either side unknown means False."""
    if parse_role(role) is None or parse_role(required_role) is None:
        return False
    return role_level(role) >= role_level(required_role)


def can_manage_role(acting_role: RoleLike, target_role: RoleLike) -> bool:
    """Strictly greater level only: no role manages a peer or a superior."""
    if parse_role(acting_role) is None:
        return False
    return role_level(acting_role) > role_level(target_role)


def get_user_permissions(role: RoleLike) -> List[str]:
    """Sorted effective permission ids for a role."""
    return sorted(permission_ids_for_role(role))


def manageable_roles(role: RoleLike) -> List[Role]:
    return [r for r in roles_by_level() if can_manage_role(role, r)]

"""
Permission catalog built from the static matrix in contracts_portal.config.permissions_config.

All lookups are pure. The catalog and the per-role permission sets are computed once and
shared read-only by every request.
"""

from dataclasses import dataclass
from functools import lru_cache
from typing import Dict, FrozenSet, List, Optional, Tuple, Union

from contracts_portal.config.permissions_config import MODULES, permission_id
from contracts_portal.core.roles import ROLE_LEVELS, Role, parse_role, role_level

__all__ = [
    "Permission",
    "list_permissions",
    "get_permission",
    "direct_permissions",
    "permissions_for_role",
    "permission_ids_for_role",
    "role_level",
]


@dataclass(frozen=True)
class Permission:
    id: str
    resource: str
    action: str
    name: str
    description: str
    roles: FrozenSet[Role]

    @property
    def min_level(self) -> int:
        """Lowest role level that holds this permission."""
        return min(ROLE_LEVELS[r] for r in self.roles)


def _build_catalog() -> Tuple[Permission, ...]:
    catalog = []
    for module_config in MODULES.values():
        resource = module_config["resource"]
        for action, action_config in module_config["actions"].items():
            catalog.append(Permission(
                id=permission_id(resource, action),
                resource=resource,
                action=action,
                name=action_config["description"],
                description=f"{action_config['description']} ({module_config['description']})",
                roles=frozenset(parse_role(r) for r in action_config["roles"]),
            ))
    return tuple(catalog)


_CATALOG: Tuple[Permission, ...] = _build_catalog()
_BY_ID: Dict[str, Permission] = {p.id: p for p in _CATALOG}

if len(_BY_ID) != len(_CATALOG):
    raise ValueError("Duplicate permission ids in the permission matrix")


def list_permissions() -> List[Permission]:
    """Full static catalog, in matrix order."""
    return list(_CATALOG)


def get_permission(permission: str) -> Optional[Permission]:
    return _BY_ID.get(permission)


def direct_permissions(role: Union[Role, str, None]) -> List[Permission]:
    """Permissions whose grant list names the role exactly (no inheritance)."""
    parsed = parse_role(role)
    if parsed is None:
        return []
    return [p for p in _CATALOG if parsed in p.roles]


@lru_cache(maxsize=None)
def _effective_ids(level: int) -> FrozenSet[str]:
    return frozenset(p.id for p in _CATALOG if p.min_level <= level)


def permission_ids_for_role(role: Union[Role, str, None]) -> FrozenSet[str]:
    """Effective permission ids for a role, including everything granted to lower levels."""
    parsed = parse_role(role)
    if parsed is None:
        return frozenset()
    return _effective_ids(ROLE_LEVELS[parsed])


def permissions_for_role(role: Union[Role, str, None]) -> List[Permission]:
    """Effective permissions for a role. Unknown roles get an empty list."""
    ids = permission_ids_for_role(role)
    return [p for p in _CATALOG if p.id in ids]

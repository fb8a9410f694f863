"""
Role definitions.

Roles form a closed set. Every role string entering the system (profile rows,
settings, API payloads) goes through parse_role(); anything it does not
recognise is treated as "no role" and gets least privilege.
"""

from enum import Enum
from typing import Dict, List, Optional, Union

UNKNOWN_ROLE_LEVEL = 0


class Role(str, Enum):
    SUPER_ADMIN = "super_admin"
    ADMIN = "admin"
    MANAGER = "manager"
    PROVIDER = "provider"
    CLIENT = "client"
    USER = "user"
    VIEWER = "viewer"
    GUEST = "guest"


# Higher level includes everything granted to lower levels.
ROLE_LEVELS: Dict[Role, int] = {
    Role.SUPER_ADMIN: 120,
    Role.ADMIN: 100,
    Role.MANAGER: 80,
    Role.PROVIDER: 70,
    Role.CLIENT: 65,
    Role.USER: 60,
    Role.VIEWER: 40,
    Role.GUEST: 20,
}

ROLE_INFO: Dict[Role, Dict[str, str]] = {
    Role.SUPER_ADMIN: {"label": "Super Admin", "description": "Platform administrator with full system access"},
    Role.ADMIN: {"label": "Admin", "description": "Company administrator with management capabilities"},
    Role.MANAGER: {"label": "Manager", "description": "Team manager with oversight of contracts and promoters"},
    Role.PROVIDER: {"label": "Service Provider", "description": "Provider managing services, bookings and own contracts"},
    Role.CLIENT: {"label": "Client", "description": "Client with booking and review capabilities"},
    Role.USER: {"label": "User", "description": "Standard user with basic capabilities"},
    Role.VIEWER: {"label": "Viewer", "description": "Read-only access"},
    Role.GUEST: {"label": "Guest", "description": "Signed-in account without an assigned role"},
}


def _validate_role_table() -> None:
    missing = [role.value for role in Role if role not in ROLE_LEVELS or role not in ROLE_INFO]
    if missing:
        raise ValueError(f"Roles without level or display info: {missing}")
    levels = list(ROLE_LEVELS.values())
    if len(set(levels)) != len(levels):
        raise ValueError("Role levels must be unique")
    if min(levels) <= UNKNOWN_ROLE_LEVEL:
        raise ValueError(f"Role levels must be greater than {UNKNOWN_ROLE_LEVEL}")


_validate_role_table()


def parse_role(value: Union[Role, str, None]) -> Optional[Role]:
    """Map a raw role string to a Role, or None when it is absent or unknown."""
    if isinstance(value, Role):
        return value
    if not isinstance(value, str):
        return None
    try:
        return Role(value.strip().lower())
    except ValueError:
        return None


def role_level(role: Union[Role, str, None]) -> int:
    """Configured level for a role. Unknown or missing roles are level 0, never an error."""
    parsed = parse_role(role)
    if parsed is None:
        return UNKNOWN_ROLE_LEVEL
    return ROLE_LEVELS[parsed]


def roles_at_or_below(level: int) -> List[Role]:
    return [role for role, lvl in ROLE_LEVELS.items() if lvl <= level]


def roles_by_level() -> List[Role]:
    """All roles, highest level first."""
    return sorted(Role, key=lambda r: ROLE_LEVELS[r], reverse=True)


def role_info(role: Union[Role, str, None]) -> Dict[str, str]:
    parsed = parse_role(role)
    if parsed is None:
        return {"label": "Unknown", "description": "Unrecognised role, treated as least privilege"}
    return ROLE_INFO[parsed]

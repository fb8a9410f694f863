"""
Permissions and Roles Configuration
This config defines the permission matrix for every resource and the roles granted each action.
It is the single source of truth: the evaluator reads it at import time and the seed script
mirrors it into the database. Change it through code review only.

Grants are hierarchical. Granting an action to a role also grants it to every role with a
higher level (see contracts_portal.core.roles.ROLE_LEVELS), so each action lists only the
lowest role(s) that need it.
"""

from contracts_portal.core.roles import ROLE_LEVELS, Role, parse_role, roles_by_level

# Bump whenever a grant changes so drift between code and database is visible.
MATRIX_VERSION = "2026.10.2"

# Define resources, their actions, and the roles granted each action
MODULES = {
    "system": {
        "resource": "system",
        "description": "Platform administration",
        "actions": {
            "admin": {"description": "Access the administration area", "roles": ["admin"]},
            "settings": {"description": "Change system settings", "roles": ["admin"]},
            "logs": {"description": "Read system and audit logs", "roles": ["admin"]},
            "backup": {"description": "Trigger and restore backups", "roles": ["super_admin"]},
        },
    },
    "users": {
        "resource": "users",
        "description": "User account management",
        "actions": {
            "view": {"description": "View user accounts", "roles": ["manager"]},
            "create": {"description": "Create user accounts", "roles": ["admin"]},
            "edit": {"description": "Edit user accounts", "roles": ["manager"]},
            "delete": {"description": "Delete user accounts", "roles": ["admin"]},
            "roles": {"description": "Assign roles to users", "roles": ["admin"]},
        },
    },
    "roles": {
        "resource": "roles",
        "description": "Role and permission catalog",
        "actions": {
            "read": {"description": "View roles and the permission matrix", "roles": ["manager"]},
        },
    },
    "companies": {
        "resource": "companies",
        "description": "Company management",
        "actions": {
            "view": {"description": "View companies", "roles": ["provider"]},
            "create": {"description": "Create companies", "roles": ["admin"]},
            "edit": {"description": "Edit companies", "roles": ["manager"]},
            "delete": {"description": "Delete companies", "roles": ["admin"]},
        },
    },
    "contracts": {
        "resource": "contracts",
        "description": "Employment and service contracts",
        "actions": {
            "read": {"description": "View contracts", "roles": ["viewer"]},
            "create": {"description": "Create contracts", "roles": ["provider"]},
            "update": {"description": "Edit contracts", "roles": ["provider"]},
            "delete": {"description": "Delete contracts", "roles": ["admin"]},
            "approve": {"description": "Approve or reject contracts", "roles": ["manager"]},
            "generate": {"description": "Generate contract documents", "roles": ["provider"]},
        },
    },
    "promoters": {
        "resource": "promoters",
        "description": "Promoters (employees and contractors)",
        "actions": {
            "read": {"description": "View promoters", "roles": ["viewer"]},
            "create": {"description": "Create promoters", "roles": ["manager"]},
            "update": {"description": "Edit promoters", "roles": ["manager"]},
            "delete": {"description": "Delete promoters", "roles": ["admin"]},
            "bulk_import": {"description": "Bulk import and assign promoters", "roles": ["manager"]},
        },
    },
    "parties": {
        "resource": "parties",
        "description": "Contract parties (employers and clients)",
        "actions": {
            "read": {"description": "View parties", "roles": ["viewer"]},
            "create": {"description": "Create parties", "roles": ["manager"]},
            "update": {"description": "Edit parties", "roles": ["manager"]},
            "delete": {"description": "Delete parties", "roles": ["admin"]},
        },
    },
    "documents": {
        "resource": "documents",
        "description": "Promoter and company documents",
        "actions": {
            "read": {"description": "View documents", "roles": ["user"]},
            "upload": {"description": "Upload documents", "roles": ["user"]},
            "delete": {"description": "Delete documents", "roles": ["manager"]},
        },
    },
    "workflows": {
        "resource": "workflows",
        "description": "Approval workflows",
        "actions": {
            "read": {"description": "View workflow state", "roles": ["user"]},
            "manage": {"description": "Configure and advance workflows", "roles": ["manager"]},
        },
    },
    "bookings": {
        "resource": "bookings",
        "description": "Service bookings",
        "actions": {
            "create": {"description": "Create bookings", "roles": ["user"]},
            "view_own": {"description": "View own bookings", "roles": ["user"]},
            "edit_own": {"description": "Edit own bookings", "roles": ["user"]},
            "cancel_own": {"description": "Cancel own bookings", "roles": ["user"]},
            "manage_provider": {"description": "Manage bookings for own services", "roles": ["provider"]},
            "view_provider": {"description": "View bookings for own services", "roles": ["provider"]},
            "view_all": {"description": "View every booking", "roles": ["admin"]},
        },
    },
    "services": {
        "resource": "services",
        "description": "Provider services",
        "actions": {
            "create": {"description": "Create services", "roles": ["provider"]},
            "edit_own": {"description": "Edit own services", "roles": ["provider"]},
            "delete_own": {"description": "Delete own services", "roles": ["provider"]},
            "view_all": {"description": "View every provider's services", "roles": ["admin"]},
        },
    },
    "availability": {
        "resource": "availability",
        "description": "Provider availability calendar",
        "actions": {
            "manage": {"description": "Manage own availability", "roles": ["provider"]},
        },
    },
    "provider_profile": {
        "resource": "provider_profile",
        "description": "Public provider profile",
        "actions": {
            "edit": {"description": "Edit own provider profile", "roles": ["provider"]},
        },
    },
    "client_profile": {
        "resource": "client_profile",
        "description": "Client profile and preferences",
        "actions": {
            "edit": {"description": "Edit own client profile", "roles": ["user"]},
        },
    },
    "reviews": {
        "resource": "reviews",
        "description": "Service reviews",
        "actions": {
            "create": {"description": "Review a completed booking", "roles": ["user"]},
            "edit_own": {"description": "Edit own reviews", "roles": ["user"]},
        },
    },
    "favorites": {
        "resource": "favorites",
        "description": "Saved providers and services",
        "actions": {
            "manage": {"description": "Manage own favorites", "roles": ["user"]},
        },
    },
    "analytics": {
        "resource": "analytics",
        "description": "Analytics dashboards",
        "actions": {
            "view_own": {"description": "View own analytics", "roles": ["provider"]},
            "view_all": {"description": "View organisation-wide analytics", "roles": ["admin"]},
        },
    },
    "reports": {
        "resource": "reports",
        "description": "Reports",
        "actions": {
            "view_own": {"description": "View own reports", "roles": ["provider"]},
            "view_all": {"description": "View all reports", "roles": ["admin"]},
        },
    },
    "notifications": {
        "resource": "notifications",
        "description": "In-app notifications",
        "actions": {
            "view_own": {"description": "View own notifications", "roles": ["guest"]},
            "manage_own": {"description": "Manage own notification settings", "roles": ["user"]},
        },
    },
    "communication": {
        "resource": "communication",
        "description": "Messages between providers and clients",
        "actions": {
            "send": {"description": "Send messages to clients", "roles": ["provider"]},
            "receive": {"description": "Receive messages", "roles": ["user"]},
        },
    },
    "webhooks": {
        "resource": "webhooks",
        "description": "Inbound webhook integrations",
        "actions": {
            "read": {"description": "View webhook deliveries", "roles": ["admin"]},
            "manage": {"description": "Rotate webhook secrets and sources", "roles": ["super_admin"]},
        },
    },
    "dashboard": {
        "resource": "dashboard",
        "description": "Role dashboards",
        "actions": {
            "view": {"description": "View own dashboard", "roles": ["guest"]},
        },
    },
    "profile": {
        "resource": "profile",
        "description": "Own profile",
        "actions": {
            "edit_own": {"description": "Edit own profile", "roles": ["guest"]},
        },
    },
}


def permission_id(resource: str, action: str) -> str:
    return f"{resource}.{action}"


def _validate_modules() -> None:
    for module_name, module_config in MODULES.items():
        for action, action_config in module_config["actions"].items():
            if not action_config["roles"]:
                raise ValueError(f"{module_name}.{action} grants no roles")
            for role_name in action_config["roles"]:
                if parse_role(role_name) is None:
                    raise ValueError(f"{module_name}.{action} references undefined role {role_name!r}")


_validate_modules()


# Generate permission matrix
def get_permission_matrix():
    """
    Returns a dictionary with all permissions and the role table
    Format: {
        "version": "...",
        "permissions": [
            {"id": "contracts.read", "name": "...", "resource": "contracts", "action": "read",
             "description": "...", "roles": ["viewer"]},
            ...
        ],
        "roles": [
            {
                "name": "manager",
                "level": 80,
                "direct_permissions": [...],
                "permissions": [...]   # effective, including inherited grants
            },
            ...
        ]
    }
    """
    permissions = []
    for module_name, module_config in MODULES.items():
        resource = module_config["resource"]
        for action, action_config in module_config["actions"].items():
            permissions.append({
                "id": permission_id(resource, action),
                "name": action_config["description"],
                "resource": resource,
                "action": action,
                "description": f"{action_config['description']} ({module_config['description']})",
                "roles": sorted(action_config["roles"]),
            })

    roles = []
    for role in roles_by_level():
        level = ROLE_LEVELS[role]
        direct = sorted(p["id"] for p in permissions if role.value in p["roles"])
        effective = sorted(
            p["id"] for p in permissions
            if any(ROLE_LEVELS[Role(r)] <= level for r in p["roles"])
        )
        roles.append({
            "name": role.value,
            "level": level,
            "direct_permissions": direct,
            "permissions": effective,
        })

    return {
        "version": MATRIX_VERSION,
        "permissions": permissions,
        "roles": roles,
    }


# Export the matrix for use in seed scripts
PERMISSION_MATRIX = get_permission_matrix()

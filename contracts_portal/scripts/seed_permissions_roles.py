"""
Seed Permissions and Roles Script
This script mirrors the permission matrix from code into the permissions, roles and
role_permissions tables. Code stays the source of truth: grants missing from the
config are removed from the database.
Can be run manually or as part of a nightly job.
"""

import sys
from pathlib import Path

# Add project root to path
project_root = Path(__file__).parent.parent.parent
sys.path.insert(0, str(project_root))

from contracts_portal.config.permissions_config import PERMISSION_MATRIX
from contracts_portal.core.roles import role_info
from contracts_portal.database.supabase_client import get_supabase_service
from supabase import Client
import logging

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


def seed_permissions(supabase: Client, matrix: dict = PERMISSION_MATRIX) -> int:
    """Upsert permissions from config"""
    logger.info("Seeding permissions...")
    created_count = 0
    updated_count = 0

    for perm in matrix["permissions"]:
        try:
            existing = supabase.table("permissions")\
                .select("id")\
                .eq("name", perm["id"])\
                .execute()

            if existing.data:
                supabase.table("permissions")\
                    .update({
                        "resource": perm["resource"],
                        "action": perm["action"],
                        "description": perm["description"]
                    })\
                    .eq("name", perm["id"])\
                    .execute()
                updated_count += 1
                logger.debug(f"Updated permission: {perm['id']}")
            else:
                supabase.table("permissions").insert({
                    "name": perm["id"],
                    "resource": perm["resource"],
                    "action": perm["action"],
                    "description": perm["description"]
                }).execute()
                created_count += 1
                logger.debug(f"Created permission: {perm['id']}")
        except Exception as e:
            logger.error(f"Error processing permission {perm['id']}: {e}")

    logger.info(f"Permissions seeded: {created_count} created, {updated_count} updated")
    return created_count + updated_count


def seed_roles(supabase: Client, matrix: dict = PERMISSION_MATRIX) -> int:
    """Upsert roles (with level) and their direct grants"""
    logger.info("Seeding roles...")
    created_count = 0
    updated_count = 0

    for role in matrix["roles"]:
        try:
            row = {
                "level": role["level"],
                "description": role_info(role["name"])["description"],
            }
            existing = supabase.table("roles")\
                .select("id")\
                .eq("name", role["name"])\
                .execute()

            if existing.data:
                supabase.table("roles")\
                    .update(row)\
                    .eq("name", role["name"])\
                    .execute()
                role_id = existing.data[0]["id"]
                updated_count += 1
                logger.debug(f"Updated role: {role['name']}")
            else:
                result = supabase.table("roles").insert({"name": role["name"], **row}).execute()
                role_id = result.data[0]["id"]
                created_count += 1
                logger.debug(f"Created role: {role['name']}")

            sync_role_permissions(supabase, role_id, role["name"], role["direct_permissions"])

        except Exception as e:
            logger.error(f"Error processing role {role['name']}: {e}")

    logger.info(f"Roles seeded: {created_count} created, {updated_count} updated")
    return created_count + updated_count


def sync_role_permissions(supabase: Client, role_id: str, role_name: str, permission_names: list) -> None:
    """Make role_permissions for a role match the direct grants in config"""
    if permission_names:
        permission_result = supabase.table("permissions")\
            .select("id")\
            .in_("name", permission_names)\
            .execute()
        permission_ids = {p["id"] for p in permission_result.data} if permission_result.data else set()
        if len(permission_ids) < len(permission_names):
            logger.warning(f"Some permissions for role {role_name} are missing from the permissions table")
    else:
        permission_ids = set()

    existing_result = supabase.table("role_permissions")\
        .select("permission_id")\
        .eq("role_id", role_id)\
        .execute()
    existing_permission_ids = {p["permission_id"] for p in existing_result.data} if existing_result.data else set()

    new_assignments = [
        {"role_id": role_id, "permission_id": pid}
        for pid in sorted(permission_ids - existing_permission_ids)
    ]
    if new_assignments:
        supabase.table("role_permissions").insert(new_assignments).execute()
        logger.debug(f"Assigned {len(new_assignments)} permissions to role {role_name}")

    # Remove grants that are no longer in the config
    permissions_to_remove = existing_permission_ids - permission_ids
    if permissions_to_remove:
        supabase.table("role_permissions")\
            .delete()\
            .eq("role_id", role_id)\
            .in_("permission_id", sorted(permissions_to_remove))\
            .execute()
        logger.debug(f"Removed {len(permissions_to_remove)} permissions from role {role_name}")


def main():
    """Main function to seed permissions and roles"""
    try:
        supabase = get_supabase_service()

        logger.info(f"Starting permissions and roles seeding (matrix {PERMISSION_MATRIX['version']})...")

        # Seed permissions first
        perm_count = seed_permissions(supabase)

        # Then seed roles (which depend on permissions)
        role_count = seed_roles(supabase)

        logger.info("Seeding completed successfully!")
        logger.info(f"Total: {perm_count} permissions, {role_count} roles processed")

    except Exception as e:
        logger.error(f"Error during seeding: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()

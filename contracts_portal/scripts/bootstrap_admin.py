"""
Bootstrap Admin Script
Grants an administrative role to an existing account, out of band.

This is the only way the first administrator gets provisioned: the request path has
no identity-based special cases (no "this email is always admin" fallback).

Usage:
    python -m contracts_portal.scripts.bootstrap_admin --email ops@example.com [--role super_admin]
"""

import argparse
import sys
from pathlib import Path

# Add project root to path
project_root = Path(__file__).parent.parent.parent
sys.path.insert(0, str(project_root))

from contracts_portal.core.roles import Role, parse_role
from contracts_portal.database.supabase_client import get_supabase_service
from supabase import Client
import logging

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

BOOTSTRAP_ROLES = (Role.ADMIN, Role.SUPER_ADMIN)


class BootstrapError(Exception):
    pass


def _like_literal(value: str) -> str:
    """Escape LIKE wildcards so the pattern only matches value itself."""
    for char in ("\\", "%", "_"):
        value = value.replace(char, "\\" + char)
    return value


def provision_admin(supabase: Client, email: str, role: Role = Role.SUPER_ADMIN) -> dict:
    """Set role on the users row matching email. The account must already exist."""
    if role not in BOOTSTRAP_ROLES:
        raise BootstrapError(f"Bootstrap only grants {', '.join(r.value for r in BOOTSTRAP_ROLES)}")

    email = email.strip()
    # Stored emails keep the case they signed up with
    result = supabase.table("users")\
        .select("id, email, role")\
        .ilike("email", _like_literal(email))\
        .execute()
    matches = [row for row in result.data or [] if (row.get("email") or "").lower() == email.lower()]
    if not matches:
        raise BootstrapError(f"No user with email {email}; the account must sign up first")
    if len(matches) > 1:
        raise BootstrapError(f"More than one user matches email {email}")

    user = matches[0]
    if parse_role(user.get("role")) == role:
        logger.info(f"User {email} already has role {role.value}")
        return user

    updated = supabase.table("users")\
        .update({"role": role.value})\
        .eq("id", user["id"])\
        .execute()
    if not updated.data:
        raise BootstrapError(f"Failed to update role for {email}")

    logger.info(f"Granted {role.value} to {email} (previous role: {user.get('role')})")
    return updated.data[0]


def main(argv=None):
    parser = argparse.ArgumentParser(description="Grant an administrative role to an existing account")
    parser.add_argument("--email", required=True, help="Email of the account to promote")
    parser.add_argument("--role", default=Role.SUPER_ADMIN.value, choices=[r.value for r in BOOTSTRAP_ROLES])
    args = parser.parse_args(argv)

    try:
        provision_admin(get_supabase_service(), args.email, Role(args.role))
    except BootstrapError as e:
        logger.error(str(e))
        sys.exit(1)
    except Exception as e:
        logger.error(f"Error during bootstrap: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()

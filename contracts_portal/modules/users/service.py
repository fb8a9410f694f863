import asyncio
import logging
from datetime import datetime, timezone
from supabase import Client
from typing import Any, Dict, Optional
from fastapi import HTTPException

from contracts_portal.core.guard import Identity
from contracts_portal.core.roles import Role, parse_role

logger = logging.getLogger(__name__)


class UserService:
    def __init__(self, supabase: Client):
        self.supabase = supabase

    def get_user(self, user_id: str) -> Optional[Dict[str, Any]]:
        """Fetch the user's profile row (id, email, role). Errors propagate to the caller."""
        result = self.supabase.table("users")\
            .select("id, email, role")\
            .eq("id", user_id)\
            .limit(1)\
            .execute()
        if not result.data:
            return None
        return result.data[0]

    def get_role(self, user_id: str) -> Optional[Role]:
        """Role stored on the profile, or None when missing or not a defined role."""
        user = self.get_user(user_id)
        if user is None:
            return None
        role = parse_role(user.get("role"))
        if role is None and user.get("role"):
            logger.warning(f"User {user_id} has unrecognised role {user.get('role')!r}")
        return role

    def set_role(self, user_id: str, role: Role, assigned_by: str) -> Dict[str, Any]:
        """Persist a new role for the user"""
        try:
            result = self.supabase.table("users")\
                .update({
                    "role": role.value,
                    "role_updated_by": assigned_by,
                    "updated_at": datetime.now(timezone.utc).isoformat(),
                })\
                .eq("id", user_id)\
                .execute()
        except Exception as e:
            logger.error(f"Error updating role for user {user_id}: {e}")
            raise HTTPException(status_code=500, detail="Failed to update role")

        if not result.data:
            raise HTTPException(status_code=404, detail="User not found")
        return result.data[0]


class SupabaseRoleResolver:
    """RoleResolver reading the role column of the users table."""

    def __init__(self, user_service: UserService):
        self.user_service = user_service

    async def resolve_role(self, identity: Identity) -> Optional[Role]:
        return await asyncio.to_thread(self.user_service.get_role, identity.user_id)

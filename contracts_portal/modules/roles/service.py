import logging
from fastapi import HTTPException, status
from typing import List, Optional

from contracts_portal.config.permissions_config import get_permission_matrix
from contracts_portal.core import rbac
from contracts_portal.core.audit import AuditEvent, AuditLogger
from contracts_portal.core.guard import INSUFFICIENT_PERMISSIONS, AccessContext
from contracts_portal.core.permissions import direct_permissions, list_permissions
from contracts_portal.core.roles import ROLE_LEVELS, Role, parse_role, role_info, roles_by_level
from contracts_portal.modules.roles.schemas import (
    CurrentAccessResponse, PermissionMatrixResponse, PermissionResponse,
    RoleAssignResponse, RolePermissionsResponse, RoleResponse,
)
from contracts_portal.modules.users.service import UserService

logger = logging.getLogger(__name__)


class RoleService:
    def __init__(self, user_service: Optional[UserService] = None, audit: Optional[AuditLogger] = None):
        self.user_service = user_service
        self.audit = audit

    def list_roles(self) -> List[RoleResponse]:
        """Role catalog, highest level first"""
        return [
            RoleResponse(name=role.value, level=ROLE_LEVELS[role], **role_info(role))
            for role in roles_by_level()
        ]

    def list_permissions(self) -> List[PermissionResponse]:
        return [
            PermissionResponse(
                id=p.id,
                name=p.name,
                resource=p.resource,
                action=p.action,
                description=p.description,
                roles=sorted(r.value for r in p.roles),
            )
            for p in list_permissions()
        ]

    def get_matrix(self) -> PermissionMatrixResponse:
        matrix = get_permission_matrix()
        return PermissionMatrixResponse(
            version=matrix["version"],
            permissions=self.list_permissions(),
            roles=[
                RolePermissionsResponse(
                    role=r["name"],
                    level=r["level"],
                    direct_permissions=r["direct_permissions"],
                    permissions=r["permissions"],
                )
                for r in matrix["roles"]
            ],
        )

    def get_role_permissions(self, role_name: str) -> RolePermissionsResponse:
        role = parse_role(role_name)
        if role is None:
            raise HTTPException(status_code=404, detail="Role not found")
        return RolePermissionsResponse(
            role=role.value,
            level=ROLE_LEVELS[role],
            direct_permissions=sorted(p.id for p in direct_permissions(role)),
            permissions=rbac.get_user_permissions(role),
        )

    def describe_access(self, context: AccessContext) -> CurrentAccessResponse:
        return CurrentAccessResponse(
            user_id=context.user_id,
            email=context.identity.email,
            role=context.role.value,
            level=context.level,
            permissions=context.permissions,
            manageable_roles=[r.value for r in rbac.manageable_roles(context.role)],
        )

    def assign_role(self, context: AccessContext, user_id: str, role_name: str) -> RoleAssignResponse:
        """
        Assign a role to a user.

        The acting role must be strictly above both the user's current role and the
        new role, so nobody can promote a peer, demote a superior, or grant a role
        at or above their own.
        """
        new_role = parse_role(role_name)
        if new_role is None:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Unknown role")
        if user_id == context.user_id:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="You cannot change your own role")

        try:
            user = self.user_service.get_user(user_id)
        except Exception as e:
            logger.error(f"Error fetching user {user_id}: {e}")
            raise HTTPException(status_code=500, detail="Failed to load user")
        if user is None:
            raise HTTPException(status_code=404, detail="User not found")

        current_role = parse_role(user.get("role"))
        if not context.can_manage(current_role) or not context.can_manage(new_role):
            logger.warning(
                f"Role assignment denied: {context.user_id} ({context.role.value}) -> "
                f"{user_id} {user.get('role')} => {new_role.value}"
            )
            self._audit(context, user_id, new_role, "deny")
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=INSUFFICIENT_PERMISSIONS)

        self.user_service.set_role(user_id, new_role, assigned_by=context.user_id)
        self._audit(context, user_id, new_role, "allow")
        logger.info(f"User {context.user_id} assigned role {new_role.value} to {user_id}")
        return RoleAssignResponse(
            user_id=user_id,
            role=new_role.value,
            previous_role=current_role.value if current_role else None,
            assigned_by=context.user_id,
            message="Role assigned successfully",
        )

    def _audit(self, context: AccessContext, user_id: str, role: Role, decision: str) -> None:
        if self.audit is None:
            return
        self.audit.record(AuditEvent(
            event_type="role_assignment",
            user_id=context.user_id,
            role=context.role.value,
            permissions=["users.roles"],
            decision=decision,
            reason=f"target={user_id} new_role={role.value}",
        ))

from fastapi import APIRouter, Depends
from typing import List

from contracts_portal.core.audit import AuditLogger
from contracts_portal.core.dependencies import (
    get_access_context,
    get_audit_logger,
    get_user_service,
    require_permission,
)
from contracts_portal.core.guard import AccessContext
from contracts_portal.modules.roles.schemas import (
    CurrentAccessResponse, PermissionMatrixResponse, RoleAssign,
    RoleAssignResponse, RolePermissionsResponse, RoleResponse,
)
from contracts_portal.modules.roles.service import RoleService
from contracts_portal.modules.users.service import UserService

router = APIRouter(prefix="/roles", tags=["roles"])


def get_role_service(
    user_service: UserService = Depends(get_user_service),
    audit: AuditLogger = Depends(get_audit_logger),
) -> RoleService:
    return RoleService(user_service=user_service, audit=audit)


def get_catalog_service() -> RoleService:
    return RoleService()


@router.get("", response_model=List[RoleResponse])
async def list_roles(
    access: AccessContext = Depends(require_permission("roles.read")),
    service: RoleService = Depends(get_catalog_service)
):
    """List roles with their hierarchy level"""
    return service.list_roles()


@router.get("/permissions", response_model=PermissionMatrixResponse)
async def get_permission_matrix(
    access: AccessContext = Depends(require_permission("roles.read")),
    service: RoleService = Depends(get_catalog_service)
):
    """Full permission matrix: catalog plus direct and effective permissions per role"""
    return service.get_matrix()


@router.get("/me", response_model=CurrentAccessResponse)
async def get_my_access(
    access: AccessContext = Depends(get_access_context),
    service: RoleService = Depends(get_catalog_service)
):
    """Current user's role and effective permissions (for frontend UI)."""
    return service.describe_access(access)


@router.get("/{role}/permissions", response_model=RolePermissionsResponse)
async def get_role_permissions(
    role: str,
    access: AccessContext = Depends(require_permission("roles.read")),
    service: RoleService = Depends(get_catalog_service)
):
    """Effective permissions of a role"""
    return service.get_role_permissions(role)


@router.put("/users/{user_id}", response_model=RoleAssignResponse)
async def assign_user_role(
    user_id: str,
    body: RoleAssign,
    access: AccessContext = Depends(require_permission("users.roles")),
    service: RoleService = Depends(get_role_service)
):
    """Assign a role to a user (acting role must outrank both the current and the new role)"""
    return service.assign_role(access, user_id, body.role)

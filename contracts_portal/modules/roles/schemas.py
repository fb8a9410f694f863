from pydantic import BaseModel
from typing import List, Optional


class PermissionResponse(BaseModel):
    id: str
    name: str
    resource: str
    action: str
    description: Optional[str] = None
    roles: List[str]


class RoleResponse(BaseModel):
    name: str
    level: int
    label: str
    description: Optional[str] = None


class RolePermissionsResponse(BaseModel):
    role: str
    level: int
    direct_permissions: List[str]
    permissions: List[str]


class PermissionMatrixResponse(BaseModel):
    version: str
    permissions: List[PermissionResponse]
    roles: List[RolePermissionsResponse]


class CurrentAccessResponse(BaseModel):
    user_id: str
    email: Optional[str] = None
    role: str
    level: int
    permissions: List[str]
    manageable_roles: List[str]


class RoleAssign(BaseModel):
    role: str


class RoleAssignResponse(BaseModel):
    user_id: str
    role: str
    previous_role: Optional[str] = None
    assigned_by: str
    message: str

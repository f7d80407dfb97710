"""
Role management API routes.
"""

from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from locall.database import get_db
from locall.middleware.auth import get_current_active_user, require_permissions
from locall.models import Role, User
from locall.services.users import UserManagementService

router = APIRouter(prefix="/api/v1/roles", tags=["roles"])


class PermissionSpec(BaseModel):
    resource: str = Field(..., min_length=1, max_length=100)
    action: str = Field(..., min_length=1, max_length=50)


class RoleCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    slug: str = Field(..., min_length=1, max_length=100, pattern=r"^[a-z0-9_-]+$")
    description: Optional[str] = None
    permissions: List[PermissionSpec] = []


class RoleResponse(BaseModel):
    id: UUID
    workspace_id: Optional[UUID]
    name: str
    slug: str
    description: Optional[str]
    is_system_role: bool
    permissions: List[str]


def role_response(role: Role) -> RoleResponse:
    return RoleResponse(
        id=role.id,
        workspace_id=role.workspace_id,
        name=role.name,
        slug=role.slug,
        description=role.description,
        is_system_role=role.is_system_role,
        permissions=sorted(p.name for p in role.permissions),
    )


@router.post("", response_model=RoleResponse, status_code=status.HTTP_201_CREATED)
async def create_role(
    role: RoleCreate,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_permissions("roles:create")),
):
    """Create a custom role in the caller's workspace."""
    created = await UserManagementService(db).create_role(
        current_user.workspace_id,
        role.name,
        role.slug,
        permissions=[(p.resource, p.action) for p in role.permissions],
        description=role.description,
        created_by=current_user.id,
    )
    return role_response(created)


@router.get("", response_model=List[RoleResponse])
async def list_roles(
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_active_user),
):
    """System roles plus the caller's workspace roles."""
    roles = await UserManagementService(db).list_roles(current_user.workspace_id)
    return [role_response(role) for role in roles]

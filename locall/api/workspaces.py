"""
Workspace management API routes.

Provides CRUD operations for workspaces (tenants).
"""

from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from locall.database import get_db
from locall.middleware.auth import (
    get_current_active_user,
    require_permissions,
    require_workspace_access,
    require_workspace_admin,
)
from locall.models import User, Workspace
from locall.services.audit import AuditService

router = APIRouter(prefix="/api/v1/workspaces", tags=["workspaces"])

PLAN_PATTERN = r"^(trial|starter|professional|enterprise)$"


# Pydantic schemas
class WorkspaceCreate(BaseModel):
    """Schema for creating a new workspace."""

    name: str = Field(..., min_length=1, max_length=255)
    slug: str = Field(..., min_length=1, max_length=100, pattern=r"^[a-z0-9-]+$")
    plan: str = Field(default="trial", pattern=PLAN_PATTERN)
    contact_email: Optional[str] = None
    contact_name: Optional[str] = None
    max_users: int = Field(default=10, ge=1)
    max_teams: int = Field(default=5, ge=1)


class WorkspaceUpdate(BaseModel):
    """Schema for updating a workspace."""

    name: Optional[str] = Field(None, min_length=1, max_length=255)
    plan: Optional[str] = Field(None, pattern=PLAN_PATTERN)
    contact_email: Optional[str] = None
    contact_name: Optional[str] = None
    max_users: Optional[int] = Field(None, ge=1)
    max_teams: Optional[int] = Field(None, ge=1)
    is_active: Optional[bool] = None


class WorkspaceResponse(BaseModel):
    """Schema for workspace response."""

    id: UUID
    name: str
    slug: str
    plan: str
    is_active: bool
    max_users: int
    max_teams: int
    contact_email: Optional[str]
    contact_name: Optional[str]

    model_config = ConfigDict(from_attributes=True)


async def _get_workspace_or_404(db: AsyncSession, workspace_id: UUID) -> Workspace:
    result = await db.execute(
        select(Workspace).where(Workspace.id == workspace_id, Workspace.deleted_at.is_(None))
    )
    workspace = result.scalar_one_or_none()
    if not workspace:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Workspace {workspace_id} not found")
    return workspace


def _check_own_workspace(current_user: User, workspace_id: UUID) -> None:
    if current_user.workspace_id != workspace_id:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Access denied: You do not belong to this workspace",
        )


@router.post("", response_model=WorkspaceResponse, status_code=status.HTTP_201_CREATED)
async def create_workspace(
    workspace: WorkspaceCreate,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_permissions("workspaces:create")),
):
    """
    Create a new workspace.

    Requires 'workspaces:create' permission.

    Raises:
        HTTPException: If a workspace with the slug already exists
    """
    result = await db.execute(select(Workspace).where(Workspace.slug == workspace.slug))
    if result.scalar_one_or_none():
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Workspace with slug '{workspace.slug}' already exists",
        )

    db_workspace = Workspace(**workspace.model_dump())
    db.add(db_workspace)
    await db.commit()
    await db.refresh(db_workspace)

    await AuditService(db).log_data_modification(
        "create",
        "workspace",
        str(db_workspace.id),
        workspace_id=current_user.workspace_id,
        user_id=current_user.id,
        new_values=workspace.model_dump(),
    )
    return db_workspace


@router.get("", response_model=List[WorkspaceResponse])
async def list_workspaces(
    skip: int = 0,
    limit: int = 100,
    is_active: Optional[bool] = None,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_active_user),
):
    """
    List workspaces visible to the caller.

    Tenant isolation: a user only ever sees their own workspace.
    """
    query = select(Workspace).where(Workspace.id == current_user.workspace_id, Workspace.deleted_at.is_(None))
    if is_active is not None:
        query = query.where(Workspace.is_active == is_active)

    result = await db.execute(query.offset(skip).limit(limit))
    return result.scalars().all()


@router.get("/{workspace_id}", response_model=WorkspaceResponse)
async def get_workspace(
    workspace_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_workspace_access),
):
    """Get workspace by ID. Requires membership of the workspace."""
    return await _get_workspace_or_404(db, workspace_id)


@router.put("/{workspace_id}", response_model=WorkspaceResponse)
async def update_workspace(
    workspace_id: UUID,
    workspace_update: WorkspaceUpdate,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_workspace_admin),
):
    """Update workspace. Requires workspace admin role."""
    _check_own_workspace(current_user, workspace_id)
    workspace = await _get_workspace_or_404(db, workspace_id)

    update_data = workspace_update.model_dump(exclude_unset=True)
    old_values = {field: getattr(workspace, field) for field in update_data}
    for field, value in update_data.items():
        setattr(workspace, field, value)

    await db.commit()
    await db.refresh(workspace)

    await AuditService(db).log_data_modification(
        "update",
        "workspace",
        str(workspace.id),
        workspace_id=workspace_id,
        user_id=current_user.id,
        old_values=old_values,
        new_values=update_data,
    )
    return workspace


@router.delete("/{workspace_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_workspace(
    workspace_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_workspace_admin),
):
    """
    Soft delete workspace.

    Data is retained until removed through GDPR deletion or retention cleanup.
    """
    _check_own_workspace(current_user, workspace_id)
    workspace = await _get_workspace_or_404(db, workspace_id)

    workspace.soft_delete()
    await db.commit()

    await AuditService(db).log_data_modification(
        "delete",
        "workspace",
        str(workspace_id),
        workspace_id=workspace_id,
        user_id=current_user.id,
    )

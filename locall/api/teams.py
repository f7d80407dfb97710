"""
Team management API routes.

Provides CRUD operations for teams within the caller's workspace and team
membership management.
"""

from datetime import datetime
from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from locall.database import get_db
from locall.middleware.auth import get_current_active_user, require_permissions
from locall.models import Team, User
from locall.services.audit import AuditService
from locall.services.users import UserManagementService

router = APIRouter(prefix="/api/v1/teams", tags=["teams"])

SLUG_PATTERN = r"^[a-z0-9-]+$"
MEMBER_ROLE_PATTERN = r"^(member|lead|admin)$"


# Pydantic schemas
class TeamCreate(BaseModel):
    """Schema for creating a new team."""

    name: str = Field(..., min_length=1, max_length=255)
    slug: str = Field(..., min_length=1, max_length=100, pattern=SLUG_PATTERN)
    description: Optional[str] = None
    team_lead_id: Optional[UUID] = None


class TeamUpdate(BaseModel):
    """Schema for updating a team."""

    name: Optional[str] = Field(None, min_length=1, max_length=255)
    slug: Optional[str] = Field(None, min_length=1, max_length=100, pattern=SLUG_PATTERN)
    description: Optional[str] = None


class TeamResponse(BaseModel):
    """Schema for team response."""

    id: UUID
    workspace_id: UUID
    name: str
    slug: str
    description: Optional[str]
    team_lead_id: Optional[UUID]

    model_config = ConfigDict(from_attributes=True)


class TeamMemberCreate(BaseModel):
    user_id: UUID
    role: str = Field(default="member", pattern=MEMBER_ROLE_PATTERN)
    permissions: List[str] = []


class TeamMemberRoleUpdate(BaseModel):
    role: str = Field(..., pattern=MEMBER_ROLE_PATTERN)


class TeamMemberResponse(BaseModel):
    id: UUID
    team_id: UUID
    user_id: UUID
    role: str
    permissions: List[str]
    joined_at: datetime

    model_config = ConfigDict(from_attributes=True)


@router.post("", response_model=TeamResponse, status_code=status.HTTP_201_CREATED)
async def create_team(
    team: TeamCreate,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_permissions("teams:create")),
):
    """
    Create a new team in the caller's workspace.

    The team lead, if given, is added as a member with role ``lead``.
    """
    return await UserManagementService(db).create_team(
        current_user.workspace_id,
        team.name,
        team.slug,
        description=team.description,
        team_lead_id=team.team_lead_id,
        created_by=current_user.id,
    )


@router.get("", response_model=List[TeamResponse])
async def list_teams(
    skip: int = 0,
    limit: int = 100,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_active_user),
):
    """List teams of the caller's workspace."""
    query = (
        select(Team)
        .where(Team.workspace_id == current_user.workspace_id, Team.deleted_at.is_(None))
        .order_by(Team.name)
        .offset(skip)
        .limit(limit)
    )
    result = await db.execute(query)
    return result.scalars().all()


@router.get("/{team_id}", response_model=TeamResponse)
async def get_team(
    team_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_active_user),
):
    return await UserManagementService(db).get_team(team_id, current_user.workspace_id)


@router.put("/{team_id}", response_model=TeamResponse)
async def update_team(
    team_id: UUID,
    team_update: TeamUpdate,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_permissions("teams:update")),
):
    team = await UserManagementService(db).get_team(team_id, current_user.workspace_id)
    update_data = team_update.model_dump(exclude_unset=True)

    if "slug" in update_data and update_data["slug"] != team.slug:
        result = await db.execute(
            select(Team).where(
                Team.workspace_id == team.workspace_id,
                Team.slug == update_data["slug"],
                Team.deleted_at.is_(None),
            )
        )
        if result.scalar_one_or_none():
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail=f"Team with slug '{update_data['slug']}' already exists in this workspace",
            )

    old_values = {field: getattr(team, field) for field in update_data}
    for field, value in update_data.items():
        setattr(team, field, value)
    await db.commit()
    await db.refresh(team)

    await AuditService(db).log_data_modification(
        "update",
        "team",
        str(team.id),
        workspace_id=team.workspace_id,
        user_id=current_user.id,
        old_values=old_values,
        new_values=update_data,
    )
    return team


@router.delete("/{team_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_team(
    team_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_permissions("teams:delete")),
):
    """Soft delete team."""
    team = await UserManagementService(db).get_team(team_id, current_user.workspace_id)
    team.soft_delete()
    await db.commit()

    await AuditService(db).log_data_modification(
        "delete", "team", str(team_id), workspace_id=team.workspace_id, user_id=current_user.id
    )


@router.get("/{team_id}/members", response_model=List[TeamMemberResponse])
async def list_team_members(
    team_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_active_user),
):
    service = UserManagementService(db)
    await service.get_team(team_id, current_user.workspace_id)
    return await service.list_team_members(team_id)


@router.post("/{team_id}/members", response_model=TeamMemberResponse, status_code=status.HTTP_201_CREATED)
async def add_team_member(
    team_id: UUID,
    member: TeamMemberCreate,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_permissions("teams:update")),
):
    service = UserManagementService(db)
    await service.get_team(team_id, current_user.workspace_id)
    return await service.add_team_member(
        team_id, member.user_id, role=member.role, permissions=member.permissions, added_by=current_user.id
    )


@router.put("/{team_id}/members/{user_id}", response_model=TeamMemberResponse)
async def update_team_member_role(
    team_id: UUID,
    user_id: UUID,
    update: TeamMemberRoleUpdate,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_permissions("teams:update")),
):
    service = UserManagementService(db)
    await service.get_team(team_id, current_user.workspace_id)
    return await service.update_team_member_role(team_id, user_id, update.role, updated_by=current_user.id)


@router.delete("/{team_id}/members/{user_id}", status_code=status.HTTP_204_NO_CONTENT)
async def remove_team_member(
    team_id: UUID,
    user_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_permissions("teams:update")),
):
    service = UserManagementService(db)
    await service.get_team(team_id, current_user.workspace_id)
    await service.remove_team_member(team_id, user_id, removed_by=current_user.id)

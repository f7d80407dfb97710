"""
User management API routes.

Provides CRUD operations for users within the caller's workspace, plus role
assignment, permission lookup, sessions, preferences and activity history.
"""

from datetime import datetime
from typing import Any, List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Request, status
from pydantic import BaseModel, ConfigDict, EmailStr, Field
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from locall.database import get_db
from locall.middleware.auth import get_current_active_user, get_workspace_from_user, require_permissions
from locall.models import User, Workspace
from locall.security import hash_password
from locall.services.audit import AuditService, request_context_from
from locall.services.users import UserManagementService

router = APIRouter(prefix="/api/v1/users", tags=["users"])


# Pydantic schemas
class UserCreate(BaseModel):
    """Schema for creating a new user."""

    email: EmailStr
    full_name: str = Field(..., min_length=1, max_length=255)
    password: str = Field(..., min_length=8)
    phone: Optional[str] = None


class UserUpdate(BaseModel):
    """Schema for updating a user."""

    full_name: Optional[str] = Field(None, min_length=1, max_length=255)
    phone: Optional[str] = None
    is_active: Optional[bool] = None


class UserResponse(BaseModel):
    """Schema for user response."""

    id: UUID
    workspace_id: UUID
    email: str
    full_name: str
    phone: Optional[str]
    is_active: bool
    is_verified: bool
    last_login_at: Optional[datetime]

    model_config = ConfigDict(from_attributes=True)


class RoleAssignmentRequest(BaseModel):
    role_id: UUID


class PreferencesUpdate(BaseModel):
    """Partial preferences; dict fields are merged into the stored values."""

    theme: Optional[str] = Field(None, pattern=r"^(light|dark|system)$")
    language: Optional[str] = None
    timezone: Optional[str] = None
    notifications: Optional[dict[str, Any]] = None
    dashboard_layout: Optional[dict[str, Any]] = None
    call_settings: Optional[dict[str, Any]] = None


class PreferencesResponse(BaseModel):
    user_id: UUID
    theme: str
    language: str
    timezone: str
    notifications: dict
    dashboard_layout: dict
    call_settings: dict

    model_config = ConfigDict(from_attributes=True)


class ActivityCreate(BaseModel):
    activity_type: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = None
    metadata: Optional[dict[str, Any]] = None


class ActivityResponse(BaseModel):
    id: UUID
    activity_type: str
    description: Optional[str]
    metadata: Optional[dict] = Field(None, validation_alias="activity_metadata")
    ip_address: Optional[str]
    created_at: datetime

    model_config = ConfigDict(from_attributes=True, populate_by_name=True)


async def _get_workspace_user_or_404(db: AsyncSession, user_id: UUID, workspace_id: UUID) -> User:
    result = await db.execute(
        select(User).where(User.id == user_id, User.workspace_id == workspace_id, User.deleted_at.is_(None))
    )
    user = result.scalar_one_or_none()
    if not user:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"User {user_id} not found")
    return user


@router.post("", response_model=UserResponse, status_code=status.HTTP_201_CREATED)
async def create_user(
    user: UserCreate,
    db: AsyncSession = Depends(get_db),
    workspace: Workspace = Depends(get_workspace_from_user),
    current_user: User = Depends(require_permissions("users:create")),
):
    """
    Create a new user in the caller's workspace.

    Raises:
        HTTPException: If the email exists or the workspace user limit is reached
    """
    user_count = (
        await db.execute(
            select(func.count(User.id)).where(User.workspace_id == workspace.id, User.deleted_at.is_(None))
        )
    ).scalar_one()
    if user_count >= workspace.max_users:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=f"Workspace has reached maximum users limit ({workspace.max_users})",
        )

    existing = (await db.execute(select(User).where(User.email == user.email))).scalar_one_or_none()
    if existing:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"User with email '{user.email}' already exists",
        )

    new_user = User(
        workspace_id=workspace.id,
        email=user.email,
        full_name=user.full_name,
        phone=user.phone,
        hashed_password=hash_password(user.password),
        is_active=True,
        is_verified=False,
    )
    db.add(new_user)
    await db.commit()
    await db.refresh(new_user)

    await AuditService(db).log_data_modification(
        "create",
        "user",
        str(new_user.id),
        workspace_id=workspace.id,
        user_id=current_user.id,
        new_values={"email": user.email, "full_name": user.full_name},
    )
    return new_user


@router.get("", response_model=List[UserResponse])
async def list_users(
    skip: int = 0,
    limit: int = 100,
    is_active: Optional[bool] = None,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_active_user),
):
    """List users of the caller's workspace."""
    query = select(User).where(User.workspace_id == current_user.workspace_id, User.deleted_at.is_(None))
    if is_active is not None:
        query = query.where(User.is_active == is_active)
    result = await db.execute(query.order_by(User.created_at).offset(skip).limit(limit))
    return result.scalars().all()


@router.get("/me/preferences", response_model=Optional[PreferencesResponse])
async def get_my_preferences(
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_active_user),
):
    return await UserManagementService(db).get_user_preferences(current_user.id)


@router.put("/me/preferences", response_model=PreferencesResponse)
async def update_my_preferences(
    preferences: PreferencesUpdate,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_active_user),
):
    return await UserManagementService(db).update_user_preferences(
        current_user.id, current_user.workspace_id, **preferences.model_dump(exclude_unset=True)
    )


@router.post("/me/activity", response_model=ActivityResponse, status_code=status.HTTP_201_CREATED)
async def log_my_activity(
    activity: ActivityCreate,
    request: Request,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_active_user),
):
    return await UserManagementService(db).log_activity(
        current_user.id,
        current_user.workspace_id,
        activity.activity_type,
        activity.description,
        activity.metadata,
        request_context_from(request),
    )


@router.get("/{user_id}", response_model=UserResponse)
async def get_user(
    user_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_active_user),
):
    """Get a user of the caller's workspace."""
    return await _get_workspace_user_or_404(db, user_id, current_user.workspace_id)


@router.put("/{user_id}", response_model=UserResponse)
async def update_user(
    user_id: UUID,
    user_update: UserUpdate,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_permissions("users:update")),
):
    user = await _get_workspace_user_or_404(db, user_id, current_user.workspace_id)

    update_data = user_update.model_dump(exclude_unset=True)
    old_values = {field: getattr(user, field) for field in update_data}
    for field, value in update_data.items():
        setattr(user, field, value)
    await db.commit()
    await db.refresh(user)

    await AuditService(db).log_data_modification(
        "update",
        "user",
        str(user.id),
        workspace_id=current_user.workspace_id,
        user_id=current_user.id,
        old_values=old_values,
        new_values=update_data,
    )
    return user


@router.delete("/{user_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_user(
    user_id: UUID,
    request: Request,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_permissions("users:delete")),
):
    """
    Soft delete a user and end their sessions.

    Erasure of personal data goes through the compliance deletion endpoint.
    """
    if user_id == current_user.id:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="You cannot delete your own account")
    user = await _get_workspace_user_or_404(db, user_id, current_user.workspace_id)

    user.soft_delete()
    await db.commit()

    await UserManagementService(db).end_all_user_sessions(
        user_id, current_user.workspace_id, request_context_from(request)
    )
    await AuditService(db).log_data_modification(
        "delete",
        "user",
        str(user_id),
        workspace_id=current_user.workspace_id,
        user_id=current_user.id,
    )


@router.post("/{user_id}/roles", status_code=status.HTTP_201_CREATED)
async def assign_role(
    user_id: UUID,
    assignment: RoleAssignmentRequest,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_permissions("roles:assign")),
):
    created = await UserManagementService(db).assign_role(
        user_id, assignment.role_id, current_user.workspace_id, assigned_by=current_user.id
    )
    return {
        "id": str(created.id),
        "user_id": str(created.user_id),
        "role_id": str(created.role_id),
        "workspace_id": str(created.workspace_id),
    }


@router.delete("/{user_id}/roles/{role_id}", status_code=status.HTTP_204_NO_CONTENT)
async def remove_role(
    user_id: UUID,
    role_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_permissions("roles:assign")),
):
    await UserManagementService(db).remove_role(user_id, role_id, current_user.workspace_id, removed_by=current_user.id)


@router.get("/{user_id}/permissions", response_model=List[str])
async def get_user_permissions(
    user_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_active_user),
):
    await _get_workspace_user_or_404(db, user_id, current_user.workspace_id)
    return await UserManagementService(db).get_user_permissions(user_id, current_user.workspace_id)


@router.delete("/{user_id}/sessions")
async def end_user_sessions(
    user_id: UUID,
    request: Request,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_permissions("users:update")),
):
    """Force logout of every active session of a user."""
    await _get_workspace_user_or_404(db, user_id, current_user.workspace_id)
    ended = await UserManagementService(db).end_all_user_sessions(
        user_id, current_user.workspace_id, request_context_from(request)
    )
    return {"sessions_ended": ended}


@router.get("/{user_id}/activity", response_model=List[ActivityResponse])
async def get_user_activity(
    user_id: UUID,
    limit: int = 50,
    offset: int = 0,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_active_user),
):
    await _get_workspace_user_or_404(db, user_id, current_user.workspace_id)
    return await UserManagementService(db).get_user_activity(user_id, limit=limit, offset=offset)

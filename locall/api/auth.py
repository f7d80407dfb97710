"""
Authentication API routes.

Provides endpoints for:
- User login (JWT generation plus a dashboard session)
- Token refresh
- Logout of one session or all sessions
- Current user information
"""

from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Header, HTTPException, Request, status
from jose import JWTError
from pydantic import BaseModel, EmailStr, Field
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from locall.config.settings import get_settings
from locall.database import get_db
from locall.middleware.auth import get_current_active_user, get_current_user
from locall.models import User
from locall.models.base import utc_now
from locall.security import create_access_token, create_refresh_token, verify_password, verify_token
from locall.services.audit import AuditService, request_context_from
from locall.services.users import UserManagementService

router = APIRouter(prefix="/api/v1/auth", tags=["authentication"])


# Pydantic schemas
class LoginRequest(BaseModel):
    """Schema for login request."""

    email: EmailStr
    password: str = Field(..., min_length=8)


class TokenResponse(BaseModel):
    """Schema for token response."""

    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    expires_in: int  # seconds
    session_token: Optional[str] = None


class RefreshTokenRequest(BaseModel):
    """Schema for refresh token request."""

    refresh_token: str


class MessageResponse(BaseModel):
    """Generic message response."""

    message: str


def _token_response(user: User, session_token: Optional[str] = None) -> TokenResponse:
    settings = get_settings()
    return TokenResponse(
        access_token=create_access_token(user_id=user.id, workspace_id=user.workspace_id, email=user.email),
        refresh_token=create_refresh_token(user_id=user.id),
        token_type="bearer",
        expires_in=settings.ACCESS_TOKEN_EXPIRE_MINUTES * 60,
        session_token=session_token,
    )


@router.post("/login", response_model=TokenResponse)
async def login(login_data: LoginRequest, request: Request, db: AsyncSession = Depends(get_db)):
    """
    Authenticate user, open a dashboard session and return JWT tokens.

    Failed attempts are written to the audit log, which drives brute-force
    detection per client IP.

    Raises:
        HTTPException: If credentials are invalid or the account is disabled
    """
    ctx = request_context_from(request)
    result = await db.execute(select(User).where(User.email == login_data.email, User.deleted_at.is_(None)))
    user = result.scalar_one_or_none()

    if not user or not user.hashed_password or not verify_password(login_data.password, user.hashed_password):
        await AuditService(db).log_authentication(
            "failed_login",
            user.id if user else None,
            False,
            workspace_id=user.workspace_id if user else None,
            details={"email": login_data.email, "reason": "invalid_credentials"},
            request_context=ctx,
        )
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Incorrect email or password",
            headers={"WWW-Authenticate": "Bearer"},
        )

    if not user.is_active:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Account is disabled")

    user.last_login_at = utc_now()
    await db.commit()

    session = await UserManagementService(db).create_session(user.id, user.workspace_id, ctx)
    return _token_response(user, session.session_token)


@router.post("/refresh", response_model=TokenResponse)
async def refresh_token(refresh_data: RefreshTokenRequest, db: AsyncSession = Depends(get_db)):
    """
    Refresh access token using refresh token.

    Raises:
        HTTPException: If refresh token is invalid
    """
    try:
        payload = verify_token(refresh_data.refresh_token, token_type="refresh")
        user_id = UUID(payload.get("sub"))
    except JWTError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid refresh token",
            headers={"WWW-Authenticate": "Bearer"},
        )
    except (TypeError, ValueError) as e:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=str(e),
            headers={"WWW-Authenticate": "Bearer"},
        )

    result = await db.execute(select(User).where(User.id == user_id, User.deleted_at.is_(None)))
    user = result.scalar_one_or_none()

    if not user:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid refresh token",
            headers={"WWW-Authenticate": "Bearer"},
        )

    if not user.is_active:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Account is disabled")

    return _token_response(user)


@router.post("/logout", response_model=MessageResponse)
async def logout(
    request: Request,
    x_session_token: Optional[str] = Header(default=None),
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """
    End the dashboard session named by ``X-Session-Token``.

    Access tokens are stateless and expire on their own; clients discard them.
    """
    if x_session_token:
        await UserManagementService(db).end_session(x_session_token, request_context_from(request))
    return MessageResponse(message="Logged out successfully. Please discard your tokens.")


@router.post("/logout-all", response_model=MessageResponse)
async def logout_all(
    request: Request,
    current_user: User = Depends(get_current_active_user),
    db: AsyncSession = Depends(get_db),
):
    """End every active dashboard session of the current user."""
    ended = await UserManagementService(db).end_all_user_sessions(
        current_user.id, current_user.workspace_id, request_context_from(request)
    )
    return MessageResponse(message=f"Ended {ended} session(s)")


@router.get("/me", response_model=dict)
async def get_current_user_info(current_user: User = Depends(get_current_user)):
    """
    Get current authenticated user information.

    Returns:
        User information including roles and permissions
    """
    # current_user.roles holds UserRoleAssignment rows, not Role objects
    roles = []
    permissions = set()

    for assignment in current_user.roles:
        if assignment.workspace_id != current_user.workspace_id:
            continue
        role = assignment.role
        roles.append({"id": str(role.id), "name": role.name, "slug": role.slug, "description": role.description})
        for permission in role.permissions:
            permissions.add(permission.name)

    return {
        "id": str(current_user.id),
        "email": current_user.email,
        "full_name": current_user.full_name,
        "workspace_id": str(current_user.workspace_id),
        "is_active": current_user.is_active,
        "is_verified": current_user.is_verified,
        "roles": roles,
        "permissions": sorted(permissions),
    }

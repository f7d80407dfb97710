"""
JWT authentication and RBAC authorization middleware.

Provides FastAPI dependencies for:
- JWT token validation
- User authentication
- Permission-based authorization (``resource:action``, ``*`` action wildcard)
- Workspace-level access control
"""

from typing import Optional
from uuid import UUID

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from locall.database import get_db
from locall.models import Role, User, UserRoleAssignment, Workspace
from locall.security import verify_token

# HTTP Bearer token scheme
security = HTTPBearer()

ADMIN_ROLE_SLUGS = ("owner", "admin")


async def authenticate_token(token: str, db: AsyncSession) -> Optional[User]:
    """
    Resolve an access token to its user with roles and permissions loaded.

    Returns None when the token is invalid, expired, not an access token or
    the user no longer exists.
    """
    try:
        payload = verify_token(token, "access")
        user_id = UUID(payload["sub"])
    except (JWTError, ValueError, KeyError):
        return None

    stmt = (
        select(User)
        .options(
            selectinload(User.workspace),
            selectinload(User.roles).selectinload(UserRoleAssignment.role).selectinload(Role.permissions),
        )
        .where(User.id == user_id, User.deleted_at.is_(None))
        .execution_options(populate_existing=True)
    )
    result = await db.execute(stmt)
    return result.scalar_one_or_none()


async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    db: AsyncSession = Depends(get_db),
) -> User:
    """
    Validate JWT token and return current user.

    Raises:
        HTTPException: If token is invalid or user not found
    """
    user = await authenticate_token(credentials.credentials, db)
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return user


async def get_current_active_user(current_user: User = Depends(get_current_user)) -> User:
    """
    Get current user and verify they are active.

    Raises:
        HTTPException: If user is inactive
    """
    if not current_user.is_active:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Inactive user")
    return current_user


def user_has_permission(user: User, resource: str, action: str) -> bool:
    """Check the loaded role assignments of ``user`` in their own workspace."""
    for assignment in user.roles:
        if assignment.workspace_id != user.workspace_id:
            continue
        for permission in assignment.role.permissions:
            if permission.grants(resource, action):
                return True
    return False


def require_permissions(*permission_names: str):
    """
    Dependency factory for permission-based authorization.

    Usage:
        @router.get("/audit-logs", dependencies=[Depends(require_permissions("audit:read"))])
        async def list_audit_logs():
            ...

    Args:
        *permission_names: Required permissions as ``resource:action``

    Raises:
        HTTPException: If user doesn't have required permissions
    """

    async def permission_checker(current_user: User = Depends(get_current_active_user)) -> User:
        for required_permission in permission_names:
            resource, _, action = required_permission.partition(":")
            if not user_has_permission(current_user, resource, action):
                raise HTTPException(
                    status_code=status.HTTP_403_FORBIDDEN,
                    detail=f"Permission denied: {required_permission} required",
                )
        return current_user

    return permission_checker


def is_workspace_admin(user: User) -> bool:
    return any(
        assignment.workspace_id == user.workspace_id and assignment.role.slug in ADMIN_ROLE_SLUGS
        for assignment in user.roles
    )


async def require_workspace_admin(current_user: User = Depends(get_current_active_user)) -> User:
    """
    Require user to be an owner or admin of their workspace.

    Raises:
        HTTPException: If user is not a workspace admin
    """
    if not is_workspace_admin(current_user):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Workspace admin access required")
    return current_user


class WorkspaceAccessChecker:
    """
    Dependency class for workspace-level access control.

    Ensures user belongs to the workspace named by the ``workspace_id``
    path parameter.

    Usage:
        @router.get("/workspaces/{workspace_id}/users")
        async def get_workspace_users(
            workspace_id: UUID,
            user: User = Depends(WorkspaceAccessChecker())
        ):
            ...
    """

    def __call__(self, workspace_id: UUID, current_user: User = Depends(get_current_active_user)) -> User:
        if current_user.workspace_id != workspace_id:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Access denied: You do not belong to this workspace",
            )
        return current_user


# Create singleton instance for use as dependency
require_workspace_access = WorkspaceAccessChecker()


async def get_workspace_from_user(
    current_user: User = Depends(get_current_active_user),
    db: AsyncSession = Depends(get_db),
) -> Workspace:
    """
    Get the workspace of the current user.

    Used to scope queries to the caller's tenant.

    Raises:
        HTTPException: If workspace not found or deleted
    """
    stmt = select(Workspace).where(Workspace.id == current_user.workspace_id, Workspace.deleted_at.is_(None))
    result = await db.execute(stmt)
    workspace = result.scalar_one_or_none()

    if workspace is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Workspace not found")

    return workspace

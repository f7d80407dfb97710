"""
Authentication and authorization middleware for the dashboard API.
"""

from .auth import (
    get_current_active_user,
    get_current_user,
    get_workspace_from_user,
    require_permissions,
    require_workspace_access,
    require_workspace_admin,
)

__all__ = [
    "get_current_user",
    "get_current_active_user",
    "require_permissions",
    "require_workspace_admin",
    "require_workspace_access",
    "get_workspace_from_user",
]

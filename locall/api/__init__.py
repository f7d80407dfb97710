"""
LoCall API routes.

Provides REST API endpoints for:
- Authentication (login, token refresh, logout)
- Workspace, user, role and team management
- Compliance: consent, data export/deletion, retention, audit logs
- Realtime notifications (REST and WebSocket)
- Integrations and inbound provider webhooks
- Webform configuration, public intake and analytics
- Dashboard summary
"""

from locall.api.auth import router as auth_router
from locall.api.compliance import router as compliance_router
from locall.api.dashboard import router as dashboard_router
from locall.api.integrations import router as integrations_router
from locall.api.integrations import webhooks_router
from locall.api.notifications import router as notifications_router
from locall.api.roles import router as roles_router
from locall.api.teams import router as teams_router
from locall.api.users import router as users_router
from locall.api.webforms import router as webforms_router
from locall.api.workspaces import router as workspaces_router

__all__ = [
    "auth_router",
    "workspaces_router",
    "users_router",
    "roles_router",
    "teams_router",
    "compliance_router",
    "notifications_router",
    "integrations_router",
    "webhooks_router",
    "webforms_router",
    "dashboard_router",
]

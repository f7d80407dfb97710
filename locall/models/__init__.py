"""
Database models for the LoCall dashboard.

- Workspaces (tenants), users, teams
- RBAC roles and permissions
- Sessions, preferences and activity
- Audit logs, security events, compliance reports
- GDPR consent, export/deletion requests, retention policies
- Realtime notifications
- Integrations and synced records
- Webforms and calls
"""

from locall.models.audit import AuditLog, ComplianceReport, SecurityEvent
from locall.models.call import Call
from locall.models.compliance import (
    ComplianceSettings,
    ConsentRecord,
    DataDeletionRequest,
    DataExportRequest,
    DataRetentionPolicy,
)
from locall.models.integration import (
    IntegrationConnection,
    IntegrationEvent,
    SyncedAppointment,
    SyncedContact,
)
from locall.models.notification import RealtimeNotification
from locall.models.role import Permission, Role, UserRoleAssignment
from locall.models.session import UserActivity, UserPreferences, UserSession
from locall.models.team import Team, TeamMember
from locall.models.user import User
from locall.models.webform import WebformConfig, WebformConversion, WebformSubmission
from locall.models.workspace import Workspace

__all__ = [
    "Workspace",
    "User",
    "Team",
    "TeamMember",
    "Role",
    "Permission",
    "UserRoleAssignment",
    "UserSession",
    "UserPreferences",
    "UserActivity",
    "AuditLog",
    "SecurityEvent",
    "ComplianceReport",
    "ConsentRecord",
    "DataExportRequest",
    "DataDeletionRequest",
    "DataRetentionPolicy",
    "ComplianceSettings",
    "RealtimeNotification",
    "IntegrationConnection",
    "IntegrationEvent",
    "SyncedContact",
    "SyncedAppointment",
    "WebformConfig",
    "WebformSubmission",
    "WebformConversion",
    "Call",
]

"""Initial LoCall dashboard schema

Revision ID: 001
Revises:
Create Date: 2026-10-18 00:00:00.000000

Creates the initial PostgreSQL schema for the LoCall multi-tenant dashboard:
- Workspaces (tenants), users, teams and team members
- Roles, permissions and role assignments (RBAC)
- Sessions, preferences and activity
- Audit logs, security events and compliance reports
- Consent, export/deletion requests, retention policies and compliance settings
- Realtime notifications
- Integration connections, synced records and integration events
- Webform configs, submissions and conversions
- Calls
"""
from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _uuid(name: str, **kwargs) -> sa.Column:
    return sa.Column(name, postgresql.UUID(as_uuid=True), **kwargs)


def _timestamp(name: str, nullable: bool = False) -> sa.Column:
    return sa.Column(name, sa.DateTime(timezone=True), nullable=nullable)


def _workspace_fk() -> sa.ForeignKeyConstraint:
    return sa.ForeignKeyConstraint(["workspace_id"], ["workspaces.id"], ondelete="CASCADE")


def upgrade() -> None:
    # Create workspaces table
    op.create_table(
        "workspaces",
        _uuid("id", primary_key=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("slug", sa.String(100), nullable=False, unique=True),
        sa.Column("plan", sa.String(50), nullable=False, server_default="trial"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default="true"),
        sa.Column("max_users", sa.Integer(), nullable=False, server_default="10"),
        sa.Column("max_teams", sa.Integer(), nullable=False, server_default="5"),
        sa.Column("contact_email", sa.String(255), nullable=True),
        sa.Column("contact_name", sa.String(255), nullable=True),
        _timestamp("created_at"),
        _timestamp("updated_at"),
        _timestamp("deleted_at", nullable=True),
    )
    op.create_index("ix_workspaces_name", "workspaces", ["name"])
    op.create_index("ix_workspaces_slug", "workspaces", ["slug"])
    op.create_index("ix_workspaces_is_active", "workspaces", ["is_active"])

    # Create users table
    op.create_table(
        "users",
        _uuid("id", primary_key=True),
        _uuid("workspace_id", nullable=False),
        sa.Column("email", sa.String(255), nullable=False, unique=True),
        sa.Column("hashed_password", sa.String(255), nullable=True),
        sa.Column("full_name", sa.String(255), nullable=False),
        sa.Column("phone", sa.String(50), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default="true"),
        sa.Column("is_verified", sa.Boolean(), nullable=False, server_default="false"),
        _timestamp("last_login_at", nullable=True),
        _timestamp("created_at"),
        _timestamp("updated_at"),
        _timestamp("deleted_at", nullable=True),
        _workspace_fk(),
    )
    op.create_index("ix_users_email", "users", ["email"])
    op.create_index("ix_users_workspace_id", "users", ["workspace_id"])
    op.create_index("ix_users_is_active", "users", ["is_active"])

    # Create teams table
    op.create_table(
        "teams",
        _uuid("id", primary_key=True),
        _uuid("workspace_id", nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("slug", sa.String(100), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        _uuid("team_lead_id", nullable=True),
        _uuid("created_by", nullable=True),
        _timestamp("created_at"),
        _timestamp("updated_at"),
        _timestamp("deleted_at", nullable=True),
        _workspace_fk(),
        sa.ForeignKeyConstraint(["team_lead_id"], ["users.id"], ondelete="SET NULL"),
        sa.UniqueConstraint("workspace_id", "slug", name="uq_workspace_team_slug"),
    )
    op.create_index("ix_teams_workspace_id", "teams", ["workspace_id"])

    op.create_table(
        "team_members",
        _uuid("id", primary_key=True),
        _uuid("team_id", nullable=False),
        _uuid("user_id", nullable=False),
        sa.Column("role", sa.String(20), nullable=False, server_default="member"),
        sa.Column("permissions", sa.JSON(), nullable=False),
        _timestamp("joined_at"),
        _uuid("added_by", nullable=True),
        sa.ForeignKeyConstraint(["team_id"], ["teams.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.UniqueConstraint("team_id", "user_id", name="uq_team_member"),
    )
    op.create_index("ix_team_members_team_id", "team_members", ["team_id"])
    op.create_index("ix_team_members_user_id", "team_members", ["user_id"])

    # Create roles table
    op.create_table(
        "roles",
        _uuid("id", primary_key=True),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("slug", sa.String(100), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("is_system_role", sa.Boolean(), nullable=False, server_default="false"),
        _uuid("workspace_id", nullable=True),
        _timestamp("created_at"),
        _timestamp("updated_at"),
        _workspace_fk(),
        sa.UniqueConstraint("workspace_id", "slug", name="uq_workspace_role_slug"),
    )
    op.create_index("ix_roles_workspace_id", "roles", ["workspace_id"])

    # Create permissions table
    op.create_table(
        "permissions",
        _uuid("id", primary_key=True),
        _uuid("role_id", nullable=False),
        sa.Column("resource", sa.String(100), nullable=False),
        sa.Column("action", sa.String(50), nullable=False),
        _timestamp("created_at"),
        sa.ForeignKeyConstraint(["role_id"], ["roles.id"], ondelete="CASCADE"),
        sa.UniqueConstraint("role_id", "resource", "action", name="uq_role_resource_action"),
    )
    op.create_index("ix_permissions_role_id", "permissions", ["role_id"])

    # Create user_role_assignments table
    op.create_table(
        "user_role_assignments",
        _uuid("id", primary_key=True),
        _uuid("user_id", nullable=False),
        _uuid("role_id", nullable=False),
        _uuid("workspace_id", nullable=False),
        _timestamp("assigned_at"),
        _uuid("assigned_by", nullable=True),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["role_id"], ["roles.id"], ondelete="CASCADE"),
        _workspace_fk(),
        sa.UniqueConstraint("user_id", "role_id", "workspace_id", name="uq_user_role_workspace"),
    )
    op.create_index("ix_user_role_assignments_user_id", "user_role_assignments", ["user_id"])
    op.create_index("ix_user_role_assignments_role_id", "user_role_assignments", ["role_id"])
    op.create_index("ix_user_role_assignments_workspace_id", "user_role_assignments", ["workspace_id"])

    # Sessions, preferences and activity
    op.create_table(
        "user_sessions",
        _uuid("id", primary_key=True),
        _uuid("user_id", nullable=False),
        _uuid("workspace_id", nullable=False),
        sa.Column("session_token", sa.String(128), nullable=False, unique=True),
        sa.Column("ip_address", sa.String(45), nullable=True),
        sa.Column("user_agent", sa.Text(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default="true"),
        _timestamp("expires_at"),
        _timestamp("last_activity"),
        _timestamp("ended_at", nullable=True),
        _timestamp("created_at"),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        _workspace_fk(),
    )
    op.create_index("ix_user_sessions_user_id", "user_sessions", ["user_id"])
    op.create_index("ix_user_sessions_workspace_id", "user_sessions", ["workspace_id"])
    op.create_index("ix_user_sessions_session_token", "user_sessions", ["session_token"])
    op.create_index("ix_user_sessions_is_active", "user_sessions", ["is_active"])

    op.create_table(
        "user_preferences",
        _uuid("id", primary_key=True),
        _uuid("user_id", nullable=False, unique=True),
        sa.Column("theme", sa.String(20), nullable=False, server_default="system"),
        sa.Column("language", sa.String(10), nullable=False, server_default="en"),
        sa.Column("timezone", sa.String(64), nullable=False, server_default="UTC"),
        sa.Column("notifications", sa.JSON(), nullable=False),
        sa.Column("dashboard_layout", sa.JSON(), nullable=False),
        sa.Column("call_settings", sa.JSON(), nullable=False),
        _timestamp("updated_at"),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
    )
    op.create_index("ix_user_preferences_user_id", "user_preferences", ["user_id"])

    op.create_table(
        "user_activities",
        _uuid("id", primary_key=True),
        _uuid("user_id", nullable=False),
        _uuid("workspace_id", nullable=False),
        sa.Column("activity_type", sa.String(100), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("metadata", sa.JSON(), nullable=True),
        sa.Column("ip_address", sa.String(45), nullable=True),
        sa.Column("user_agent", sa.Text(), nullable=True),
        _timestamp("created_at"),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        _workspace_fk(),
    )
    op.create_index("ix_user_activities_user_id", "user_activities", ["user_id"])
    op.create_index("ix_user_activities_workspace_id", "user_activities", ["workspace_id"])
    op.create_index("ix_user_activities_created_at", "user_activities", ["created_at"])

    # Create audit_logs table
    op.create_table(
        "audit_logs",
        _uuid("id", primary_key=True),
        _uuid("workspace_id", nullable=True),
        _uuid("user_id", nullable=True),
        sa.Column("action", sa.String(100), nullable=False),
        sa.Column("entity_type", sa.String(100), nullable=False),
        sa.Column("entity_id", sa.String(255), nullable=True),
        sa.Column("old_values", sa.JSON(), nullable=True),
        sa.Column("new_values", sa.JSON(), nullable=True),
        sa.Column("ip_address", sa.String(45), nullable=True),
        sa.Column("user_agent", sa.Text(), nullable=True),
        sa.Column("session_id", sa.String(128), nullable=True),
        sa.Column("request_id", sa.String(100), nullable=True),
        sa.Column("endpoint", sa.String(255), nullable=True),
        sa.Column("severity", sa.String(20), nullable=False, server_default="low"),
        sa.Column("category", sa.String(50), nullable=False),
        sa.Column("success", sa.Boolean(), nullable=False, server_default="true"),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("context_data", sa.JSON(), nullable=True),
        _timestamp("created_at"),
        _workspace_fk(),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="SET NULL"),
    )
    op.create_index("ix_audit_logs_workspace_id", "audit_logs", ["workspace_id"])
    op.create_index("ix_audit_logs_user_id", "audit_logs", ["user_id"])
    op.create_index("ix_audit_logs_action", "audit_logs", ["action"])
    op.create_index("ix_audit_logs_entity_type", "audit_logs", ["entity_type"])
    op.create_index("ix_audit_logs_ip_address", "audit_logs", ["ip_address"])
    op.create_index("ix_audit_logs_request_id", "audit_logs", ["request_id"])
    op.create_index("ix_audit_logs_severity", "audit_logs", ["severity"])
    op.create_index("ix_audit_logs_category", "audit_logs", ["category"])
    op.create_index("ix_audit_logs_created_at", "audit_logs", ["created_at"])

    op.create_table(
        "security_events",
        _uuid("id", primary_key=True),
        _uuid("workspace_id", nullable=True),
        _uuid("user_id", nullable=True),
        sa.Column("event_type", sa.String(50), nullable=False),
        sa.Column("severity", sa.String(20), nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("ip_address", sa.String(45), nullable=True),
        sa.Column("user_agent", sa.Text(), nullable=True),
        sa.Column("context_data", sa.JSON(), nullable=True),
        sa.Column("resolved", sa.Boolean(), nullable=False, server_default="false"),
        _timestamp("resolved_at", nullable=True),
        _uuid("resolved_by", nullable=True),
        _timestamp("created_at"),
        _workspace_fk(),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="SET NULL"),
    )
    op.create_index("ix_security_events_workspace_id", "security_events", ["workspace_id"])
    op.create_index("ix_security_events_user_id", "security_events", ["user_id"])
    op.create_index("ix_security_events_event_type", "security_events", ["event_type"])
    op.create_index("ix_security_events_severity", "security_events", ["severity"])
    op.create_index("ix_security_events_resolved", "security_events", ["resolved"])
    op.create_index("ix_security_events_created_at", "security_events", ["created_at"])

    op.create_table(
        "compliance_reports",
        _uuid("id", primary_key=True),
        _uuid("workspace_id", nullable=True),
        sa.Column("report_type", sa.String(20), nullable=False),
        _timestamp("period_start"),
        _timestamp("period_end"),
        sa.Column("data", sa.JSON(), nullable=False),
        _uuid("generated_by", nullable=True),
        _timestamp("created_at"),
        _workspace_fk(),
    )
    op.create_index("ix_compliance_reports_workspace_id", "compliance_reports", ["workspace_id"])

    # GDPR tables
    op.create_table(
        "consent_records",
        _uuid("id", primary_key=True),
        _uuid("user_id", nullable=False),
        _uuid("workspace_id", nullable=False),
        sa.Column("consent_type", sa.String(50), nullable=False),
        sa.Column("granted", sa.Boolean(), nullable=False),
        sa.Column("legal_basis", sa.String(50), nullable=False, server_default="consent"),
        sa.Column("purpose", sa.Text(), nullable=False),
        sa.Column("data_categories", sa.JSON(), nullable=False),
        sa.Column("retention_period", sa.Integer(), nullable=False, server_default="365"),
        sa.Column("ip_address", sa.String(45), nullable=True),
        sa.Column("user_agent", sa.Text(), nullable=True),
        _timestamp("granted_at"),
        _timestamp("withdrawn_at", nullable=True),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        _workspace_fk(),
    )
    op.create_index("ix_consent_records_user_id", "consent_records", ["user_id"])
    op.create_index("ix_consent_records_workspace_id", "consent_records", ["workspace_id"])
    op.create_index("ix_consent_records_consent_type", "consent_records", ["consent_type"])

    op.create_table(
        "data_export_requests",
        _uuid("id", primary_key=True),
        _uuid("workspace_id", nullable=False),
        _uuid("user_id", nullable=True),
        _uuid("requested_by", nullable=True),
        sa.Column("data_types", sa.JSON(), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="pending"),
        sa.Column("export_data", sa.JSON(), nullable=True),
        sa.Column("file_url", sa.String(500), nullable=True),
        sa.Column("error_message", sa.Text(), nullable=True),
        _timestamp("requested_at"),
        _timestamp("completed_at", nullable=True),
        _timestamp("expires_at", nullable=True),
        _workspace_fk(),
    )
    op.create_index("ix_data_export_requests_workspace_id", "data_export_requests", ["workspace_id"])
    op.create_index("ix_data_export_requests_user_id", "data_export_requests", ["user_id"])
    op.create_index("ix_data_export_requests_status", "data_export_requests", ["status"])

    op.create_table(
        "data_deletion_requests",
        _uuid("id", primary_key=True),
        _uuid("workspace_id", nullable=False),
        _uuid("user_id", nullable=False),
        _uuid("requested_by", nullable=True),
        sa.Column("deletion_type", sa.String(20), nullable=False),
        sa.Column("data_types", sa.JSON(), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="pending"),
        sa.Column("deleted_counts", sa.JSON(), nullable=True),
        sa.Column("error_message", sa.Text(), nullable=True),
        _timestamp("requested_at"),
        _timestamp("completed_at", nullable=True),
        _workspace_fk(),
    )
    op.create_index("ix_data_deletion_requests_workspace_id", "data_deletion_requests", ["workspace_id"])
    op.create_index("ix_data_deletion_requests_user_id", "data_deletion_requests", ["user_id"])
    op.create_index("ix_data_deletion_requests_status", "data_deletion_requests", ["status"])

    op.create_table(
        "data_retention_policies",
        _uuid("id", primary_key=True),
        _uuid("workspace_id", nullable=False),
        sa.Column("data_type", sa.String(50), nullable=False),
        sa.Column("retention_days", sa.Integer(), nullable=False),
        sa.Column("auto_delete", sa.Boolean(), nullable=False, server_default="false"),
        sa.Column("legal_hold", sa.Boolean(), nullable=False, server_default="false"),
        sa.Column("description", sa.Text(), nullable=True),
        _timestamp("created_at"),
        _timestamp("updated_at"),
        _workspace_fk(),
        sa.UniqueConstraint("workspace_id", "data_type", name="uq_workspace_retention_type"),
    )
    op.create_index("ix_data_retention_policies_workspace_id", "data_retention_policies", ["workspace_id"])

    op.create_table(
        "compliance_settings",
        _uuid("id", primary_key=True),
        _uuid("workspace_id", nullable=False, unique=True),
        sa.Column("gdpr_enabled", sa.Boolean(), nullable=False, server_default="true"),
        sa.Column("ccpa_enabled", sa.Boolean(), nullable=False, server_default="false"),
        sa.Column("call_recording_consent_required", sa.Boolean(), nullable=False, server_default="true"),
        sa.Column("data_processing_consent_required", sa.Boolean(), nullable=False, server_default="true"),
        sa.Column("cookie_consent_enabled", sa.Boolean(), nullable=False, server_default="true"),
        sa.Column("default_retention_days", sa.Integer(), nullable=False, server_default="365"),
        sa.Column("privacy_policy_url", sa.String(500), nullable=True),
        sa.Column("dpo_email", sa.String(255), nullable=True),
        _timestamp("created_at"),
        _timestamp("updated_at"),
        _workspace_fk(),
    )

    # Create realtime_notifications table
    op.create_table(
        "realtime_notifications",
        _uuid("id", primary_key=True),
        _uuid("workspace_id", nullable=True),
        _uuid("user_id", nullable=True),
        sa.Column("type", sa.String(50), nullable=False),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("data", sa.JSON(), nullable=False),
        sa.Column("priority", sa.String(20), nullable=False, server_default="normal"),
        sa.Column("actions", sa.JSON(), nullable=False),
        sa.Column("read", sa.Boolean(), nullable=False, server_default="false"),
        _timestamp("read_at", nullable=True),
        _timestamp("expires_at", nullable=True),
        _timestamp("created_at"),
        _workspace_fk(),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
    )
    op.create_index("ix_realtime_notifications_workspace_id", "realtime_notifications", ["workspace_id"])
    op.create_index("ix_realtime_notifications_user_id", "realtime_notifications", ["user_id"])
    op.create_index("ix_realtime_notifications_type", "realtime_notifications", ["type"])
    op.create_index("ix_realtime_notifications_read", "realtime_notifications", ["read"])
    op.create_index("ix_realtime_notifications_created_at", "realtime_notifications", ["created_at"])

    # Integration tables
    op.create_table(
        "integration_connections",
        _uuid("id", primary_key=True),
        _uuid("workspace_id", nullable=False),
        sa.Column("provider", sa.String(50), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="connected"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default="true"),
        sa.Column("access_token", sa.Text(), nullable=True),
        sa.Column("refresh_token", sa.Text(), nullable=True),
        _timestamp("token_expires_at", nullable=True),
        sa.Column("provider_account_id", sa.String(255), nullable=True),
        sa.Column("config", sa.JSON(), nullable=False),
        _timestamp("last_sync_at", nullable=True),
        sa.Column("sync_status", sa.String(20), nullable=True),
        sa.Column("error_message", sa.Text(), nullable=True),
        _uuid("created_by", nullable=True),
        _timestamp("created_at"),
        _timestamp("updated_at"),
        _workspace_fk(),
        sa.UniqueConstraint("workspace_id", "provider", name="uq_workspace_provider"),
    )
    op.create_index("ix_integration_connections_workspace_id", "integration_connections", ["workspace_id"])
    op.create_index("ix_integration_connections_provider", "integration_connections", ["provider"])
    op.create_index("ix_integration_connections_is_active", "integration_connections", ["is_active"])

    op.create_table(
        "synced_contacts",
        _uuid("id", primary_key=True),
        _uuid("workspace_id", nullable=False),
        _uuid("connection_id", nullable=True),
        sa.Column("provider", sa.String(50), nullable=False),
        sa.Column("provider_contact_id", sa.String(255), nullable=False),
        sa.Column("email", sa.String(255), nullable=True),
        sa.Column("first_name", sa.String(255), nullable=True),
        sa.Column("last_name", sa.String(255), nullable=True),
        sa.Column("phone", sa.String(50), nullable=True),
        sa.Column("company", sa.String(255), nullable=True),
        sa.Column("raw_data", sa.JSON(), nullable=False),
        _timestamp("last_synced_at"),
        _workspace_fk(),
        sa.ForeignKeyConstraint(["connection_id"], ["integration_connections.id"], ondelete="SET NULL"),
        sa.UniqueConstraint("workspace_id", "provider", "provider_contact_id", name="uq_synced_contact"),
    )
    op.create_index("ix_synced_contacts_workspace_id", "synced_contacts", ["workspace_id"])

    op.create_table(
        "synced_appointments",
        _uuid("id", primary_key=True),
        _uuid("workspace_id", nullable=False),
        _uuid("connection_id", nullable=True),
        sa.Column("provider", sa.String(50), nullable=False),
        sa.Column("provider_event_id", sa.String(255), nullable=False),
        sa.Column("title", sa.String(500), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        _timestamp("start_time", nullable=True),
        _timestamp("end_time", nullable=True),
        sa.Column("location", sa.String(500), nullable=True),
        sa.Column("attendees", sa.JSON(), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="confirmed"),
        sa.Column("raw_data", sa.JSON(), nullable=False),
        _timestamp("last_synced_at"),
        _workspace_fk(),
        sa.ForeignKeyConstraint(["connection_id"], ["integration_connections.id"], ondelete="SET NULL"),
        sa.UniqueConstraint("workspace_id", "provider", "provider_event_id", name="uq_synced_appointment"),
    )
    op.create_index("ix_synced_appointments_workspace_id", "synced_appointments", ["workspace_id"])

    op.create_table(
        "integration_events",
        _uuid("id", primary_key=True),
        _uuid("workspace_id", nullable=True),
        _uuid("connection_id", nullable=True),
        sa.Column("provider", sa.String(50), nullable=False),
        sa.Column("event_type", sa.String(100), nullable=False),
        sa.Column("payload", sa.JSON(), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="processed"),
        sa.Column("error_message", sa.Text(), nullable=True),
        _timestamp("created_at"),
        _workspace_fk(),
        sa.ForeignKeyConstraint(["connection_id"], ["integration_connections.id"], ondelete="SET NULL"),
    )
    op.create_index("ix_integration_events_workspace_id", "integration_events", ["workspace_id"])
    op.create_index("ix_integration_events_provider", "integration_events", ["provider"])
    op.create_index("ix_integration_events_created_at", "integration_events", ["created_at"])

    # Webform tables
    op.create_table(
        "webform_configs",
        _uuid("id", primary_key=True),
        _uuid("workspace_id", nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("tracking_id", sa.String(64), nullable=False, unique=True),
        sa.Column("form_selector", sa.String(255), nullable=True),
        sa.Column("domains", sa.JSON(), nullable=False),
        sa.Column("conversion_goals", sa.JSON(), nullable=False),
        sa.Column("notification_emails", sa.JSON(), nullable=False),
        sa.Column("spam_protection", sa.Boolean(), nullable=False, server_default="true"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default="true"),
        _timestamp("created_at"),
        _timestamp("updated_at"),
        _workspace_fk(),
    )
    op.create_index("ix_webform_configs_workspace_id", "webform_configs", ["workspace_id"])
    op.create_index("ix_webform_configs_tracking_id", "webform_configs", ["tracking_id"])
    op.create_index("ix_webform_configs_is_active", "webform_configs", ["is_active"])

    op.create_table(
        "webform_submissions",
        _uuid("id", primary_key=True),
        _uuid("workspace_id", nullable=False),
        _uuid("form_id", nullable=False),
        _uuid("user_id", nullable=True),
        sa.Column("visitor_id", sa.String(100), nullable=True),
        sa.Column("form_data", sa.JSON(), nullable=False),
        sa.Column("utm_data", sa.JSON(), nullable=False),
        sa.Column("user_journey", sa.JSON(), nullable=False),
        sa.Column("page_url", sa.String(2000), nullable=True),
        sa.Column("referrer", sa.String(2000), nullable=True),
        sa.Column("ip_address", sa.String(45), nullable=True),
        sa.Column("user_agent", sa.Text(), nullable=True),
        sa.Column("spam_score", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("is_spam", sa.Boolean(), nullable=False, server_default="false"),
        _timestamp("created_at"),
        _workspace_fk(),
        sa.ForeignKeyConstraint(["form_id"], ["webform_configs.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="SET NULL"),
    )
    op.create_index("ix_webform_submissions_workspace_id", "webform_submissions", ["workspace_id"])
    op.create_index("ix_webform_submissions_form_id", "webform_submissions", ["form_id"])
    op.create_index("ix_webform_submissions_user_id", "webform_submissions", ["user_id"])
    op.create_index("ix_webform_submissions_visitor_id", "webform_submissions", ["visitor_id"])
    op.create_index("ix_webform_submissions_is_spam", "webform_submissions", ["is_spam"])
    op.create_index("ix_webform_submissions_created_at", "webform_submissions", ["created_at"])

    op.create_table(
        "webform_conversions",
        _uuid("id", primary_key=True),
        _uuid("workspace_id", nullable=False),
        _uuid("form_id", nullable=False),
        _uuid("submission_id", nullable=True),
        sa.Column("visitor_id", sa.String(100), nullable=True),
        sa.Column("goal", sa.String(100), nullable=False),
        sa.Column("value", sa.Float(), nullable=True),
        sa.Column("conversion_data", sa.JSON(), nullable=False),
        _timestamp("created_at"),
        _workspace_fk(),
        sa.ForeignKeyConstraint(["form_id"], ["webform_configs.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["submission_id"], ["webform_submissions.id"], ondelete="SET NULL"),
    )
    op.create_index("ix_webform_conversions_workspace_id", "webform_conversions", ["workspace_id"])
    op.create_index("ix_webform_conversions_form_id", "webform_conversions", ["form_id"])
    op.create_index("ix_webform_conversions_created_at", "webform_conversions", ["created_at"])

    # Create calls table
    op.create_table(
        "calls",
        _uuid("id", primary_key=True),
        _uuid("workspace_id", nullable=False),
        _uuid("user_id", nullable=True),
        sa.Column("caller_number", sa.String(50), nullable=True),
        sa.Column("callee_number", sa.String(50), nullable=True),
        sa.Column("direction", sa.String(10), nullable=False, server_default="inbound"),
        sa.Column("status", sa.String(20), nullable=False, server_default="completed"),
        sa.Column("duration", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("recording_url", sa.String(1000), nullable=True),
        sa.Column("transcript", sa.Text(), nullable=True),
        sa.Column("value", sa.Float(), nullable=True),
        _timestamp("started_at", nullable=True),
        _timestamp("ended_at", nullable=True),
        _timestamp("created_at"),
        _workspace_fk(),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="SET NULL"),
    )
    op.create_index("ix_calls_workspace_id", "calls", ["workspace_id"])
    op.create_index("ix_calls_user_id", "calls", ["user_id"])
    op.create_index("ix_calls_status", "calls", ["status"])
    op.create_index("ix_calls_created_at", "calls", ["created_at"])


def downgrade() -> None:
    # Drop tables in reverse order (respecting foreign keys)
    op.drop_table("calls")
    op.drop_table("webform_conversions")
    op.drop_table("webform_submissions")
    op.drop_table("webform_configs")
    op.drop_table("integration_events")
    op.drop_table("synced_appointments")
    op.drop_table("synced_contacts")
    op.drop_table("integration_connections")
    op.drop_table("realtime_notifications")
    op.drop_table("compliance_settings")
    op.drop_table("data_retention_policies")
    op.drop_table("data_deletion_requests")
    op.drop_table("data_export_requests")
    op.drop_table("consent_records")
    op.drop_table("compliance_reports")
    op.drop_table("security_events")
    op.drop_table("audit_logs")
    op.drop_table("user_activities")
    op.drop_table("user_preferences")
    op.drop_table("user_sessions")
    op.drop_table("user_role_assignments")
    op.drop_table("permissions")
    op.drop_table("roles")
    op.drop_table("team_members")
    op.drop_table("teams")
    op.drop_table("users")
    op.drop_table("workspaces")

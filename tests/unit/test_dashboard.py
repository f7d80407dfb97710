"""
Unit tests for dashboard aggregates.
"""

from datetime import timedelta

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from locall.models import Call, DataExportRequest, User, WebformConfig, WebformConversion, WebformSubmission
from locall.models.base import utc_now
from locall.services.audit import AuditService
from locall.services.dashboard import DashboardService
from locall.services.notifications import NotificationService

pytestmark = pytest.mark.unit


async def seed_activity(db: AsyncSession, user: User) -> None:
    now = utc_now()
    workspace_id = user.workspace_id
    db.add_all(
        [
            Call(workspace_id=workspace_id, user_id=user.id, status="completed", duration=120, value=100.0),
            Call(workspace_id=workspace_id, user_id=user.id, status="missed", duration=0),
            Call(workspace_id=workspace_id, user_id=user.id, status="answered", duration=240, value=50.0),
            Call(
                workspace_id=workspace_id,
                user_id=user.id,
                status="completed",
                duration=600,
                value=999.0,
                created_at=now - timedelta(days=40),
            ),
        ]
    )
    form = WebformConfig(workspace_id=workspace_id, name="Contact", tracking_id="track_dashboard00001")
    db.add(form)
    await db.flush()
    db.add_all(
        [
            WebformSubmission(workspace_id=workspace_id, form_id=form.id, utm_data={"utm_source": "google"}),
            WebformSubmission(workspace_id=workspace_id, form_id=form.id, utm_data={"utm_source": "google"}),
            WebformSubmission(workspace_id=workspace_id, form_id=form.id, utm_data={}),
            WebformSubmission(workspace_id=workspace_id, form_id=form.id, is_spam=True, spam_score=95),
            WebformConversion(workspace_id=workspace_id, form_id=form.id, goal="quote_requested"),
        ]
    )
    await db.commit()


class TestDashboardMetrics:
    @pytest.mark.asyncio
    async def test_metrics(self, test_db: AsyncSession, test_user_owner: User, test_user_agent: User):
        await seed_activity(test_db, test_user_agent)
        test_user_owner.last_login_at = utc_now()
        await test_db.commit()

        metrics = await DashboardService(test_db).get_dashboard_metrics(test_user_owner.workspace_id)

        assert metrics["total_calls"] == 3
        assert metrics["total_call_minutes"] == 6.0
        assert metrics["average_call_duration"] == 2.0
        assert metrics["call_success_rate"] == 66.7
        assert metrics["revenue"] == 150.0
        assert metrics["total_webform_submissions"] == 3
        assert metrics["webform_conversion_rate"] == 33.3
        assert metrics["active_users"] == 1
        assert metrics["forms_by_source"] == [
            {"source": "google", "submissions": 2},
            {"source": "direct", "submissions": 1},
        ]

    @pytest.mark.asyncio
    async def test_empty_workspace(self, test_db: AsyncSession, other_workspace):
        metrics = await DashboardService(test_db).get_dashboard_metrics(other_workspace.id)

        assert metrics["total_calls"] == 0
        assert metrics["call_success_rate"] == 0
        assert metrics["revenue"] == 0.0
        assert metrics["active_users"] == 0

    @pytest.mark.asyncio
    async def test_recent_session_counts_as_active(self, test_db: AsyncSession, test_user_agent: User):
        from locall.services.users import UserManagementService

        await UserManagementService(test_db).create_session(test_user_agent.id, test_user_agent.workspace_id)

        metrics = await DashboardService(test_db).get_dashboard_metrics(test_user_agent.workspace_id)

        assert metrics["active_users"] == 1


class TestDashboardSummary:
    @pytest.mark.asyncio
    async def test_summary(self, test_db: AsyncSession, test_user_owner: User, test_user_agent: User, broker):
        workspace_id = test_user_owner.workspace_id
        audit = AuditService(test_db)
        await audit.log_data_modification("create", "team", "t-1", workspace_id=workspace_id, user_id=test_user_owner.id)
        await audit.log_security_event("unauthorized_access", "high", "Blocked", workspace_id=workspace_id)
        notifications = NotificationService(test_db, broker)
        await notifications.send_notification("user_activity", "All", "Everyone", workspace_id=workspace_id)
        await notifications.send_notification(
            "user_activity", "Agent", "Agent only", workspace_id=workspace_id, user_id=test_user_agent.id
        )
        test_db.add(DataExportRequest(workspace_id=workspace_id, data_types=["calls"], status="pending"))
        await test_db.commit()

        summary = await DashboardService(test_db).get_summary(workspace_id, test_user_owner.id)

        assert summary["unread_notifications"] == 1
        assert summary["open_security_events"] == 1
        assert summary["pending_gdpr_requests"] == {"exports": 1, "deletions": 0}
        assert summary["recent_activity"][0]["action"] == "create"
        assert summary["recent_activity"][0]["type"] == "data_modification"
        assert summary["metrics"]["total_calls"] == 0

"""
Dashboard aggregates computed from stored calls, webform activity, users and
the audit trail.
"""

import logging
from datetime import timedelta
from typing import Optional
from uuid import UUID

from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from locall.models import (
    AuditLog,
    Call,
    DataDeletionRequest,
    DataExportRequest,
    RealtimeNotification,
    SecurityEvent,
    User,
    UserSession,
    WebformConversion,
    WebformSubmission,
)
from locall.models.base import utc_now
from locall.models.call import SUCCESSFUL_CALL_STATUSES

logger = logging.getLogger(__name__)

METRICS_WINDOW_DAYS = 30
OPEN_REQUEST_STATUSES = ("pending", "processing")


class DashboardService:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def _scalar(self, stmt):
        return (await self.db.execute(stmt)).scalar_one()

    async def get_dashboard_metrics(self, workspace_id: UUID) -> dict:
        """Call, webform and user metrics over the last 30 days."""
        start = utc_now() - timedelta(days=METRICS_WINDOW_DAYS)
        in_window = (Call.workspace_id == workspace_id, Call.created_at >= start)

        total_calls = await self._scalar(select(func.count(Call.id)).where(*in_window))
        total_seconds = await self._scalar(select(func.coalesce(func.sum(Call.duration), 0)).where(*in_window))
        successful_calls = await self._scalar(
            select(func.count(Call.id)).where(*in_window, Call.status.in_(SUCCESSFUL_CALL_STATUSES))
        )
        revenue = await self._scalar(select(func.coalesce(func.sum(Call.value), 0)).where(*in_window))

        submissions = list(
            (
                await self.db.execute(
                    select(WebformSubmission).where(
                        WebformSubmission.workspace_id == workspace_id,
                        WebformSubmission.created_at >= start,
                        WebformSubmission.is_spam.is_(False),
                    )
                )
            )
            .scalars()
            .all()
        )
        conversions = await self._scalar(
            select(func.count(WebformConversion.id)).where(
                WebformConversion.workspace_id == workspace_id,
                WebformConversion.created_at >= start,
            )
        )

        active_users = await self._scalar(
            select(func.count(func.distinct(User.id)))
            .select_from(User)
            .outerjoin(UserSession, UserSession.user_id == User.id)
            .where(
                User.workspace_id == workspace_id,
                User.is_active.is_(True),
                User.deleted_at.is_(None),
                or_(User.last_login_at >= start, UserSession.last_activity >= start),
            )
        )

        sources: dict[str, int] = {}
        for submission in submissions:
            source = (submission.utm_data or {}).get("utm_source") or "direct"
            sources[source] = sources.get(source, 0) + 1

        call_minutes = round(total_seconds / 60, 1)
        return {
            "period_days": METRICS_WINDOW_DAYS,
            "total_calls": total_calls,
            "total_call_minutes": call_minutes,
            "average_call_duration": round(call_minutes / total_calls, 1) if total_calls else 0,
            "call_success_rate": round(successful_calls / total_calls * 100, 1) if total_calls else 0,
            "total_webform_submissions": len(submissions),
            "webform_conversion_rate": round(conversions / len(submissions) * 100, 1) if submissions else 0,
            "active_users": active_users,
            "revenue": float(revenue or 0),
            "forms_by_source": [
                {"source": source, "submissions": count}
                for source, count in sorted(sources.items(), key=lambda item: item[1], reverse=True)
            ],
        }

    async def get_recent_activity(self, workspace_id: UUID, limit: int = 10) -> list[dict]:
        result = await self.db.execute(
            select(AuditLog)
            .where(AuditLog.workspace_id == workspace_id)
            .order_by(AuditLog.created_at.desc())
            .limit(limit)
        )
        return [
            {
                "id": str(entry.id),
                "type": entry.category,
                "action": entry.action,
                "entity_type": entry.entity_type,
                "entity_id": entry.entity_id,
                "user_id": str(entry.user_id) if entry.user_id else None,
                "success": entry.success,
                "timestamp": entry.created_at.isoformat(),
            }
            for entry in result.scalars().all()
        ]

    async def get_summary(self, workspace_id: UUID, user_id: Optional[UUID] = None) -> dict:
        unread_stmt = select(func.count(RealtimeNotification.id)).where(
            RealtimeNotification.workspace_id == workspace_id,
            RealtimeNotification.read.is_(False),
        )
        if user_id is not None:
            unread_stmt = unread_stmt.where(
                or_(RealtimeNotification.user_id == user_id, RealtimeNotification.user_id.is_(None))
            )

        pending_exports = await self._scalar(
            select(func.count(DataExportRequest.id)).where(
                DataExportRequest.workspace_id == workspace_id,
                DataExportRequest.status.in_(OPEN_REQUEST_STATUSES),
            )
        )
        pending_deletions = await self._scalar(
            select(func.count(DataDeletionRequest.id)).where(
                DataDeletionRequest.workspace_id == workspace_id,
                DataDeletionRequest.status.in_(OPEN_REQUEST_STATUSES),
            )
        )

        return {
            "metrics": await self.get_dashboard_metrics(workspace_id),
            "recent_activity": await self.get_recent_activity(workspace_id),
            "unread_notifications": await self._scalar(unread_stmt),
            "open_security_events": await self._scalar(
                select(func.count(SecurityEvent.id)).where(
                    SecurityEvent.workspace_id == workspace_id,
                    SecurityEvent.resolved.is_(False),
                )
            ),
            "pending_gdpr_requests": {"exports": pending_exports, "deletions": pending_deletions},
        }

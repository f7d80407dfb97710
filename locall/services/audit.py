"""
Audit logging service.

Records authentication, authorization, data access/modification, system and
compliance events, raises security events (including brute-force detection)
and builds compliance reports from the stored trail.
"""

import logging
from datetime import datetime, timedelta
from typing import Any, Optional
from uuid import UUID

from fastapi import Request
from pydantic import BaseModel
from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from locall.config.settings import get_settings
from locall.exceptions import NotFoundError, ValidationError
from locall.models import (
    AuditLog,
    ComplianceReport,
    ConsentRecord,
    DataDeletionRequest,
    DataExportRequest,
    SecurityEvent,
)
from locall.models.base import utc_now

logger = logging.getLogger(__name__)

REPORT_TYPES = ("gdpr", "ccpa", "security", "audit")


class RequestContext(BaseModel):
    """Request metadata attached to audit rows."""

    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    session_id: Optional[str] = None
    request_id: Optional[str] = None
    endpoint: Optional[str] = None


def get_client_ip(request: Request) -> Optional[str]:
    """Client IP: first ``x-forwarded-for`` hop, then ``x-real-ip``, then the peer."""
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    real_ip = request.headers.get("x-real-ip")
    if real_ip:
        return real_ip
    return request.client.host if request.client else None


def request_context_from(request: Request) -> RequestContext:
    return RequestContext(
        ip_address=get_client_ip(request),
        user_agent=request.headers.get("user-agent"),
        session_id=request.headers.get("x-session-id"),
        request_id=request.headers.get("x-request-id"),
        endpoint=f"{request.method} {request.url.path}",
    )


class AuditService:
    """Audit trail and security event recorder bound to a database session."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.settings = get_settings()

    async def log_event(
        self,
        action: str,
        entity_type: str,
        category: str,
        *,
        workspace_id: Optional[UUID] = None,
        user_id: Optional[UUID] = None,
        entity_id: Optional[str] = None,
        old_values: Optional[dict] = None,
        new_values: Optional[dict] = None,
        severity: str = "low",
        success: bool = True,
        error_message: Optional[str] = None,
        context_data: Optional[dict] = None,
        request_context: Optional[RequestContext] = None,
    ) -> Optional[AuditLog]:
        """
        Persist an audit event.

        A storage failure is logged and swallowed so that auditing never
        breaks the operation being audited; None is returned in that case.
        """
        ctx = request_context or RequestContext()
        entry = AuditLog(
            workspace_id=workspace_id,
            user_id=user_id,
            action=action,
            entity_type=entity_type,
            entity_id=str(entity_id) if entity_id is not None else None,
            old_values=old_values,
            new_values=new_values,
            severity=severity,
            category=category,
            success=success,
            error_message=error_message,
            context_data=context_data,
            ip_address=ctx.ip_address,
            user_agent=ctx.user_agent,
            session_id=ctx.session_id,
            request_id=ctx.request_id,
            endpoint=ctx.endpoint,
        )

        try:
            self.db.add(entry)
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error(
                f"Audit logging failed ({e}); event: action={action} entity={entity_type}:{entity_id} "
                f"category={category} severity={severity} user={user_id} workspace={workspace_id}"
            )
            return None

        if severity == "critical" or category == "authentication":
            await self._check_for_threats(entry)

        return entry

    async def log_authentication(
        self,
        action: str,
        user_id: Optional[UUID],
        success: bool,
        *,
        workspace_id: Optional[UUID] = None,
        details: Optional[dict] = None,
        request_context: Optional[RequestContext] = None,
    ) -> Optional[AuditLog]:
        """Record login, logout, failed_login, password_reset or password_change."""
        entry = await self.log_event(
            action,
            "authentication",
            "authentication",
            workspace_id=workspace_id,
            user_id=user_id,
            entity_id=str(user_id) if user_id else None,
            severity="low" if success else "high",
            success=success,
            context_data=details,
            request_context=request_context,
        )

        if not success and action == "failed_login":
            ctx = request_context or RequestContext()
            await self.log_security_event(
                "failed_login",
                "medium",
                "Failed login attempt",
                workspace_id=workspace_id,
                user_id=user_id,
                ip_address=ctx.ip_address,
                user_agent=ctx.user_agent,
                context_data=details,
            )

        return entry

    async def log_data_access(
        self,
        entity_type: str,
        entity_id: Optional[str],
        *,
        workspace_id: Optional[UUID] = None,
        user_id: Optional[UUID] = None,
        action: str = "read",
        details: Optional[dict] = None,
        request_context: Optional[RequestContext] = None,
    ) -> Optional[AuditLog]:
        return await self.log_event(
            action,
            entity_type,
            "data_access",
            workspace_id=workspace_id,
            user_id=user_id,
            entity_id=entity_id,
            context_data=details,
            request_context=request_context,
        )

    async def log_data_modification(
        self,
        action: str,
        entity_type: str,
        entity_id: Optional[str],
        *,
        workspace_id: Optional[UUID] = None,
        user_id: Optional[UUID] = None,
        old_values: Optional[dict] = None,
        new_values: Optional[dict] = None,
        request_context: Optional[RequestContext] = None,
    ) -> Optional[AuditLog]:
        """Record create/update/delete; deletes are medium severity."""
        return await self.log_event(
            action,
            entity_type,
            "data_modification",
            workspace_id=workspace_id,
            user_id=user_id,
            entity_id=entity_id,
            old_values=old_values,
            new_values=new_values,
            severity="medium" if action == "delete" else "low",
            request_context=request_context,
        )

    async def log_system_event(
        self,
        action: str,
        details: Optional[dict] = None,
        *,
        workspace_id: Optional[UUID] = None,
        severity: str = "low",
    ) -> Optional[AuditLog]:
        return await self.log_event(
            action,
            "system",
            "system",
            workspace_id=workspace_id,
            severity=severity,
            context_data=details,
        )

    async def log_compliance_event(
        self,
        action: str,
        entity_type: str,
        entity_id: Optional[str],
        *,
        workspace_id: Optional[UUID] = None,
        user_id: Optional[UUID] = None,
        details: Optional[dict] = None,
        request_context: Optional[RequestContext] = None,
    ) -> Optional[AuditLog]:
        return await self.log_event(
            action,
            entity_type,
            "compliance",
            workspace_id=workspace_id,
            user_id=user_id,
            entity_id=entity_id,
            severity="medium",
            context_data=details,
            request_context=request_context,
        )

    async def log_security_event(
        self,
        event_type: str,
        severity: str,
        description: str,
        *,
        workspace_id: Optional[UUID] = None,
        user_id: Optional[UUID] = None,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
        context_data: Optional[dict] = None,
    ) -> Optional[SecurityEvent]:
        """Persist a security event; critical events also raise an alert in the log."""
        event = SecurityEvent(
            workspace_id=workspace_id,
            user_id=user_id,
            event_type=event_type,
            severity=severity,
            description=description,
            ip_address=ip_address,
            user_agent=user_agent,
            context_data=context_data,
            resolved=False,
        )
        try:
            self.db.add(event)
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error(f"Security event logging failed ({e}); event: {event_type} severity={severity}")
            return None

        if severity == "critical":
            logger.critical(
                f"CRITICAL SECURITY ALERT: {event_type} - {description} "
                f"(workspace={workspace_id}, user={user_id}, ip={ip_address})"
            )

        return event

    async def resolve_security_event(self, event_id: UUID, resolved_by: UUID) -> SecurityEvent:
        event = await self.db.get(SecurityEvent, event_id)
        if event is None:
            raise NotFoundError(f"Security event {event_id} not found")
        event.resolved = True
        event.resolved_at = utc_now()
        event.resolved_by = resolved_by
        await self.db.commit()
        await self.db.refresh(event)
        return event

    async def get_security_events(
        self,
        workspace_id: UUID,
        resolved: Optional[bool] = None,
        limit: int = 100,
        offset: int = 0,
    ) -> list[SecurityEvent]:
        stmt = select(SecurityEvent).where(SecurityEvent.workspace_id == workspace_id)
        if resolved is not None:
            stmt = stmt.where(SecurityEvent.resolved == resolved)
        stmt = stmt.order_by(SecurityEvent.created_at.desc()).offset(offset).limit(limit)
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def _check_for_threats(self, entry: AuditLog) -> None:
        if entry.action != "failed_login" or not entry.ip_address:
            return

        recent_failures = await self._count_recent_failed_logins(entry.ip_address)
        if recent_failures >= self.settings.brute_force_threshold:
            await self.log_security_event(
                "suspicious_activity",
                "high",
                f"Possible brute force attempt from {entry.ip_address}",
                workspace_id=entry.workspace_id,
                user_id=entry.user_id,
                ip_address=entry.ip_address,
                user_agent=entry.user_agent,
                context_data={"type": "brute_force_attempt", "failed_attempts": recent_failures},
            )

    async def _count_recent_failed_logins(self, ip_address: str) -> int:
        since = utc_now() - timedelta(minutes=self.settings.brute_force_window_minutes)
        result = await self.db.execute(
            select(func.count(AuditLog.id)).where(
                AuditLog.action == "failed_login",
                AuditLog.ip_address == ip_address,
                AuditLog.created_at >= since,
            )
        )
        return result.scalar_one()

    async def search_audit_logs(
        self,
        *,
        workspace_id: Optional[UUID] = None,
        user_id: Optional[UUID] = None,
        action: Optional[str] = None,
        entity_type: Optional[str] = None,
        category: Optional[str] = None,
        severity: Optional[str] = None,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
        limit: int = 100,
        offset: int = 0,
    ) -> tuple[list[AuditLog], int]:
        """Filtered audit search, newest first. Returns (page, total matches)."""
        conditions = []
        if workspace_id:
            conditions.append(AuditLog.workspace_id == workspace_id)
        if user_id:
            conditions.append(AuditLog.user_id == user_id)
        if action:
            conditions.append(AuditLog.action == action)
        if entity_type:
            conditions.append(AuditLog.entity_type == entity_type)
        if category:
            conditions.append(AuditLog.category == category)
        if severity:
            conditions.append(AuditLog.severity == severity)
        if start_date:
            conditions.append(AuditLog.created_at >= start_date)
        if end_date:
            conditions.append(AuditLog.created_at <= end_date)

        total = (
            await self.db.execute(select(func.count(AuditLog.id)).where(*conditions))
        ).scalar_one()
        result = await self.db.execute(
            select(AuditLog)
            .where(*conditions)
            .order_by(AuditLog.created_at.desc())
            .offset(offset)
            .limit(limit)
        )
        return list(result.scalars().all()), total

    async def get_audit_logs(
        self, workspace_id: UUID, limit: int = 100, offset: int = 0
    ) -> tuple[list[AuditLog], int]:
        return await self.search_audit_logs(workspace_id=workspace_id, limit=limit, offset=offset)

    async def generate_compliance_report(
        self,
        report_type: str,
        start_date: datetime,
        end_date: datetime,
        generated_by: Optional[UUID] = None,
        workspace_id: Optional[UUID] = None,
    ) -> ComplianceReport:
        """Build and persist a gdpr, ccpa, security or audit report for the period."""
        if report_type not in REPORT_TYPES:
            raise ValidationError(f"Unsupported report type: {report_type}")

        if report_type in ("gdpr", "ccpa"):
            data = await self._privacy_report(start_date, end_date, workspace_id)
        elif report_type == "security":
            data = await self._security_report(start_date, end_date, workspace_id)
        else:
            data = await self._audit_report(start_date, end_date, workspace_id)

        report = ComplianceReport(
            workspace_id=workspace_id,
            report_type=report_type,
            period_start=start_date,
            period_end=end_date,
            data=data,
            generated_by=generated_by,
        )
        self.db.add(report)
        await self.db.commit()
        await self.db.refresh(report)
        return report

    async def _privacy_report(
        self, start: datetime, end: datetime, workspace_id: Optional[UUID]
    ) -> dict[str, Any]:
        consent_stmt = select(ConsentRecord).where(
            ConsentRecord.granted_at >= start, ConsentRecord.granted_at <= end
        )
        export_stmt = select(DataExportRequest).where(
            DataExportRequest.requested_at >= start, DataExportRequest.requested_at <= end
        )
        deletion_stmt = select(DataDeletionRequest).where(
            DataDeletionRequest.requested_at >= start, DataDeletionRequest.requested_at <= end
        )
        if workspace_id:
            consent_stmt = consent_stmt.where(ConsentRecord.workspace_id == workspace_id)
            export_stmt = export_stmt.where(DataExportRequest.workspace_id == workspace_id)
            deletion_stmt = deletion_stmt.where(DataDeletionRequest.workspace_id == workspace_id)

        consents = (await self.db.execute(consent_stmt)).scalars().all()
        exports = (await self.db.execute(export_stmt)).scalars().all()
        deletions = (await self.db.execute(deletion_stmt)).scalars().all()

        return {
            "consent_records": len(consents),
            "consent_granted": sum(1 for c in consents if c.granted),
            "consent_withdrawn": sum(1 for c in consents if not c.granted),
            "data_export_requests": len(exports),
            "data_deletion_requests": len(deletions),
            "completed_deletions": sum(1 for d in deletions if d.status == "completed"),
        }

    async def _security_report(
        self, start: datetime, end: datetime, workspace_id: Optional[UUID]
    ) -> dict[str, Any]:
        events_stmt = select(SecurityEvent).where(
            SecurityEvent.created_at >= start, SecurityEvent.created_at <= end
        )
        failed_stmt = select(func.count(AuditLog.id)).where(
            AuditLog.action == "failed_login", AuditLog.created_at >= start, AuditLog.created_at <= end
        )
        if workspace_id:
            events_stmt = events_stmt.where(SecurityEvent.workspace_id == workspace_id)
            failed_stmt = failed_stmt.where(AuditLog.workspace_id == workspace_id)

        events = (await self.db.execute(events_stmt)).scalars().all()
        failed_logins = (await self.db.execute(failed_stmt)).scalar_one()

        return {
            "total_security_events": len(events),
            "critical_events": sum(1 for e in events if e.severity == "critical"),
            "failed_login_attempts": failed_logins,
            "unique_threat_ips": len({e.ip_address for e in events if e.ip_address}),
            "resolved_events": sum(1 for e in events if e.resolved),
        }

    async def _audit_report(
        self, start: datetime, end: datetime, workspace_id: Optional[UUID]
    ) -> dict[str, Any]:
        stmt = select(AuditLog).where(AuditLog.created_at >= start, AuditLog.created_at <= end)
        if workspace_id:
            stmt = stmt.where(AuditLog.workspace_id == workspace_id)
        logs = (await self.db.execute(stmt)).scalars().all()

        by_category: dict[str, int] = {}
        for log in logs:
            by_category[log.category] = by_category.get(log.category, 0) + 1

        return {
            "total_events": len(logs),
            "successful_events": sum(1 for log in logs if log.success),
            "failed_events": sum(1 for log in logs if not log.success),
            "by_category": by_category,
            "unique_users": len({str(log.user_id) for log in logs if log.user_id}),
        }

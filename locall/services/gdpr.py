"""
GDPR compliance service.

Consent management, right-of-access exports, right-to-erasure deletions,
retention policies and per-workspace compliance settings.

Export and deletion requests are processed inline right after they are
recorded: pending -> processing -> completed | failed. Every deletion of one
request runs in a single transaction, so a failure leaves no partial erasure.
"""

import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Iterable, Optional
from uuid import UUID, uuid4

from sqlalchemy import delete, inspect, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from locall.config.settings import get_settings
from locall.exceptions import NotFoundError, ValidationError
from locall.models import (
    AuditLog,
    Call,
    ComplianceSettings,
    ConsentRecord,
    DataDeletionRequest,
    DataExportRequest,
    DataRetentionPolicy,
    RealtimeNotification,
    TeamMember,
    User,
    UserActivity,
    UserPreferences,
    UserRoleAssignment,
    UserSession,
    WebformConversion,
    WebformSubmission,
)
from locall.models.base import as_utc, utc_now
from locall.models.compliance import CONSENT_TYPES, LEGAL_BASES
from locall.services.audit import AuditService, RequestContext

logger = logging.getLogger(__name__)

USER_EXPORT_TYPES = ("user_data", "calls", "recordings", "forms", "consents", "audit_logs")
WORKSPACE_EXPORT_TYPES = ("calls", "recordings", "transcripts", "form_submissions")
PARTIAL_DELETION_TYPES = ("calls", "forms", "recordings", "analytics", "consents")
DELETION_TYPES = ("partial", "complete")


@dataclass(frozen=True)
class RetentionRule:
    data_type: str
    retention_days: int
    auto_delete: bool
    requires_consent: bool = False
    legal_hold: bool = False


DEFAULT_RETENTION_POLICIES = (
    RetentionRule("call_recordings", 365, auto_delete=True, requires_consent=True),
    RetentionRule("form_submissions", 1095, auto_delete=False),
    RetentionRule("user_data", 2555, auto_delete=False),
    RetentionRule("analytics", 730, auto_delete=True, requires_consent=True),
)

SENSITIVE_COLUMNS = {"hashed_password", "session_token"}


def serialize_row(row: Any) -> dict:
    """Column values of an ORM row as JSON-safe primitives."""
    data = {}
    for attr in inspect(row).mapper.column_attrs:
        name = attr.columns[0].name
        if name in SENSITIVE_COLUMNS:
            continue
        value = getattr(row, attr.key)
        if isinstance(value, UUID):
            value = str(value)
        elif hasattr(value, "isoformat"):
            value = value.isoformat()
        data[name] = value
    return data


class GDPRService:
    """GDPR workflows for one database session."""

    def __init__(self, db: AsyncSession, audit: Optional[AuditService] = None):
        self.db = db
        self.audit = audit or AuditService(db)
        self.settings = get_settings()

    # Consent

    async def record_consent(
        self,
        user_id: UUID,
        workspace_id: UUID,
        consent_type: str,
        granted: bool,
        purpose: str,
        *,
        legal_basis: str = "consent",
        data_categories: Optional[list[str]] = None,
        retention_period: int = 365,
        request_context: Optional[RequestContext] = None,
    ) -> ConsentRecord:
        if consent_type not in CONSENT_TYPES:
            raise ValidationError(f"Unknown consent type: {consent_type}")
        if legal_basis not in LEGAL_BASES:
            raise ValidationError(f"Unknown legal basis: {legal_basis}")

        ctx = request_context or RequestContext()
        now = utc_now()
        record = ConsentRecord(
            user_id=user_id,
            workspace_id=workspace_id,
            consent_type=consent_type,
            granted=granted,
            legal_basis=legal_basis,
            purpose=purpose,
            data_categories=data_categories or [],
            retention_period=retention_period,
            ip_address=ctx.ip_address,
            user_agent=ctx.user_agent,
            granted_at=now,
            withdrawn_at=None if granted else now,
        )
        self.db.add(record)
        await self.db.commit()
        await self.db.refresh(record)

        await self.audit.log_compliance_event(
            "consent_recorded",
            "consent_record",
            str(record.id),
            workspace_id=workspace_id,
            user_id=user_id,
            details={"consent_type": consent_type, "granted": granted},
            request_context=request_context,
        )
        return record

    async def withdraw_consent(
        self,
        user_id: UUID,
        consent_type: str,
        workspace_id: Optional[UUID] = None,
        request_context: Optional[RequestContext] = None,
    ) -> int:
        """
        Withdraw every granted consent of this type and clean up dependent data.

        With ``workspace_id`` every update is limited to rows of that workspace.
        """
        if consent_type not in CONSENT_TYPES:
            raise ValidationError(f"Unknown consent type: {consent_type}")

        stmt = update(ConsentRecord).where(
            ConsentRecord.user_id == user_id,
            ConsentRecord.consent_type == consent_type,
            ConsentRecord.granted.is_(True),
        )
        if workspace_id:
            stmt = stmt.where(ConsentRecord.workspace_id == workspace_id)
        result = await self.db.execute(stmt.values(granted=False, withdrawn_at=utc_now()))
        withdrawn = result.rowcount
        await self._handle_consent_withdrawal(user_id, consent_type, workspace_id)
        await self.db.commit()

        await self.audit.log_compliance_event(
            "consent_withdrawn",
            "consent_record",
            None,
            workspace_id=workspace_id,
            user_id=user_id,
            details={"consent_type": consent_type, "records": withdrawn},
            request_context=request_context,
        )
        return withdrawn

    async def _handle_consent_withdrawal(
        self, user_id: UUID, consent_type: str, workspace_id: Optional[UUID] = None
    ) -> None:
        if consent_type == "call_recording":
            stmt = update(Call).where(Call.user_id == user_id)
            if workspace_id:
                stmt = stmt.where(Call.workspace_id == workspace_id)
            await self.db.execute(stmt.values(recording_url=None))
        elif consent_type == "analytics":
            await self._anonymize_analytics(user_id, workspace_id)
        elif consent_type == "marketing":
            prefs = (
                await self.db.execute(select(UserPreferences).where(UserPreferences.user_id == user_id))
            ).scalar_one_or_none()
            if prefs is not None:
                prefs.notifications = {**(prefs.notifications or {}), "email": False, "sms": False, "push": False}

    async def _anonymize_analytics(self, user_id: UUID, workspace_id: Optional[UUID] = None) -> int:
        stmt = select(WebformSubmission).where(WebformSubmission.user_id == user_id)
        if workspace_id:
            stmt = stmt.where(WebformSubmission.workspace_id == workspace_id)
        submissions = (await self.db.execute(stmt)).scalars().all()
        for submission in submissions:
            submission.ip_address = None
            submission.user_agent = None
            submission.visitor_id = f"anon-{uuid4().hex[:12]}"
            submission.user_journey = []
            submission.user_id = None
        return len(submissions)

    async def get_user_consent(self, user_id: UUID, consent_type: Optional[str] = None) -> list[ConsentRecord]:
        stmt = select(ConsentRecord).where(ConsentRecord.user_id == user_id)
        if consent_type:
            stmt = stmt.where(ConsentRecord.consent_type == consent_type)
        result = await self.db.execute(stmt.order_by(ConsentRecord.granted_at.desc()))
        return list(result.scalars().all())

    async def is_processing_compliant(self, user_id: UUID, purpose: str) -> bool:
        """True if a granted, un-withdrawn consent covers ``purpose`` (by purpose or type)."""
        result = await self.db.execute(
            select(ConsentRecord.id)
            .where(
                ConsentRecord.user_id == user_id,
                ConsentRecord.granted.is_(True),
                ConsentRecord.withdrawn_at.is_(None),
                or_(ConsentRecord.purpose == purpose, ConsentRecord.consent_type == purpose),
            )
            .limit(1)
        )
        return result.first() is not None

    # Export

    async def request_data_export(
        self,
        workspace_id: UUID,
        user_id: Optional[UUID],
        data_types: Iterable[str],
        requested_by: Optional[UUID] = None,
    ) -> DataExportRequest:
        """Record and process an export; ``user_id`` None exports workspace data."""
        data_types = list(data_types)
        allowed = USER_EXPORT_TYPES if user_id else WORKSPACE_EXPORT_TYPES
        unknown = [t for t in data_types if t not in allowed]
        if not data_types or unknown:
            raise ValidationError(f"Invalid export data types: {unknown or data_types}")

        request = DataExportRequest(
            workspace_id=workspace_id,
            user_id=user_id,
            requested_by=requested_by,
            data_types=data_types,
            status="pending",
        )
        self.db.add(request)
        await self.db.commit()
        await self.db.refresh(request)

        await self._process_data_export(request)
        await self.audit.log_compliance_event(
            "data_export_requested",
            "data_export_request",
            str(request.id),
            workspace_id=workspace_id,
            user_id=requested_by or user_id,
            details={"data_types": data_types, "status": request.status},
        )
        return request

    async def _process_data_export(self, request: DataExportRequest) -> None:
        request_id = request.id
        request.status = "processing"
        await self.db.commit()

        try:
            if request.user_id:
                payload = await self._collect_user_export(request.user_id, request.data_types)
            else:
                payload = await self._collect_workspace_export(request.workspace_id, request.data_types)

            now = utc_now()
            request.export_data = {"generated_at": now.isoformat(), **payload}
            request.file_url = f"{self.settings.public_base_url}/api/v1/compliance/exports/{request_id}/download"
            request.status = "completed"
            request.completed_at = now
            request.expires_at = now + timedelta(days=self.settings.export_expiry_days)
            await self.db.commit()
            logger.info(f"Data export {request_id} completed")
        except Exception as e:
            logger.error(f"Data export {request_id} failed: {e}", exc_info=True)
            await self.db.rollback()
            await self.db.refresh(request)
            request.status = "failed"
            request.error_message = str(e)
            await self.db.commit()

    async def _rows(self, stmt) -> list[dict]:
        return [serialize_row(row) for row in (await self.db.execute(stmt)).scalars().all()]

    async def _collect_user_export(self, user_id: UUID, data_types: list[str]) -> dict:
        payload: dict[str, Any] = {}
        if "user_data" in data_types:
            user = await self.db.get(User, user_id)
            prefs = (
                await self.db.execute(select(UserPreferences).where(UserPreferences.user_id == user_id))
            ).scalar_one_or_none()
            payload["user_data"] = {
                "profile": serialize_row(user) if user else None,
                "preferences": serialize_row(prefs) if prefs else None,
            }
        if "calls" in data_types:
            payload["calls"] = await self._rows(select(Call).where(Call.user_id == user_id))
        if "recordings" in data_types:
            calls = (
                await self.db.execute(
                    select(Call).where(Call.user_id == user_id, Call.recording_url.is_not(None))
                )
            ).scalars().all()
            payload["recordings"] = [
                {"call_id": str(c.id), "recording_url": c.recording_url, "created_at": c.created_at.isoformat()}
                for c in calls
            ]
        if "forms" in data_types:
            payload["forms"] = await self._rows(
                select(WebformSubmission).where(WebformSubmission.user_id == user_id)
            )
        if "consents" in data_types:
            payload["consents"] = await self._rows(
                select(ConsentRecord).where(ConsentRecord.user_id == user_id)
            )
        if "audit_logs" in data_types:
            payload["audit_logs"] = await self._rows(select(AuditLog).where(AuditLog.user_id == user_id))
        return payload

    async def _collect_workspace_export(self, workspace_id: UUID, data_types: list[str]) -> dict:
        payload: dict[str, Any] = {}
        if "calls" in data_types:
            payload["calls"] = await self._rows(select(Call).where(Call.workspace_id == workspace_id))
        if "recordings" in data_types:
            calls = (
                await self.db.execute(
                    select(Call).where(Call.workspace_id == workspace_id, Call.recording_url.is_not(None))
                )
            ).scalars().all()
            payload["recordings"] = [{"call_id": str(c.id), "recording_url": c.recording_url} for c in calls]
        if "transcripts" in data_types:
            calls = (
                await self.db.execute(
                    select(Call).where(Call.workspace_id == workspace_id, Call.transcript.is_not(None))
                )
            ).scalars().all()
            payload["transcripts"] = [{"call_id": str(c.id), "transcript": c.transcript} for c in calls]
        if "form_submissions" in data_types:
            payload["form_submissions"] = await self._rows(
                select(WebformSubmission).where(WebformSubmission.workspace_id == workspace_id)
            )
        return payload

    async def get_data_export_requests(self, workspace_id: UUID) -> list[DataExportRequest]:
        result = await self.db.execute(
            select(DataExportRequest)
            .where(DataExportRequest.workspace_id == workspace_id)
            .order_by(DataExportRequest.requested_at.desc())
        )
        return list(result.scalars().all())

    async def get_data_export_request(
        self, export_id: UUID, workspace_id: Optional[UUID] = None
    ) -> DataExportRequest:
        request = await self.db.get(DataExportRequest, export_id)
        if request is None or (workspace_id and request.workspace_id != workspace_id):
            raise NotFoundError(f"Export {export_id} not found")
        return request

    async def download_export(self, export_id: UUID, workspace_id: Optional[UUID] = None) -> dict:
        """Export payload of a completed, unexpired request."""
        request = await self.get_data_export_request(export_id, workspace_id)
        if request.status != "completed":
            raise ValidationError(f"Export {export_id} is not ready (status: {request.status})")
        if request.expires_at and as_utc(request.expires_at) < utc_now():
            raise ValidationError(f"Export {export_id} has expired")
        return request.export_data or {}

    # Deletion

    async def request_data_deletion(
        self,
        workspace_id: UUID,
        user_id: UUID,
        deletion_type: str,
        data_types: Optional[Iterable[str]] = None,
        requested_by: Optional[UUID] = None,
    ) -> DataDeletionRequest:
        if deletion_type not in DELETION_TYPES:
            raise ValidationError(f"Invalid deletion type: {deletion_type}")
        data_types = list(data_types or [])
        if deletion_type == "partial" and not data_types:
            raise ValidationError("Partial deletion requires at least one data type")

        request = DataDeletionRequest(
            workspace_id=workspace_id,
            user_id=user_id,
            requested_by=requested_by,
            deletion_type=deletion_type,
            data_types=data_types,
            status="pending",
        )
        self.db.add(request)
        await self.db.commit()
        await self.db.refresh(request)

        await self._process_data_deletion(request)
        # A fully erased requester can no longer be referenced
        erased_self = deletion_type == "complete" and requested_by == user_id and request.status == "completed"
        await self.audit.log_compliance_event(
            "data_deletion_requested",
            "data_deletion_request",
            str(request.id),
            workspace_id=workspace_id,
            user_id=None if erased_self else requested_by,
            details={
                "subject_user_id": str(user_id),
                "deletion_type": deletion_type,
                "data_types": data_types,
                "status": request.status,
            },
        )
        return request

    async def _process_data_deletion(self, request: DataDeletionRequest) -> None:
        request_id = request.id
        request.status = "processing"
        await self.db.commit()

        try:
            if request.deletion_type == "complete":
                counts = await self._delete_all_user_data(request.user_id)
            else:
                counts = await self._delete_user_data_by_type(request.user_id, request.data_types)
            request.status = "completed"
            request.completed_at = utc_now()
            request.deleted_counts = counts
            # Deletions and the status change commit together
            await self.db.commit()
            logger.info(f"Data deletion {request_id} completed: {counts}")
        except Exception as e:
            logger.error(f"Data deletion {request_id} failed, rolled back: {e}", exc_info=True)
            await self.db.rollback()
            await self.db.refresh(request)
            request.status = "failed"
            request.error_message = str(e)
            await self.db.commit()

    async def _delete_rows(self, model, *conditions) -> int:
        result = await self.db.execute(delete(model).where(*conditions))
        return result.rowcount

    async def _delete_all_user_data(self, user_id: UUID) -> dict[str, int]:
        counts = {
            "consent_records": await self._delete_rows(ConsentRecord, ConsentRecord.user_id == user_id),
            "audit_logs": await self._delete_rows(AuditLog, AuditLog.user_id == user_id),
            "form_submissions": await self._delete_rows(WebformSubmission, WebformSubmission.user_id == user_id),
            "calls": await self._delete_rows(Call, Call.user_id == user_id),
            "team_members": await self._delete_rows(TeamMember, TeamMember.user_id == user_id),
            "role_assignments": await self._delete_rows(UserRoleAssignment, UserRoleAssignment.user_id == user_id),
            "sessions": await self._delete_rows(UserSession, UserSession.user_id == user_id),
            "preferences": await self._delete_rows(UserPreferences, UserPreferences.user_id == user_id),
            "activities": await self._delete_rows(UserActivity, UserActivity.user_id == user_id),
            "notifications": await self._delete_rows(
                RealtimeNotification, RealtimeNotification.user_id == user_id
            ),
        }
        counts["users"] = await self._delete_rows(User, User.id == user_id)
        return counts

    async def _delete_user_data_by_type(self, user_id: UUID, data_types: list[str]) -> dict[str, int]:
        counts: dict[str, int] = {}
        for data_type in data_types:
            if data_type == "calls":
                counts["calls"] = await self._delete_rows(Call, Call.user_id == user_id)
            elif data_type == "forms":
                counts["forms"] = await self._delete_rows(
                    WebformSubmission, WebformSubmission.user_id == user_id
                )
            elif data_type == "recordings":
                result = await self.db.execute(
                    update(Call)
                    .where(Call.user_id == user_id, Call.recording_url.is_not(None))
                    .values(recording_url=None)
                )
                counts["recordings"] = result.rowcount
            elif data_type == "analytics":
                anonymized = await self._anonymize_analytics(user_id)
                activities = await self._delete_rows(UserActivity, UserActivity.user_id == user_id)
                counts["analytics"] = anonymized + activities
            elif data_type == "consents":
                counts["consents"] = await self._delete_rows(ConsentRecord, ConsentRecord.user_id == user_id)
            else:
                logger.warning(f"Unknown data type for deletion: {data_type}")
        return counts

    async def get_data_deletion_requests(self, workspace_id: UUID) -> list[DataDeletionRequest]:
        result = await self.db.execute(
            select(DataDeletionRequest)
            .where(DataDeletionRequest.workspace_id == workspace_id)
            .order_by(DataDeletionRequest.requested_at.desc())
        )
        return list(result.scalars().all())

    # Retention

    def get_retention_policies(self) -> list[RetentionRule]:
        return list(DEFAULT_RETENTION_POLICIES)

    async def get_workspace_retention_policies(self, workspace_id: UUID) -> list[DataRetentionPolicy]:
        result = await self.db.execute(
            select(DataRetentionPolicy)
            .where(DataRetentionPolicy.workspace_id == workspace_id)
            .order_by(DataRetentionPolicy.data_type)
        )
        return list(result.scalars().all())

    async def set_retention_policy(
        self,
        workspace_id: UUID,
        data_type: str,
        retention_days: int,
        auto_delete: bool = False,
        legal_hold: bool = False,
        description: Optional[str] = None,
        updated_by: Optional[UUID] = None,
    ) -> DataRetentionPolicy:
        """Upsert the workspace policy for ``data_type``."""
        if retention_days < 1:
            raise ValidationError("retention_days must be positive")

        policy = (
            await self.db.execute(
                select(DataRetentionPolicy).where(
                    DataRetentionPolicy.workspace_id == workspace_id,
                    DataRetentionPolicy.data_type == data_type,
                )
            )
        ).scalar_one_or_none()
        old_values = serialize_row(policy) if policy else None

        if policy is None:
            policy = DataRetentionPolicy(workspace_id=workspace_id, data_type=data_type)
            self.db.add(policy)
        policy.retention_days = retention_days
        policy.auto_delete = auto_delete
        policy.legal_hold = legal_hold
        policy.description = description
        await self.db.commit()
        await self.db.refresh(policy)

        await self.audit.log_data_modification(
            "update" if old_values else "create",
            "data_retention_policy",
            str(policy.id),
            workspace_id=workspace_id,
            user_id=updated_by,
            old_values=old_values,
            new_values={
                "data_type": data_type,
                "retention_days": retention_days,
                "auto_delete": auto_delete,
                "legal_hold": legal_hold,
            },
        )
        return policy

    async def run_retention_cleanup(self, workspace_id: UUID) -> dict[str, int]:
        """
        Apply auto-delete policies not under legal hold.

        Uses the workspace's own policies, or the defaults when it has none.
        Returns affected row counts per data type.
        """
        stored = await self.get_workspace_retention_policies(workspace_id)
        rules = (
            [
                RetentionRule(p.data_type, p.retention_days, p.auto_delete, legal_hold=p.legal_hold)
                for p in stored
            ]
            if stored
            else self.get_retention_policies()
        )

        results: dict[str, int] = {}
        for rule in rules:
            if not rule.auto_delete:
                continue
            if rule.legal_hold:
                logger.info(f"Skipping retention for {rule.data_type} in {workspace_id}: legal hold")
                continue

            cutoff = utc_now() - timedelta(days=rule.retention_days)
            affected = await self._expire_data(workspace_id, rule.data_type, cutoff)
            if affected is None:
                logger.warning(f"No cleanup implemented for data type: {rule.data_type}")
                continue
            await self.db.commit()
            results[rule.data_type] = affected

            await self.audit.log_system_event(
                "bulk_delete",
                {
                    "data_type": rule.data_type,
                    "retention_days": rule.retention_days,
                    "cutoff": cutoff.isoformat(),
                    "affected": affected,
                },
                workspace_id=workspace_id,
            )
        return results

    async def _expire_data(self, workspace_id: UUID, data_type: str, cutoff) -> Optional[int]:
        if data_type == "calls":
            return await self._delete_rows(Call, Call.workspace_id == workspace_id, Call.created_at < cutoff)
        if data_type in ("call_recordings", "recordings"):
            result = await self.db.execute(
                update(Call)
                .where(
                    Call.workspace_id == workspace_id,
                    Call.recording_url.is_not(None),
                    Call.created_at < cutoff,
                )
                .values(recording_url=None)
            )
            return result.rowcount
        if data_type == "transcripts":
            result = await self.db.execute(
                update(Call)
                .where(Call.workspace_id == workspace_id, Call.transcript.is_not(None), Call.created_at < cutoff)
                .values(transcript=None)
            )
            return result.rowcount
        if data_type == "form_submissions":
            return await self._delete_rows(
                WebformSubmission,
                WebformSubmission.workspace_id == workspace_id,
                WebformSubmission.created_at < cutoff,
            )
        if data_type == "analytics":
            return await self._delete_rows(
                WebformConversion,
                WebformConversion.workspace_id == workspace_id,
                WebformConversion.created_at < cutoff,
            )
        return None

    # Settings

    async def get_compliance_settings(self, workspace_id: UUID) -> ComplianceSettings:
        """Workspace settings, created with defaults on first access."""
        settings_row = (
            await self.db.execute(
                select(ComplianceSettings).where(ComplianceSettings.workspace_id == workspace_id)
            )
        ).scalar_one_or_none()
        if settings_row is None:
            settings_row = ComplianceSettings(workspace_id=workspace_id)
            self.db.add(settings_row)
            await self.db.commit()
            await self.db.refresh(settings_row)
        return settings_row

    async def update_compliance_settings(
        self, workspace_id: UUID, updated_by: Optional[UUID] = None, **fields: Any
    ) -> ComplianceSettings:
        settings_row = await self.get_compliance_settings(workspace_id)
        for key in fields:
            if not hasattr(settings_row, key) or key in ("id", "workspace_id", "created_at"):
                raise ValidationError(f"Unknown compliance setting: {key}")
        old_values = {key: getattr(settings_row, key) for key in fields}
        for key, value in fields.items():
            setattr(settings_row, key, value)
        await self.db.commit()
        await self.db.refresh(settings_row)

        await self.audit.log_compliance_event(
            "compliance_settings_updated",
            "compliance_settings",
            str(settings_row.id),
            workspace_id=workspace_id,
            user_id=updated_by,
            details={"old": old_values, "new": fields},
        )
        return settings_row

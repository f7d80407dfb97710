"""
Compliance API routes.

GDPR consent, data export and deletion requests, retention policies,
compliance settings, the audit trail, security events and compliance reports.
"""

from datetime import datetime
from typing import Any, List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Request, status
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.ext.asyncio import AsyncSession

from locall.database import get_db
from locall.middleware.auth import get_current_active_user, require_permissions, user_has_permission
from locall.models import SecurityEvent, User
from locall.services.audit import AuditService, request_context_from
from locall.services.gdpr import GDPRService

router = APIRouter(prefix="/api/v1/compliance", tags=["compliance"])


# Pydantic schemas
class ConsentCreate(BaseModel):
    consent_type: str = Field(..., pattern=r"^(call_recording|data_processing|marketing|analytics)$")
    granted: bool
    purpose: str = Field(..., min_length=1)
    legal_basis: str = "consent"
    data_categories: List[str] = []
    retention_period: int = Field(default=365, ge=1)
    user_id: Optional[UUID] = None


class ConsentWithdraw(BaseModel):
    consent_type: str
    user_id: Optional[UUID] = None


class ConsentResponse(BaseModel):
    id: UUID
    user_id: UUID
    workspace_id: UUID
    consent_type: str
    granted: bool
    legal_basis: str
    purpose: str
    data_categories: List[str]
    retention_period: int
    granted_at: datetime
    withdrawn_at: Optional[datetime]

    model_config = ConfigDict(from_attributes=True)


class ExportCreate(BaseModel):
    """``user_id`` omitted requests a workspace-wide export."""

    data_types: List[str] = Field(..., min_length=1)
    user_id: Optional[UUID] = None


class ExportResponse(BaseModel):
    id: UUID
    workspace_id: UUID
    user_id: Optional[UUID]
    data_types: List[str]
    status: str
    file_url: Optional[str]
    error_message: Optional[str]
    requested_at: datetime
    completed_at: Optional[datetime]
    expires_at: Optional[datetime]

    model_config = ConfigDict(from_attributes=True)


class DeletionCreate(BaseModel):
    user_id: UUID
    deletion_type: str = Field(..., pattern=r"^(partial|complete)$")
    data_types: List[str] = []


class DeletionResponse(BaseModel):
    id: UUID
    workspace_id: UUID
    user_id: UUID
    deletion_type: str
    data_types: List[str]
    status: str
    deleted_counts: Optional[dict]
    error_message: Optional[str]
    requested_at: datetime
    completed_at: Optional[datetime]

    model_config = ConfigDict(from_attributes=True)


class RetentionPolicyUpdate(BaseModel):
    data_type: str = Field(..., min_length=1, max_length=50)
    retention_days: int = Field(..., ge=1)
    auto_delete: bool = False
    legal_hold: bool = False
    description: Optional[str] = None


class RetentionPolicyResponse(BaseModel):
    data_type: str
    retention_days: int
    auto_delete: bool
    legal_hold: bool

    model_config = ConfigDict(from_attributes=True)


class ComplianceSettingsUpdate(BaseModel):
    gdpr_enabled: Optional[bool] = None
    ccpa_enabled: Optional[bool] = None
    call_recording_consent_required: Optional[bool] = None
    data_processing_consent_required: Optional[bool] = None
    cookie_consent_enabled: Optional[bool] = None
    default_retention_days: Optional[int] = Field(None, ge=1)
    privacy_policy_url: Optional[str] = None
    dpo_email: Optional[str] = None


class ComplianceSettingsResponse(BaseModel):
    workspace_id: UUID
    gdpr_enabled: bool
    ccpa_enabled: bool
    call_recording_consent_required: bool
    data_processing_consent_required: bool
    cookie_consent_enabled: bool
    default_retention_days: int
    privacy_policy_url: Optional[str]
    dpo_email: Optional[str]

    model_config = ConfigDict(from_attributes=True)


class AuditLogResponse(BaseModel):
    id: UUID
    workspace_id: Optional[UUID]
    user_id: Optional[UUID]
    action: str
    entity_type: str
    entity_id: Optional[str]
    old_values: Optional[dict]
    new_values: Optional[dict]
    ip_address: Optional[str]
    severity: str
    category: str
    success: bool
    error_message: Optional[str]
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class AuditLogPage(BaseModel):
    items: List[AuditLogResponse]
    total: int
    limit: int
    offset: int


class SecurityEventResponse(BaseModel):
    id: UUID
    user_id: Optional[UUID]
    event_type: str
    severity: str
    description: str
    ip_address: Optional[str]
    context_data: Optional[dict]
    resolved: bool
    resolved_at: Optional[datetime]
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class ReportCreate(BaseModel):
    report_type: str = Field(..., pattern=r"^(gdpr|ccpa|security|audit)$")
    start_date: datetime
    end_date: datetime


class ReportResponse(BaseModel):
    id: UUID
    report_type: str
    period_start: datetime
    period_end: datetime
    data: dict[str, Any]
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


async def _subject_user_id(db: AsyncSession, current_user: User, requested: Optional[UUID]) -> UUID:
    """Acting on another user's consent requires ``compliance:manage`` and a user of the same workspace."""
    if requested is None or requested == current_user.id:
        return current_user.id
    if not user_has_permission(current_user, "compliance", "manage"):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Permission denied: compliance:manage required",
        )
    subject = await db.get(User, requested)
    if subject is None or subject.workspace_id != current_user.workspace_id:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"User {requested} not found")
    return requested


# Consent


@router.post("/consents", response_model=ConsentResponse, status_code=status.HTTP_201_CREATED)
async def record_consent(
    consent: ConsentCreate,
    request: Request,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_active_user),
):
    return await GDPRService(db).record_consent(
        await _subject_user_id(db, current_user, consent.user_id),
        current_user.workspace_id,
        consent.consent_type,
        consent.granted,
        consent.purpose,
        legal_basis=consent.legal_basis,
        data_categories=consent.data_categories,
        retention_period=consent.retention_period,
        request_context=request_context_from(request),
    )


@router.post("/consents/withdraw")
async def withdraw_consent(
    withdrawal: ConsentWithdraw,
    request: Request,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_active_user),
):
    withdrawn = await GDPRService(db).withdraw_consent(
        await _subject_user_id(db, current_user, withdrawal.user_id),
        withdrawal.consent_type,
        workspace_id=current_user.workspace_id,
        request_context=request_context_from(request),
    )
    return {"withdrawn": withdrawn}


@router.get("/consents", response_model=List[ConsentResponse])
async def get_consents(
    consent_type: Optional[str] = None,
    user_id: Optional[UUID] = None,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_active_user),
):
    records = await GDPRService(db).get_user_consent(
        await _subject_user_id(db, current_user, user_id), consent_type
    )
    return [r for r in records if r.workspace_id == current_user.workspace_id]


# Exports


@router.post("/exports", response_model=ExportResponse, status_code=status.HTTP_201_CREATED)
async def request_export(
    export: ExportCreate,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_active_user),
):
    """
    Request a data export. Users may export their own data; workspace exports
    and exports for other users need ``compliance:manage``.
    """
    if export.user_id != current_user.id and not user_has_permission(current_user, "compliance", "manage"):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Permission denied: compliance:manage required",
        )
    if export.user_id is not None and export.user_id != current_user.id:
        subject = await db.get(User, export.user_id)
        if subject is None or subject.workspace_id != current_user.workspace_id:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"User {export.user_id} not found")
    return await GDPRService(db).request_data_export(
        current_user.workspace_id, export.user_id, export.data_types, requested_by=current_user.id
    )


@router.get("/exports", response_model=List[ExportResponse])
async def list_exports(
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_permissions("compliance:read")),
):
    return await GDPRService(db).get_data_export_requests(current_user.workspace_id)


@router.get("/exports/{export_id}/download")
async def download_export(
    export_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_active_user),
):
    """
    Download a completed export. Requesters and subjects may fetch their own
    export; anything else needs ``compliance:read``.
    """
    service = GDPRService(db)
    export = await service.get_data_export_request(export_id, current_user.workspace_id)
    if current_user.id not in (export.requested_by, export.user_id) and not user_has_permission(
        current_user, "compliance", "read"
    ):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Permission denied: compliance:read required",
        )
    return await service.download_export(export_id, current_user.workspace_id)


# Deletions


@router.post("/deletions", response_model=DeletionResponse, status_code=status.HTTP_201_CREATED)
async def request_deletion(
    deletion: DeletionCreate,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_active_user),
):
    """Request erasure. Users may erase themselves; others need ``compliance:manage``."""
    if deletion.user_id != current_user.id:
        if not user_has_permission(current_user, "compliance", "manage"):
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Permission denied: compliance:manage required",
            )
        subject = await db.get(User, deletion.user_id)
        if subject is None or subject.workspace_id != current_user.workspace_id:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"User {deletion.user_id} not found")

    return await GDPRService(db).request_data_deletion(
        current_user.workspace_id,
        deletion.user_id,
        deletion.deletion_type,
        deletion.data_types,
        requested_by=current_user.id,
    )


@router.get("/deletions", response_model=List[DeletionResponse])
async def list_deletions(
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_permissions("compliance:read")),
):
    return await GDPRService(db).get_data_deletion_requests(current_user.workspace_id)


# Retention


@router.get("/retention-policies", response_model=List[RetentionPolicyResponse])
async def list_retention_policies(
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_permissions("compliance:read")),
):
    """Workspace policies, or the built-in defaults when none are set."""
    service = GDPRService(db)
    return await service.get_workspace_retention_policies(current_user.workspace_id) or service.get_retention_policies()


@router.put("/retention-policies", response_model=RetentionPolicyResponse)
async def set_retention_policy(
    policy: RetentionPolicyUpdate,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_permissions("compliance:manage")),
):
    return await GDPRService(db).set_retention_policy(
        current_user.workspace_id,
        policy.data_type,
        policy.retention_days,
        auto_delete=policy.auto_delete,
        legal_hold=policy.legal_hold,
        description=policy.description,
        updated_by=current_user.id,
    )


@router.post("/retention-policies/cleanup")
async def run_retention_cleanup(
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_permissions("compliance:manage")),
):
    return {"affected": await GDPRService(db).run_retention_cleanup(current_user.workspace_id)}


# Settings


@router.get("/settings", response_model=ComplianceSettingsResponse)
async def get_compliance_settings(
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_active_user),
):
    return await GDPRService(db).get_compliance_settings(current_user.workspace_id)


@router.put("/settings", response_model=ComplianceSettingsResponse)
async def update_compliance_settings(
    settings_update: ComplianceSettingsUpdate,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_permissions("compliance:manage")),
):
    return await GDPRService(db).update_compliance_settings(
        current_user.workspace_id,
        updated_by=current_user.id,
        **settings_update.model_dump(exclude_unset=True),
    )


# Audit trail and security events


@router.get("/audit-logs", response_model=AuditLogPage)
async def search_audit_logs(
    user_id: Optional[UUID] = None,
    action: Optional[str] = None,
    entity_type: Optional[str] = None,
    category: Optional[str] = None,
    severity: Optional[str] = None,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    limit: int = 100,
    offset: int = 0,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_permissions("audit:read")),
):
    logs, total = await AuditService(db).search_audit_logs(
        workspace_id=current_user.workspace_id,
        user_id=user_id,
        action=action,
        entity_type=entity_type,
        category=category,
        severity=severity,
        start_date=start_date,
        end_date=end_date,
        limit=limit,
        offset=offset,
    )
    return AuditLogPage(
        items=[AuditLogResponse.model_validate(log) for log in logs], total=total, limit=limit, offset=offset
    )


@router.get("/security-events", response_model=List[SecurityEventResponse])
async def list_security_events(
    resolved: Optional[bool] = None,
    limit: int = 100,
    offset: int = 0,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_permissions("security:read")),
):
    return await AuditService(db).get_security_events(
        current_user.workspace_id, resolved=resolved, limit=limit, offset=offset
    )


@router.post("/security-events/{event_id}/resolve", response_model=SecurityEventResponse)
async def resolve_security_event(
    event_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_permissions("security:manage")),
):
    event = await db.get(SecurityEvent, event_id)
    if event is None or event.workspace_id != current_user.workspace_id:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Security event {event_id} not found")
    return await AuditService(db).resolve_security_event(event_id, current_user.id)


# Reports


@router.post("/reports", response_model=ReportResponse, status_code=status.HTTP_201_CREATED)
async def generate_report(
    report: ReportCreate,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_permissions("compliance:read")),
):
    if report.end_date <= report.start_date:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="end_date must be after start_date")
    return await AuditService(db).generate_compliance_report(
        report.report_type,
        report.start_date,
        report.end_date,
        generated_by=current_user.id,
        workspace_id=current_user.workspace_id,
    )

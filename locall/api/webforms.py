"""
Webform API routes.

Form configuration and analytics require authentication; ``/submit`` and
``/conversion`` are called by the public tracking script.
"""

from datetime import datetime
from typing import Any, List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Request, status
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.ext.asyncio import AsyncSession

from locall.database import get_db
from locall.middleware.auth import get_current_active_user, require_permissions
from locall.models import User
from locall.realtime import RealtimeBroker, get_broker
from locall.services.audit import request_context_from
from locall.services.notifications import NotificationService
from locall.services.webforms import WebformService

router = APIRouter(prefix="/api/v1/webforms", tags=["webforms"])


class WebformConfigCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    form_selector: Optional[str] = Field(None, max_length=255)
    domains: List[str] = []
    conversion_goals: List[str] = []
    notification_emails: List[str] = []
    spam_protection: bool = True


class WebformConfigUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=255)
    form_selector: Optional[str] = Field(None, max_length=255)
    domains: Optional[List[str]] = None
    conversion_goals: Optional[List[str]] = None
    notification_emails: Optional[List[str]] = None
    spam_protection: Optional[bool] = None
    is_active: Optional[bool] = None


class WebformConfigResponse(BaseModel):
    id: UUID
    workspace_id: UUID
    name: str
    tracking_id: str
    form_selector: Optional[str]
    domains: List[str]
    conversion_goals: List[str]
    notification_emails: List[str]
    spam_protection: bool
    is_active: bool
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class SubmissionCreate(BaseModel):
    tracking_id: str = Field(..., min_length=1)
    visitor_id: str = Field(..., min_length=1, max_length=100)
    form_data: dict[str, Any]
    utm_data: dict[str, Any] = {}
    user_journey: List[dict[str, Any]] = []
    spam_score: float = Field(default=0, ge=0)
    page_url: Optional[str] = None
    referrer: Optional[str] = None


class ConversionCreate(BaseModel):
    tracking_id: str = Field(..., min_length=1)
    visitor_id: str = Field(..., min_length=1, max_length=100)
    goal: str = Field(..., min_length=1, max_length=100)
    value: float = 0
    conversion_data: dict[str, Any] = {}
    submission_id: Optional[UUID] = None


class SubmissionResponse(BaseModel):
    id: UUID
    form_id: UUID
    visitor_id: Optional[str]
    form_data: dict[str, Any]
    utm_data: dict[str, Any]
    page_url: Optional[str]
    referrer: Optional[str]
    spam_score: int
    is_spam: bool
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class SubmissionPage(BaseModel):
    items: List[SubmissionResponse]
    total: int
    limit: int
    offset: int


@router.post("/configs", response_model=WebformConfigResponse, status_code=status.HTTP_201_CREATED)
async def create_webform_config(
    config: WebformConfigCreate,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_permissions("webforms:manage")),
):
    """Create a tracked form; the response carries its generated tracking id."""
    fields = config.model_dump()
    name = fields.pop("name")
    return await WebformService(db).create_webform_config(current_user.workspace_id, name, **fields)


@router.get("/configs", response_model=List[WebformConfigResponse])
async def list_webform_configs(
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_active_user),
):
    return await WebformService(db).get_webform_configs(current_user.workspace_id)


@router.get("/configs/{config_id}", response_model=WebformConfigResponse)
async def get_webform_config(
    config_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_active_user),
):
    return await WebformService(db).get_webform_config(config_id, current_user.workspace_id)


@router.put("/configs/{config_id}", response_model=WebformConfigResponse)
async def update_webform_config(
    config_id: UUID,
    config_update: WebformConfigUpdate,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_permissions("webforms:manage")),
):
    return await WebformService(db).update_webform_config(
        config_id, current_user.workspace_id, **config_update.model_dump(exclude_unset=True)
    )


@router.get("/submissions", response_model=SubmissionPage)
async def list_submissions(
    form_id: Optional[UUID] = None,
    include_spam: bool = False,
    limit: int = 50,
    offset: int = 0,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_active_user),
):
    items, total = await WebformService(db).get_submissions(
        current_user.workspace_id, form_id=form_id, include_spam=include_spam, limit=limit, offset=offset
    )
    return SubmissionPage(
        items=[SubmissionResponse.model_validate(item) for item in items], total=total, limit=limit, offset=offset
    )


@router.get("/analytics")
async def get_analytics(
    form_id: Optional[UUID] = None,
    time_range: str = "30d",
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_active_user),
):
    """Submission totals, top sources and pages, and journey insights."""
    return await WebformService(db).get_analytics(current_user.workspace_id, form_id=form_id, time_range=time_range)


@router.post("/submit", status_code=status.HTTP_201_CREATED)
async def submit_form(
    submission: SubmissionCreate,
    request: Request,
    db: AsyncSession = Depends(get_db),
    broker: RealtimeBroker = Depends(get_broker),
):
    """Record a submission from the tracking script and notify the workspace unless it is spam."""
    created = await WebformService(db, NotificationService(db, broker)).process_submission(
        submission.tracking_id,
        submission.visitor_id,
        submission.form_data,
        utm_data=submission.utm_data,
        user_journey=submission.user_journey,
        spam_score=submission.spam_score,
        page_url=submission.page_url,
        referrer=submission.referrer,
        request_context=request_context_from(request),
    )
    return {"success": True, "submission_id": str(created.id), "is_spam": created.is_spam}


@router.post("/conversion")
async def track_conversion(
    conversion: ConversionCreate,
    db: AsyncSession = Depends(get_db),
):
    created = await WebformService(db).process_conversion(
        conversion.tracking_id,
        conversion.visitor_id,
        conversion.goal,
        value=conversion.value,
        conversion_data=conversion.conversion_data,
        submission_id=conversion.submission_id,
    )
    return {"success": True, "conversion_id": str(created.id) if created else None}

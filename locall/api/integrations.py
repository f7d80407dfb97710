"""
Integration API routes: provider connections, synced records and the
public inbound webhook endpoint.
"""

from datetime import datetime
from typing import Any, List, Optional
from uuid import UUID

import httpx
from fastapi import APIRouter, Depends, Request, status
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.ext.asyncio import AsyncSession

from locall.database import get_db
from locall.middleware.auth import get_current_active_user, require_permissions
from locall.models import User
from locall.services.integrations import IntegrationService, connection_summary
from locall.services.webhooks import WebhookProcessor

router = APIRouter(prefix="/api/v1/integrations", tags=["integrations"])
webhooks_router = APIRouter(prefix="/api/v1/webhooks", tags=["webhooks"])


class ConnectionCreate(BaseModel):
    provider: str = Field(..., min_length=1, max_length=50)
    config: dict[str, Any] = {}
    is_active: bool = True


class ConnectionResponse(BaseModel):
    id: UUID
    workspace_id: UUID
    provider: str
    status: str
    is_active: bool
    config: dict[str, Any]
    sync_status: Optional[str]
    last_sync_at: Optional[datetime]
    created_at: datetime


class SyncedContactResponse(BaseModel):
    id: UUID
    provider: str
    provider_contact_id: str
    email: Optional[str]
    first_name: Optional[str]
    last_name: Optional[str]
    phone: Optional[str]
    company: Optional[str]
    last_synced_at: datetime

    model_config = ConfigDict(from_attributes=True)


class SyncedAppointmentResponse(BaseModel):
    id: UUID
    provider: str
    provider_event_id: str
    title: str
    description: Optional[str]
    start_time: Optional[datetime]
    end_time: Optional[datetime]
    location: Optional[str]
    attendees: List[str]
    status: str
    last_synced_at: datetime

    model_config = ConfigDict(from_attributes=True)


class IntegrationEventResponse(BaseModel):
    id: UUID
    provider: str
    event_type: str
    payload: dict[str, Any]
    status: str
    error_message: Optional[str]
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


@router.get("", response_model=List[ConnectionResponse])
async def list_connections(
    provider: Optional[str] = None,
    is_active: Optional[bool] = None,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_active_user),
):
    """Connections of the caller's workspace with credentials masked."""
    return await IntegrationService(db).list_connections(current_user.workspace_id, provider, is_active)


@router.post("", response_model=ConnectionResponse, status_code=status.HTTP_201_CREATED)
async def create_connection(
    connection: ConnectionCreate,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_permissions("integrations:manage")),
):
    created = await IntegrationService(db).create_connection(
        current_user.workspace_id,
        connection.provider,
        connection.config,
        is_active=connection.is_active,
        created_by=current_user.id,
    )
    return connection_summary(created)


@router.delete("/{connection_id}", response_model=ConnectionResponse)
async def disconnect(
    connection_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_permissions("integrations:manage")),
):
    connection = await IntegrationService(db).disconnect(
        connection_id, current_user.workspace_id, disconnected_by=current_user.id
    )
    return connection_summary(connection)


@router.get("/contacts", response_model=List[SyncedContactResponse])
async def list_synced_contacts(
    provider: Optional[str] = None,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_active_user),
):
    return await IntegrationService(db).get_synced_contacts(current_user.workspace_id, provider)


@router.get("/appointments", response_model=List[SyncedAppointmentResponse])
async def list_synced_appointments(
    provider: Optional[str] = None,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_active_user),
):
    return await IntegrationService(db).get_synced_appointments(current_user.workspace_id, provider)


@router.get("/events", response_model=List[IntegrationEventResponse])
async def list_integration_events(
    limit: int = 100,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_permissions("integrations:read")),
):
    return await IntegrationService(db).get_integration_events(current_user.workspace_id, limit=limit)


async def get_webhook_http_client() -> Optional[httpx.AsyncClient]:
    """Outbound client for webhook processing; None opens one per provider call."""
    return None


@webhooks_router.post("/integrations/{provider}")
async def receive_webhook(
    provider: str,
    request: Request,
    db: AsyncSession = Depends(get_db),
    http_client: Optional[httpx.AsyncClient] = Depends(get_webhook_http_client),
):
    """
    Public webhook endpoint for HubSpot, Google Calendar and Calendly.

    The raw body is read before parsing so the HubSpot signature is computed
    over the exact bytes received.
    """
    raw_body = await request.body()
    return await WebhookProcessor(db, http_client).process(provider, raw_body, request.headers)

"""
Integration connection management.
"""

import logging
from typing import Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from locall.exceptions import ConflictError, NotFoundError, ValidationError
from locall.models import IntegrationConnection, IntegrationEvent, SyncedAppointment, SyncedContact
from locall.models.integration import PROVIDERS
from locall.services.audit import AuditService

logger = logging.getLogger(__name__)

SECRET_CONFIG_KEYS = ("access_token", "refresh_token", "api_key")
HIDDEN = "[HIDDEN]"


def mask_config(config: Optional[dict]) -> dict:
    """Copy of ``config`` with credential values replaced by ``[HIDDEN]``."""
    masked = dict(config or {})
    for key in SECRET_CONFIG_KEYS:
        if masked.get(key):
            masked[key] = HIDDEN
    return masked


def connection_summary(connection: IntegrationConnection) -> dict:
    """Public view of a connection; tokens never leave the service."""
    return {
        "id": connection.id,
        "workspace_id": connection.workspace_id,
        "provider": connection.provider,
        "status": connection.status,
        "is_active": connection.is_active,
        "config": mask_config(connection.config),
        "sync_status": connection.sync_status,
        "last_sync_at": connection.last_sync_at,
        "created_at": connection.created_at,
    }


class IntegrationService:
    def __init__(self, db: AsyncSession, audit: Optional[AuditService] = None):
        self.db = db
        self.audit = audit or AuditService(db)

    async def list_connections(
        self, workspace_id: UUID, provider: Optional[str] = None, is_active: Optional[bool] = None
    ) -> list[dict]:
        stmt = select(IntegrationConnection).where(IntegrationConnection.workspace_id == workspace_id)
        if provider:
            stmt = stmt.where(IntegrationConnection.provider == provider)
        if is_active is not None:
            stmt = stmt.where(IntegrationConnection.is_active.is_(is_active))
        result = await self.db.execute(stmt.order_by(IntegrationConnection.created_at.desc()))
        return [connection_summary(c) for c in result.scalars().all()]

    async def create_connection(
        self,
        workspace_id: UUID,
        provider: str,
        config: dict,
        is_active: bool = True,
        created_by: Optional[UUID] = None,
    ) -> IntegrationConnection:
        """Connect a provider; a previously disconnected provider is reconnected in place."""
        if provider not in PROVIDERS:
            raise ValidationError(f"Invalid provider. Must be one of: {', '.join(PROVIDERS)}")

        connection = (
            await self.db.execute(
                select(IntegrationConnection).where(
                    IntegrationConnection.workspace_id == workspace_id,
                    IntegrationConnection.provider == provider,
                )
            )
        ).scalar_one_or_none()
        if connection is not None and connection.status != "disconnected":
            raise ConflictError("Integration with this provider already exists")

        if connection is None:
            connection = IntegrationConnection(workspace_id=workspace_id, provider=provider, created_by=created_by)
            self.db.add(connection)

        connection.config = config
        connection.access_token = config.get("access_token")
        connection.refresh_token = config.get("refresh_token")
        connection.provider_account_id = config.get("account_id")
        connection.status = "connected"
        connection.is_active = is_active
        connection.sync_status = "pending"
        connection.error_message = None
        await self.db.commit()
        await self.db.refresh(connection)

        await self.audit.log_data_modification(
            "create",
            "integration_connection",
            str(connection.id),
            workspace_id=workspace_id,
            user_id=created_by,
            new_values={"provider": provider, "config": mask_config(config)},
        )
        return connection

    async def get_connection(self, connection_id: UUID, workspace_id: UUID) -> IntegrationConnection:
        connection = await self.db.get(IntegrationConnection, connection_id)
        if connection is None or connection.workspace_id != workspace_id:
            raise NotFoundError(f"Integration {connection_id} not found")
        return connection

    async def disconnect(
        self, connection_id: UUID, workspace_id: UUID, disconnected_by: Optional[UUID] = None
    ) -> IntegrationConnection:
        connection = await self.get_connection(connection_id, workspace_id)
        connection.status = "disconnected"
        connection.is_active = False
        connection.access_token = None
        connection.refresh_token = None
        connection.config = {k: v for k, v in (connection.config or {}).items() if k not in SECRET_CONFIG_KEYS}
        await self.db.commit()
        await self.db.refresh(connection)

        await self.audit.log_data_modification(
            "update",
            "integration_connection",
            str(connection.id),
            workspace_id=workspace_id,
            user_id=disconnected_by,
            new_values={"status": "disconnected"},
        )
        return connection

    async def get_synced_contacts(self, workspace_id: UUID, provider: Optional[str] = None) -> list[SyncedContact]:
        stmt = select(SyncedContact).where(SyncedContact.workspace_id == workspace_id)
        if provider:
            stmt = stmt.where(SyncedContact.provider == provider)
        result = await self.db.execute(stmt.order_by(SyncedContact.last_synced_at.desc()))
        return list(result.scalars().all())

    async def get_synced_appointments(
        self, workspace_id: UUID, provider: Optional[str] = None
    ) -> list[SyncedAppointment]:
        stmt = select(SyncedAppointment).where(SyncedAppointment.workspace_id == workspace_id)
        if provider:
            stmt = stmt.where(SyncedAppointment.provider == provider)
        result = await self.db.execute(stmt.order_by(SyncedAppointment.start_time))
        return list(result.scalars().all())

    async def get_integration_events(self, workspace_id: UUID, limit: int = 100) -> list[IntegrationEvent]:
        result = await self.db.execute(
            select(IntegrationEvent)
            .where(IntegrationEvent.workspace_id == workspace_id)
            .order_by(IntegrationEvent.created_at.desc())
            .limit(limit)
        )
        return list(result.scalars().all())

"""
Notification API routes and the realtime WebSocket stream.
"""

import asyncio
import logging
from datetime import datetime
from typing import Any, AsyncGenerator, List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, WebSocket, WebSocketDisconnect, status
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.ext.asyncio import AsyncSession

from locall.database import get_db
from locall.middleware.auth import authenticate_token, get_current_active_user, require_permissions
from locall.models import User
from locall.realtime import RealtimeBroker, get_broker
from locall.services.notifications import NotificationService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/notifications", tags=["notifications"])

# RFC 6455 close codes
WS_POLICY_VIOLATION = 1008
WS_INTERNAL_ERROR = 1011


class NotificationCreate(BaseModel):
    type: str = Field(..., pattern=r"^(call_status|form_submission|system_alert|billing|integration|user_activity)$")
    title: str = Field(..., min_length=1, max_length=255)
    message: str = Field(..., min_length=1)
    user_id: Optional[UUID] = None
    data: dict[str, Any] = {}
    priority: str = Field(default="normal", pattern=r"^(low|normal|high|urgent)$")
    actions: List[dict[str, Any]] = []


class NotificationResponse(BaseModel):
    id: UUID
    workspace_id: Optional[UUID]
    user_id: Optional[UUID]
    type: str
    title: str
    message: str
    data: dict[str, Any]
    priority: str
    actions: List[dict[str, Any]]
    read: bool
    read_at: Optional[datetime]
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


@router.get("", response_model=List[NotificationResponse])
async def get_unread_notifications(
    limit: int = 50,
    db: AsyncSession = Depends(get_db),
    broker: RealtimeBroker = Depends(get_broker),
    current_user: User = Depends(get_current_active_user),
):
    """Unread notifications for the caller, including workspace-wide ones."""
    return await NotificationService(db, broker).get_unread_notifications(
        current_user.workspace_id, current_user.id, limit=limit
    )


@router.post("", response_model=NotificationResponse, status_code=status.HTTP_201_CREATED)
async def send_notification(
    notification: NotificationCreate,
    db: AsyncSession = Depends(get_db),
    broker: RealtimeBroker = Depends(get_broker),
    current_user: User = Depends(require_permissions("notifications:send")),
):
    return await NotificationService(db, broker).send_notification(
        notification.type,
        notification.title,
        notification.message,
        workspace_id=current_user.workspace_id,
        user_id=notification.user_id,
        data=notification.data,
        priority=notification.priority,
        actions=notification.actions,
    )


@router.post("/read-all")
async def mark_all_as_read(
    db: AsyncSession = Depends(get_db),
    broker: RealtimeBroker = Depends(get_broker),
    current_user: User = Depends(get_current_active_user),
):
    updated = await NotificationService(db, broker).mark_all_as_read(current_user.workspace_id, current_user.id)
    return {"updated": updated}


@router.post("/{notification_id}/read", response_model=NotificationResponse)
async def mark_as_read(
    notification_id: UUID,
    db: AsyncSession = Depends(get_db),
    broker: RealtimeBroker = Depends(get_broker),
    current_user: User = Depends(get_current_active_user),
):
    return await NotificationService(db, broker).mark_as_read(notification_id, current_user.workspace_id)


@router.websocket("/ws/{workspace_id}")
async def notification_stream(
    websocket: WebSocket,
    workspace_id: UUID,
    token: str = Query(...),
    types: Optional[str] = Query(None, description="Comma-separated notification types"),
    db: AsyncSession = Depends(get_db),
    broker: RealtimeBroker = Depends(get_broker),
):
    """
    Live notifications for a workspace.

    Sends the current unread list first, then every new workspace or
    platform-wide notification that matches ``types`` and is addressed to the
    caller or the whole workspace.
    """
    user = await authenticate_token(token, db)
    if user is None or not user.is_active or user.workspace_id != workspace_id:
        await websocket.close(code=WS_POLICY_VIOLATION)
        return

    await websocket.accept()
    service = NotificationService(db, broker)
    type_filter = [t.strip() for t in types.split(",") if t.strip()] if types else None

    unread = await service.get_unread_notifications(workspace_id, user.id)
    await websocket.send_json(
        {
            "event": "unread",
            "notifications": [n.to_message() for n in unread if not type_filter or n.type in type_filter],
        }
    )

    await relay_notifications(websocket, service.subscribe(workspace_id, type_filter, user.id), user.id)


async def relay_notifications(websocket: WebSocket, messages: AsyncGenerator[dict, None], user_id: UUID) -> None:
    """
    Forward ``messages`` to the socket until the client disconnects or the
    stream stops. A stream that stops first closes the socket with 1011 so the
    client reconnects.
    """

    async def receive() -> None:
        # Inbound frames are keepalives only
        while True:
            await websocket.receive_text()

    async def forward() -> None:
        async for message in messages:
            await websocket.send_json(message)

    receiver = asyncio.create_task(receive())
    forwarder = asyncio.create_task(forward())
    try:
        done, _ = await asyncio.wait({receiver, forwarder}, return_when=asyncio.FIRST_COMPLETED)
    finally:
        for task in (receiver, forwarder):
            task.cancel()
        await asyncio.gather(receiver, forwarder, return_exceptions=True)
        await messages.aclose()

    if receiver in done:
        error = receiver.exception()
        if error is not None and not isinstance(error, WebSocketDisconnect):
            logger.error(f"Notification socket failed for user {user_id}: {error}")
        else:
            logger.debug(f"Notification stream closed for user {user_id}")
        return

    error = forwarder.exception()
    if error is not None:
        logger.error(f"Notification stream failed for user {user_id}: {error}")
    else:
        logger.warning(f"Notification stream ended for user {user_id}")
    try:
        await websocket.close(code=WS_INTERNAL_ERROR)
    except RuntimeError as e:
        logger.debug(f"Notification socket already closed for user {user_id}: {e}")

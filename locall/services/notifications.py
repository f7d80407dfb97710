"""
Realtime notification service.

Notifications are stored in ``realtime_notifications`` and published on the
workspace's realtime channel so connected dashboards update live.
"""

import logging
from typing import AsyncIterator, Iterable, Optional
from uuid import UUID

from sqlalchemy import or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from locall.exceptions import NotFoundError, ValidationError
from locall.models import RealtimeNotification
from locall.models.base import utc_now
from locall.models.notification import NOTIFICATION_TYPES, PRIORITIES
from locall.realtime import SYSTEM_CHANNEL, RealtimeBroker, get_broker, workspace_channel

logger = logging.getLogger(__name__)

CALL_STATUS_TITLES = {
    "initiated": "Call initiated",
    "ringing": "Call ringing",
    "answered": "Call answered",
    "completed": "Call completed",
    "failed": "Call failed",
    "busy": "Number busy",
    "no_answer": "No answer",
}

BILLING_TYPES = ("low_balance", "payment_failed", "invoice_generated", "subscription_renewed")


def _billing_message(billing_type: str, amount: Optional[float]) -> str:
    if billing_type == "low_balance":
        return f"Low balance warning: ${amount} remaining" if amount else "Low balance warning"
    if billing_type == "payment_failed":
        return "Payment failed - Please update your payment method"
    if billing_type == "invoice_generated":
        return f"New invoice generated for ${amount}" if amount else "New invoice generated"
    return "Subscription renewed successfully"


class NotificationSubscription:
    """Filter over a channel stream: notification types and target user."""

    def __init__(self, types: Optional[Iterable[str]] = None, user_id: Optional[UUID] = None):
        self.types = set(types) if types else None
        self.user_id = str(user_id) if user_id else None

    def matches(self, message: dict) -> bool:
        if self.types is not None and message.get("type") not in self.types:
            return False
        target = message.get("user_id")
        if self.user_id is not None and target is not None and target != self.user_id:
            return False
        return True


class NotificationService:
    """Stores notifications and pushes them over realtime channels."""

    def __init__(self, db: AsyncSession, broker: Optional[RealtimeBroker] = None):
        self.db = db
        self.broker = broker or get_broker()

    async def send_notification(
        self,
        notification_type: str,
        title: str,
        message: str,
        *,
        workspace_id: Optional[UUID],
        user_id: Optional[UUID] = None,
        data: Optional[dict] = None,
        priority: str = "normal",
        actions: Optional[list] = None,
    ) -> RealtimeNotification:
        if notification_type not in NOTIFICATION_TYPES:
            raise ValidationError(f"Unknown notification type: {notification_type}")
        if priority not in PRIORITIES:
            raise ValidationError(f"Unknown priority: {priority}")

        notification = RealtimeNotification(
            workspace_id=workspace_id,
            user_id=user_id,
            type=notification_type,
            title=title,
            message=message,
            data=data or {},
            priority=priority,
            actions=actions or [],
            read=False,
        )
        self.db.add(notification)
        await self.db.commit()
        await self.db.refresh(notification)

        channel = workspace_channel(workspace_id) if workspace_id else SYSTEM_CHANNEL
        await self.broker.publish(channel, {"event": "notification", **notification.to_message()})
        return notification

    async def send_call_notification(
        self,
        workspace_id: UUID,
        call_id: str,
        status: str,
        phone_number: str,
        duration: Optional[int] = None,
        user_id: Optional[UUID] = None,
    ) -> RealtimeNotification:
        suffix = f" ({duration}s)" if duration else ""
        return await self.send_notification(
            "call_status",
            CALL_STATUS_TITLES.get(status, "Call Update"),
            f"Call {status} for {phone_number}{suffix}",
            workspace_id=workspace_id,
            user_id=user_id,
            data={"call_id": call_id, "status": status, "phone_number": phone_number, "duration": duration},
            priority="high" if status == "failed" else "normal",
        )

    async def send_form_notification(
        self,
        workspace_id: UUID,
        form_id: UUID,
        form_name: str,
        submission_id: UUID,
        contact_info: Optional[str] = None,
        user_id: Optional[UUID] = None,
    ) -> RealtimeNotification:
        suffix = f" from {contact_info}" if contact_info else ""
        return await self.send_notification(
            "form_submission",
            "New Form Submission",
            f'New submission received for "{form_name}"{suffix}',
            workspace_id=workspace_id,
            user_id=user_id,
            data={
                "form_id": str(form_id),
                "form_name": form_name,
                "submission_id": str(submission_id),
                "contact_info": contact_info,
            },
            actions=[
                {
                    "id": "view_submission",
                    "label": "View Submission",
                    "type": "link",
                    "action": f"/dashboard/forms/submissions/{submission_id}",
                }
            ],
        )

    async def send_system_alert(
        self,
        message: str,
        priority: str = "normal",
        data: Optional[dict] = None,
        workspace_id: Optional[UUID] = None,
    ) -> RealtimeNotification:
        """System alert for one workspace, or platform-wide when ``workspace_id`` is None."""
        return await self.send_notification(
            "system_alert",
            "System Alert",
            message,
            workspace_id=workspace_id,
            data=data,
            priority=priority,
        )

    async def send_billing_notification(
        self,
        workspace_id: UUID,
        billing_type: str,
        amount: Optional[float] = None,
        currency: Optional[str] = None,
        due_date: Optional[str] = None,
        user_id: Optional[UUID] = None,
    ) -> RealtimeNotification:
        if billing_type not in BILLING_TYPES:
            raise ValidationError(f"Unknown billing notification type: {billing_type}")
        return await self.send_notification(
            "billing",
            "Billing Update",
            _billing_message(billing_type, amount),
            workspace_id=workspace_id,
            user_id=user_id,
            data={"type": billing_type, "amount": amount, "currency": currency, "due_date": due_date},
            priority="high" if billing_type == "payment_failed" else "normal",
        )

    async def send_integration_notification(
        self,
        workspace_id: UUID,
        provider: str,
        message: str,
        success: bool = True,
        data: Optional[dict] = None,
    ) -> RealtimeNotification:
        return await self.send_notification(
            "integration",
            "Integration Update" if success else "Integration Error",
            message,
            workspace_id=workspace_id,
            data={"provider": provider, **(data or {})},
            priority="normal" if success else "high",
        )

    async def mark_as_read(self, notification_id: UUID, workspace_id: Optional[UUID] = None) -> RealtimeNotification:
        notification = await self.db.get(RealtimeNotification, notification_id)
        if notification is None or (workspace_id and notification.workspace_id != workspace_id):
            raise NotFoundError(f"Notification {notification_id} not found")

        notification.read = True
        notification.read_at = utc_now()
        await self.db.commit()
        await self.db.refresh(notification)

        if notification.workspace_id:
            await self.broker.publish(
                workspace_channel(notification.workspace_id),
                {"event": "notification_read", **notification.to_message()},
            )
        return notification

    async def mark_all_as_read(self, workspace_id: UUID, user_id: Optional[UUID] = None) -> int:
        stmt = update(RealtimeNotification).where(
            RealtimeNotification.workspace_id == workspace_id,
            RealtimeNotification.read.is_(False),
        )
        if user_id:
            stmt = stmt.where(
                or_(RealtimeNotification.user_id.is_(None), RealtimeNotification.user_id == user_id)
            )
        result = await self.db.execute(stmt.values(read=True, read_at=utc_now()))
        await self.db.commit()
        return result.rowcount

    async def get_unread_notifications(
        self, workspace_id: UUID, user_id: Optional[UUID] = None, limit: int = 50
    ) -> list[RealtimeNotification]:
        """Unread notifications, newest first; with a user, workspace-wide rows are included."""
        stmt = select(RealtimeNotification).where(
            RealtimeNotification.workspace_id == workspace_id,
            RealtimeNotification.read.is_(False),
        )
        if user_id:
            stmt = stmt.where(
                or_(RealtimeNotification.user_id.is_(None), RealtimeNotification.user_id == user_id)
            )
        stmt = stmt.order_by(RealtimeNotification.created_at.desc()).limit(limit)
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def subscribe(
        self,
        workspace_id: UUID,
        types: Optional[Iterable[str]] = None,
        user_id: Optional[UUID] = None,
    ) -> AsyncIterator[dict]:
        """Live notification stream for a workspace plus platform-wide alerts, filtered by type and user."""
        subscription = NotificationSubscription(types, user_id)
        async for message in self.broker.subscribe(workspace_channel(workspace_id), SYSTEM_CHANNEL):
            if subscription.matches(message):
                yield message

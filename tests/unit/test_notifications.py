"""
Unit tests for the realtime notification service.
"""

import asyncio
from uuid import uuid4

import pytest
from fastapi import WebSocketDisconnect
from sqlalchemy.ext.asyncio import AsyncSession

from locall.api.notifications import WS_INTERNAL_ERROR, relay_notifications
from locall.exceptions import NotFoundError, ValidationError
from locall.models import User, Workspace
from locall.realtime import LocalBroker, workspace_channel
from locall.services.notifications import NotificationService, NotificationSubscription

pytestmark = pytest.mark.unit


async def settle():
    for _ in range(3):
        await asyncio.sleep(0)


class TestNotificationSubscription:
    def test_no_filters_match_everything(self):
        assert NotificationSubscription().matches({"type": "billing", "user_id": "u-1"}) is True

    def test_type_filter(self):
        subscription = NotificationSubscription(types=["call_status"])

        assert subscription.matches({"type": "call_status"}) is True
        assert subscription.matches({"type": "billing"}) is False

    def test_user_filter_accepts_broadcasts(self):
        user_id = uuid4()
        subscription = NotificationSubscription(user_id=user_id)

        assert subscription.matches({"type": "billing", "user_id": str(user_id)}) is True
        assert subscription.matches({"type": "billing", "user_id": None}) is True
        assert subscription.matches({"type": "billing", "user_id": str(uuid4())}) is False


class TestSendNotification:
    @pytest.mark.asyncio
    async def test_send_stores_and_publishes(
        self, test_db: AsyncSession, test_workspace: Workspace, broker: LocalBroker
    ):
        service = NotificationService(test_db, broker)
        stream = broker.subscribe(workspace_channel(test_workspace.id))
        pending = asyncio.ensure_future(stream.__anext__())
        await settle()

        notification = await service.send_notification(
            "user_activity", "New teammate", "Alex joined", workspace_id=test_workspace.id, priority="low"
        )

        message = await asyncio.wait_for(pending, timeout=1)
        await stream.aclose()
        assert notification.read is False
        assert message["event"] == "notification"
        assert message["id"] == str(notification.id)
        assert message["title"] == "New teammate"
        assert message["priority"] == "low"

    @pytest.mark.asyncio
    async def test_invalid_type_and_priority(
        self, test_db: AsyncSession, test_workspace: Workspace, broker: LocalBroker
    ):
        service = NotificationService(test_db, broker)

        with pytest.raises(ValidationError):
            await service.send_notification("gossip", "t", "m", workspace_id=test_workspace.id)
        with pytest.raises(ValidationError):
            await service.send_notification("billing", "t", "m", workspace_id=test_workspace.id, priority="meh")

    @pytest.mark.asyncio
    async def test_call_notification(self, test_db: AsyncSession, test_workspace: Workspace, broker: LocalBroker):
        service = NotificationService(test_db, broker)

        failed = await service.send_call_notification(test_workspace.id, "call-1", "failed", "+15550100")
        completed = await service.send_call_notification(
            test_workspace.id, "call-2", "completed", "+15550101", duration=95
        )
        unknown = await service.send_call_notification(test_workspace.id, "call-3", "transferred", "+15550102")

        assert failed.title == "Call failed"
        assert failed.priority == "high"
        assert completed.message == "Call completed for +15550101 (95s)"
        assert completed.priority == "normal"
        assert unknown.title == "Call Update"

    @pytest.mark.asyncio
    async def test_billing_notification(self, test_db: AsyncSession, test_workspace: Workspace, broker: LocalBroker):
        service = NotificationService(test_db, broker)

        low = await service.send_billing_notification(test_workspace.id, "low_balance", amount=12.5)
        failed = await service.send_billing_notification(test_workspace.id, "payment_failed")

        assert low.message == "Low balance warning: $12.5 remaining"
        assert failed.priority == "high"
        with pytest.raises(ValidationError):
            await service.send_billing_notification(test_workspace.id, "refund")

    @pytest.mark.asyncio
    async def test_form_and_integration_notifications(
        self, test_db: AsyncSession, test_workspace: Workspace, broker: LocalBroker
    ):
        service = NotificationService(test_db, broker)
        submission_id = uuid4()

        form = await service.send_form_notification(
            test_workspace.id, uuid4(), "Contact", submission_id, contact_info="pat@example.com"
        )
        integration = await service.send_integration_notification(
            test_workspace.id, "hubspot", "Sync failed", success=False
        )

        assert form.message == 'New submission received for "Contact" from pat@example.com'
        assert form.actions[0]["action"] == f"/dashboard/forms/submissions/{submission_id}"
        assert integration.title == "Integration Error"
        assert integration.priority == "high"
        assert integration.data == {"provider": "hubspot"}


class TestSubscribe:
    @pytest.mark.asyncio
    async def test_subscribe_filters_by_type(
        self, test_db: AsyncSession, test_workspace: Workspace, broker: LocalBroker
    ):
        service = NotificationService(test_db, broker)
        stream = service.subscribe(test_workspace.id, types=["billing"])
        pending = asyncio.ensure_future(stream.__anext__())
        await settle()

        await service.send_call_notification(test_workspace.id, "call-1", "completed", "+15550100")
        await service.send_billing_notification(test_workspace.id, "invoice_generated", amount=49.0)

        message = await asyncio.wait_for(pending, timeout=1)
        await stream.aclose()
        assert message["type"] == "billing"

    @pytest.mark.asyncio
    async def test_subscribe_skips_other_users(
        self, test_db: AsyncSession, test_user_owner: User, test_user_agent: User, broker: LocalBroker
    ):
        service = NotificationService(test_db, broker)
        workspace_id = test_user_owner.workspace_id
        stream = service.subscribe(workspace_id, user_id=test_user_agent.id)
        pending = asyncio.ensure_future(stream.__anext__())
        await settle()

        await service.send_notification(
            "user_activity", "Private", "For the owner", workspace_id=workspace_id, user_id=test_user_owner.id
        )
        await service.send_notification(
            "user_activity", "Mine", "For the agent", workspace_id=workspace_id, user_id=test_user_agent.id
        )

        message = await asyncio.wait_for(pending, timeout=1)
        await stream.aclose()
        assert message["title"] == "Mine"

    @pytest.mark.asyncio
    async def test_subscribe_receives_platform_alerts(
        self, test_db: AsyncSession, test_workspace: Workspace, broker: LocalBroker
    ):
        service = NotificationService(test_db, broker)
        stream = service.subscribe(test_workspace.id)
        pending = asyncio.ensure_future(stream.__anext__())
        await settle()

        alert = await service.send_system_alert("Scheduled maintenance at 02:00 UTC", priority="high")

        message = await asyncio.wait_for(pending, timeout=1)
        await stream.aclose()
        assert alert.workspace_id is None
        assert message["type"] == "system_alert"
        assert message["workspace_id"] is None


class TestReadState:
    @pytest.mark.asyncio
    async def test_mark_as_read(self, test_db: AsyncSession, test_workspace: Workspace, broker: LocalBroker):
        service = NotificationService(test_db, broker)
        notification = await service.send_system_alert("Disk usage high", workspace_id=test_workspace.id)

        read = await service.mark_as_read(notification.id, test_workspace.id)

        assert read.read is True
        assert read.read_at is not None
        assert await service.get_unread_notifications(test_workspace.id) == []

    @pytest.mark.asyncio
    async def test_mark_as_read_other_workspace(
        self, test_db: AsyncSession, test_workspace: Workspace, other_workspace: Workspace, broker: LocalBroker
    ):
        service = NotificationService(test_db, broker)
        notification = await service.send_system_alert("Disk usage high", workspace_id=test_workspace.id)

        with pytest.raises(NotFoundError):
            await service.mark_as_read(notification.id, other_workspace.id)
        with pytest.raises(NotFoundError):
            await service.mark_as_read(uuid4())

    @pytest.mark.asyncio
    async def test_unread_and_mark_all_for_user(
        self, test_db: AsyncSession, test_user_owner: User, test_user_agent: User, broker: LocalBroker
    ):
        service = NotificationService(test_db, broker)
        workspace_id = test_user_owner.workspace_id
        await service.send_notification("user_activity", "All", "Everyone", workspace_id=workspace_id)
        await service.send_notification(
            "user_activity", "Owner", "Owner only", workspace_id=workspace_id, user_id=test_user_owner.id
        )
        await service.send_notification(
            "user_activity", "Agent", "Agent only", workspace_id=workspace_id, user_id=test_user_agent.id
        )

        unread = await service.get_unread_notifications(workspace_id, test_user_agent.id)
        assert sorted(n.title for n in unread) == ["Agent", "All"]
        assert len(await service.get_unread_notifications(workspace_id)) == 3

        assert await service.mark_all_as_read(workspace_id, test_user_agent.id) == 2

        remaining = await service.get_unread_notifications(workspace_id)
        assert [n.title for n in remaining] == ["Owner"]


class FakeWebSocket:
    def __init__(self, disconnect: bool = False):
        self.disconnect = disconnect
        self.sent: list[dict] = []
        self.close_code = None
        self.idle = asyncio.Event()

    async def receive_text(self) -> str:
        if self.disconnect:
            raise WebSocketDisconnect(code=1000)
        await self.idle.wait()
        return "ping"

    async def send_json(self, message: dict) -> None:
        self.sent.append(message)

    async def close(self, code: int = 1000) -> None:
        self.close_code = code


class TestRelayNotifications:
    @pytest.mark.asyncio
    async def test_failed_stream_closes_socket(self):
        async def messages():
            yield {"type": "billing"}
            raise ConnectionError("pub/sub gave up")

        websocket = FakeWebSocket()

        await asyncio.wait_for(relay_notifications(websocket, messages(), uuid4()), timeout=1)

        assert websocket.sent == [{"type": "billing"}]
        assert websocket.close_code == WS_INTERNAL_ERROR

    @pytest.mark.asyncio
    async def test_client_disconnect_stops_stream(self):
        closed = asyncio.Event()

        async def messages():
            try:
                await asyncio.Event().wait()
                yield {}
            finally:
                closed.set()

        websocket = FakeWebSocket(disconnect=True)

        await asyncio.wait_for(relay_notifications(websocket, messages(), uuid4()), timeout=1)

        assert closed.is_set()
        assert websocket.close_code is None

"""
Unit tests for realtime brokers.
"""

import asyncio
import json

import pytest

from locall.infrastructure.redis import RedisClient
from locall.realtime import SYSTEM_CHANNEL, LocalBroker, RedisBroker, close_broker, get_broker, workspace_channel

pytestmark = pytest.mark.unit


async def settle():
    for _ in range(3):
        await asyncio.sleep(0)


class TestLocalBroker:
    @pytest.mark.asyncio
    async def test_publish_without_subscribers(self):
        broker = LocalBroker()

        assert await broker.publish("notifications:nobody", {"event": "ping"}) == 0

    @pytest.mark.asyncio
    async def test_subscriber_receives_messages_in_order(self):
        broker = LocalBroker()
        stream = broker.subscribe("notifications:a")
        first = asyncio.ensure_future(stream.__anext__())
        await settle()

        assert broker.subscriber_count("notifications:a") == 1
        assert await broker.publish("notifications:a", {"n": 1}) == 1
        await broker.publish("notifications:a", {"n": 2})

        assert await asyncio.wait_for(first, timeout=1) == {"n": 1}
        assert await asyncio.wait_for(stream.__anext__(), timeout=1) == {"n": 2}

        await stream.aclose()
        assert broker.subscriber_count("notifications:a") == 0

    @pytest.mark.asyncio
    async def test_multi_channel_subscription(self):
        broker = LocalBroker()
        stream = broker.subscribe(workspace_channel("ws-1"), SYSTEM_CHANNEL)
        pending = asyncio.ensure_future(stream.__anext__())
        await settle()

        await broker.publish(SYSTEM_CHANNEL, {"event": "maintenance"})

        assert await asyncio.wait_for(pending, timeout=1) == {"event": "maintenance"}
        assert broker.subscriber_count(workspace_channel("ws-1")) == 1
        await stream.aclose()
        assert broker.subscriber_count(SYSTEM_CHANNEL) == 0

    @pytest.mark.asyncio
    async def test_full_queue_drops_messages(self):
        broker = LocalBroker(max_queue_size=1)
        stream = broker.subscribe("notifications:a")
        pending = asyncio.ensure_future(stream.__anext__())
        await settle()

        assert await broker.publish("notifications:a", {"n": 1}) == 1
        assert await broker.publish("notifications:a", {"n": 2}) == 0

        assert await asyncio.wait_for(pending, timeout=1) == {"n": 1}
        await stream.aclose()


class FakeRedisClient:
    def __init__(self):
        self.published = []

    async def publish(self, channel, data):
        self.published.append((channel, data))
        return 2


class TestRedisBroker:
    @pytest.mark.asyncio
    async def test_publish_serializes_json(self):
        client = FakeRedisClient()
        broker = RedisBroker(client=client)

        receivers = await broker.publish("notifications:ws", {"event": "notification", "id": "n-1"})

        assert receivers == 2
        channel, data = client.published[0]
        assert channel == "notifications:ws"
        assert json.loads(data) == {"event": "notification", "id": "n-1"}


class TestBrokerFactory:
    @pytest.mark.asyncio
    async def test_memory_backend_is_singleton(self):
        await close_broker()
        try:
            broker = get_broker()
            assert isinstance(broker, LocalBroker)
            assert get_broker() is broker
        finally:
            await close_broker()

    def test_channel_names(self):
        assert workspace_channel("abc") == "notifications:abc"
        assert SYSTEM_CHANNEL == "notifications:system"


class TestRedisClient:
    def test_get_client_before_connect(self):
        with pytest.raises(RuntimeError, match="not connected"):
            RedisClient().get_client()

    @pytest.mark.asyncio
    async def test_health_check_when_disconnected(self):
        assert await RedisClient().health_check() is False

    @pytest.mark.asyncio
    async def test_connect_is_lazy_and_disconnect_resets(self):
        client = RedisClient("redis://localhost:6399/3")

        await client.connect()
        underlying = client.get_client()
        await client.connect()
        assert client.get_client() is underlying

        await client.disconnect()
        with pytest.raises(RuntimeError):
            client.get_client()

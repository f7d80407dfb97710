"""
Realtime publish/subscribe channels.

Two brokers share one interface: ``LocalBroker`` fans out inside a single
process with asyncio queues, ``RedisBroker`` uses Redis pub/sub so every API
worker sees every message. The application only publishes and registers
consumers; delivery guarantees are whatever the broker gives.
"""

import asyncio
import json
import logging
from abc import ABC, abstractmethod
from typing import AsyncIterator, Optional

import redis.asyncio as redis

from locall.config.settings import get_settings
from locall.infrastructure.redis import get_redis_client

logger = logging.getLogger(__name__)

RECONNECT_BASE_DELAY_SECONDS = 1.0
MAX_RECONNECT_ATTEMPTS = 5


def workspace_channel(workspace_id) -> str:
    return f"notifications:{workspace_id}"


SYSTEM_CHANNEL = "notifications:system"


class RealtimeBroker(ABC):
    """Publish/subscribe primitive used for live dashboard updates."""

    @abstractmethod
    async def publish(self, channel: str, message: dict) -> int:
        """Publish a JSON-serializable message. Returns the number of receivers."""

    @abstractmethod
    def subscribe(self, *channels: str) -> AsyncIterator[dict]:
        """Async iterator of messages on any of ``channels`` until the consumer stops."""

    async def close(self) -> None:
        pass


class LocalBroker(RealtimeBroker):
    """In-process broker: one asyncio queue per active subscriber."""

    def __init__(self, max_queue_size: int = 1000):
        self._subscribers: dict[str, set[asyncio.Queue]] = {}
        self._max_queue_size = max_queue_size

    async def publish(self, channel: str, message: dict) -> int:
        queues = self._subscribers.get(channel, set())
        delivered = 0
        for queue in list(queues):
            try:
                queue.put_nowait(message)
                delivered += 1
            except asyncio.QueueFull:
                logger.warning(f"Dropping realtime message on {channel}: subscriber queue full")
        return delivered

    async def subscribe(self, *channels: str) -> AsyncIterator[dict]:
        queue: asyncio.Queue = asyncio.Queue(maxsize=self._max_queue_size)
        for channel in channels:
            self._subscribers.setdefault(channel, set()).add(queue)
        try:
            while True:
                yield await queue.get()
        finally:
            for channel in channels:
                subscribers = self._subscribers.get(channel)
                if subscribers is not None:
                    subscribers.discard(queue)
                    if not subscribers:
                        del self._subscribers[channel]

    def subscriber_count(self, channel: str) -> int:
        return len(self._subscribers.get(channel, ()))


class RedisBroker(RealtimeBroker):
    """Redis pub/sub broker with exponential-backoff resubscription."""

    def __init__(self, client: Optional[redis.Redis] = None):
        self._client = client

    async def _get_client(self) -> redis.Redis:
        if self._client is None:
            self._client = (await get_redis_client()).get_client()
        return self._client

    async def publish(self, channel: str, message: dict) -> int:
        client = await self._get_client()
        return await client.publish(channel, json.dumps(message, default=str))

    async def subscribe(self, *channels: str) -> AsyncIterator[dict]:
        client = await self._get_client()
        label = ", ".join(channels)
        attempts = 0
        while True:
            pubsub = client.pubsub()
            try:
                await pubsub.subscribe(*channels)
                attempts = 0
                async for raw in pubsub.listen():
                    if raw.get("type") != "message":
                        continue
                    try:
                        yield json.loads(raw["data"])
                    except (TypeError, ValueError):
                        logger.warning(f"Ignoring malformed realtime message on {raw.get('channel')}")
            except redis.ConnectionError as e:
                attempts += 1
                if attempts > MAX_RECONNECT_ATTEMPTS:
                    logger.error(f"Giving up on realtime channels {label} after {MAX_RECONNECT_ATTEMPTS} attempts")
                    raise
                delay = RECONNECT_BASE_DELAY_SECONDS * 2 ** (attempts - 1)
                logger.warning(f"Realtime channels {label} lost ({e}); reconnecting in {delay:.0f}s")
                await asyncio.sleep(delay)
            finally:
                await pubsub.aclose()


_broker: Optional[RealtimeBroker] = None


def get_broker() -> RealtimeBroker:
    """Process-wide broker chosen by ``realtime_backend`` ("memory" or "redis")."""
    global _broker
    if _broker is None:
        backend = get_settings().realtime_backend
        if backend == "redis":
            _broker = RedisBroker()
        elif backend == "memory":
            _broker = LocalBroker()
        else:
            raise ValueError(f"Unknown realtime backend: {backend}")
        logger.info(f"Realtime broker: {backend}")
    return _broker


async def close_broker() -> None:
    global _broker
    if _broker is not None:
        await _broker.close()
        _broker = None

"""Best-effort de-duplication of webhook notifications.

This only damps duplicate-delivery storms. The authoritative guard is the
transaction-id check performed inside the granting transaction.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections import OrderedDict
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from redis.asyncio import Redis

    from academy.config import Settings


def notification_key(topic: str, resource_id: str, status: str | None = None) -> str:
    """``<topic>-<resourceId>``, suffixed with the provider status when one is known."""
    key = f"{topic}-{resource_id}"
    return f"{key}-{status}" if status else key


class NotificationCache(ABC):
    """Remembers which ``<topic>-<resourceId>`` notifications were handled."""

    @abstractmethod
    async def seen(self, key: str) -> bool: ...

    @abstractmethod
    async def mark(self, key: str) -> None: ...


class InMemoryNotificationCache(NotificationCache):
    """Process-local bounded cache; evicts oldest entries past ``capacity``."""

    def __init__(self, capacity: int = 1000) -> None:
        if capacity <= 0:
            raise ValueError("capacity must be positive")
        self.capacity = capacity
        self._entries: OrderedDict[str, None] = OrderedDict()

    def __len__(self) -> int:
        return len(self._entries)

    async def seen(self, key: str) -> bool:
        return key in self._entries

    async def mark(self, key: str) -> None:
        self._entries[key] = None
        self._entries.move_to_end(key)
        while len(self._entries) > self.capacity:
            self._entries.popitem(last=False)


class RedisNotificationCache(NotificationCache):
    """Shared cache for multi-instance deployments. Entries expire after ``ttl_seconds``."""

    KEY_PREFIX = "webhook:processed:"

    def __init__(self, redis: Redis, ttl_seconds: int = 86_400) -> None:
        self.redis = redis
        self.ttl_seconds = ttl_seconds

    async def seen(self, key: str) -> bool:
        return bool(await self.redis.exists(self.KEY_PREFIX + key))

    async def mark(self, key: str) -> None:
        await self.redis.set(self.KEY_PREFIX + key, "1", ex=self.ttl_seconds)


def build_notification_cache(settings: Settings, redis: Redis | None = None) -> NotificationCache:
    """Create the cache selected by ``notification_cache_backend``."""
    backend = settings.notification_cache_backend.lower()
    if backend == "redis":
        if redis is None:
            msg = "Redis notification cache selected but Redis is not initialized"
            raise RuntimeError(msg)
        return RedisNotificationCache(redis, ttl_seconds=settings.notification_cache_ttl_seconds)
    if backend == "memory":
        return InMemoryNotificationCache(capacity=settings.notification_cache_capacity)
    msg = f"Unknown notification cache backend: {settings.notification_cache_backend}"
    raise ValueError(msg)

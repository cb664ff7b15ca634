"""
Storage media shared by the execution contexts of one client.
"""

from abc import ABC, abstractmethod
from typing import Dict, List, Optional

import redis.asyncio as redis
from redis.exceptions import RedisError

from shared.logging import get_logger
from shared.errors import StorageError


class StorageMedium(ABC):
    """String key/value medium. Implementations raise ``StorageError`` on failure."""

    @abstractmethod
    async def get_item(self, key: str) -> Optional[str]:
        ...

    @abstractmethod
    async def set_item(self, key: str, value: str) -> None:
        ...

    @abstractmethod
    async def remove_item(self, key: str) -> None:
        ...

    @abstractmethod
    async def keys(self) -> List[str]:
        ...


class MemoryStorageMedium(StorageMedium):
    """Process-local medium; share one instance between contexts to model a browser profile."""

    def __init__(self, quota_bytes: Optional[int] = None):
        self._items: Dict[str, str] = {}
        self.quota_bytes = quota_bytes
        self.enabled = True

    def _check_enabled(self):
        if not self.enabled:
            raise StorageError("Storage is disabled")

    async def get_item(self, key: str) -> Optional[str]:
        self._check_enabled()
        return self._items.get(key)

    async def set_item(self, key: str, value: str) -> None:
        self._check_enabled()
        if self.quota_bytes is not None:
            used = sum(len(k) + len(v) for k, v in self._items.items() if k != key)
            if used + len(key) + len(value) > self.quota_bytes:
                raise StorageError("Storage quota exceeded", details={"key": key, "quota": self.quota_bytes})
        self._items[key] = value

    async def remove_item(self, key: str) -> None:
        self._check_enabled()
        self._items.pop(key, None)

    async def keys(self) -> List[str]:
        self._check_enabled()
        return list(self._items)

    def __len__(self) -> int:
        return len(self._items)


class RedisStorageMedium(StorageMedium):
    """Redis-backed medium shared across processes of one client."""

    def __init__(self, redis_url: str, prefix: str = "event-context:", client: Optional[redis.Redis] = None):
        self.redis_url = redis_url
        self.prefix = prefix
        self.logger = get_logger("event_context.store.redis")
        self.redis: Optional[redis.Redis] = client

    async def start(self):
        """Open the Redis connection."""
        if self.redis is not None:
            return
        try:
            self.redis = redis.from_url(
                self.redis_url,
                encoding="utf-8",
                decode_responses=True,
                socket_connect_timeout=5,
                socket_timeout=5,
                retry_on_timeout=True,
                health_check_interval=30
            )
            await self.redis.ping()
            self.logger.info("Redis storage medium started")
        except Exception as e:
            self.logger.error("Failed to start Redis storage medium", error=str(e))
            raise StorageError("Redis storage unavailable", details={"error": str(e)})

    async def stop(self):
        """Close the Redis connection."""
        if self.redis is not None:
            await self.redis.aclose()
            self.redis = None
            self.logger.info("Redis storage medium stopped")

    def _client(self) -> redis.Redis:
        if self.redis is None:
            raise StorageError("Redis storage medium not started")
        return self.redis

    async def get_item(self, key: str) -> Optional[str]:
        try:
            value = await self._client().get(self.prefix + key)
        except RedisError as e:
            raise StorageError("Redis read failed", details={"key": key, "error": str(e)})
        if isinstance(value, bytes):
            return value.decode("utf-8")
        return value

    async def set_item(self, key: str, value: str) -> None:
        try:
            await self._client().set(self.prefix + key, value)
        except RedisError as e:
            raise StorageError("Redis write failed", details={"key": key, "error": str(e)})

    async def remove_item(self, key: str) -> None:
        try:
            await self._client().delete(self.prefix + key)
        except RedisError as e:
            raise StorageError("Redis delete failed", details={"key": key, "error": str(e)})

    async def keys(self) -> List[str]:
        try:
            found = []
            async for raw in self._client().scan_iter(match=f"{self.prefix}*"):
                key = raw.decode("utf-8") if isinstance(raw, bytes) else raw
                found.append(key[len(self.prefix):])
            return found
        except RedisError as e:
            raise StorageError("Redis scan failed", details={"error": str(e)})

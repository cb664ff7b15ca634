"""
Durable storage package.

Namespaced, TTL-aware snapshots over a storage medium shared by every
execution context of one client. All mutation goes through
``DurableStore.save``/``DurableStore.clear``.
"""

from .namespace import CacheNamespace, ROLE_CACHE, MEMBER_CACHE, TIMESTAMP_FIELD
from .medium import StorageMedium, MemoryStorageMedium, RedisStorageMedium
from .durable_store import DurableStore, TimestampedSnapshot, DEFAULT_TTL_MS
from .maintenance import StoreMaintenance, CacheStats

__all__ = [
    "CacheNamespace",
    "ROLE_CACHE",
    "MEMBER_CACHE",
    "TIMESTAMP_FIELD",
    "StorageMedium",
    "MemoryStorageMedium",
    "RedisStorageMedium",
    "DurableStore",
    "TimestampedSnapshot",
    "DEFAULT_TTL_MS",
    "StoreMaintenance",
    "CacheStats",
]

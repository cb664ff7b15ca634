"""
Namespaced, TTL-aware snapshots over a shared storage medium.
"""

import json
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, TYPE_CHECKING

from shared.logging import get_logger
from .medium import StorageMedium
from .namespace import CacheNamespace, TIMESTAMP_FIELD

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from shared.metrics import MetricsCollector


DEFAULT_TTL_MS = 60 * 60 * 1000

SaveListener = Callable[[str, Optional[str]], Awaitable[None]]


def epoch_millis() -> int:
    return int(time.time() * 1000)


@dataclass
class TimestampedSnapshot:
    """The unit actually persisted: entries plus the time they were written."""
    entries: Dict[str, Any] = field(default_factory=dict)
    written_at: int = 0

    def age(self, now: int) -> int:
        return now - self.written_at

    def is_expired(self, now: int, ttl_ms: int) -> bool:
        return self.age(now) > ttl_ms

    def serialize(self) -> str:
        payload = dict(self.entries)
        payload[TIMESTAMP_FIELD] = self.written_at
        return json.dumps(payload, separators=(",", ":"))

    @classmethod
    def deserialize(cls, raw: str) -> "TimestampedSnapshot":
        """Parse a stored payload.

        Raises ``ValueError`` for anything that is not a JSON object with an
        integer ``_timestamp`` (legacy un-timestamped payloads included).
        """
        data = json.loads(raw)
        if not isinstance(data, dict):
            raise ValueError("snapshot is not an object")
        written_at = data.pop(TIMESTAMP_FIELD, None)
        if isinstance(written_at, bool) or not isinstance(written_at, (int, float)):
            raise ValueError("snapshot has no timestamp")
        return cls(entries=data, written_at=int(written_at))


class DurableStore:
    """Namespaced key/value snapshots with lazy TTL eviction.

    ``save`` and ``clear`` never raise: a cache failure must not block the
    caller, so storage and serialization errors are logged and reported
    through the return value only.
    """

    def __init__(
        self,
        medium: StorageMedium,
        ttl_ms: int = DEFAULT_TTL_MS,
        clock: Callable[[], int] = epoch_millis,
        *,
        metrics: Optional["MetricsCollector"] = None,
    ):
        self.medium = medium
        self.ttl_ms = ttl_ms
        self.clock = clock
        self.metrics = metrics
        self.logger = get_logger("event_context.store.durable")
        self._listeners: List[SaveListener] = []

    def add_listener(self, listener: SaveListener):
        """Register an async callback invoked with ``(key, new_value)`` after each write."""
        if listener not in self._listeners:
            self._listeners.append(listener)

    def remove_listener(self, listener: SaveListener):
        if listener in self._listeners:
            self._listeners.remove(listener)

    def decode_snapshot(self, raw: Optional[str]) -> Optional[TimestampedSnapshot]:
        """Parse a serialized snapshot; ``None`` if it is corrupt or expired."""
        if raw is None:
            return None
        try:
            snapshot = TimestampedSnapshot.deserialize(raw)
        except (TypeError, ValueError):
            return None
        if snapshot.is_expired(self.clock(), self.ttl_ms):
            return None
        return snapshot

    def decode(self, raw: Optional[str]) -> Optional[Dict[str, Any]]:
        """Entries of a serialized snapshot, or ``None`` if it is corrupt or expired."""
        snapshot = self.decode_snapshot(raw)
        return snapshot.entries if snapshot is not None else None

    async def load(self, namespace: CacheNamespace) -> Dict[str, Any]:
        """Read a namespace's entries; absent, corrupt and expired snapshots read as empty."""
        snapshot = await self.load_snapshot(namespace)
        return snapshot.entries if snapshot is not None else {}

    async def load_snapshot(self, namespace: CacheNamespace) -> Optional[TimestampedSnapshot]:
        """Like ``load`` but keeps the write time; ``None`` stands for an absent snapshot."""
        key = namespace.key
        if key is None:
            return None

        try:
            raw = await self.medium.get_item(key)
        except Exception as e:
            self.logger.error("Error reading cache snapshot", key=key, error=str(e))
            self._record_error("load")
            return None

        if raw is None:
            return None

        try:
            snapshot = TimestampedSnapshot.deserialize(raw)
        except (TypeError, ValueError) as e:
            self.logger.warning("Discarding corrupt cache snapshot", key=key, error=str(e))
            await self._evict(key)
            return None

        age = snapshot.age(self.clock())
        if age > self.ttl_ms:
            self.logger.info("Discarding expired cache snapshot", key=key, age_ms=age, ttl_ms=self.ttl_ms)
            await self._evict(key)
            return None

        self.logger.debug("Loaded cache snapshot", key=key, entries=len(snapshot.entries), age_ms=age)
        return snapshot

    async def save(self, namespace: CacheNamespace, entries: Dict[str, Any]) -> bool:
        """Stamp ``entries`` with the current time and persist them."""
        key = namespace.key
        if key is None:
            return False

        try:
            serialized = TimestampedSnapshot(dict(entries), self.clock()).serialize()
            await self.medium.set_item(key, serialized)
        except Exception as e:
            self.logger.error("Error saving cache snapshot", key=key, error=str(e))
            self._record_error("save")
            return False

        self.logger.debug("Saved cache snapshot", key=key, entries=len(entries))
        await self._notify(key, serialized)
        return True

    async def clear(self, namespace: CacheNamespace) -> bool:
        """Remove a namespace's snapshot entirely."""
        key = namespace.key
        if key is None:
            return False

        try:
            await self.medium.remove_item(key)
        except Exception as e:
            self.logger.error("Error clearing cache snapshot", key=key, error=str(e))
            self._record_error("clear")
            return False

        self.logger.debug("Cleared cache snapshot", key=key)
        await self._notify(key, None)
        return True

    async def _evict(self, key: str):
        try:
            await self.medium.remove_item(key)
        except Exception as e:
            self.logger.error("Error evicting cache snapshot", key=key, error=str(e))
            self._record_error("evict")

    async def _notify(self, key: str, new_value: Optional[str]):
        for listener in list(self._listeners):
            try:
                await listener(key, new_value)
            except Exception as e:
                self.logger.error("Cache write listener failed", key=key, error=str(e))

    def _record_error(self, operation: str):
        if self.metrics:
            self.metrics.increment_counter("storage_errors_total", operation=operation)

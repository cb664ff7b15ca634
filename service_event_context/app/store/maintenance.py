"""
Housekeeping over the raw storage medium: legacy payloads, expired
snapshots of any user, and diagnostics.
"""

import json
from typing import Any, Callable, Dict, List, Optional

from pydantic import BaseModel, Field

from shared.logging import get_logger
from .durable_store import DEFAULT_TTL_MS, epoch_millis
from .medium import StorageMedium
from .namespace import SCOPED_CACHES, TIMESTAMP_FIELD


class ValidSnapshotInfo(BaseModel):
    key: str
    age_minutes: int
    item_count: int


class CacheStats(BaseModel):
    """Snapshot of what the medium currently holds for role/member caches."""
    legacy: List[str] = Field(default_factory=list)
    expired: List[str] = Field(default_factory=list)
    valid: List[ValidSnapshotInfo] = Field(default_factory=list)
    total_size: int = 0


def _is_unscoped(key: str) -> bool:
    return key in SCOPED_CACHES


def _is_scoped(key: str) -> bool:
    return any(key.startswith(f"{name}_") for name in SCOPED_CACHES)


def _parse(raw: Optional[str]) -> Optional[Dict[str, Any]]:
    try:
        data = json.loads(raw or "{}")
    except ValueError:
        return None
    return data if isinstance(data, dict) else None


def _timestamp(data: Dict[str, Any]) -> Optional[int]:
    written_at = data.get(TIMESTAMP_FIELD)
    if isinstance(written_at, bool) or not isinstance(written_at, (int, float)) or not written_at:
        return None
    return int(written_at)


class StoreMaintenance:
    """Sweeps over every role/member key regardless of user."""

    def __init__(self, medium: StorageMedium, ttl_ms: int = DEFAULT_TTL_MS,
                 clock: Callable[[], int] = epoch_millis):
        self.medium = medium
        self.ttl_ms = ttl_ms
        self.clock = clock
        self.logger = get_logger("event_context.store.maintenance")

    async def clear_legacy_format(self) -> int:
        """Remove un-scoped keys and scoped payloads without a timestamp."""
        try:
            doomed = []
            for key in await self.medium.keys():
                if _is_unscoped(key):
                    doomed.append(key)
                elif _is_scoped(key):
                    data = _parse(await self.medium.get_item(key))
                    if data is None or _timestamp(data) is None:
                        doomed.append(key)
            await self._remove_all(doomed)
        except Exception as e:
            self.logger.error("Error clearing legacy cache format", error=str(e))
            return 0

        if doomed:
            self.logger.info("Cleared legacy cache keys", count=len(doomed), keys=doomed)
        return len(doomed)

    async def clear_expired(self) -> int:
        """Remove expired or unparseable scoped snapshots for all users."""
        now = self.clock()
        try:
            doomed = []
            for key in await self.medium.keys():
                if not _is_scoped(key):
                    continue
                data = _parse(await self.medium.get_item(key))
                if data is None:
                    doomed.append(key)
                    continue
                written_at = _timestamp(data)
                if written_at is not None and now - written_at > self.ttl_ms:
                    doomed.append(key)
            await self._remove_all(doomed)
        except Exception as e:
            self.logger.error("Error clearing expired cache", error=str(e))
            return 0

        if doomed:
            self.logger.info("Cleared expired cache keys", count=len(doomed))
        return len(doomed)

    async def cache_stats(self) -> Optional[CacheStats]:
        """Classify every role/member key; ``None`` if the medium is unreadable."""
        now = self.clock()
        stats = CacheStats()
        try:
            for key in await self.medium.keys():
                if _is_unscoped(key):
                    stats.legacy.append(key)
                    continue
                if not _is_scoped(key):
                    continue

                raw = await self.medium.get_item(key) or "{}"
                stats.total_size += len(raw)
                data = _parse(raw)
                written_at = _timestamp(data) if data is not None else None
                if written_at is None:
                    stats.legacy.append(key)
                elif now - written_at > self.ttl_ms:
                    stats.expired.append(key)
                else:
                    stats.valid.append(ValidSnapshotInfo(
                        key=key,
                        age_minutes=(now - written_at) // 60000,
                        item_count=len(data) - 1,
                    ))
        except Exception as e:
            self.logger.error("Error collecting cache stats", error=str(e))
            return None

        return stats

    async def clear_all_event_cache(self) -> int:
        """Remove every role/member key for every user."""
        try:
            doomed = [
                key for key in await self.medium.keys()
                if any(name in key for name in SCOPED_CACHES)
            ]
            await self._remove_all(doomed)
        except Exception as e:
            self.logger.error("Error clearing all event cache", error=str(e))
            return 0

        self.logger.warning("Cleared all event cache", count=len(doomed))
        return len(doomed)

    async def _remove_all(self, keys: List[str]):
        for key in keys:
            await self.medium.remove_item(key)

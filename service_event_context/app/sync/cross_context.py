"""
Keep sibling execution contexts of the same user eventually consistent.
"""

from typing import Optional, TYPE_CHECKING

from shared.logging import get_logger
from ..roles.resolver import RoleResolver
from ..store.durable_store import DurableStore
from ..store.namespace import CacheNamespace, SCOPED_CACHES
from .channel import BroadcastChannel, BroadcastMessage

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from shared.metrics import MetricsCollector


class CrossContextSync:
    """Publish local cache writes and merge writes made by sibling contexts.

    Incoming snapshots only replace the mirror when they differ from it,
    and merging never writes back to the store, so two contexts cannot
    ping-pong the same update.
    """

    def __init__(
        self,
        channel: BroadcastChannel,
        resolver: RoleResolver,
        store: DurableStore,
        *,
        metrics: Optional["MetricsCollector"] = None,
    ):
        self.channel = channel
        self.resolver = resolver
        self.store = store
        self.metrics = metrics
        self.logger = get_logger("event_context.sync.cross_context")
        self.running = False

    async def start(self):
        """Subscribe to siblings and publish on every durable write."""
        if self.running:
            return
        self.channel.subscribe(self.on_remote_update)
        await self.channel.start()
        self.store.add_listener(self.publish)
        self.running = True
        self.logger.info("Cross-context sync started", context_id=self.channel.context_id)

    async def stop(self):
        if not self.running:
            return
        self.store.remove_listener(self.publish)
        self.channel.unsubscribe(self.on_remote_update)
        await self.channel.stop()
        self.running = False
        self.logger.info("Cross-context sync stopped", context_id=self.channel.context_id)

    async def publish(self, key: str, new_value: Optional[str]):
        """Announce a durable write; delivery is best-effort."""
        try:
            await self.channel.publish(key, new_value)
        except Exception as e:
            self.logger.warning("Broadcast publish failed", key=key, error=str(e))
            self._record("out", "failed")
            return
        self._record("out", "sent")

    async def on_remote_update(self, message: BroadcastMessage):
        """Merge a sibling's write into the local mirror."""
        namespace = CacheNamespace.from_key(message.key)
        if namespace is None or namespace.logical_name not in SCOPED_CACHES:
            self._record("in", "ignored")
            return

        if namespace.user_id != self.resolver.user_id:
            self.logger.debug("Ignoring broadcast for another user", key=message.key)
            self._record("in", "ignored")
            return

        entries, written_at = {}, None
        if message.new_value is not None:
            snapshot = self.store.decode_snapshot(message.new_value)
            if snapshot is None:
                self.logger.warning("Ignoring unreadable broadcast snapshot", key=message.key)
                self._record("in", "ignored")
                return
            entries, written_at = snapshot.entries, snapshot.written_at

        if self.resolver.apply_remote_entries(namespace.logical_name, entries, written_at):
            self.logger.debug("Merged sibling cache update", key=message.key, entries=len(entries))
            self._record("in", "merged")
        else:
            self._record("in", "unchanged")

    def _record(self, direction: str, outcome: str):
        if self.metrics:
            self.metrics.increment_counter("broadcasts_total", direction=direction, outcome=outcome)

"""
Composition root for one execution context.
"""

import uuid
from typing import Callable, Optional

from shared.circuit_breaker import CircuitBreaker
from shared.config import EventContextConfig, get_config
from shared.errors import EventContextException
from shared.logging import configure_logging, get_logger, set_context_id
from shared.metrics import MetricsCollector, get_metrics_collector
from .adapters.user_client import UserRoleClient, TokenProvider, AccessDeniedHandler
from .domain.access_guard import EventAccessGuard
from .roles.resolver import RoleResolver, RoleLookupClient
from .session.lifecycle import SessionLifecycle
from .session.signals import LogoutSignal, logout_signal
from .store.durable_store import DurableStore, epoch_millis
from .store.maintenance import StoreMaintenance
from .store.medium import MemoryStorageMedium, RedisStorageMedium, StorageMedium
from .sync.channel import BroadcastChannel, LocalBroadcastHub, RedisBroadcastChannel
from .sync.cross_context import CrossContextSync


class EventContext:
    """Everything one execution context needs, wired together.

    Consumers receive ``resolver``, ``lifecycle`` and ``guard`` from here by
    reference; nothing is reachable through module globals.
    """

    def __init__(
        self,
        context_id: str,
        config: EventContextConfig,
        medium: StorageMedium,
        store: DurableStore,
        resolver: RoleResolver,
        sync: CrossContextSync,
        lifecycle: SessionLifecycle,
        maintenance: StoreMaintenance,
        metrics: MetricsCollector,
    ):
        self.context_id = context_id
        self.config = config
        self.medium = medium
        self.store = store
        self.resolver = resolver
        self.sync = sync
        self.lifecycle = lifecycle
        self.maintenance = maintenance
        self.metrics = metrics
        self.guard = EventAccessGuard(lifecycle, resolver)
        self.logger = get_logger("event_context.context")
        self.started = False

    async def start(self):
        """Connect storage and broadcast, sweep stale data, listen for logout."""
        if self.started:
            return
        configure_logging("event_context", self.config.log_level)
        set_context_id(self.context_id)

        if isinstance(self.medium, RedisStorageMedium):
            await self.medium.start()

        legacy = await self.maintenance.clear_legacy_format()
        expired = await self.maintenance.clear_expired()
        await self.sync.start()
        self.lifecycle.attach()
        self.started = True

        self.logger.info(
            "Event context started",
            context_id=self.context_id,
            storage_backend=self.config.storage_backend,
            legacy_keys_removed=legacy,
            expired_keys_removed=expired
        )

    async def stop(self):
        if not self.started:
            return
        self.lifecycle.detach()
        await self.sync.stop()
        if isinstance(self.medium, RedisStorageMedium):
            await self.medium.stop()
        self.started = False
        self.logger.info("Event context stopped", context_id=self.context_id)


def build_event_context(
    config: Optional[EventContextConfig] = None,
    *,
    context_id: Optional[str] = None,
    medium: Optional[StorageMedium] = None,
    channel: Optional[BroadcastChannel] = None,
    hub: Optional[LocalBroadcastHub] = None,
    client: Optional[RoleLookupClient] = None,
    token_provider: Optional[TokenProvider] = None,
    on_access_denied: Optional[AccessDeniedHandler] = None,
    clock: Callable[[], int] = epoch_millis,
    signal: Optional[LogoutSignal] = None,
    metrics: Optional[MetricsCollector] = None,
) -> EventContext:
    """Build an ``EventContext``; anything not passed in is derived from ``config``."""
    config = config or get_config()
    context_id = context_id or str(uuid.uuid4())
    metrics = metrics or get_metrics_collector("event_context")

    if config.storage_backend not in ("memory", "redis"):
        raise EventContextException(
            "CONFIG_ERROR",
            f"Unknown storage backend: {config.storage_backend}",
            details={"storage_backend": config.storage_backend}
        )

    if medium is None:
        if config.storage_backend == "redis":
            medium = RedisStorageMedium(config.redis_url, prefix=config.storage_prefix)
        else:
            medium = MemoryStorageMedium()

    if channel is None:
        if config.storage_backend == "redis":
            channel = RedisBroadcastChannel(config.redis_url, context_id, channel_name=config.broadcast_channel)
        else:
            channel = (hub or LocalBroadcastHub()).channel(context_id)

    if client is None:
        client = UserRoleClient(
            config.user_service_url,
            token_provider,
            timeout=config.request_timeout_seconds,
            on_access_denied=on_access_denied,
            circuit_breaker=CircuitBreaker(
                failure_threshold=config.circuit_failure_threshold,
                recovery_timeout=config.circuit_recovery_timeout,
                name="role_lookup",
            ),
        )

    store = DurableStore(medium, ttl_ms=config.role_cache_ttl_ms, clock=clock, metrics=metrics)
    resolver = RoleResolver(client, store, metrics=metrics)
    sync = CrossContextSync(channel, resolver, store, metrics=metrics)
    lifecycle = SessionLifecycle(
        resolver,
        store,
        signal=signal or logout_signal,
        selection_caches=config.selection_caches,
        metrics=metrics,
    )
    maintenance = StoreMaintenance(medium, ttl_ms=config.role_cache_ttl_ms, clock=clock)

    return EventContext(
        context_id=context_id,
        config=config,
        medium=medium,
        store=store,
        resolver=resolver,
        sync=sync,
        lifecycle=lifecycle,
        maintenance=maintenance,
        metrics=metrics,
    )

"""
Integration tests for several execution contexts sharing one client.
"""

import pytest
from unittest.mock import AsyncMock

from shared.config import get_config
from shared.errors import EventContextException
from shared.test_helpers import FakeClock, FakeRoleClient, TestDataFactory, HOUR_MS
from service_event_context.app import build_event_context
from service_event_context.app.adapters.user_client import UserRoleClient
from service_event_context.app.session.lifecycle import SessionState
from service_event_context.app.session.signals import LogoutSignal
from service_event_context.app.store import MemoryStorageMedium, RedisStorageMedium
from service_event_context.app.sync.channel import LocalBroadcastHub, RedisBroadcastChannel


def role_client():
    return FakeRoleClient({
        "E1": TestDataFactory.role_response("HoD", "D1", "M1"),
        "E3": TestDataFactory.role_response("Member", "D2", "M3"),
    })


class TestEventContextFlow:
    """Several tabs of one browser profile, modelled as contexts over a shared medium and hub."""

    @pytest.fixture
    def config(self):
        return get_config(log_level="warning")

    @pytest.fixture
    def medium(self):
        return MemoryStorageMedium()

    @pytest.fixture
    def hub(self):
        return LocalBroadcastHub()

    @pytest.fixture
    def clock(self):
        return FakeClock()

    @pytest.fixture
    def signal(self):
        return LogoutSignal()

    @pytest.fixture
    def open_tab(self, config, medium, hub, clock, signal):
        async def _open(context_id, user_id="user-a"):
            context = build_event_context(
                config,
                context_id=context_id,
                medium=medium,
                hub=hub,
                client=role_client(),
                clock=clock,
                signal=signal,
            )
            await context.start()
            if user_id:
                await context.lifecycle.on_authenticated(user_id)
            return context

        return _open

    @pytest.mark.asyncio
    async def test_tabs_converge_on_resolved_roles(self, open_tab):
        first = await open_tab("tab-1")
        second = await open_tab("tab-2")

        decision = await first.guard.authorize("E1", allowed_roles=["HoD"])

        assert decision.allowed is True
        assert second.resolver.get_role_sync("E1") == "HoD"
        assert (await second.guard.authorize("E1", allowed_roles=["HoD"])).allowed is True
        assert second.resolver.client.calls == []

    @pytest.mark.asyncio
    async def test_new_tab_starts_warm_from_durable_store(self, open_tab):
        first = await open_tab("tab-1")
        await first.resolver.fetch_role("E3")

        later = await open_tab("tab-3")

        assert later.resolver.get_role_sync("E3") == "Member"
        assert later.resolver.get_member_sync("E3").department_id == "D2"
        assert later.resolver.client.calls == []

    @pytest.mark.asyncio
    async def test_new_tab_refetches_after_ttl(self, open_tab, clock):
        first = await open_tab("tab-1")
        await first.resolver.fetch_role("E3")

        clock.advance(HOUR_MS + 1)
        later = await open_tab("tab-3")

        assert later.resolver.get_role_sync("E3") == ""
        assert await later.resolver.fetch_role("E3") == "Member"
        assert later.resolver.client.calls_for("E3") == 1

    @pytest.mark.asyncio
    async def test_logout_clears_every_tab(self, open_tab, signal, medium):
        first = await open_tab("tab-1")
        second = await open_tab("tab-2")
        await first.resolver.fetch_role("E1")
        await second.resolver.fetch_role("E3")

        await signal.emit()

        for context in (first, second):
            assert context.lifecycle.state is SessionState.NO_USER
            assert context.resolver.roles_snapshot() == {}
            assert (await context.guard.authorize("E1")).reason == "not_authenticated"
        assert len(medium) == 0

    @pytest.mark.asyncio
    async def test_next_user_never_sees_previous_roles(self, open_tab, signal):
        first = await open_tab("tab-1")
        await first.resolver.fetch_role("E1")
        await signal.emit()

        await first.lifecycle.on_authenticated("user-b")
        first.resolver.client.responses.pop("E1")

        assert first.resolver.get_role_sync("E1") == ""
        assert (await first.guard.authorize("E1")).allowed is False

    @pytest.mark.asyncio
    async def test_start_sweeps_legacy_and_expired_keys(self, open_tab, medium, clock):
        await medium.set_item("eventRoles", '{"E1": "HoD"}')
        await medium.set_item("eventMembers_user-z", '{"E1": {"role": "HoD"}}')
        await medium.set_item("eventRoles_user-y", TestDataFactory.snapshot({"E1": "HoD"}, clock() - 2 * HOUR_MS))

        context = await open_tab("tab-1", user_id=None)

        assert await medium.keys() == []
        assert context.started is True

    @pytest.mark.asyncio
    async def test_stopped_tab_detaches(self, open_tab, signal):
        first = await open_tab("tab-1")
        await first.stop()
        before = signal.receiver_count

        await first.stop()

        assert first.started is False
        assert signal.receiver_count == before

    @pytest.mark.asyncio
    async def test_access_denied_hook_runs_for_guarded_page(self, config, medium, hub, clock, signal):
        hook = AsyncMock()
        context = build_event_context(
            config,
            context_id="tab-1",
            medium=medium,
            hub=hub,
            clock=clock,
            signal=signal,
            on_access_denied=hook,
        )

        assert isinstance(context.resolver.client, UserRoleClient)
        assert context.resolver.client.on_access_denied is hook
        assert context.resolver.client.circuit_breaker.failure_threshold == config.circuit_failure_threshold


class TestBuildEventContext:
    """Test cases for build_event_context."""

    def test_unknown_backend(self):
        with pytest.raises(EventContextException) as exc_info:
            build_event_context(get_config(storage_backend="indexeddb"))

        assert exc_info.value.code == "CONFIG_ERROR"

    def test_redis_backend_wiring(self):
        context = build_event_context(get_config(storage_backend="redis"), context_id="worker-1")

        assert isinstance(context.medium, RedisStorageMedium)
        assert isinstance(context.sync.channel, RedisBroadcastChannel)
        assert context.sync.channel.context_id == "worker-1"

    def test_memory_backend_defaults(self):
        context = build_event_context(get_config())

        assert isinstance(context.medium, MemoryStorageMedium)
        assert context.context_id
        assert context.store.ttl_ms == HOUR_MS

"""
Unit tests for the durable store.
"""

import json
import pytest
from unittest.mock import AsyncMock

from shared.metrics import MetricsCollector
from shared.test_helpers import FakeClock, TestDataFactory, HOUR_MS
from service_event_context.app.store import (
    CacheNamespace,
    DurableStore,
    MemoryStorageMedium,
    ROLE_CACHE,
    MEMBER_CACHE,
)


class TestDurableStore:
    """Test cases for DurableStore."""

    @pytest.fixture
    def clock(self):
        return FakeClock()

    @pytest.fixture
    def medium(self):
        return MemoryStorageMedium()

    @pytest.fixture
    def metrics(self):
        return MetricsCollector()

    @pytest.fixture
    def store(self, medium, clock, metrics):
        return DurableStore(medium, ttl_ms=HOUR_MS, clock=clock, metrics=metrics)

    @pytest.fixture
    def roles_ns(self):
        return CacheNamespace(ROLE_CACHE, "user-a")

    @pytest.mark.asyncio
    async def test_save_stamps_and_persists(self, store, medium, clock, roles_ns):
        """Saved entries are stored with a write timestamp under the scoped key."""
        assert await store.save(roles_ns, {"E1": "HoD", "E2": ""}) is True

        raw = await medium.get_item("eventRoles_user-a")
        assert json.loads(raw) == {"E1": "HoD", "E2": "", "_timestamp": clock()}
        assert await store.load(roles_ns) == {"E1": "HoD", "E2": ""}

    @pytest.mark.asyncio
    async def test_load_missing_namespace_is_empty(self, store, roles_ns):
        assert await store.load(roles_ns) == {}

    @pytest.mark.asyncio
    async def test_namespace_without_user_is_inert(self, store, medium):
        """No user id means nothing is read or written."""
        inert = CacheNamespace(ROLE_CACHE, None)

        assert await store.save(inert, {"E1": "HoD"}) is False
        assert await store.load(inert) == {}
        assert await store.clear(inert) is False
        assert len(medium) == 0

    @pytest.mark.asyncio
    async def test_users_do_not_share_snapshots(self, store):
        await store.save(CacheNamespace(ROLE_CACHE, "user-a"), {"E1": "HoD"})
        await store.save(CacheNamespace(ROLE_CACHE, "user-b"), {"E1": "Member"})

        assert await store.load(CacheNamespace(ROLE_CACHE, "user-a")) == {"E1": "HoD"}
        assert await store.load(CacheNamespace(ROLE_CACHE, "user-b")) == {"E1": "Member"}

    @pytest.mark.asyncio
    async def test_snapshot_valid_at_exact_ttl(self, store, clock, roles_ns):
        await store.save(roles_ns, {"E1": "HoD"})
        clock.advance(HOUR_MS)

        assert await store.load(roles_ns) == {"E1": "HoD"}

    @pytest.mark.asyncio
    async def test_expired_snapshot_is_evicted(self, store, medium, clock, roles_ns):
        """A snapshot one millisecond past the TTL reads as absent and is removed."""
        await store.save(roles_ns, {"E1": "HoD"})
        clock.advance(HOUR_MS + 1)

        assert await store.load(roles_ns) == {}
        assert await medium.get_item("eventRoles_user-a") is None

    @pytest.mark.asyncio
    @pytest.mark.parametrize("raw", ["{not json", "[1, 2, 3]", '{"E1": "HoD"}', '{"E1": "HoD", "_timestamp": "yesterday"}'])
    async def test_unreadable_snapshot_is_evicted(self, store, medium, roles_ns, raw):
        """Corrupt, non-object and legacy (untimestamped) payloads are treated as misses."""
        await medium.set_item("eventRoles_user-a", raw)

        assert await store.load(roles_ns) == {}
        assert await medium.get_item("eventRoles_user-a") is None

    @pytest.mark.asyncio
    async def test_clear_removes_snapshot(self, store, medium, roles_ns):
        await store.save(roles_ns, {"E1": "HoD"})

        assert await store.clear(roles_ns) is True
        assert await medium.get_item("eventRoles_user-a") is None

    @pytest.mark.asyncio
    async def test_save_swallows_quota_errors(self, clock, metrics, roles_ns):
        """Storage failures on save are reported, never raised."""
        store = DurableStore(MemoryStorageMedium(quota_bytes=16), ttl_ms=HOUR_MS, clock=clock, metrics=metrics)

        assert await store.save(roles_ns, {"E1": "HoD", "E2": "Member"}) is False
        assert metrics.get_sample("role_cache_storage_errors_total", operation="save") == 1.0

    @pytest.mark.asyncio
    async def test_save_swallows_serialization_errors(self, store, medium, roles_ns):
        assert await store.save(roles_ns, {"E1": object()}) is False
        assert len(medium) == 0

    @pytest.mark.asyncio
    async def test_disabled_storage_is_tolerated(self, store, medium, metrics, roles_ns):
        await store.save(roles_ns, {"E1": "HoD"})
        medium.enabled = False

        assert await store.load(roles_ns) == {}
        assert await store.save(roles_ns, {"E1": "HoD"}) is False
        assert await store.clear(roles_ns) is False
        assert metrics.get_sample("role_cache_storage_errors_total", operation="clear") == 1.0

    @pytest.mark.asyncio
    async def test_listeners_see_writes_and_clears(self, store, roles_ns):
        listener = AsyncMock()
        store.add_listener(listener)

        await store.save(roles_ns, {"E1": "HoD"})
        key, serialized = listener.call_args.args
        assert key == "eventRoles_user-a"
        assert store.decode(serialized) == {"E1": "HoD"}

        await store.clear(roles_ns)
        listener.assert_called_with("eventRoles_user-a", None)
        assert listener.call_count == 2

    @pytest.mark.asyncio
    async def test_listeners_skipped_when_save_fails(self, store, medium, roles_ns):
        listener = AsyncMock()
        store.add_listener(listener)
        medium.enabled = False

        await store.save(roles_ns, {"E1": "HoD"})

        listener.assert_not_called()

    @pytest.mark.asyncio
    async def test_failing_listener_does_not_fail_save(self, store, roles_ns):
        store.add_listener(AsyncMock(side_effect=RuntimeError("channel closed")))

        assert await store.save(roles_ns, {"E1": "HoD"}) is True

    @pytest.mark.asyncio
    async def test_removed_listener_is_not_called(self, store, roles_ns):
        listener = AsyncMock()
        store.add_listener(listener)
        store.remove_listener(listener)

        await store.save(roles_ns, {"E1": "HoD"})

        listener.assert_not_called()

    def test_decode(self, store, clock):
        fresh = TestDataFactory.snapshot({"E1": "HoD"}, clock())
        stale = TestDataFactory.snapshot({"E1": "HoD"}, clock() - HOUR_MS - 1)

        assert store.decode(fresh) == {"E1": "HoD"}
        assert store.decode(stale) is None
        assert store.decode("garbage") is None
        assert store.decode(None) is None

    @pytest.mark.asyncio
    async def test_member_snapshot_round_trip(self, store):
        members_ns = CacheNamespace(MEMBER_CACHE, "user-a")
        entries = {"E1": {"role": "HoD", "departmentId": "D1", "memberRecordId": "M1"}}

        await store.save(members_ns, entries)

        assert await store.load(members_ns) == entries


class TestCacheNamespace:
    """Test cases for CacheNamespace."""

    def test_key_format(self):
        assert CacheNamespace(ROLE_CACHE, "user-a").key == "eventRoles_user-a"
        assert CacheNamespace(MEMBER_CACHE, "user-a").key == "eventMembers_user-a"
        assert CacheNamespace(ROLE_CACHE).key is None

    def test_from_key(self):
        assert CacheNamespace.from_key("eventRoles_user_a") == CacheNamespace(ROLE_CACHE, "user_a")
        assert CacheNamespace.from_key("eventRoles") is None
        assert CacheNamespace.from_key("eventRoles_") is None

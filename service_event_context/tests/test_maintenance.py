"""
Unit tests for storage maintenance sweeps.
"""

import pytest

from shared.test_helpers import FakeClock, TestDataFactory, HOUR_MS
from service_event_context.app.store import MemoryStorageMedium, StoreMaintenance


class TestStoreMaintenance:
    """Test cases for StoreMaintenance."""

    @pytest.fixture
    def clock(self):
        return FakeClock()

    @pytest.fixture
    def medium(self):
        return MemoryStorageMedium()

    @pytest.fixture
    def maintenance(self, medium, clock):
        return StoreMaintenance(medium, ttl_ms=HOUR_MS, clock=clock)

    async def _seed(self, medium, clock):
        now = clock()
        await medium.set_item("eventRoles", '{"E1": "HoD"}')
        await medium.set_item("eventMembers_user-a", '{"E1": {"role": "HoD"}}')
        await medium.set_item("eventRoles_user-b", TestDataFactory.snapshot({"E1": "HoD", "E2": ""}, now - 5 * 60 * 1000))
        await medium.set_item("eventMembers_user-c", TestDataFactory.snapshot({"E1": {"role": "HoD"}}, now - 2 * HOUR_MS))
        await medium.set_item("eventRoles_user-d", "{broken")
        await medium.set_item("selectedEvent_user-b", '{"eventId": "E1"}')

    @pytest.mark.asyncio
    async def test_clear_legacy_format(self, maintenance, medium, clock):
        """Un-scoped keys and untimestamped payloads go; everything else stays."""
        await self._seed(medium, clock)

        removed = await maintenance.clear_legacy_format()

        assert removed == 3
        assert sorted(await medium.keys()) == [
            "eventMembers_user-c",
            "eventRoles_user-b",
            "selectedEvent_user-b",
        ]

    @pytest.mark.asyncio
    async def test_clear_expired(self, maintenance, medium, clock):
        await self._seed(medium, clock)

        removed = await maintenance.clear_expired()

        assert removed == 2
        assert await medium.get_item("eventMembers_user-c") is None
        assert await medium.get_item("eventRoles_user-d") is None
        assert await medium.get_item("eventRoles_user-b") is not None

    @pytest.mark.asyncio
    async def test_cache_stats(self, maintenance, medium, clock):
        await self._seed(medium, clock)

        stats = await maintenance.cache_stats()

        assert sorted(stats.legacy) == ["eventMembers_user-a", "eventRoles", "eventRoles_user-d"]
        assert stats.expired == ["eventMembers_user-c"]
        assert len(stats.valid) == 1
        assert stats.valid[0].key == "eventRoles_user-b"
        assert stats.valid[0].age_minutes == 5
        assert stats.valid[0].item_count == 2
        assert stats.total_size > 0

    @pytest.mark.asyncio
    async def test_clear_all_event_cache(self, maintenance, medium, clock):
        await self._seed(medium, clock)

        removed = await maintenance.clear_all_event_cache()

        assert removed == 5
        assert await medium.keys() == ["selectedEvent_user-b"]

    @pytest.mark.asyncio
    async def test_failures_are_reported_not_raised(self, maintenance, medium, clock):
        await self._seed(medium, clock)
        medium.enabled = False

        assert await maintenance.clear_legacy_format() == 0
        assert await maintenance.clear_expired() == 0
        assert await maintenance.clear_all_event_cache() == 0
        assert await maintenance.cache_stats() is None

    @pytest.mark.asyncio
    async def test_empty_medium(self, maintenance):
        assert await maintenance.clear_legacy_format() == 0
        assert await maintenance.clear_expired() == 0
        assert (await maintenance.cache_stats()).valid == []

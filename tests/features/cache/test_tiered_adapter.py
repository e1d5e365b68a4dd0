"""Tests for the two-level decision cache."""

import pytest
from unittest.mock import AsyncMock

from neo_authz.features.cache.adapters.memory_adapter import MemoryPermissionCache
from neo_authz.features.cache.adapters.tiered_adapter import TieredPermissionCache
from neo_authz.features.cache.keys import build_cache_key

KEY = build_cache_key("u1", "t1", "documents", "view")


@pytest.fixture
def l1():
    return MemoryPermissionCache(default_ttl=300)


@pytest.fixture
def l2():
    shared = AsyncMock()
    shared.get = AsyncMock(return_value=None)
    shared.invalidate_by_principal = AsyncMock(return_value=3)
    shared.invalidate_by_tenant = AsyncMock(return_value=4)
    return shared


@pytest.fixture
def tiered(l1, l2):
    return TieredPermissionCache(l1, l2, l1_ttl=30)


class TestTieredPermissionCache:
    """Test read-through and write-through between tiers."""

    @pytest.mark.asyncio
    async def test_l1_hit_skips_l2(self, tiered, l1, l2):
        await l1.set(KEY, True)

        assert await tiered.get(KEY) is True
        l2.get.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_l2_hit_backfills_l1(self, tiered, l1, l2):
        l2.get.return_value = False

        assert await tiered.get(KEY) is False
        assert await l1.get(KEY) is False

    @pytest.mark.asyncio
    async def test_miss(self, tiered, l1):
        assert await tiered.get(KEY) is None
        assert await l1.size() == 0

    @pytest.mark.asyncio
    async def test_set_writes_both_tiers(self, tiered, l1, l2):
        assert await tiered.set(KEY, True, ttl=300) is True

        assert await l1.get(KEY) is True
        l2.set.assert_awaited_once_with(KEY, True, ttl=300, expected_generation=None)

    @pytest.mark.asyncio
    async def test_generation_pairs_both_tiers(self, tiered, l1, l2):
        l2.generation.return_value = ("0", "2", "0")

        assert await tiered.generation(KEY) == ((0, 0, 0), ("0", "2", "0"))

    @pytest.mark.asyncio
    async def test_skipped_l2_write_leaves_l1_empty(self, tiered, l1, l2):
        l2.set.return_value = False

        assert await tiered.set(KEY, True, expected_generation=((0, 0, 0), ("0", "1", "0"))) is False

        assert l2.set.await_args.kwargs["expected_generation"] == ("0", "1", "0")
        assert await l1.size() == 0

    @pytest.mark.asyncio
    async def test_stale_l1_snapshot_skips_l1(self, tiered, l1, l2):
        l2.set.return_value = True
        snapshot = await l1.generation(KEY)
        await l1.invalidate_by_principal("u1")

        assert await tiered.set(KEY, True, expected_generation=(snapshot, ("0", "0", "0"))) is False
        assert await l1.size() == 0

        assert await l1.get(KEY) is True
        l2.set.assert_awaited_once_with(KEY, True, ttl=300)

    @pytest.mark.asyncio
    async def test_invalidation_reaches_both_tiers(self, tiered, l1, l2):
        await l1.set(KEY, True)

        assert await tiered.invalidate_by_principal("u1") == 4
        assert await tiered.invalidate_by_tenant("t1") == 4
        assert await l1.size() == 0
        l2.invalidate_by_principal.assert_awaited_once_with("u1")
        l2.invalidate_by_tenant.assert_awaited_once_with("t1")

    @pytest.mark.asyncio
    async def test_local_invalidation_leaves_l2(self, tiered, l1, l2):
        await l1.set(KEY, True)

        assert await tiered.invalidate_local_principal("u1") == 1
        await tiered.clear_local()

        l2.invalidate_by_principal.assert_not_awaited()
        l2.clear.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_clear(self, tiered, l1, l2):
        await l1.set(KEY, True)

        await tiered.clear()

        assert await l1.size() == 0
        l2.clear.assert_awaited_once()

"""
Tests for analytics result caching and in-flight deduplication.
"""

import asyncio

import pytest
from unittest.mock import AsyncMock

from core.cache import CacheService
from modules.sales_analytics.utils.cache_manager import SalesAnalyticsCacheManager


@pytest.fixture
def cache_manager():
    return SalesAnalyticsCacheManager(backend=CacheService(), default_ttl=60)


class TestCacheKeys:
    def test_key_is_scoped_by_tenant_and_namespace(self, cache_manager):
        key = cache_manager.generate_cache_key("t1", "overview", as_of="2024-03-01")
        assert key.startswith("sales_analytics:t1:overview:")

    def test_parameter_order_does_not_matter(self, cache_manager):
        first = cache_manager.generate_cache_key("t1", "overview", a=1, b=2)
        second = cache_manager.generate_cache_key("t1", "overview", b=2, a=1)
        assert first == second

    def test_different_filters_give_different_keys(self, cache_manager):
        first = cache_manager.generate_cache_key("t1", "overview", filters={"client_ids": ["1"]})
        second = cache_manager.generate_cache_key("t1", "overview", filters={"client_ids": ["2"]})
        assert first != second


class TestGetOrCompute:
    """Test caching behaviour"""

    @pytest.mark.asyncio
    async def test_second_call_hits_cache(self, cache_manager):
        compute = AsyncMock(return_value=[{"month": "2024-03"}])

        first = await cache_manager.get_or_compute("k", compute)
        second = await cache_manager.get_or_compute("k", compute)

        assert first == second == [{"month": "2024-03"}]
        compute.assert_awaited_once()
        assert cache_manager.get_cache_stats()["hits"] == 1

    @pytest.mark.asyncio
    async def test_force_refresh_recomputes(self, cache_manager):
        compute = AsyncMock(return_value=1)

        await cache_manager.get_or_compute("k", compute)
        await cache_manager.get_or_compute("k", compute, force_refresh=True)

        assert compute.await_count == 2

    @pytest.mark.asyncio
    async def test_failures_are_not_cached(self, cache_manager):
        compute = AsyncMock(side_effect=[RuntimeError("boom"), 5])

        with pytest.raises(RuntimeError):
            await cache_manager.get_or_compute("k", compute)

        assert await cache_manager.get_or_compute("k", compute) == 5

    @pytest.mark.asyncio
    async def test_concurrent_identical_requests_share_one_computation(self, cache_manager):
        release = asyncio.Event()
        calls = []

        async def compute():
            calls.append(1)
            await release.wait()
            return {"value": 42}

        first = asyncio.ensure_future(cache_manager.get_or_compute("k", compute))
        second = asyncio.ensure_future(cache_manager.get_or_compute("k", compute))
        await asyncio.sleep(0)
        release.set()

        assert await first == {"value": 42}
        assert await second == {"value": 42}
        assert len(calls) == 1
        assert cache_manager.get_cache_stats()["shared"] == 1

    @pytest.mark.asyncio
    async def test_cancelled_caller_does_not_cancel_computation(self, cache_manager):
        release = asyncio.Event()

        async def compute():
            await release.wait()
            return "done"

        abandoned = asyncio.ensure_future(cache_manager.get_or_compute("k", compute))
        await asyncio.sleep(0)
        abandoned.cancel()
        with pytest.raises(asyncio.CancelledError):
            await abandoned

        waiting = asyncio.ensure_future(cache_manager.get_or_compute("k", compute))
        await asyncio.sleep(0)
        release.set()

        assert await waiting == "done"
        assert await cache_manager.backend.get("k") == '"done"'


class TestInvalidation:
    @pytest.mark.asyncio
    async def test_invalidate_tenant_only_drops_that_tenant(self, cache_manager):
        key_t1 = cache_manager.generate_cache_key("t1", "overview")
        key_t2 = cache_manager.generate_cache_key("t2", "overview")
        await cache_manager.get_or_compute(key_t1, AsyncMock(return_value=1))
        await cache_manager.get_or_compute(key_t2, AsyncMock(return_value=2))

        removed = await cache_manager.invalidate_tenant("t1")

        assert removed == 1
        assert await cache_manager.backend.get(key_t1) is None
        assert await cache_manager.backend.get(key_t2) == "2"

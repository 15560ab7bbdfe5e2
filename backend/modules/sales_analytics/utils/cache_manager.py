# backend/modules/sales_analytics/utils/cache_manager.py

"""
Result caching for sales analytics queries.

Results are cached as JSON under keys scoped by tenant, query namespace and
a hash of the filter set and date window. Concurrent identical requests
share one in-flight computation; a caller that goes away does not cancel it.
"""

import json
import hashlib
import asyncio
from typing import Any, Awaitable, Callable, Dict, Optional
import logging

from core.cache import cache_service
from core.config import settings
from ..constants import CACHE_PREFIX

logger = logging.getLogger(__name__)


class SalesAnalyticsCacheManager:
    """TTL cache with in-flight deduplication for analytics results"""

    def __init__(self, backend=None, default_ttl: Optional[int] = None):
        self.backend = backend or cache_service
        self.cache_prefix = CACHE_PREFIX
        self.default_ttl = default_ttl or settings.analytics_cache_ttl_seconds
        self._in_flight: Dict[str, asyncio.Future] = {}
        self.cache_stats = {"hits": 0, "misses": 0, "shared": 0, "invalidations": 0}

    def generate_cache_key(self, tenant_id: str, namespace: str, **params) -> str:
        """Key for (tenant, namespace, params); params order does not matter"""
        key_string = json.dumps(params, sort_keys=True, default=str)
        key_hash = hashlib.md5(key_string.encode()).hexdigest()[:16]
        return f"{self.cache_prefix}:{tenant_id}:{namespace}:{key_hash}"

    async def get_or_compute(
        self,
        key: str,
        compute_func: Callable[[], Awaitable[Any]],
        ttl: Optional[int] = None,
        force_refresh: bool = False,
    ) -> Any:
        """Get a cached value or compute it once for all concurrent callers"""
        if not force_refresh:
            cached_value = await self.backend.get(key)
            if cached_value is not None:
                try:
                    value = json.loads(cached_value)
                    self.cache_stats["hits"] += 1
                    return value
                except json.JSONDecodeError:
                    logger.error(f"Failed to decode cached value for key: {key}")

        task = self._in_flight.get(key)
        if task is None:
            self.cache_stats["misses"] += 1
            task = asyncio.ensure_future(
                self._compute_and_store(key, compute_func, ttl or self.default_ttl)
            )
            self._in_flight[key] = task
            task.add_done_callback(lambda done: self._release(key, done))
        else:
            self.cache_stats["shared"] += 1
            logger.debug(f"Joining in-flight computation for key: {key}")

        # Shielded so a cancelled caller leaves the shared computation running
        return await asyncio.shield(task)

    async def _compute_and_store(
        self, key: str, compute_func: Callable[[], Awaitable[Any]], ttl: int
    ) -> Any:
        value = await compute_func()
        await self.backend.set(key, json.dumps(value, default=str), ttl=ttl)
        return value

    def _release(self, key: str, task: asyncio.Future) -> None:
        if self._in_flight.get(key) is task:
            del self._in_flight[key]
        # Mark the exception retrieved when every caller has gone away
        if not task.cancelled() and task.exception() is not None:
            logger.debug(f"Computation for key {key} failed: {task.exception()}")

    async def invalidate_tenant(self, tenant_id: str) -> int:
        """Drop every cached result of a tenant"""
        count = await self.backend.delete_pattern(f"{self.cache_prefix}:{tenant_id}:*")
        self.cache_stats["invalidations"] += 1
        logger.info(f"Invalidated {count} cached analytics results for tenant {tenant_id}")
        return count

    def get_cache_stats(self) -> Dict[str, Any]:
        total = self.cache_stats["hits"] + self.cache_stats["misses"]
        hit_rate = (self.cache_stats["hits"] / total * 100) if total > 0 else 0
        return {
            **self.cache_stats,
            "total_requests": total,
            "hit_rate": f"{hit_rate:.2f}%",
        }


# Global cache manager instance
sales_analytics_cache = SalesAnalyticsCacheManager()

"""
CachedJobsService - memoizes lookup responses.

Lookups are side-effect free, so identical requests can be answered from
the cache until the entry expires.
"""
import hashlib
import json
import logging
from typing import Any, Dict, List, Optional, Sequence

from jobs_table.services.base import JobsService
from jobs_table.types.query import GetJobsResult, GroupJobsResult, JobFilter, JobOrder

logger = logging.getLogger(__name__)


class CachedJobsService(JobsService):
    def __init__(self, inner: JobsService, cache, ttl: Optional[int] = None):
        self.inner = inner
        self.cache = cache
        self.ttl = ttl
        self._cache_hits = 0
        self._cache_misses = 0

    def _cache_key(self, operation: str, **params: Any) -> str:
        cache_data = {"operation": operation, **params}
        cache_key_str = json.dumps(cache_data, sort_keys=True, default=str)
        return f"jobs:{operation}:{hashlib.sha256(cache_key_str.encode()).hexdigest()[:16]}"

    @staticmethod
    def _filters_key(filters: Sequence[JobFilter]) -> List[Dict[str, Any]]:
        return [{"field": f.field, "value": f.value} for f in filters]

    async def get_jobs(
        self,
        filters: Sequence[JobFilter],
        order: JobOrder,
        skip: int,
        take: Optional[int],
    ) -> GetJobsResult:
        key = self._cache_key(
            "get_jobs",
            filters=self._filters_key(filters),
            order=[order.field, order.direction],
            skip=skip,
            take=take,
        )
        cached = self.cache.get(key)
        if cached is not None:
            self._cache_hits += 1
            return cached

        self._cache_misses += 1
        result = await self.inner.get_jobs(filters, order, skip, take)
        self.cache.set(key, result, ttl=self.ttl)
        return result

    async def group_jobs(
        self,
        filters: Sequence[JobFilter],
        order: JobOrder,
        grouped_field: str,
        aggregates: List[str],
        skip: int,
        take: Optional[int],
    ) -> GroupJobsResult:
        key = self._cache_key(
            "group_jobs",
            filters=self._filters_key(filters),
            order=[order.field, order.direction],
            grouped_field=grouped_field,
            aggregates=sorted(aggregates),
            skip=skip,
            take=take,
        )
        cached = self.cache.get(key)
        if cached is not None:
            self._cache_hits += 1
            return cached

        self._cache_misses += 1
        result = await self.inner.group_jobs(filters, order, grouped_field, aggregates, skip, take)
        self.cache.set(key, result, ttl=self.ttl)
        return result

    def get_stats(self) -> Dict[str, int]:
        return {"cache_hits": self._cache_hits, "cache_misses": self._cache_misses}

"""
Pattern-based invalidation of cached responses.
"""

from typing import Iterable, Optional

from shared.logging import get_logger
from shared.metrics import MetricsCollector

from .entry import pattern_prefix
from .middleware import CacheWriter
from .store_client import RedisStoreClient


class CacheInvalidator:
    """Deletes every cached response whose key starts with ``cache:<pattern>``."""

    def __init__(
        self,
        store: RedisStoreClient,
        writer: Optional[CacheWriter] = None,
        metrics: Optional[MetricsCollector] = None,
    ):
        self.store = store
        self.writer = writer
        self.metrics = metrics
        self.logger = get_logger("clinic.cache.invalidation")

    async def invalidate(self, pattern: str) -> int:
        """
        Sweep all entries under ``pattern`` and return how many were deleted.

        Best effort: errors are logged and reported as zero deletions, so a
        write handler whose mutation already succeeded is never failed by
        cache cleanup. Pattern breadth is not checked.

        Writes still pending under the pattern are awaited first, so a
        response captured before the mutation cannot land after the sweep.
        """
        if not self.store.available:
            return 0

        prefix = pattern_prefix(pattern)
        try:
            if self.writer is not None:
                await self.writer.settle(prefix)
            keys = await self.store.scan_by_prefix(prefix)
            if not keys:
                self._record("empty")
                return 0

            deleted = await self.store.delete_keys(keys)
        except Exception as exc:
            self.logger.error("Clear cache error", pattern=pattern, error=str(exc))
            self._record("error")
            return 0

        self.logger.info("Cache cleared", pattern=pattern, count=deleted)
        self._record("cleared", deleted)
        return deleted

    async def invalidate_many(self, patterns: Iterable[str]) -> int:
        """Invalidate several resource families; returns the total deleted."""
        total = 0
        for pattern in dict.fromkeys(patterns):
            total += await self.invalidate(pattern)
        return total

    def _record(self, result: str, deleted: int = 0) -> None:
        if not self.metrics:
            return
        self.metrics.increment_counter("cache_invalidations_total", result=result)
        if deleted:
            self.metrics.increment_counter("cache_invalidated_keys_total", amount=deleted)

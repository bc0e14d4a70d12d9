"""
Read-through response cache middleware.
"""

import asyncio
from typing import Dict, Optional, Sequence

from starlette.responses import Response
from starlette.types import ASGIApp, Receive, Scope, Send

from shared.errors import SerializationError
from shared.logging import get_logger
from shared.metrics import MetricsCollector

from .entry import CacheEntry, key_from_scope
from .sinks import CachingSink, SendSink
from .store_client import RedisStoreClient


DEFAULT_TTL_SECONDS = 300
CACHE_STATUS_HEADER = "X-Cache"


class CacheWriter:
    """
    Persists captured responses in detached tasks.

    The request path only schedules; failures are reported through this
    writer's own log channel and metrics. Pending writes are tracked by
    key so invalidation can wait for the ones it is about to sweep.
    """

    def __init__(self, store: RedisStoreClient, metrics: Optional[MetricsCollector] = None):
        self.store = store
        self.metrics = metrics
        self.logger = get_logger("clinic.cache.writer")
        self._pending: Dict[asyncio.Task, str] = {}

    @property
    def pending(self) -> int:
        return len(self._pending)

    def schedule(self, entry: CacheEntry) -> asyncio.Task:
        task = asyncio.create_task(self._write(entry))
        self._pending[task] = entry.key
        task.add_done_callback(self._forget)
        return task

    def _forget(self, task: asyncio.Task) -> None:
        self._pending.pop(task, None)

    async def _write(self, entry: CacheEntry) -> bool:
        try:
            stored = await self.store.set_with_expiry(entry.key, entry.to_bytes(), entry.ttl_seconds)
        except Exception as exc:
            self.logger.error("Cache write error", key=entry.key, error=str(exc))
            self._record("error")
            return False

        if stored:
            self.logger.debug("Cached response", key=entry.key, ttl=entry.ttl_seconds, size=len(entry.payload))
            self._record("stored")
        else:
            self._record("failed")
        return stored

    def _record(self, result: str) -> None:
        if self.metrics:
            self.metrics.increment_counter("cache_writes_total", result=result)

    async def settle(self, prefix: str) -> int:
        """Wait for pending writes whose key starts with ``prefix``; returns how many."""
        tasks = [task for task, key in self._pending.items() if key.startswith(prefix)]
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        return len(tasks)

    async def drain(self) -> None:
        """Wait for every scheduled write to finish."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)


class ResponseCacheMiddleware:
    """
    ASGI middleware serving cached GET responses and populating misses.

    Only GET requests inside ``include_prefixes`` (all paths when None) and
    outside ``exclude_prefixes`` are considered, and only while the store is
    available. Cache failures of any kind fall through to the downstream app.
    """

    def __init__(
        self,
        app: ASGIApp,
        store: RedisStoreClient,
        writer: Optional[CacheWriter] = None,
        ttl_seconds: int = DEFAULT_TTL_SECONDS,
        include_prefixes: Optional[Sequence[str]] = None,
        exclude_prefixes: Sequence[str] = (),
        metrics: Optional[MetricsCollector] = None,
    ):
        if isinstance(ttl_seconds, bool) or not isinstance(ttl_seconds, int) or ttl_seconds < 1:
            raise ValueError(f"ttl_seconds must be a positive integer, got {ttl_seconds!r}")

        self.app = app
        self.store = store
        self.metrics = metrics
        self.writer = writer or CacheWriter(store, metrics)
        self.ttl_seconds = ttl_seconds
        self.include_prefixes = tuple(include_prefixes) if include_prefixes is not None else None
        self.exclude_prefixes = tuple(exclude_prefixes)
        self.logger = get_logger("clinic.cache.middleware")

    def is_cacheable(self, scope: Scope) -> bool:
        if scope["type"] != "http" or scope.get("method") != "GET":
            return False
        if not self.store.available:
            return False

        path = scope.get("path", "")
        if self.include_prefixes is not None and not path.startswith(self.include_prefixes):
            return False
        return not (self.exclude_prefixes and path.startswith(self.exclude_prefixes))

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if not self.is_cacheable(scope):
            await self.app(scope, receive, send)
            return

        key = key_from_scope(scope)
        entry = await self._lookup(key)
        if entry is not None:
            self.logger.debug("Cache hit", key=key)
            self._record("hit")
            await self._replay(entry, scope, receive, send)
            return

        self._record("miss")

        async def populate(status_code: int, media_type: Optional[str], body: bytes) -> None:
            self._populate(key, status_code, media_type, body)

        sink = CachingSink(SendSink(send), populate)
        await self.app(scope, receive, sink)

    async def _lookup(self, key: str) -> Optional[CacheEntry]:
        try:
            raw = await self.store.get(key)
            if raw is None:
                return None
            entry = CacheEntry.from_bytes(raw)
        except SerializationError as exc:
            self.logger.warning("Discarding undecodable cache entry", key=key, error=exc.message)
            self._record("error")
            return None
        except Exception as exc:
            self.logger.error("Cache middleware error", key=key, error=str(exc))
            self._record("error")
            return None

        if entry.is_expired():
            return None
        return entry

    def _populate(self, key: str, status_code: int, media_type: Optional[str], body: bytes) -> None:
        try:
            entry = CacheEntry.capture(
                key,
                body,
                self.ttl_seconds,
                status_code=status_code,
                media_type=media_type,
            )
            self.writer.schedule(entry)
        except Exception as exc:
            self.logger.error("Cache population error", key=key, error=str(exc))

    async def _replay(self, entry: CacheEntry, scope: Scope, receive: Receive, send: Send) -> None:
        response = Response(
            content=entry.payload,
            status_code=entry.status_code,
            media_type=entry.media_type,
            headers={CACHE_STATUS_HEADER: "HIT"},
        )
        await response(scope, receive, send)

    def _record(self, result: str) -> None:
        if self.metrics:
            self.metrics.increment_counter("cache_lookups_total", result=result)

"""
Clinic API service.
"""

from datetime import datetime, timezone
from typing import Any, Dict, Optional

from fastapi import Body, Query

from shared.base_service import BaseService

from service_clinic.app.adapters.record_store import InMemoryRecordStore
from service_clinic.app.caching import (
    CACHE_PREFIX,
    CacheInvalidator,
    CacheWriter,
    RedisStoreClient,
    ResponseCacheMiddleware,
    StoreSettings,
)
from service_clinic.app.domain.pagination import get_pagination_params, paginate


API_PREFIX = "/api"
DASHBOARD_PATH = f"{API_PREFIX}/dashboard"
CACHE_ADMIN_PATH = f"{API_PREFIX}/cache"


class ClinicApiService(BaseService):
    """Clinic API service implementation."""

    def __init__(
        self,
        store: Optional[RedisStoreClient] = None,
        records: Optional[InMemoryRecordStore] = None,
    ):
        self._store_override = store
        self.records = records or InMemoryRecordStore()
        super().__init__("clinic", 8000)

        self.invalidator = CacheInvalidator(self.store, writer=self.cache_writer, metrics=self.metrics)

        # Fixed paths first so they are not captured by /api/{collection}/{record_id}
        self._setup_cache_routes()
        self._setup_dashboard_routes()
        self._setup_record_routes()

        self.app.state.clinic_service = self

    def _setup_middleware(self):
        """Set up the response cache ahead of the base middleware."""
        self.store = self._store_override or RedisStoreClient.configure(
            StoreSettings.from_config(self.config)
        )
        self.cache_writer = CacheWriter(self.store, metrics=self.metrics)

        # Registered first so it sits innermost; timing and CORS also see cache hits
        self.app.add_middleware(
            ResponseCacheMiddleware,
            store=self.store,
            writer=self.cache_writer,
            ttl_seconds=self.config.cache_ttl_seconds,
            include_prefixes=(f"{API_PREFIX}/",),
            exclude_prefixes=(CACHE_ADMIN_PATH,),
            metrics=self.metrics,
        )
        super()._setup_middleware()

    async def on_startup(self):
        await self.store.connect()

    async def on_shutdown(self):
        await self.cache_writer.drain()
        await self.store.close()

    async def _check_dependencies(self) -> Dict[str, str]:
        if not self.store.available:
            return {"redis": "disabled"}
        return {"redis": "ok" if await self.store.ping() else "error"}

    async def _invalidate_collection(self, collection: str) -> int:
        """Drop cached reads of ``collection`` and of the dashboard built from it."""
        return await self.invalidator.invalidate_many([
            f"{API_PREFIX}/{collection}",
            DASHBOARD_PATH,
        ])

    def _setup_cache_routes(self):
        """Set up cache administration routes."""

        @self.app.get(f"{CACHE_ADMIN_PATH}/stats")
        async def get_cache_stats():
            """Get cache statistics."""
            keys = await self.store.scan_by_prefix(CACHE_PREFIX)
            return {
                "enabled": self.store.available,
                "ttl_seconds": self.config.cache_ttl_seconds,
                "cached_keys": len(keys),
                "pending_writes": self.cache_writer.pending,
            }

        @self.app.delete(CACHE_ADMIN_PATH)
        async def clear_cache(pattern: str = Query(..., min_length=1)):
            """Invalidate every cached response under a path prefix."""
            deleted = await self.invalidator.invalidate(pattern)
            return {"pattern": pattern, "deleted": deleted}

    def _setup_dashboard_routes(self):
        """Set up dashboard routes."""

        @self.app.get(f"{DASHBOARD_PATH}/summary")
        async def get_dashboard_summary():
            """Record counts per collection."""
            return {
                "counts": await self.records.count_records(),
                "generated_at": datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z"),
            }

    def _setup_record_routes(self):
        """Set up collection CRUD routes."""

        @self.app.get(f"{API_PREFIX}/{{collection}}")
        async def list_records(
            collection: str,
            page: Optional[str] = Query(None),
            limit: Optional[str] = Query(None),
            search: Optional[str] = Query(None),
        ):
            """List records of a collection, one page at a time."""
            page, limit = get_pagination_params(page, limit)
            records = await self.records.list_records(collection, search=search)
            return paginate(records, page, limit)

        @self.app.get(f"{API_PREFIX}/{{collection}}/{{record_id}}")
        async def get_record(collection: str, record_id: str):
            return await self.records.get_record(collection, record_id)

        @self.app.post(f"{API_PREFIX}/{{collection}}", status_code=201)
        async def create_record(collection: str, payload: Dict[str, Any] = Body(...)):
            record = await self.records.create_record(collection, payload)
            await self._invalidate_collection(collection)
            return record

        @self.app.put(f"{API_PREFIX}/{{collection}}/{{record_id}}")
        async def update_record(collection: str, record_id: str, payload: Dict[str, Any] = Body(...)):
            record = await self.records.update_record(collection, record_id, payload)
            await self._invalidate_collection(collection)
            return record

        @self.app.delete(f"{API_PREFIX}/{{collection}}/{{record_id}}")
        async def delete_record(collection: str, record_id: str):
            await self.records.delete_record(collection, record_id)
            await self._invalidate_collection(collection)
            return {"id": record_id, "deleted": True}


def create_app():
    """Create FastAPI application."""
    service = ClinicApiService()
    return service.app


if __name__ == "__main__":
    service = ClinicApiService()
    service.run()

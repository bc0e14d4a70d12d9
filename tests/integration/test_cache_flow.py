"""
Integration tests for the response cache against a live Redis.

Run with REDIS_HOST (and optionally REDIS_PORT / REDIS_DB) pointing at a
disposable Redis instance; the tests flush the cache namespace.
"""

import asyncio
import os

import httpx
import pytest
import pytest_asyncio

from service_clinic.app.caching import RedisStoreClient, StoreSettings
from service_clinic.app.main import ClinicApiService


pytestmark = pytest.mark.skipif(not os.getenv("REDIS_HOST"), reason="REDIS_HOST not set")


class TestCacheFlow:
    """End-to-end cache flow through the Clinic API."""

    @pytest_asyncio.fixture
    async def store(self):
        client = RedisStoreClient(StoreSettings(
            host=os.getenv("REDIS_HOST"),
            port=int(os.getenv("REDIS_PORT", "6379")),
            db=int(os.getenv("REDIS_DB", "0")),
        ))
        assert await client.connect() is True
        await client.delete_keys(await client.scan_by_prefix("cache:"))
        yield client
        await client.delete_keys(await client.scan_by_prefix("cache:"))
        await client.close()

    @pytest.fixture
    def service(self, store, monkeypatch):
        monkeypatch.setenv("CACHE_TTL_SECONDS", "1")
        return ClinicApiService(store=store)

    @pytest_asyncio.fixture
    async def client(self, service):
        async with httpx.AsyncClient(transport=httpx.ASGITransport(app=service.app), base_url="http://test") as client:
            yield client

    @pytest.mark.asyncio
    async def test_entries_expire(self, client, service):
        """A cached read is recomputed once its TTL has elapsed."""
        await client.get("/api/clinics")
        await service.cache_writer.drain()
        hit = await client.get("/api/clinics")

        await asyncio.sleep(1.1)
        expired = await client.get("/api/clinics")

        assert hit.headers["X-Cache"] == "HIT"
        assert "X-Cache" not in expired.headers

    @pytest.mark.asyncio
    async def test_write_invalidates_only_its_family(self, client, service, store):
        await client.get("/api/patients")
        await client.get("/api/patients?page=2")
        await client.get("/api/appointments")
        await service.cache_writer.drain()

        await client.post("/api/patients", json={"name": "Grace Hopper"})

        assert await store.scan_by_prefix("cache:") == ["cache:/api/appointments"]

"""
Unit tests for the response cache middleware.
"""

import asyncio
import time

import httpx
import pytest
from fastapi import FastAPI
from fastapi.responses import JSONResponse, PlainTextResponse
from unittest.mock import AsyncMock, patch

from redis.exceptions import ConnectionError as RedisConnectionError

from service_clinic.app.caching.entry import CacheEntry
from service_clinic.app.caching.middleware import (
    CACHE_STATUS_HEADER,
    CacheWriter,
    ResponseCacheMiddleware,
)


def build_app():
    """Downstream app that counts handler invocations."""
    app = FastAPI()
    app.state.calls = 0

    @app.get("/api/patients")
    async def list_patients(page: int = 1):
        app.state.calls += 1
        return {"data": [{"id": "p1", "name": "Ada"}], "page": page, "call": app.state.calls}

    @app.get("/api/slow")
    async def slow():
        app.state.calls += 1
        await asyncio.sleep(0.05)
        return {"call": app.state.calls}

    @app.post("/api/patients")
    async def create_patient():
        app.state.calls += 1
        return {"created": True}

    @app.get("/api/missing")
    async def missing():
        app.state.calls += 1
        return JSONResponse(status_code=404, content={"code": "NOT_FOUND"})

    @app.get("/api/session")
    async def session():
        app.state.calls += 1
        response = PlainTextResponse("hello")
        response.set_cookie("sid", "abc")
        return response

    @app.get("/internal/stats")
    async def stats():
        app.state.calls += 1
        return {"call": app.state.calls}

    return app


class TestResponseCacheMiddleware:
    """Test cases for ResponseCacheMiddleware."""

    @pytest.fixture
    def downstream(self):
        return build_app()

    @pytest.fixture
    def middleware(self, downstream, store, writer, metrics):
        return ResponseCacheMiddleware(
            downstream,
            store=store,
            writer=writer,
            ttl_seconds=60,
            include_prefixes=("/api/",),
            metrics=metrics,
        )

    @pytest.fixture
    def client(self, middleware):
        return httpx.AsyncClient(transport=httpx.ASGITransport(app=middleware), base_url="http://test")

    def test_rejects_invalid_ttl(self, downstream, store):
        for ttl in (0, -5, 1.5, True):
            with pytest.raises(ValueError):
                ResponseCacheMiddleware(downstream, store=store, ttl_seconds=ttl)

    @pytest.mark.asyncio
    async def test_miss_then_hit(self, client, downstream, writer, metrics):
        """The second identical read is served from cache."""
        async with client:
            first = await client.get("/api/patients")
            await writer.drain()
            second = await client.get("/api/patients")

        assert first.status_code == 200
        assert CACHE_STATUS_HEADER not in first.headers
        assert second.headers[CACHE_STATUS_HEADER] == "HIT"
        assert second.json() == first.json()
        assert second.headers["content-type"] == "application/json"
        assert downstream.state.calls == 1
        assert metrics.get_sample_value("cache_lookups_total", result="miss") == 1
        assert metrics.get_sample_value("cache_lookups_total", result="hit") == 1
        assert metrics.get_sample_value("cache_writes_total", result="stored") == 1

    @pytest.mark.asyncio
    async def test_stored_under_full_url(self, client, writer, fake_redis):
        async with client:
            await client.get("/api/patients?page=2")
            await writer.drain()

        raw = await fake_redis.get("cache:/api/patients?page=2")
        entry = CacheEntry.from_bytes(raw)
        assert entry.ttl_seconds == 60
        assert b'"page":2' in entry.payload
        assert 0 < await fake_redis.ttl("cache:/api/patients?page=2") <= 60

    @pytest.mark.asyncio
    async def test_distinct_queries_cached_separately(self, client, downstream, writer):
        async with client:
            await client.get("/api/patients?page=1")
            await client.get("/api/patients?page=2")
            await writer.drain()
            cached = await client.get("/api/patients?page=2")

        assert downstream.state.calls == 2
        assert cached.json()["page"] == 2

    @pytest.mark.asyncio
    async def test_expired_entry_is_a_miss(self, client, downstream, writer, fake_redis):
        """Entries past their TTL are never served even if still stored."""
        stale = CacheEntry(
            key="cache:/api/patients",
            payload=b'{"stale":true}',
            created_at=time.time() - 120,
            ttl_seconds=60,
            media_type="application/json",
        )
        await fake_redis.set(stale.key, stale.to_bytes())

        async with client:
            response = await client.get("/api/patients")
            await writer.drain()

        assert "stale" not in response.json()
        assert downstream.state.calls == 1

    @pytest.mark.asyncio
    async def test_non_get_bypasses_cache(self, client, downstream, writer, fake_redis):
        async with client:
            await client.post("/api/patients")
            await client.post("/api/patients")
            await writer.drain()

        assert downstream.state.calls == 2
        assert await fake_redis.keys("cache:*") == []

    @pytest.mark.asyncio
    async def test_paths_outside_prefix_bypass_cache(self, client, downstream, writer, fake_redis):
        async with client:
            await client.get("/internal/stats")
            await writer.drain()
            await client.get("/internal/stats")

        assert downstream.state.calls == 2
        assert await fake_redis.keys("cache:*") == []

    @pytest.mark.asyncio
    async def test_excluded_prefix(self, downstream, store, writer):
        middleware = ResponseCacheMiddleware(downstream, store=store, writer=writer, exclude_prefixes=("/api/patients",))

        async with httpx.AsyncClient(transport=httpx.ASGITransport(app=middleware), base_url="http://test") as client:
            await client.get("/api/patients")
            await writer.drain()
            await client.get("/api/patients")

        assert downstream.state.calls == 2

    @pytest.mark.asyncio
    async def test_error_responses_not_cached(self, client, downstream, writer, fake_redis):
        async with client:
            first = await client.get("/api/missing")
            await writer.drain()
            await client.get("/api/missing")

        assert first.status_code == 404
        assert downstream.state.calls == 2
        assert await fake_redis.keys("cache:*") == []

    @pytest.mark.asyncio
    async def test_set_cookie_responses_not_cached(self, client, downstream, writer):
        async with client:
            await client.get("/api/session")
            await writer.drain()
            second = await client.get("/api/session")

        assert downstream.state.calls == 2
        assert "set-cookie" in second.headers

    @pytest.mark.asyncio
    async def test_disabled_store_is_transparent(self, downstream, disabled_store):
        """Without a store every request reaches the handler."""
        middleware = ResponseCacheMiddleware(downstream, store=disabled_store)

        async with httpx.AsyncClient(transport=httpx.ASGITransport(app=middleware), base_url="http://test") as client:
            first = await client.get("/api/patients")
            await middleware.writer.drain()
            second = await client.get("/api/patients")

        assert first.status_code == second.status_code == 200
        assert CACHE_STATUS_HEADER not in second.headers
        assert downstream.state.calls == 2

    @pytest.mark.asyncio
    async def test_store_outage_degrades_to_miss(self, client, downstream, writer, fake_redis):
        """Read failures serve the fresh response."""
        with patch.object(fake_redis, "get", new_callable=AsyncMock, side_effect=RedisConnectionError("down")):
            async with client:
                response = await client.get("/api/patients")
                await writer.drain()

        assert response.status_code == 200
        assert response.json()["data"][0]["name"] == "Ada"
        assert downstream.state.calls == 1

    @pytest.mark.asyncio
    async def test_lookup_exception_is_contained(self, client, downstream, store, writer, metrics):
        """Unexpected lookup failures are logged and the request proceeds."""
        with patch.object(store, "get", new_callable=AsyncMock, side_effect=RuntimeError("boom")):
            async with client:
                response = await client.get("/api/patients")
                await writer.drain()

        assert response.status_code == 200
        assert downstream.state.calls == 1
        assert metrics.get_sample_value("cache_lookups_total", result="error") == 1

    @pytest.mark.asyncio
    async def test_corrupt_entry_is_replaced(self, client, downstream, writer, fake_redis, metrics):
        await fake_redis.set("cache:/api/patients", b"{broken")

        async with client:
            response = await client.get("/api/patients")
            await writer.drain()

        assert response.status_code == 200
        assert downstream.state.calls == 1
        assert metrics.get_sample_value("cache_lookups_total", result="error") == 1
        CacheEntry.from_bytes(await fake_redis.get("cache:/api/patients"))

    @pytest.mark.asyncio
    async def test_write_failure_does_not_affect_response(self, client, writer, fake_redis, metrics):
        with patch.object(fake_redis, "set", new_callable=AsyncMock, side_effect=RedisConnectionError("down")):
            async with client:
                response = await client.get("/api/patients")
                await writer.drain()

        assert response.status_code == 200
        assert metrics.get_sample_value("cache_writes_total", result="failed") == 1

    @pytest.mark.asyncio
    async def test_concurrent_misses_leave_one_valid_entry(self, client, downstream, writer, fake_redis):
        """Racing misses both compute; the last write wins."""
        async with client:
            responses = await asyncio.gather(client.get("/api/slow"), client.get("/api/slow"))
            await writer.drain()
            cached = await client.get("/api/slow")

        assert all(response.status_code == 200 for response in responses)
        assert downstream.state.calls == 2
        assert await fake_redis.keys("cache:*") == [b"cache:/api/slow"]
        assert cached.headers[CACHE_STATUS_HEADER] == "HIT"
        assert cached.json()["call"] in (1, 2)


class TestCacheWriter:
    """Test cases for CacheWriter."""

    @pytest.mark.asyncio
    async def test_settle_waits_only_for_matching_keys(self, writer, store):
        release = asyncio.Event()

        async def blocked_set(key, payload, ttl_seconds):
            if key.startswith("cache:/api/doctors"):
                await release.wait()
            return True

        with patch.object(store, "set_with_expiry", new=blocked_set):
            patients = writer.schedule(CacheEntry.capture("cache:/api/patients", b"[]", 30))
            doctors = writer.schedule(CacheEntry.capture("cache:/api/doctors", b"[]", 30))

            settled = await writer.settle("cache:/api/patients")

            assert settled == 1
            assert patients.done()
            assert not doctors.done()
            assert writer.pending == 1

            release.set()
            await writer.drain()

        assert writer.pending == 0

    @pytest.mark.asyncio
    async def test_schedule_and_drain(self, writer, fake_redis):
        entry = CacheEntry.capture("cache:/api/clinics", b"[]", 30)

        writer.schedule(entry)
        assert writer.pending == 1
        await writer.drain()

        assert writer.pending == 0
        assert await fake_redis.get("cache:/api/clinics") is not None

    @pytest.mark.asyncio
    async def test_unexpected_error_is_logged(self, writer, store, metrics):
        """Write errors stay inside the writer."""
        with patch.object(store, "set_with_expiry", new_callable=AsyncMock, side_effect=RuntimeError("boom")):
            task = writer.schedule(CacheEntry.capture("cache:/api/clinics", b"[]", 30))
            assert await task is False

        assert metrics.get_sample_value("cache_writes_total", result="error") == 1

    @pytest.mark.asyncio
    async def test_disabled_store(self, disabled_store):
        writer = CacheWriter(disabled_store)

        task = writer.schedule(CacheEntry.capture("cache:/api/clinics", b"[]", 30))

        assert await task is False

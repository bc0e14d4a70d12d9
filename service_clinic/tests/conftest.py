"""
Shared fixtures for Clinic API tests.
"""

import pytest
from fakeredis import FakeAsyncRedis, FakeServer

from shared.metrics import MetricsCollector

from service_clinic.app.caching import CacheWriter, RedisStoreClient, StoreSettings


@pytest.fixture
def fake_redis():
    """In-memory Redis connection with its own isolated server."""
    return FakeAsyncRedis(server=FakeServer())


@pytest.fixture
def store_settings():
    return StoreSettings(
        host="fakeredis",
        retry_attempts=1,
        retry_base_delay=0.001,
        retry_max_delay=0.01,
        scan_batch_size=10,
    )


@pytest.fixture
def store(store_settings, fake_redis):
    """Store client bound to the fake connection."""
    return RedisStoreClient(store_settings, connection=fake_redis)


@pytest.fixture
def disabled_store():
    """Store client with no host configured."""
    return RedisStoreClient(StoreSettings())


@pytest.fixture
def metrics():
    return MetricsCollector("clinic-test")


@pytest.fixture
def writer(store, metrics):
    return CacheWriter(store, metrics=metrics)

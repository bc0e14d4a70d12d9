"""
Response caching package.

Read-through caching of GET responses in Redis with explicit,
prefix-based invalidation from write handlers. Caching is strictly
best-effort: with no store configured, or with the store down, requests
behave exactly as if this package did not exist.
"""

from .entry import CACHE_PREFIX, CacheEntry, make_cache_key
from .invalidation import CacheInvalidator
from .middleware import CacheWriter, ResponseCacheMiddleware
from .sinks import CachingSink, ResponseSink, SendSink
from .store_client import RedisStoreClient, StoreSettings

__all__ = [
    "CACHE_PREFIX",
    "CacheEntry",
    "make_cache_key",
    "CacheInvalidator",
    "CacheWriter",
    "ResponseCacheMiddleware",
    "CachingSink",
    "ResponseSink",
    "SendSink",
    "RedisStoreClient",
    "StoreSettings",
]

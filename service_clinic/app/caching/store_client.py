"""
Key-value store client backing the response cache.

Wraps a ``redis.asyncio`` connection pool. Every public operation fails
soft: an unconfigured store or a failed round trip yields the absent or
failure value and a log line, never an exception.
"""

import asyncio
import re
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Iterable, List, Optional

import redis.asyncio as redis
from redis.asyncio.retry import Retry
from redis.backoff import AbstractBackoff
from redis.exceptions import (
    ConnectionError as RedisConnectionError,
    RedisError,
    TimeoutError as RedisTimeoutError,
)

from shared.config import BaseConfig
from shared.errors import StoreUnavailableError, TransientStoreError
from shared.logging import get_logger
from shared.retry import RetryConfig, RetryError, calculate_delay, retry_on_exception


STORE_ERRORS = (RedisError, OSError, asyncio.TimeoutError)

_GLOB_SPECIAL = re.compile(r"([\\*?\[\]])")


def escape_glob(value: str) -> str:
    """Escape Redis MATCH metacharacters so ``value`` matches literally."""
    return _GLOB_SPECIAL.sub(r"\\\1", value)


class PolicyBackoff(AbstractBackoff):
    """redis-py backoff driven by a shared ``RetryConfig``."""

    def __init__(self, config: RetryConfig):
        self.config = config

    def compute(self, failures: int) -> float:
        return calculate_delay(failures, self.config)


@dataclass(frozen=True)
class StoreSettings:
    """Connection and retry settings for the store client."""

    host: Optional[str] = None
    port: int = 6379
    password: Optional[str] = None
    db: int = 0
    socket_timeout: float = 1.0
    retry_attempts: int = 3
    retry_base_delay: float = 0.05
    retry_max_delay: float = 2.0
    scan_batch_size: int = 500

    @property
    def enabled(self) -> bool:
        return bool(self.host)

    def retry_config(self) -> RetryConfig:
        return RetryConfig(
            max_attempts=self.retry_attempts + 1,
            base_delay=self.retry_base_delay,
            max_delay=self.retry_max_delay,
            jitter=True,
        )

    @classmethod
    def from_config(cls, config: BaseConfig) -> "StoreSettings":
        return cls(
            host=config.redis_host or None,
            port=config.redis_port,
            password=config.redis_password,
            db=config.redis_db,
            socket_timeout=config.store_socket_timeout,
            retry_attempts=config.store_retry_attempts,
            retry_base_delay=config.store_retry_base_delay,
            retry_max_delay=config.store_retry_max_delay,
            scan_batch_size=config.store_scan_batch_size,
        )


class RedisStoreClient:
    """Fail-soft Redis client: get, set with expiry, delete and prefix scan."""

    def __init__(self, settings: StoreSettings, connection: Optional[redis.Redis] = None):
        self.settings = settings
        self.logger = get_logger("clinic.cache.store")
        self._redis = connection if connection is not None else self._create_connection(settings)

        if self._redis is None:
            self.logger.warning("Redis configuration missing, caching disabled")

    @classmethod
    def configure(cls, settings: StoreSettings) -> "RedisStoreClient":
        """Build the process-wide client from explicit settings."""
        return cls(settings)

    @staticmethod
    def _create_connection(settings: StoreSettings) -> Optional[redis.Redis]:
        if not settings.enabled:
            return None

        retry = Retry(PolicyBackoff(settings.retry_config()), settings.retry_attempts)
        return redis.Redis(
            host=settings.host,
            port=settings.port,
            password=settings.password,
            db=settings.db,
            socket_timeout=settings.socket_timeout,
            socket_connect_timeout=settings.socket_timeout,
            retry=retry,
            retry_on_error=[RedisConnectionError, RedisTimeoutError],
            health_check_interval=30,
            decode_responses=False,
        )

    @property
    def available(self) -> bool:
        """False when no store is configured; callers then skip caching."""
        return self._redis is not None

    async def connect(self) -> bool:
        """Probe the store at startup. An unreachable store is logged, not fatal."""
        if not self.available:
            return False

        probe = retry_on_exception((TransientStoreError,), self.settings.retry_config())(self._probe)
        try:
            await probe()
        except RetryError as exc:
            self.logger.warning(
                "Redis not reachable at startup, serving uncached until it recovers",
                host=self.settings.host,
                port=self.settings.port,
                error=str(exc.last_exception),
            )
            return False

        self.logger.info("Redis connected successfully", host=self.settings.host, port=self.settings.port)
        return True

    async def _probe(self) -> None:
        await self._execute("ping", lambda conn: conn.ping())

    async def close(self) -> None:
        """Close the connection pool."""
        if self._redis is None:
            return
        try:
            await self._redis.aclose()
            self.logger.info("Redis connection closed")
        except STORE_ERRORS as exc:  # pragma: no cover - close is best effort
            self.logger.debug("Redis close failed", error=str(exc))

    async def _execute(
        self,
        operation: str,
        call: Callable[[redis.Redis], Awaitable[Any]],
        **context: Any,
    ) -> Any:
        """Run one store command, translating driver failures into cache errors."""
        if self._redis is None:
            raise StoreUnavailableError(details={"operation": operation})
        try:
            return await call(self._redis)
        except STORE_ERRORS as exc:
            raise TransientStoreError(operation, str(exc), details=context) from exc

    async def _run_soft(
        self,
        operation: str,
        call: Callable[[redis.Redis], Awaitable[Any]],
        default: Any,
        **context: Any,
    ) -> Any:
        try:
            return await self._execute(operation, call, **context)
        except StoreUnavailableError:
            return default
        except TransientStoreError as exc:
            self.logger.warning(
                "Store operation failed",
                operation=exc.operation,
                error=exc.message,
                **exc.details,
            )
            return default

    async def ping(self) -> bool:
        return bool(await self._run_soft("ping", lambda conn: conn.ping(), False))

    async def get(self, key: str) -> Optional[bytes]:
        """Return the stored bytes for ``key``, or None when absent or unreachable."""
        return await self._run_soft("get", lambda conn: conn.get(key), None, key=key)

    async def set_with_expiry(self, key: str, payload: bytes, ttl_seconds: int) -> bool:
        """Store ``payload`` under ``key`` for ``ttl_seconds``. Returns False on failure."""
        if ttl_seconds < 1:
            raise ValueError(f"ttl_seconds must be >= 1, got {ttl_seconds}")

        result = await self._run_soft(
            "set",
            lambda conn: conn.set(key, payload, ex=ttl_seconds),
            False,
            key=key,
            ttl_seconds=ttl_seconds,
        )
        return bool(result)

    async def delete_keys(self, keys: Iterable[str]) -> int:
        """Delete all ``keys`` with a single command; returns the number removed."""
        unique_keys = sorted(set(keys))
        if not unique_keys:
            return 0

        deleted = await self._run_soft(
            "delete",
            lambda conn: conn.delete(*unique_keys),
            0,
            key_count=len(unique_keys),
        )
        return int(deleted)

    async def scan_by_prefix(self, prefix: str) -> List[str]:
        """Enumerate keys starting with ``prefix`` using incremental SCAN."""
        return await self._run_soft(
            "scan",
            lambda conn: self._collect_prefix(conn, prefix),
            [],
            prefix=prefix,
        )

    async def _collect_prefix(self, conn: redis.Redis, prefix: str) -> List[str]:
        found = set()
        async for key in conn.scan_iter(match=f"{escape_glob(prefix)}*", count=self.settings.scan_batch_size):
            found.add(key.decode("utf-8") if isinstance(key, bytes) else key)
        return sorted(found)

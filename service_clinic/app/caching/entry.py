"""
Cache entry model and key derivation for the response cache.
"""

from __future__ import annotations

import base64
import binascii
import json
import time
from dataclasses import dataclass
from typing import Any, Dict, Optional

from shared.errors import SerializationError


CACHE_PREFIX = "cache:"
ENTRY_FORMAT_VERSION = 1


def make_cache_key(path: str, query_string: str = "") -> str:
    """
    Build the cache key for a read request.

    The query string is used verbatim: ``?a=1&b=2`` and ``?b=2&a=1`` are
    different keys.
    """
    if query_string:
        return f"{CACHE_PREFIX}{path}?{query_string}"
    return f"{CACHE_PREFIX}{path}"


def key_from_scope(scope: Dict[str, Any]) -> str:
    """Derive the cache key from an ASGI HTTP scope."""
    path = scope.get("root_path", "") + scope.get("path", "")
    query_string = scope.get("query_string", b"")
    if isinstance(query_string, bytes):
        query_string = query_string.decode("latin-1")
    return make_cache_key(path, query_string)


def pattern_prefix(pattern: str) -> str:
    """Key prefix matched by an invalidation pattern."""
    return f"{CACHE_PREFIX}{pattern}"


@dataclass(frozen=True)
class CacheEntry:
    """A fully captured response body, as stored under one cache key."""

    key: str
    payload: bytes
    created_at: float
    ttl_seconds: int
    status_code: int = 200
    media_type: Optional[str] = None

    @classmethod
    def capture(
        cls,
        key: str,
        payload: bytes,
        ttl_seconds: int,
        *,
        status_code: int = 200,
        media_type: Optional[str] = None,
    ) -> "CacheEntry":
        """Create an entry stamped with the current time."""
        return cls(
            key=key,
            payload=bytes(payload),
            created_at=time.time(),
            ttl_seconds=ttl_seconds,
            status_code=status_code,
            media_type=media_type,
        )

    def is_expired(self, now: Optional[float] = None) -> bool:
        """True once ``ttl_seconds`` have elapsed since ``created_at``."""
        current = time.time() if now is None else now
        return current - self.created_at >= self.ttl_seconds

    def to_dict(self) -> Dict[str, Any]:
        """Serialize the entry to a JSON-friendly dictionary."""
        return {
            "v": ENTRY_FORMAT_VERSION,
            "key": self.key,
            "payload": base64.b64encode(self.payload).decode("ascii"),
            "created_at": self.created_at,
            "ttl_seconds": self.ttl_seconds,
            "status_code": self.status_code,
            "media_type": self.media_type,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CacheEntry":
        """Rehydrate an entry from its stored dictionary form."""
        if data.get("v") != ENTRY_FORMAT_VERSION:
            raise SerializationError(
                "Unsupported cache entry version",
                details={"version": data.get("v")},
            )
        try:
            return cls(
                key=str(data["key"]),
                payload=base64.b64decode(data["payload"], validate=True),
                created_at=float(data["created_at"]),
                ttl_seconds=int(data["ttl_seconds"]),
                status_code=int(data.get("status_code", 200)),
                media_type=data.get("media_type"),
            )
        except (KeyError, TypeError, ValueError, binascii.Error) as exc:
            raise SerializationError(
                "Malformed cache entry",
                details={"error": str(exc)},
            ) from exc

    def to_bytes(self) -> bytes:
        return json.dumps(self.to_dict(), separators=(",", ":")).encode("utf-8")

    @classmethod
    def from_bytes(cls, raw: bytes) -> "CacheEntry":
        try:
            data = json.loads(raw)
        except (TypeError, ValueError) as exc:
            raise SerializationError(
                "Cache entry is not valid JSON",
                details={"error": str(exc)},
            ) from exc
        if not isinstance(data, dict):
            raise SerializationError("Cache entry is not an object")
        return cls.from_dict(data)

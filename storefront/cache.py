"""
TTL cache for catalog reads.

Supports an in-memory implementation for single-process deployments and
tests, and a Redis-backed implementation with the same interface.
"""

from __future__ import annotations

import copy
import json
import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional, Protocol, Tuple

import redis
from redis import exceptions as redis_exceptions

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 60.0
# A Redis timeout is not a ConnectionError subclass.
_REDIS_UNAVAILABLE = (redis_exceptions.ConnectionError, redis_exceptions.TimeoutError)


class Cache(Protocol):
    """Advisory read cache. ``get`` returns None on a miss."""

    def get(self, key: str) -> Optional[Any]:
        ...

    def put(self, key: str, value: Any, ttl_seconds: float | None = None) -> None:
        ...

    def invalidate(self, key: str | None = None) -> None:
        ...


@dataclass
class InMemoryTtlCache:
    """Process-local cache keyed by string with per-entry expiry."""

    default_ttl_seconds: float = DEFAULT_TTL_SECONDS
    clock: Callable[[], float] = time.monotonic
    entries: Dict[str, Tuple[float, Any]] = field(default_factory=dict)

    def __post_init__(self):
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[Any]:
        with self._lock:
            entry = self.entries.get(key)
            if entry is None:
                return None
            expires_at, value = entry
            if self.clock() >= expires_at:
                del self.entries[key]
                logger.debug("Cache entry %s expired", key)
                return None
            # Callers may mutate what they get back.
            return copy.deepcopy(value)

    def put(self, key: str, value: Any, ttl_seconds: float | None = None) -> None:
        ttl = self.default_ttl_seconds if ttl_seconds is None else ttl_seconds
        if ttl <= 0:
            return
        with self._lock:
            self.entries[key] = (self.clock() + ttl, copy.deepcopy(value))

    def invalidate(self, key: str | None = None) -> None:
        with self._lock:
            if key is None:
                self.entries.clear()
            else:
                self.entries.pop(key, None)


@dataclass
class RedisTtlCache:
    """Redis-backed cache storing JSON-encoded values with SETEX."""

    url: str
    prefix: str = "storefront:cache:"
    default_ttl_seconds: float = DEFAULT_TTL_SECONDS

    def __post_init__(self):
        self.client = redis.Redis.from_url(self.url)

    def _key(self, key: str) -> str:
        return f"{self.prefix}{key}"

    def _reconnect(self) -> None:
        self.client = redis.Redis.from_url(self.url)

    def get(self, key: str) -> Optional[Any]:
        try:
            raw = self.client.get(self._key(key))
        except _REDIS_UNAVAILABLE:
            # A dropped connection reads as a miss; the store is the source of truth.
            logger.warning("Redis unavailable while reading %s; treating as miss", key)
            self._reconnect()
            return None
        if raw is None:
            return None
        return json.loads(raw)

    def put(self, key: str, value: Any, ttl_seconds: float | None = None) -> None:
        ttl = self.default_ttl_seconds if ttl_seconds is None else ttl_seconds
        if ttl <= 0:
            return
        try:
            self.client.setex(
                self._key(key), max(int(ttl), 1), json.dumps(value, default=str)
            )
        except _REDIS_UNAVAILABLE:
            logger.warning("Redis unavailable while caching %s", key)
            self._reconnect()

    def invalidate(self, key: str | None = None) -> None:
        try:
            if key is not None:
                self.client.delete(self._key(key))
                return
            keys = list(self.client.scan_iter(match=f"{self.prefix}*"))
            if keys:
                self.client.delete(*keys)
        except _REDIS_UNAVAILABLE:
            # Stale entries expire on their own TTL.
            logger.warning("Redis unavailable while invalidating %s", key or "all keys")
            self._reconnect()

from __future__ import annotations

import json
import threading
import time
from typing import Any, Protocol

import redis
import structlog

log = structlog.get_logger()


class Cache(Protocol):
    def get(self, key: str) -> Any | None: ...

    def set(self, key: str, value: Any, ttl: int) -> None: ...

    def clear(self) -> None: ...


class MemoryCache:
    """Cache en proceso con TTL (reloj monotónico). Apto para varios threads."""

    def __init__(self, max_entries: int = 10_000):
        self.max_entries = max_entries
        self._data: dict[str, tuple[float, Any]] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> Any | None:
        with self._lock:
            entry = self._data.get(key)
            if entry is None:
                return None
            expires, value = entry
            if expires <= time.monotonic():
                del self._data[key]
                return None
            return value

    def set(self, key: str, value: Any, ttl: int) -> None:
        with self._lock:
            if len(self._data) >= self.max_entries:
                self._evict()
            self._data[key] = (time.monotonic() + ttl, value)

    def clear(self) -> None:
        with self._lock:
            self._data.clear()

    def _evict(self) -> None:
        now = time.monotonic()
        for k in [k for k, (exp, _) in self._data.items() if exp <= now]:
            del self._data[k]
        if len(self._data) >= self.max_entries:
            # sigue lleno: fuera la entrada que expira antes
            oldest = min(self._data, key=lambda k: self._data[k][0])
            del self._data[oldest]


class RedisCache:
    """
    Cache sobre Redis, valores en JSON.
    Si Redis falla se loguea y se comporta como un miss.
    """

    def __init__(self, client: redis.Redis, prefix: str = "territoires:"):
        self.client = client
        self.prefix = prefix

    @classmethod
    def from_url(cls, url: str, prefix: str = "territoires:") -> "RedisCache":
        return cls(redis.Redis.from_url(url, decode_responses=True), prefix=prefix)

    def get(self, key: str) -> Any | None:
        try:
            raw = self.client.get(self.prefix + key)
        except redis.RedisError as e:
            log.warning("cache_get_failed", key=key, error=str(e))
            return None
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except ValueError:
            return None

    def set(self, key: str, value: Any, ttl: int) -> None:
        try:
            self.client.setex(self.prefix + key, ttl, json.dumps(value))
        except redis.RedisError as e:
            log.warning("cache_set_failed", key=key, error=str(e))

    def clear(self) -> None:
        try:
            keys = list(self.client.scan_iter(match=self.prefix + "*"))
            if keys:
                self.client.delete(*keys)
        except redis.RedisError as e:
            log.warning("cache_clear_failed", error=str(e))


def build_cache(settings) -> Cache:
    if settings.redis_url:
        log.info("cache_backend", backend="redis")
        return RedisCache.from_url(settings.redis_url)
    log.info("cache_backend", backend="memory")
    return MemoryCache()

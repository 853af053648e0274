"""Durable key-value store used for region config, job records and cache entries"""
import math
import threading
import time
from abc import ABC, abstractmethod
from typing import Optional, List, Tuple

import redis
from cachetools import TLRUCache

from geocdn.config import settings
from geocdn.errors import StoreError


class KeyValueStore(ABC):
    """get/put/delete/list by key, with optional TTL on put"""

    @abstractmethod
    def get(self, key: str) -> Optional[str]:
        ...

    @abstractmethod
    def put(self, key: str, value: str, ttl: Optional[int] = None) -> None:
        ...

    @abstractmethod
    def delete(self, key: str) -> None:
        ...

    @abstractmethod
    def list(self, prefix: str, limit: Optional[int] = None) -> List[str]:
        ...

    def ping(self) -> bool:
        return True

    def close(self) -> None:
        pass


class RedisKeyValueStore(KeyValueStore):
    """Key-value store backed by a Redis server"""

    def __init__(self, client: redis.Redis):
        self.client = client

    @classmethod
    def from_url(cls, url: str) -> "RedisKeyValueStore":
        return cls(redis.from_url(url, decode_responses=True))

    def get(self, key: str) -> Optional[str]:
        try:
            return self.client.get(key)
        except redis.RedisError as e:
            raise StoreError(f"get {key} failed: {e}") from e

    def put(self, key: str, value: str, ttl: Optional[int] = None) -> None:
        try:
            self.client.set(key, value, ex=ttl or None)
        except redis.RedisError as e:
            raise StoreError(f"put {key} failed: {e}") from e

    def delete(self, key: str) -> None:
        try:
            self.client.delete(key)
        except redis.RedisError as e:
            raise StoreError(f"delete {key} failed: {e}") from e

    def list(self, prefix: str, limit: Optional[int] = None) -> List[str]:
        pattern = _escape_glob(prefix) + "*"
        keys = []
        try:
            for key in self.client.scan_iter(match=pattern, count=500):
                keys.append(key)
                if limit is not None and len(keys) >= limit:
                    break
        except redis.RedisError as e:
            raise StoreError(f"list {prefix} failed: {e}") from e
        return keys

    def ping(self) -> bool:
        try:
            return bool(self.client.ping())
        except redis.RedisError:
            return False

    def close(self) -> None:
        self.client.close()


def _escape_glob(prefix: str) -> str:
    for char in ("\\", "*", "?", "[", "]"):
        prefix = prefix.replace(char, "\\" + char)
    return prefix


def _time_to_use(key, value: Tuple[str, Optional[int]], now: float) -> float:
    ttl = value[1]
    return now + ttl if ttl else math.inf


class MemoryKeyValueStore(KeyValueStore):
    """
    In-process store with per-key TTL, for tests and single-node runs.

    Unbounded unless a maxsize is given. A bounded store evicts the least
    recently used keys when full, including keys written without a TTL.
    """

    def __init__(self, maxsize: Optional[int] = None, timer=time.monotonic):
        maxsize = maxsize or settings.memory_store_maxsize
        self._cache = TLRUCache(
            maxsize=maxsize or math.inf,
            ttu=_time_to_use,
            timer=timer,
        )
        self._lock = threading.RLock()

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            item = self._cache.get(key)
        return item[0] if item is not None else None

    def put(self, key: str, value: str, ttl: Optional[int] = None) -> None:
        with self._lock:
            self._cache[key] = (value, ttl)

    def delete(self, key: str) -> None:
        with self._lock:
            self._cache.pop(key, None)

    def list(self, prefix: str, limit: Optional[int] = None) -> List[str]:
        with self._lock:
            self._cache.expire()
            keys = [key for key in self._cache.keys() if key.startswith(prefix)]
        return keys[:limit] if limit is not None else keys


def create_kv_store() -> KeyValueStore:
    """Build the store selected by settings.kv_backend"""
    if settings.kv_backend == "memory":
        return MemoryKeyValueStore()
    if settings.kv_backend == "redis":
        return RedisKeyValueStore.from_url(settings.redis_url)
    raise ValueError(f"Unknown kv backend: {settings.kv_backend}")

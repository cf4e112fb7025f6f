"""TTL cache for LLM client instances."""
from __future__ import annotations

import hashlib
import logging
import time
from collections import OrderedDict
from threading import Lock
from typing import Any, Callable, Generic, Hashable, Optional, Tuple, TypeVar

from openai import AsyncOpenAI

V = TypeVar("V")


class TTLCache(Generic[V]):
    """
    Bounded key -> value cache with per-entry expiry.

    Entries expire ``ttl_seconds`` after they were stored; when the cache is
    full the least recently used entry is evicted.
    """

    def __init__(
        self,
        ttl_seconds: float,
        max_entries: int = 16,
        clock: Callable[[], float] = time.monotonic,
    ):
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")
        if max_entries < 1:
            raise ValueError("max_entries must be at least 1")
        self.ttl_seconds = ttl_seconds
        self.max_entries = max_entries
        self._clock = clock
        self._entries: "OrderedDict[Hashable, Tuple[V, float]]" = OrderedDict()
        self._lock = Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def get(self, key: Hashable) -> Optional[V]:
        """Return the cached value, or None if missing or expired."""
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            value, expiry = entry
            if self._clock() >= expiry:
                del self._entries[key]
                return None
            self._entries.move_to_end(key)
            return value

    def set(self, key: Hashable, value: V) -> None:
        with self._lock:
            self._entries[key] = (value, self._clock() + self.ttl_seconds)
            self._entries.move_to_end(key)
            while len(self._entries) > self.max_entries:
                self._entries.popitem(last=False)

    def get_or_create(self, key: Hashable, factory: Callable[[], V]) -> V:
        value = self.get(key)
        if value is None:
            value = factory()
            self.set(key, value)
        return value

    def invalidate(self, key: Hashable) -> None:
        with self._lock:
            self._entries.pop(key, None)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def purge_expired(self) -> int:
        """Drop expired entries; returns how many were removed."""
        with self._lock:
            now = self._clock()
            expired = [key for key, (_, expiry) in self._entries.items() if now >= expiry]
            for key in expired:
                del self._entries[key]
            return len(expired)


def _client_key(base_url: str, api_key: str) -> Tuple[str, str]:
    # Keys never hold the raw secret.
    return base_url.rstrip("/"), hashlib.sha256(api_key.encode("utf-8")).hexdigest()


class ClientCache:
    """Builds and reuses AsyncOpenAI clients keyed by endpoint and API key."""

    def __init__(
        self,
        ttl_seconds: float = 600.0,
        max_entries: int = 16,
        factory: Optional[Callable[..., Any]] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self._cache: TTLCache[Any] = TTLCache(ttl_seconds, max_entries)
        self._factory = factory or AsyncOpenAI
        self.logger = logger or logging.getLogger("client_cache")

    def get_client(self, base_url: str, api_key: str) -> Any:
        key = _client_key(base_url, api_key)

        def _build() -> Any:
            self.logger.debug(f"Creating LLM client for {key[0]}")
            return self._factory(base_url=base_url, api_key=api_key or "not-set")

        return self._cache.get_or_create(key, _build)

    def invalidate(self, base_url: str, api_key: str) -> None:
        self._cache.invalidate(_client_key(base_url, api_key))

    def __len__(self) -> int:
        return len(self._cache)

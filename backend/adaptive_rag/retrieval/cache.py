"""Bounded time-to-live cache for retrieval results."""

from __future__ import annotations

import threading
import time
from collections import OrderedDict
from typing import Callable

from adaptive_rag.core.config import RetrievalConfig
from adaptive_rag.core.metrics import CACHE_EVENTS
from adaptive_rag.models.entities import RetrievalResult
from adaptive_rag.utils.text import normalize

CacheKey = tuple[str, str]


class ResultCache:
    """Thread-safe LRU with per-entry expiry; expired entries are dropped lazily."""

    def __init__(
        self,
        ttl_seconds: float = 3600.0,
        max_entries: int = 256,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")
        if max_entries <= 0:
            raise ValueError("max_entries must be positive")
        self.ttl_seconds = ttl_seconds
        self.max_entries = max_entries
        self._clock = clock
        self._entries: OrderedDict[CacheKey, tuple[float, RetrievalResult]] = OrderedDict()
        self._lock = threading.Lock()

    @staticmethod
    def make_key(query: str, config: RetrievalConfig) -> CacheKey:
        return normalize(query).lower(), config.model_dump_json()

    def get(self, key: CacheKey) -> RetrievalResult | None:
        now = self._clock()
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                CACHE_EVENTS.labels(event="miss").inc()
                return None
            expires_at, value = entry
            if expires_at <= now:
                del self._entries[key]
                CACHE_EVENTS.labels(event="expired").inc()
                return None
            self._entries.move_to_end(key)
        CACHE_EVENTS.labels(event="hit").inc()
        return value

    def put(self, key: CacheKey, value: RetrievalResult) -> None:
        now = self._clock()
        with self._lock:
            self._purge_expired(now)
            self._entries[key] = (now + self.ttl_seconds, value)
            self._entries.move_to_end(key)
            while len(self._entries) > self.max_entries:
                self._entries.popitem(last=False)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def _purge_expired(self, now: float) -> None:
        expired = [key for key, (expires_at, _) in self._entries.items() if expires_at <= now]
        for key in expired:
            del self._entries[key]


__all__ = ["CacheKey", "ResultCache"]

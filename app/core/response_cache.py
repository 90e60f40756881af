"""
In-memory response cache: (tenant, normalized message) -> final answer text.

Per-process only; entries are not shared between instances and do not survive
a restart. Expired entries are evicted lazily on lookup.
"""

import logging
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Callable

from app.core.config import RESPONSE_CACHE_MAX_ENTRIES, RESPONSE_CACHE_TTL_SECONDS

logger = logging.getLogger(__name__)


def normalize_message(message: str) -> str:
    return (message or "").strip().lower()


def make_cache_key(tenant_id: str, message: str) -> str:
    """Compose the cache key so whitespace/case variants of a message collide."""
    return f"{tenant_id}:{normalize_message(message)}"


@dataclass
class CacheEntry:
    value: str
    expires_at: float


class ResponseCache:
    """TTL map guarded by a single lock. Optional LRU bound when max_entries > 0."""

    def __init__(
        self,
        default_ttl: float = RESPONSE_CACHE_TTL_SECONDS,
        max_entries: int = RESPONSE_CACHE_MAX_ENTRIES,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.default_ttl = default_ttl
        self.max_entries = max_entries
        self._clock = clock
        self._entries: "OrderedDict[str, CacheEntry]" = OrderedDict()
        self._lock = threading.Lock()

    def get(self, key: str) -> str | None:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            if self._clock() > entry.expires_at:
                del self._entries[key]
                logger.info("[response_cache:get] expired key=%s", key[:48])
                return None
            self._entries.move_to_end(key)
            return entry.value

    def put(self, key: str, value: str, ttl: float | None = None) -> None:
        ttl = self.default_ttl if ttl is None else ttl
        with self._lock:
            self._entries[key] = CacheEntry(value=value, expires_at=self._clock() + ttl)
            self._entries.move_to_end(key)
            if self.max_entries > 0:
                while len(self._entries) > self.max_entries:
                    evicted, _ = self._entries.popitem(last=False)
                    logger.info("[response_cache:put] evicted lru key=%s", evicted[:48])

    def invalidate(self, key: str) -> None:
        with self._lock:
            self._entries.pop(key, None)

    def invalidate_tenant(self, tenant_id: str) -> int:
        """Drop every entry belonging to one tenant. Returns how many were removed."""
        prefix = f"{tenant_id}:"
        with self._lock:
            stale = [k for k in self._entries if k.startswith(prefix)]
            for k in stale:
                del self._entries[k]
        if stale:
            logger.info("[response_cache:invalidate_tenant] tenant_id=%s removed=%d", tenant_id, len(stale))
        return len(stale)

    def flush(self) -> None:
        with self._lock:
            self._entries.clear()
        logger.info("[response_cache:flush] cleared")

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

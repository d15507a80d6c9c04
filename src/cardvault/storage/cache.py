"""In-memory TTL cache shared by read paths and job workers."""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

logger = logging.getLogger(__name__)


class _Miss:
    """Sentinel returned by ``TTLCache.get`` when nothing usable is cached."""

    _instance: Optional["_Miss"] = None

    def __new__(cls) -> "_Miss":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "MISS"

    def __bool__(self) -> bool:
        return False


MISS = _Miss()


def record_cache_key(record_id: int) -> str:
    return f"card:{record_id}"


def set_cache_key(set_id: int) -> str:
    return f"set:{set_id}:cards"


@dataclass
class CacheEntry:
    value: Any
    expires_at: float


class TTLCache:
    """Keyed store whose entries expire after a per-entry TTL.

    Expired entries are dropped lazily on access and by ``sweep``. An entry
    is never returned once its expiry has been reached, so a TTL of zero
    makes the entry unreadable immediately. Last write wins.
    """

    def __init__(
        self,
        default_ttl: float = 300.0,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if default_ttl < 0:
            raise ValueError("default_ttl must be >= 0")
        self._default_ttl = default_ttl
        self._clock = clock
        self._entries: Dict[str, CacheEntry] = {}
        self._lock = threading.Lock()
        self._hits = 0
        self._misses = 0

    def get(self, key: str) -> Any:
        """Return the cached value or ``MISS``."""
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self._misses += 1
                return MISS
            if self._clock() >= entry.expires_at:
                del self._entries[key]
                self._misses += 1
                return MISS
            self._hits += 1
            return entry.value

    def set(self, key: str, value: Any, ttl: Optional[float] = None) -> None:
        ttl = self._default_ttl if ttl is None else ttl
        if ttl < 0:
            raise ValueError("ttl must be >= 0")
        with self._lock:
            self._entries[key] = CacheEntry(value=value, expires_at=self._clock() + ttl)

    def get_or_set(
        self,
        key: str,
        factory: Callable[[], Any],
        ttl: Optional[float] = None,
    ) -> Any:
        """Return the cached value, computing and storing it on a miss."""
        value = self.get(key)
        if value is not MISS:
            return value
        value = factory()
        self.set(key, value, ttl)
        return value

    def invalidate(self, key: str) -> bool:
        with self._lock:
            return self._entries.pop(key, None) is not None

    def invalidate_prefix(self, prefix: str) -> int:
        with self._lock:
            doomed = [key for key in self._entries if key.startswith(prefix)]
            for key in doomed:
                del self._entries[key]
        return len(doomed)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
        logger.info("Cache cleared")

    def sweep(self) -> int:
        """Drop every expired entry and return how many were removed."""
        now = self._clock()
        with self._lock:
            expired = [key for key, entry in self._entries.items() if now >= entry.expires_at]
            for key in expired:
                del self._entries[key]
        if expired:
            logger.debug("Cache sweep removed entries", extra={"removed": len(expired)})
        return len(expired)

    def stats(self) -> Dict[str, int]:
        now = self._clock()
        with self._lock:
            size = sum(1 for entry in self._entries.values() if now < entry.expires_at)
            return {"size": size, "hits": self._hits, "misses": self._misses}

    def __contains__(self, key: str) -> bool:
        with self._lock:
            entry = self._entries.get(key)
            return entry is not None and self._clock() < entry.expires_at

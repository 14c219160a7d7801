"""TTL key/value cache for externally fetched, read-mostly data (meeting lists, meetings).

Values are JSON-serialised together with the time they were stored. The cache never sweeps
expired entries itself; callers decide freshness with `is_fresh(entry.stored_at, ttl, now)`.
Backend failures are logged and treated as a miss (reads) or best-effort (writes).
"""
import fnmatch
import json
import logging
import threading
import time
from typing import Any, Callable, Dict, List, Optional, Tuple

from briefings.models.schemas import CacheEntry

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 60 * 15  # 15 minutes


def is_fresh(stored_at: float, ttl_seconds: float, now: float) -> bool:
    """True while now - stored_at <= ttl_seconds."""
    return now - stored_at <= ttl_seconds


class MemoryCacheBackend:
    """Process-local string store. Keeps entries until overwritten or deleted; TTL is only recorded."""

    def __init__(self):
        self._data: Dict[str, str] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            return self._data.get(key)

    def set(self, key: str, raw: str, ttl_seconds: int) -> None:
        with self._lock:
            self._data[key] = raw

    def delete(self, *keys: str) -> None:
        with self._lock:
            for k in keys:
                self._data.pop(k, None)

    def keys(self, pattern: str) -> List[str]:
        with self._lock:
            return [k for k in self._data if fnmatch.fnmatchcase(k, pattern)]


class RedisCacheBackend:
    """Redis string store (SETEX); patterns are resolved with SCAN so large keyspaces are not blocked."""

    def __init__(self, client):
        self._redis = client

    def get(self, key: str) -> Optional[str]:
        return self._redis.get(key)

    def set(self, key: str, raw: str, ttl_seconds: int) -> None:
        self._redis.setex(key, ttl_seconds, raw)

    def delete(self, *keys: str) -> None:
        if keys:
            self._redis.delete(*keys)

    def keys(self, pattern: str) -> List[str]:
        return list(self._redis.scan_iter(match=pattern))


class CacheLayer:
    """get / set / delete / delete_pattern / build_key over a string backend, with a default TTL of 15 minutes.
    Why available: Shared read-through cache for calendar data; failures never propagate to callers."""

    def __init__(self, backend, default_ttl: int = DEFAULT_TTL_SECONDS, clock: Callable[[], float] = time.time):
        self.backend = backend
        self.default_ttl = default_ttl
        self.clock = clock

    @staticmethod
    def build_key(*parts: Any) -> str:
        return ":".join(str(p) for p in parts)

    def get_entry(self, key: str) -> Optional[CacheEntry]:
        """Return the stored entry (value + storedAt) or None on miss, malformed data, or backend error."""
        try:
            raw = self.backend.get(key)
            if not raw:
                return None
            data = json.loads(raw)
            return CacheEntry(key=key, value=data.get("value"), stored_at=float(data["storedAt"]))
        except Exception as exc:
            logger.warning("cache_get_error", extra={"key": key, "error": str(exc)})
            return None

    def get(self, key: str) -> Any:
        entry = self.get_entry(key)
        return entry.value if entry else None

    def set(self, key: str, value: Any, ttl_seconds: Optional[int] = None) -> None:
        """JSON-serialise value with the current time and store it with the TTL (default 15 minutes). Silently fails."""
        ttl = ttl_seconds or self.default_ttl
        try:
            raw = json.dumps({"value": value, "storedAt": self.clock()}, default=str)
            self.backend.set(key, raw, int(ttl))
        except Exception as exc:
            logger.warning("cache_set_error", extra={"key": key, "error": str(exc)})

    def delete(self, key: str) -> None:
        try:
            self.backend.delete(key)
        except Exception as exc:
            logger.warning("cache_delete_error", extra={"key": key, "error": str(exc)})

    def delete_pattern(self, pattern: str) -> None:
        """Delete every key matching a glob pattern (e.g. meetings:u1:*)."""
        try:
            keys = self.backend.keys(pattern)
            if keys:
                self.backend.delete(*keys)
        except Exception as exc:
            logger.warning("cache_delete_pattern_error", extra={"pattern": pattern, "error": str(exc)})

    def read_through(
        self,
        key: str,
        fetch: Callable[[], Any],
        ttl_seconds: Optional[int] = None,
    ) -> Tuple[Any, float, bool]:
        """Return (value, stored_at, cached). A fresh entry is returned as-is; a missing or stale one is refetched and stored.
        Why available: The refetch path callers take once an entry's age exceeds its TTL; fetch errors propagate to the caller."""
        ttl = ttl_seconds or self.default_ttl
        entry = self.get_entry(key)
        now = self.clock()
        if entry is not None and is_fresh(entry.stored_at, ttl, now):
            return entry.value, entry.stored_at, True

        value = fetch()
        self.set(key, value, ttl)
        return value, now, False

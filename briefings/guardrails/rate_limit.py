import threading
import time
from collections import defaultdict
from typing import Callable

from fastapi import HTTPException
from starlette.requests import Request


class SlidingWindowLimiter:
    """Rolling-window limiter: at most max_events per window_seconds per key; in-memory (per process), thread-safe.
    Why available: Caps how many briefing jobs may start per minute (protects LLM and enrichment providers) and how many API requests a client may send."""

    def __init__(self, max_events: int, window_seconds: float, clock: Callable[[], float] = time.monotonic):
        """Configure limiter: max_events per window_seconds per key. clock is injectable for tests."""
        self.max_events = max_events
        self.window_seconds = window_seconds
        self.clock = clock
        self.storage = defaultdict(list)  # key -> [timestamps]
        self._lock = threading.Lock()

    def _prune(self, key: str, now: float) -> list:
        # Remove expired timestamps
        kept = [t for t in self.storage[key] if now - t < self.window_seconds]
        self.storage[key] = kept
        return kept

    def wait_time(self, key: str = "global") -> float:
        """Seconds until another event for key would be allowed (0.0 when allowed now). Does not record anything."""
        with self._lock:
            now = self.clock()
            timestamps = self._prune(key, now)
            if len(timestamps) < self.max_events:
                return 0.0
            return max(0.0, timestamps[0] + self.window_seconds - now)

    def try_acquire(self, key: str = "global") -> bool:
        """Record an event for key if the window has room; return False (recording nothing) otherwise."""
        with self._lock:
            now = self.clock()
            timestamps = self._prune(key, now)
            if len(timestamps) >= self.max_events:
                return False
            timestamps.append(now)
            return True


class RequestRateLimiter(SlidingWindowLimiter):
    """Per-client-IP limiter for the request adapter."""

    def check(self, request: Request):
        """Raise 429 if the client has exceeded the rate limit; otherwise record the request. Called on each protected endpoint."""
        ip = request.client.host if request.client else "unknown"
        if not self.try_acquire(ip):
            raise HTTPException(
                status_code=429,
                detail="Rate limit exceeded. Please retry later.",
            )

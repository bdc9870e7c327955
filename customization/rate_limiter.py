# customization/rate_limiter.py

import threading
import time
from collections import deque
from typing import Deque, Dict


class RateLimiter:
    """
    Process-local sliding-window request ceiling per caller.

    - `limit` requests per `window_seconds`; limit <= 0 disables the check.
    - Callers with no request inside the window are dropped on `sweep()`.
    """

    def __init__(self, limit: int, window_seconds: float = 60.0) -> None:
        self.limit = limit
        self.window_seconds = window_seconds
        self._lock = threading.Lock()
        self._hits: Dict[str, Deque[float]] = {}

    def _prune_unlocked(self, hits: Deque[float], now: float) -> None:
        while hits and hits[0] <= now - self.window_seconds:
            hits.popleft()

    def allow(self, caller_id: str) -> bool:
        """
        Record a request for `caller_id`; False when it is over the ceiling.
        Rejected requests are not counted.
        """
        if self.limit <= 0:
            return True
        now = time.monotonic()
        key = str(caller_id)
        with self._lock:
            hits = self._hits.setdefault(key, deque())
            self._prune_unlocked(hits, now)
            if len(hits) >= self.limit:
                return False
            hits.append(now)
            return True

    def retry_after(self, caller_id: str) -> float:
        now = time.monotonic()
        with self._lock:
            hits = self._hits.get(str(caller_id))
            if not hits:
                return 0.0
            self._prune_unlocked(hits, now)
            if len(hits) < self.limit:
                return 0.0
            return max(0.0, hits[0] + self.window_seconds - now)

    def sweep(self) -> int:
        now = time.monotonic()
        removed = 0
        with self._lock:
            for key in list(self._hits):
                hits = self._hits[key]
                self._prune_unlocked(hits, now)
                if not hits:
                    del self._hits[key]
                    removed += 1
        return removed

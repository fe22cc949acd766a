"""In-memory sliding-window throttling for the public auth endpoints."""

from __future__ import annotations

import threading
import time
from collections import defaultdict, deque
from typing import Deque, Dict, Iterable, Tuple

from broker_dashboard.core.exceptions import RateLimitExceededError

# (limit, window_seconds, message)
Rule = Tuple[int, int, str]


class SlidingWindowLimiter:
    """Counts hits per key inside a trailing window. Single-process only."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._hits: Dict[str, Deque[float]] = defaultdict(deque)

    def allow(self, key: str, limit: int, window_seconds: int) -> bool:
        now = time.monotonic()
        with self._lock:
            hits = self._hits[key]
            while hits and hits[0] <= now - window_seconds:
                hits.popleft()
            if len(hits) >= limit:
                return False
            hits.append(now)
            return True

    def enforce(self, key: str, rules: Iterable[Rule]) -> None:
        """Raise RateLimitExceededError on the first rule the key has exhausted."""
        for limit, window_seconds, message in rules:
            if not self.allow(f"{key}:{window_seconds}", limit, window_seconds):
                raise RateLimitExceededError(message)

    def reset(self) -> None:
        with self._lock:
            self._hits.clear()


rate_limiter = SlidingWindowLimiter()

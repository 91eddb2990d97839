import threading
import time
from collections import deque
from typing import Callable, Deque, Dict, Optional

from core.exceptions import RateLimitExceeded


class SlidingWindowRateLimiter:
    """
    按 key（通常是客户端地址）计数的滑动窗口限流。

    每个 key 保存窗口内的请求时间戳；admit() 先剔除过期时间戳，
    达到 max_requests 时拒绝且不记录本次请求。
    """

    def __init__(self, window_ms: int, max_requests: int, clock: Callable[[], float] = time.monotonic):
        if window_ms <= 0 or max_requests <= 0:
            raise ValueError("window_ms and max_requests must be positive")
        self.window = window_ms / 1000.0
        self.max_requests = max_requests
        self._clock = clock
        self._hits: Dict[str, Deque[float]] = {}
        self._lock = threading.Lock()

    @classmethod
    def from_settings(cls, settings) -> "SlidingWindowRateLimiter":
        return cls(settings.RATE_LIMIT_WINDOW_MS, settings.RATE_LIMIT_MAX_REQUESTS)

    def _prune(self, hits: Deque[float], now: float) -> None:
        while hits and now - hits[0] >= self.window:
            hits.popleft()

    def admit(self, key: str) -> bool:
        with self._lock:
            now = self._clock()
            hits = self._hits.setdefault(key, deque())
            self._prune(hits, now)
            if len(hits) >= self.max_requests:
                return False
            hits.append(now)
            return True

    def retry_after(self, key: str) -> Optional[float]:
        """Seconds until ``key`` is admitted again, or None if it would be admitted now."""
        with self._lock:
            hits = self._hits.get(key)
            if not hits:
                return None
            now = self._clock()
            self._prune(hits, now)
            if len(hits) < self.max_requests:
                return None
            return max(self.window - (now - hits[0]), 0.0)

    def enforce(self, key: str) -> None:
        if not self.admit(key):
            raise RateLimitExceeded(key, retry_after=self.retry_after(key))

    def reset(self, key: Optional[str] = None) -> None:
        with self._lock:
            if key is None:
                self._hits.clear()
            else:
                self._hits.pop(key, None)

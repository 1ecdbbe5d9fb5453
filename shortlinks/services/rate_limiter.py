from collections import deque
from fastapi import Request
from typing import Callable, Deque, Dict
from ..errors import RateLimited
from ..observability import RATE_LIMITED_TOTAL
from ..utils import first_forwarded_ip, UNKNOWN_IP
import threading
import time
import logging

logger = logging.getLogger(__name__)

class _Bucket:
    __slots__ = ("lock", "hits", "evicted")

    def __init__(self):
        self.lock = threading.Lock()
        self.hits: Deque[float] = deque()
        self.evicted = False

class SlidingWindowRateLimiter:
    """Admit at most ``limit`` events per key in the trailing ``window`` seconds.

    State is in-process only and is lost on restart. Keys idle for a whole
    window are swept at most once per window, so the key map stays bounded by
    the clients seen in the last two windows.
    """

    def __init__(self, limit: int, window: float, clock: Callable[[], float] = time.monotonic):
        self.limit = limit
        self.window = window
        self.clock = clock
        self._buckets: Dict[str, _Bucket] = {}
        self._buckets_lock = threading.Lock()
        self._last_sweep = clock()

    def __len__(self) -> int:
        with self._buckets_lock:
            return len(self._buckets)

    def _bucket(self, key: str) -> _Bucket:
        with self._buckets_lock:
            bucket = self._buckets.get(key)
            if bucket is None:
                bucket = self._buckets[key] = _Bucket()
            return bucket

    def _sweep(self, now: float) -> None:
        cutoff = now - self.window
        with self._buckets_lock:
            if now - self._last_sweep < self.window:
                return
            self._last_sweep = now
            for key, bucket in list(self._buckets.items()):
                # a bucket held by a caller is in use; the next sweep gets it
                if not bucket.lock.acquire(blocking=False):
                    continue
                try:
                    if not bucket.hits or bucket.hits[-1] <= cutoff:
                        bucket.evicted = True
                        del self._buckets[key]
                finally:
                    bucket.lock.release()

    def allow(self, key: str) -> bool:
        self._sweep(self.clock())
        while True:
            bucket = self._bucket(key)
            with bucket.lock:
                if bucket.evicted:
                    # swept between lookup and lock; take the fresh bucket
                    continue

                now = self.clock()
                cutoff = now - self.window
                while bucket.hits and bucket.hits[0] <= cutoff:
                    bucket.hits.popleft()

                if len(bucket.hits) >= self.limit:
                    return False

                bucket.hits.append(now)
                return True

    def reset(self, key: str) -> None:
        with self._buckets_lock:
            bucket = self._buckets.pop(key, None)
            if bucket is not None:
                with bucket.lock:
                    bucket.evicted = True

def client_key(request: Request) -> str:
    forwarded = first_forwarded_ip(request.headers.get("X-Forwarded-For"))
    if forwarded:
        return forwarded
    if request.client and request.client.host:
        return request.client.host
    return UNKNOWN_IP

async def enforce_create_rate_limit(request: Request):
    limiter: SlidingWindowRateLimiter = request.app.state.rate_limiter
    key = client_key(request)

    if not limiter.allow(key):
        RATE_LIMITED_TOTAL.inc()
        logger.warning(f"Rate limit hit for {key}")
        raise RateLimited(
            f"rate limit exceeded: {limiter.limit} requests per {limiter.window}s"
        )

"""Token-bucket rate limiter for catalog requests.

TMDB allows bursts but throttles sustained traffic; the statistical batch
fallback issues lookups from a thread pool, so the bucket is shared and
guarded by a lock.
"""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass, field


@dataclass
class TokenBucket:
    """Token bucket rate limiter.

    Tokens refill continuously at ``refill_rate`` per second up to
    ``capacity``; each request takes one. A ``refill_rate`` of zero turns
    the limiter off.
    """

    capacity: float
    refill_rate: float  # tokens per second
    _tokens: float = field(init=False)
    _last_refill: float = field(init=False)
    _lock: threading.Lock = field(default_factory=threading.Lock, init=False, repr=False)

    def __post_init__(self) -> None:
        self._tokens = self.capacity
        self._last_refill = time.monotonic()

    @classmethod
    def per_second(cls, rate: float) -> TokenBucket:
        """Bucket allowing ``rate`` requests/sec with a one-second burst."""
        return cls(capacity=max(rate, 1.0), refill_rate=rate)

    @property
    def enabled(self) -> bool:
        return self.refill_rate > 0

    def _refill(self) -> None:
        now = time.monotonic()
        self._tokens = min(self.capacity, self._tokens + (now - self._last_refill) * self.refill_rate)
        self._last_refill = now

    def acquire(self, tokens: float = 1.0, blocking: bool = True) -> bool:
        """Take tokens from the bucket.

        Returns False only when non-blocking and not enough tokens are available.
        """
        if not self.enabled:
            return True

        while True:
            with self._lock:
                self._refill()
                if self._tokens >= tokens:
                    self._tokens -= tokens
                    return True
                if not blocking:
                    return False
                wait = (tokens - self._tokens) / self.refill_rate

            # Sleep outside the lock so other threads can refill-check
            time.sleep(wait)

    def try_acquire(self, tokens: float = 1.0) -> bool:
        return self.acquire(tokens, blocking=False)

    @property
    def available_tokens(self) -> float:
        with self._lock:
            self._refill()
            return self._tokens


## Tests


def test_token_bucket_basic():
    bucket = TokenBucket(capacity=5.0, refill_rate=1.0)
    assert abs(bucket.available_tokens - 5.0) < 0.1

    assert bucket.acquire(3.0) is True
    assert abs(bucket.available_tokens - 2.0) < 0.1


def test_token_bucket_try_acquire():
    bucket = TokenBucket(capacity=2.0, refill_rate=1.0)

    assert bucket.try_acquire() is True
    assert bucket.try_acquire() is True
    assert bucket.try_acquire() is False


def test_token_bucket_blocking_refills():
    bucket = TokenBucket(capacity=1.0, refill_rate=200.0)
    bucket.acquire()
    start = time.monotonic()
    assert bucket.acquire() is True
    assert time.monotonic() - start < 0.5


def test_token_bucket_disabled():
    bucket = TokenBucket.per_second(0)
    assert bucket.enabled is False
    for _ in range(100):
        assert bucket.try_acquire() is True


def test_per_second():
    bucket = TokenBucket.per_second(20.0)
    assert bucket.capacity == 20.0
    assert bucket.refill_rate == 20.0

"""
Token-bucket rate limiter shared by the suggestion batch
"""

import logging
import threading
import time
from typing import Callable


logger = logging.getLogger(__name__)


class TokenBucket:
    """Allow ``rate`` acquisitions per second with bursts up to ``capacity``

    The clock and sleep functions are injectable so tests can drive time
    without waiting.
    """

    def __init__(self, rate: float = 1.0, capacity: int = 1,
                 clock: Callable[[], float] = time.monotonic,
                 sleep: Callable[[float], None] = time.sleep):
        if rate <= 0:
            raise ValueError('rate must be positive')
        if capacity < 1:
            raise ValueError('capacity must be at least 1')
        self.rate = float(rate)
        self.capacity = capacity
        self.clock = clock
        self.sleep = sleep
        self._tokens = float(capacity)
        self._updated = clock()
        self._lock = threading.Lock()

    def _refill(self) -> None:
        now = self.clock()
        elapsed = max(0.0, now - self._updated)
        self._tokens = min(float(self.capacity), self._tokens + elapsed * self.rate)
        self._updated = now

    def try_acquire(self) -> bool:
        """Take a token if one is available, without waiting"""
        with self._lock:
            self._refill()
            if self._tokens >= 1.0:
                self._tokens -= 1.0
                return True
            return False

    def acquire(self) -> float:
        """Block until a token is available, returning the seconds waited"""
        waited = 0.0
        while True:
            with self._lock:
                self._refill()
                if self._tokens >= 1.0:
                    self._tokens -= 1.0
                    return waited
                wait = (1.0 - self._tokens) / self.rate
            logger.debug('ratelimit: waiting %.2fs for a token', wait)
            self.sleep(wait)
            waited += wait

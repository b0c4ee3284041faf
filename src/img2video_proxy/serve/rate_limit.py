"""Fixed-window request counter keyed by client identifier.

Each identifier gets `limit` requests per `interval` seconds. The window is
reset wholesale once it is older than `interval`, so a client can burst up
to 2x `limit` across a window boundary.

At most `unique_token_per_interval` identifiers are tracked; the least
recently seen one is dropped when a new identifier arrives at capacity.

The table is per process; running several server workers multiplies the
effective per-client limit.
"""
from __future__ import annotations
import logging
import threading
import time
from collections import OrderedDict
from typing import Callable

LOGGER = logging.getLogger("img2video.serve.rate_limit")


class RateLimitExceeded(Exception):
    def __init__(self, token: str, limit: int) -> None:
        super().__init__("Rate limit exceeded")
        self.token = token
        self.limit = limit


class FixedWindowRateLimiter:
    def __init__(
        self,
        interval: float,
        unique_token_per_interval: int,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if unique_token_per_interval < 1:
            raise ValueError("unique_token_per_interval must be >= 1")
        self.interval = interval
        self.capacity = unique_token_per_interval
        self._clock = clock
        # token -> [count, window_start]
        self._windows: OrderedDict[str, list[float]] = OrderedDict()
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._windows)

    def check(self, limit: int, token: str) -> bool:
        """
        Count one request for `token`.

        Returns:
            True when the request is within the limit.

        Raises:
            RateLimitExceeded: when `token` already used `limit` requests in its window.
        """
        with self._lock:
            now = self._clock()
            window = self._windows.get(token)

            if window is None or now - window[1] > self.interval:
                self._windows[token] = [1, now]
                self._windows.move_to_end(token)
                self._evict()
                return True

            self._windows.move_to_end(token)
            if window[0] >= limit:
                LOGGER.info("Rate limit exceeded for %s (%d/%d)", token, window[0], limit)
                raise RateLimitExceeded(token, limit)

            window[0] += 1
            return True

    def _evict(self) -> None:
        while len(self._windows) > self.capacity:
            token, _ = self._windows.popitem(last=False)
            LOGGER.debug("Evicted rate window for %s", token)

"""Per-provider request scheduling.

Every external catalog gets its own `RateLimiter`. Work is queued with
`schedule()` and executed one task at a time on a drain thread that keeps
two limits:

- at most `requests_per_period` dispatches in any `period` seconds
- at least `min_interval` seconds between two dispatches

Callers get a `concurrent.futures.Future` back and decide whether to wait
on it.
"""

from __future__ import annotations

import threading
import time
from collections import deque
from concurrent.futures import Future
from typing import Any, Callable, Deque, Dict, Optional, Tuple

from .logging_config import get_logger

logger = get_logger(__name__)

DEFAULT_MIN_INTERVAL = 0.4

# provider key -> (requests per period, period in seconds)
PROVIDER_LIMITS: Dict[str, Tuple[int, float]] = {
    "myanimelist": (45, 60.0),
    "metron": (30, 60.0),
    "googlebooks": (30, 60.0),
    "openlibrary": (30, 60.0),
    "comicvine": (200, 3600.0),
}
DEFAULT_LIMIT: Tuple[int, float] = (30, 60.0)


class RateLimiter:
    """FIFO task scheduler bounded by a rolling window and a minimum spacing."""

    def __init__(
        self,
        requests_per_period: int,
        period: float,
        min_interval: float = DEFAULT_MIN_INTERVAL,
        *,
        name: str = "limiter",
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        if requests_per_period < 1:
            raise ValueError("requests_per_period must be at least 1")
        self.requests_per_period = requests_per_period
        self.period = period
        self.min_interval = min_interval
        self.name = name
        self._clock = clock
        self._sleep = sleep

        self._queue: Deque[Tuple[Future, Callable[..., Any], tuple, dict]] = deque()
        self._lock = threading.Lock()
        self._draining = False
        self._dispatches: Deque[float] = deque()
        self._last_dispatch: Optional[float] = None

    def schedule(self, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> Future:
        """Queue `fn(*args, **kwargs)` and return a future for its result."""
        future: Future = Future()
        with self._lock:
            self._queue.append((future, fn, args, kwargs))
            if self._draining:
                return future
            self._draining = True

        worker = threading.Thread(
            target=self._drain, daemon=True, name=f"RateLimiter-{self.name}"
        )
        worker.start()
        return future

    def call(self, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
        """Schedule `fn` and block until it has run."""
        return self.schedule(fn, *args, **kwargs).result()

    def _drain(self) -> None:
        while True:
            with self._lock:
                if not self._queue:
                    self._draining = False
                    return

            now = self._clock()

            # Forget dispatches that have left the window.
            while self._dispatches and now - self._dispatches[0] >= self.period:
                self._dispatches.popleft()

            if len(self._dispatches) >= self.requests_per_period:
                wait = self._dispatches[0] + self.period - now
                logger.debug(f"[{self.name}] window exhausted, waiting {wait:.1f}s")
                self._sleep(wait)
                continue

            if self._last_dispatch is not None:
                wait = self.min_interval - (now - self._last_dispatch)
                if wait > 0:
                    self._sleep(wait)
                    continue

            with self._lock:
                future, fn, args, kwargs = self._queue.popleft()

            dispatched_at = self._clock()
            self._last_dispatch = dispatched_at
            self._dispatches.append(dispatched_at)

            if not future.set_running_or_notify_cancel():
                continue
            try:
                result = fn(*args, **kwargs)
            except BaseException as exc:
                future.set_exception(exc)
            else:
                future.set_result(result)


class RateLimiterRegistry:
    """Lazily creates one limiter per provider key."""

    def __init__(
        self,
        limits: Optional[Dict[str, Tuple[int, float]]] = None,
        min_interval: float = DEFAULT_MIN_INTERVAL,
        default_limit: Tuple[int, float] = DEFAULT_LIMIT,
    ):
        self.limits = dict(PROVIDER_LIMITS if limits is None else limits)
        self.min_interval = min_interval
        self.default_limit = default_limit
        self._limiters: Dict[str, RateLimiter] = {}
        self._lock = threading.Lock()

    def get(self, provider_key: str) -> RateLimiter:
        with self._lock:
            limiter = self._limiters.get(provider_key)
            if limiter is None:
                per_period, period = self.limits.get(provider_key, self.default_limit)
                limiter = RateLimiter(
                    per_period, period, self.min_interval, name=provider_key
                )
                self._limiters[provider_key] = limiter
            return limiter

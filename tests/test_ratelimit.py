import threading
import time

import pytest

from devourer.ratelimit import PROVIDER_LIMITS, RateLimiter, RateLimiterRegistry


class FakeClock:
    """Clock whose sleep() advances time instead of blocking."""

    def __init__(self):
        self.now = 0.0

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.now += max(seconds, 0.0)


def test_window_and_spacing_are_respected():
    clock = FakeClock()
    limiter = RateLimiter(3, 10.0, 1.0, clock=clock, sleep=clock.sleep)
    dispatched = []

    futures = [limiter.schedule(lambda: dispatched.append(clock())) for _ in range(10)]
    for future in futures:
        future.result(timeout=5)

    assert len(dispatched) == 10
    for start in dispatched:
        in_window = [t for t in dispatched if start <= t < start + 10.0]
        assert len(in_window) <= 3
    for earlier, later in zip(dispatched, dispatched[1:]):
        assert later - earlier >= 1.0


def test_tasks_run_in_submission_order():
    limiter = RateLimiter(100, 1.0, 0.0)
    order = []
    futures = [limiter.schedule(order.append, i) for i in range(20)]
    for future in futures:
        future.result(timeout=5)
    assert order == list(range(20))


def test_failure_does_not_stop_the_queue():
    limiter = RateLimiter(10, 1.0, 0.0)

    def boom():
        raise ValueError("catalog down")

    failed = limiter.schedule(boom)
    ok = limiter.schedule(lambda: "fine")

    with pytest.raises(ValueError):
        failed.result(timeout=5)
    assert ok.result(timeout=5) == "fine"


def test_schedule_returns_before_task_runs():
    limiter = RateLimiter(10, 1.0, 0.0)
    release = threading.Event()

    future = limiter.schedule(lambda: release.wait(5) and "done")
    assert not future.done()
    release.set()
    assert future.result(timeout=5) == "done"


def test_tasks_never_overlap():
    """Concurrent submitters still get one task at a time."""
    limiter = RateLimiter(1000, 1.0, 0.0)
    lock = threading.Lock()
    state = {"active": 0, "peak": 0}

    def task():
        with lock:
            state["active"] += 1
            state["peak"] = max(state["peak"], state["active"])
        time.sleep(0.001)
        with lock:
            state["active"] -= 1

    futures = []
    futures_lock = threading.Lock()

    def submit_many():
        for _ in range(10):
            future = limiter.schedule(task)
            with futures_lock:
                futures.append(future)

    threads = [threading.Thread(target=submit_many) for _ in range(4)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    for future in futures:
        future.result(timeout=5)

    assert len(futures) == 40
    assert state["peak"] == 1


def test_call_blocks_and_returns_result():
    limiter = RateLimiter(10, 1.0, 0.0)
    assert limiter.call(lambda a, b: a + b, 2, 3) == 5


def test_invalid_limit_rejected():
    with pytest.raises(ValueError):
        RateLimiter(0, 60.0)


def test_registry_reuses_limiters_per_provider():
    registry = RateLimiterRegistry()
    first = registry.get("comicvine")
    assert registry.get("comicvine") is first
    assert (first.requests_per_period, first.period) == PROVIDER_LIMITS["comicvine"]

    other = registry.get("some-new-catalog")
    assert other is not first
    assert (other.requests_per_period, other.period) == (30, 60.0)

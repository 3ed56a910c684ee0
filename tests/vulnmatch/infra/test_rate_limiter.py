from __future__ import annotations

import pytest

from vulnmatch.infra.cache_diskcache import DiskCacheAdapter
from vulnmatch.infra.rate_limiter import SlidingWindowRateLimiter


class FakeTime:
    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self.now = start
        self.sleeps: list[float] = []

    def time(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


def _limiter(fake: FakeTime, **kwargs) -> SlidingWindowRateLimiter:
    return SlidingWindowRateLimiter(time_fn=fake.time, sleep_fn=fake.sleep, **kwargs)


def test_requests_within_budget_do_not_wait():
    fake = FakeTime()
    limiter = _limiter(fake, max_requests=5, window_seconds=30.0)
    for _ in range(5):
        limiter.acquire()
        fake.now += 1
    assert fake.sleeps == []


def test_request_over_budget_waits_for_oldest_to_leave_window():
    fake = FakeTime()
    limiter = _limiter(fake, max_requests=2, window_seconds=30.0)
    limiter.acquire()
    fake.now += 10
    limiter.acquire()
    fake.now += 5

    limiter.acquire()

    assert fake.sleeps == [pytest.approx(15.0)]


def test_budget_is_shared_through_cache(tmp_path):
    """A second limiter on the same namespace sees the first one's requests."""
    fake = FakeTime()
    with DiskCacheAdapter(namespace="limits", base_dir=str(tmp_path)) as cache:
        first = _limiter(fake, max_requests=2, window_seconds=30.0, cache=cache, namespace="nvd_anonymous")
        first.acquire()
        fake.now += 1
        first.acquire()

        second = _limiter(fake, max_requests=2, window_seconds=30.0, cache=cache, namespace="nvd_anonymous")
        second.acquire()

        assert fake.sleeps == [pytest.approx(29.0)]


def test_other_namespace_has_its_own_budget(tmp_path):
    fake = FakeTime()
    with DiskCacheAdapter(namespace="limits", base_dir=str(tmp_path)) as cache:
        a = _limiter(fake, max_requests=1, window_seconds=30.0, cache=cache, namespace="nvd_a")
        b = _limiter(fake, max_requests=1, window_seconds=30.0, cache=cache, namespace="nvd_b")
        a.acquire()
        b.acquire()
        assert fake.sleeps == []


@pytest.mark.parametrize("kwargs", [{"max_requests": 0, "window_seconds": 30.0}, {"max_requests": 5, "window_seconds": 0}])
def test_invalid_limits_are_rejected(kwargs):
    with pytest.raises(ValueError):
        SlidingWindowRateLimiter(**kwargs)

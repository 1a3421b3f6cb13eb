"""
Unit tests for RateLimiter spacing.
"""

from academic_calendar_sync.models import API_DELAY_SECONDS
from academic_calendar_sync.rate_limit import RateLimiter


class _Clock:
    """Virtual clock whose sleep advances time instead of blocking."""

    def __init__(self):
        self.now = 0.0
        self.call_times: list[float] = []

    def sleep(self, seconds: float):
        self.now += seconds


def test_default_interval():
    assert RateLimiter().interval == API_DELAY_SECONDS


def test_consecutive_calls_are_spaced_by_interval():
    clock = _Clock()
    limiter = RateLimiter(interval=0.25, sleep=clock.sleep)

    for _ in range(5):
        limiter.throttle()
        clock.call_times.append(clock.now)

    assert limiter.calls == 5
    gaps = [b - a for a, b in zip(clock.call_times, clock.call_times[1:])]
    assert all(gap >= 0.25 for gap in gaps)
    # N calls span at least (N - 1) intervals.
    assert clock.call_times[-1] - clock.call_times[0] >= 4 * 0.25


def test_zero_interval_never_sleeps():
    slept = []
    limiter = RateLimiter(interval=0, sleep=slept.append)

    limiter.throttle()
    limiter.throttle()

    assert slept == []
    assert limiter.calls == 2

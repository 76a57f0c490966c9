"""
Unit tests for RateLimiter.

The limiter takes an injectable clock, so the rolling window is driven
with a FakeClock instead of real sleeps.
"""

from xssprobe.core.rate_limiter import WINDOW_SECONDS, RateLimiter


class TestRateLimiter:
    """Tests for the three admission conditions."""

    def test_min_delay_between_starts(self, clock):
        limiter = RateLimiter(min_delay=1.0, max_per_minute=100, max_concurrent=10, clock=clock)
        assert limiter.try_acquire() is True
        assert limiter.try_acquire() is False
        assert limiter.blocked_reason() == "min_delay"
        clock.advance(1.0)
        assert limiter.try_acquire() is True

    def test_concurrency_ceiling(self, clock):
        limiter = RateLimiter(min_delay=0, max_per_minute=100, max_concurrent=2, clock=clock)
        assert limiter.try_acquire() is True
        assert limiter.try_acquire() is True
        assert limiter.try_acquire() is False
        assert limiter.blocked_reason() == "concurrency"
        limiter.release()
        assert limiter.try_acquire() is True
        assert limiter.in_flight == 2

    def test_release_never_goes_negative(self, clock):
        limiter = RateLimiter(min_delay=0, clock=clock)
        limiter.release()
        assert limiter.in_flight == 0

    def test_per_minute_ceiling(self, clock):
        limiter = RateLimiter(min_delay=0, max_per_minute=3, max_concurrent=100, clock=clock)
        for _ in range(3):
            assert limiter.try_acquire() is True
        assert limiter.try_acquire() is False
        assert limiter.blocked_reason() == "per_minute"
        clock.advance(WINDOW_SECONDS)
        assert limiter.try_acquire() is True

    def test_no_window_exceeds_limit(self, clock):
        """Hammer the limiter for three simulated minutes; every 60s window holds at most k starts."""
        limit = 5
        limiter = RateLimiter(min_delay=0, max_per_minute=limit, max_concurrent=100, clock=clock)
        origin = clock.now
        starts = []
        for second in range(180):
            clock.now = origin + second
            for _ in range(10):
                if limiter.try_acquire():
                    starts.append(clock.now)
                    limiter.release()

        assert len(starts) == limit * 3
        for window_start in starts:
            in_window = [s for s in starts if window_start <= s < window_start + WINDOW_SECONDS]
            assert len(in_window) <= limit

    def test_stats(self, clock):
        limiter = RateLimiter(min_delay=0, max_per_minute=10, max_concurrent=3, clock=clock)
        limiter.try_acquire()
        stats = limiter.get_stats()
        assert stats["in_flight"] == 1
        assert stats["started_last_minute"] == 1

"""Tests for the sliding-window send throttle."""
import random

import pytest

from app.chat.rate_limiter import SlidingWindowLimiter


class TestSlidingWindowLimiter:
    """Hard cap of max_events per trailing window, per (user, room)."""

    def test_allows_up_to_max_then_rejects(self):
        limiter = SlidingWindowLimiter(5, 10000)
        results = [limiter.allow(1, 1, now=t) for t in range(6)]
        assert results == [True] * 5 + [False]

    def test_default_limits_burst_then_recovery(self):
        """5 sends at t..t+4 pass, t+5 is rejected, t+10001 passes again."""
        limiter = SlidingWindowLimiter(5, 10000)
        t = 1_000_000
        for offset in range(5):
            assert limiter.allow(1, 1, now=t + offset)
        assert not limiter.allow(1, 1, now=t + 5)
        assert limiter.allow(1, 1, now=t + 10001)

    def test_window_slides(self):
        limiter = SlidingWindowLimiter(2, 1000)
        assert limiter.allow(1, 1, now=0)
        assert limiter.allow(1, 1, now=500)
        assert not limiter.allow(1, 1, now=999)
        # The entry at t=0 is exactly one window old and no longer counts
        assert limiter.allow(1, 1, now=1000)
        assert not limiter.allow(1, 1, now=1400)
        assert limiter.allow(1, 1, now=1500)

    def test_rejected_attempts_are_not_recorded(self):
        limiter = SlidingWindowLimiter(1, 1000)
        assert limiter.allow(1, 1, now=0)
        for t in range(1, 1000, 100):
            assert not limiter.allow(1, 1, now=t)
        # Only the accepted send at t=0 occupies the window
        assert limiter.allow(1, 1, now=1000)

    def test_keys_are_independent(self):
        limiter = SlidingWindowLimiter(1, 1000)
        assert limiter.allow(1, 1, now=0)
        assert limiter.allow(1, 2, now=0)
        assert limiter.allow(2, 1, now=0)
        assert not limiter.allow(1, 1, now=1)

    def test_never_exceeds_cap_in_any_window(self):
        """Over a random stream, no trailing window holds more than max accepts."""
        max_events, window_ms = 5, 10000
        limiter = SlidingWindowLimiter(max_events, window_ms)
        rng = random.Random(1234)

        now = 0.0
        accepted = []
        for _ in range(2000):
            now += rng.uniform(0, 1500)
            if limiter.allow(1, 1, now=now):
                accepted.append(now)

        for i, t in enumerate(accepted):
            in_window = [a for a in accepted[: i + 1] if a > t - window_ms]
            assert len(in_window) <= max_events

    def test_reset_forgets_history(self):
        limiter = SlidingWindowLimiter(1, 1000)
        limiter.allow(1, 1, now=0)
        limiter.reset()
        assert limiter.allow(1, 1, now=1)

    def test_default_clock(self):
        limiter = SlidingWindowLimiter(2, 60000)
        assert limiter.allow(1, 1)
        assert limiter.allow(1, 1)
        assert not limiter.allow(1, 1)

    @pytest.mark.parametrize("max_events,window_ms", [(0, 1000), (5, 0), (-1, 1000)])
    def test_rejects_non_positive_settings(self, max_events, window_ms):
        with pytest.raises(ValueError):
            SlidingWindowLimiter(max_events, window_ms)

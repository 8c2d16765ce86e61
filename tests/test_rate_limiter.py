#!/usr/bin/env python3
"""
Sliding Window Rate Limiter Tests
"""

import pytest

from playback.rate_limiter import InMemorySlidingWindowCounter


@pytest.fixture
def limiter(clock):
    return InMemorySlidingWindowCounter(limit=3, window_seconds=60, clock=clock)


class TestSlidingWindow:

    def test_allows_up_to_limit(self, limiter):
        assert [limiter.hit("u1")[0] for _ in range(4)] == [True, True, True, False]

    def test_keys_are_independent(self, limiter):
        for _ in range(3):
            limiter.hit("u1")
        assert limiter.hit("u2") == (True, 0)

    def test_retry_after_counts_to_oldest_hit(self, limiter, clock):
        limiter.hit("u1")
        clock.advance(20)
        limiter.hit("u1")
        limiter.hit("u1")
        allowed, retry_after = limiter.hit("u1")
        assert allowed is False
        assert retry_after == 40

    def test_window_slides(self, limiter, clock):
        limiter.hit("u1")
        clock.advance(30)
        limiter.hit("u1")
        limiter.hit("u1")
        clock.advance(31)
        # First hit slid out, the other two remain
        assert limiter.remaining("u1") == 1
        assert limiter.hit("u1")[0] is True
        assert limiter.hit("u1")[0] is False

    def test_rejected_hits_are_not_recorded(self, limiter, clock):
        for _ in range(3):
            limiter.hit("u1")
        for _ in range(5):
            limiter.hit("u1")
        clock.advance(61)
        assert limiter.remaining("u1") == 3

    def test_reset(self, limiter):
        for _ in range(3):
            limiter.hit("u1")
        limiter.reset("u1")
        assert limiter.remaining("u1") == 3

    def test_limit_must_be_positive(self, clock):
        with pytest.raises(ValueError):
            InMemorySlidingWindowCounter(limit=0, window_seconds=60, clock=clock)

"""
Tests for per-provider sliding window rate limiting.

Tests cover:
- Admission up to max_requests within the window
- Window expiry
- next_available_slot reporting
- Runtime reconfiguration keeping recorded admissions
- Thread safety under concurrent callers
- Async polling admission with timeout
"""

import asyncio
import time
from concurrent.futures import ThreadPoolExecutor

import pytest

from ai_auditor.errors import ConfigurationError, TransientProviderError
from ai_auditor.providers import Provider
from ai_auditor.rate_limiter import RateLimiter, SlidingWindowLimiter


class TestSlidingWindow:
    """Tests for admission decisions."""

    def test_third_call_in_window_denied(self, fake_clock):
        """maxRequests=2, window=60: [True, True, False]."""
        limiter = RateLimiter({Provider.OPENAI: (2, 60.0)}, clock=fake_clock)

        results = [limiter.try_acquire(Provider.OPENAI) for _ in range(3)]

        assert results == [True, True, False]

    def test_admits_again_after_window(self, fake_clock):
        """After the window elapses a new call succeeds."""
        limiter = RateLimiter({Provider.OPENAI: (3, 60.0)}, clock=fake_clock)
        for _ in range(3):
            assert limiter.try_acquire(Provider.OPENAI)
        assert not limiter.try_acquire(Provider.OPENAI)

        fake_clock.advance(60.0)

        assert limiter.try_acquire(Provider.OPENAI)

    def test_partial_expiry(self, fake_clock):
        """Only timestamps older than the window are evicted."""
        limiter = RateLimiter({Provider.CLAUDE: (2, 60.0)}, clock=fake_clock)
        limiter.try_acquire(Provider.CLAUDE)
        fake_clock.advance(30.0)
        limiter.try_acquire(Provider.CLAUDE)

        fake_clock.advance(31.0)

        assert limiter.try_acquire(Provider.CLAUDE)
        assert not limiter.try_acquire(Provider.CLAUDE)

    def test_providers_are_independent(self, fake_clock):
        """Exhausting one provider does not affect another."""
        limiter = RateLimiter({Provider.OPENAI: (1, 60.0), Provider.GEMINI: (1, 60.0)}, clock=fake_clock)

        assert limiter.try_acquire(Provider.OPENAI)
        assert not limiter.try_acquire(Provider.OPENAI)
        assert limiter.try_acquire(Provider.GEMINI)

    def test_accepts_provider_ids(self, fake_clock):
        """String ids resolve to providers; unknown ids are configuration errors."""
        limiter = RateLimiter({Provider.OPENAI: (1, 60.0)}, clock=fake_clock)

        assert limiter.try_acquire("openai")
        assert not limiter.try_acquire("OpenAI")
        with pytest.raises(ConfigurationError):
            limiter.try_acquire("nope")

    def test_rejects_non_positive_limits(self):
        """Limits must be positive."""
        with pytest.raises(ConfigurationError):
            SlidingWindowLimiter(0, 60.0)
        with pytest.raises(ConfigurationError):
            SlidingWindowLimiter(5, 0)


class TestNextAvailableSlot:
    """Tests for wait-time reporting."""

    def test_zero_when_capacity_left(self, fake_clock):
        """No wait when the window has room."""
        limiter = RateLimiter({Provider.OPENAI: (2, 60.0)}, clock=fake_clock)
        limiter.try_acquire(Provider.OPENAI)

        assert limiter.next_available_slot(Provider.OPENAI) == 0.0

    def test_time_until_oldest_expires(self, fake_clock):
        """When full, reports when the oldest admission leaves the window."""
        limiter = RateLimiter({Provider.OPENAI: (2, 60.0)}, clock=fake_clock)
        limiter.try_acquire(Provider.OPENAI)
        limiter.try_acquire(Provider.OPENAI)

        fake_clock.advance(20.0)

        assert limiter.next_available_slot(Provider.OPENAI) == pytest.approx(40.0)


class TestReconfiguration:
    """Tests for runtime limit changes."""

    def test_raising_limit_keeps_history(self, fake_clock):
        """Recorded admissions survive a limit change."""
        limiter = RateLimiter({Provider.OPENAI: (2, 60.0)}, clock=fake_clock)
        limiter.try_acquire(Provider.OPENAI)
        limiter.try_acquire(Provider.OPENAI)

        limiter.update_limits(Provider.OPENAI, 3, 60.0)

        assert limiter.try_acquire(Provider.OPENAI)
        assert not limiter.try_acquire(Provider.OPENAI)

    def test_lowering_limit_applies_to_existing_window(self, fake_clock):
        """Lowering the limit denies calls while old admissions remain."""
        limiter = RateLimiter({Provider.GEMINI: (5, 60.0)}, clock=fake_clock)
        limiter.try_acquire(Provider.GEMINI)
        limiter.try_acquire(Provider.GEMINI)

        limiter.update_limits(Provider.GEMINI, 1, 60.0)
        fake_clock.advance(30.0)

        assert not limiter.try_acquire(Provider.GEMINI)
        stats = limiter.get_stats()["gemini"]
        assert stats["in_window"] == 2
        assert stats["max_requests"] == 1


class TestConcurrency:
    """Tests for concurrent admission."""

    def test_exactly_max_requests_admitted_across_threads(self):
        """Concurrent callers never exceed the window limit."""
        limiter = RateLimiter({Provider.CLAUDE: (50, 60.0)})

        def hammer(_):
            return sum(limiter.try_acquire(Provider.CLAUDE) for _ in range(20))

        with ThreadPoolExecutor(max_workers=8) as executor:
            admitted = sum(executor.map(hammer, range(10)))

        assert admitted == 50


class TestAsyncAcquire:
    """Tests for polling admission."""

    @pytest.mark.asyncio
    async def test_acquire_waits_for_slot(self):
        """acquire() polls until the window frees up."""
        limiter = RateLimiter({Provider.OPENAI: (1, 0.1)})
        await limiter.acquire(Provider.OPENAI, poll_interval=0.01)

        start = time.monotonic()
        await limiter.acquire(Provider.OPENAI, poll_interval=0.01, timeout=2.0)

        assert time.monotonic() - start >= 0.05

    @pytest.mark.asyncio
    async def test_acquire_times_out(self, fake_clock):
        """acquire() gives up with a transient error after the timeout."""
        limiter = RateLimiter({Provider.OPENAI: (1, 60.0)}, clock=fake_clock)
        await limiter.acquire(Provider.OPENAI)

        with pytest.raises(TransientProviderError):
            await limiter.acquire(Provider.OPENAI, poll_interval=0.01, timeout=0.05)

    @pytest.mark.asyncio
    async def test_acquire_admitted_once_clock_advances(self, fake_clock):
        """A waiting caller gets in as soon as the window rolls over."""
        limiter = RateLimiter({Provider.OPENAI: (1, 60.0)}, clock=fake_clock)
        await limiter.acquire(Provider.OPENAI)

        waiter = asyncio.create_task(limiter.acquire(Provider.OPENAI, poll_interval=0.01, timeout=2.0))
        await asyncio.sleep(0.05)
        assert not waiter.done()

        fake_clock.advance(60.0)
        await asyncio.wait_for(waiter, timeout=1.0)

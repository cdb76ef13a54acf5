"""
Per-provider sliding window rate limiting.

Each provider keeps a FIFO of admission timestamps. tryAcquire-style
admission evicts timestamps that fell out of the window and admits the
call if fewer than max_requests remain. State for one provider is guarded
by its own lock, so concurrent tasks see a consistent window.
"""

import asyncio
import logging
import threading
import time
from collections import deque
from typing import Any, Callable

from .errors import ConfigurationError, TransientProviderError
from .providers import DEFAULT_RATE_LIMITS, Provider

logger = logging.getLogger(__name__)


class SlidingWindowLimiter:
    """Sliding window admission control for a single provider."""

    def __init__(
        self,
        max_requests: int,
        window_seconds: float,
        clock: Callable[[], float] = time.monotonic
    ):
        if max_requests <= 0 or window_seconds <= 0:
            raise ConfigurationError("Rate limits must be positive")
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self._clock = clock
        self._lock = threading.Lock()
        self._admissions: deque[float] = deque()

        # Stats
        self._total_admitted = 0
        self._throttle_count = 0

    def _evict(self, now: float) -> None:
        cutoff = now - self.window_seconds
        while self._admissions and self._admissions[0] <= cutoff:
            self._admissions.popleft()

    def try_acquire(self) -> bool:
        with self._lock:
            now = self._clock()
            self._evict(now)
            if len(self._admissions) < self.max_requests:
                self._admissions.append(now)
                self._total_admitted += 1
                return True
            self._throttle_count += 1
            return False

    def next_available_slot(self) -> float:
        """Seconds until the oldest admission leaves the window."""
        with self._lock:
            now = self._clock()
            self._evict(now)
            if len(self._admissions) < self.max_requests:
                return 0.0
            return max(0.0, self._admissions[0] + self.window_seconds - now)

    def reconfigure(self, max_requests: int, window_seconds: float) -> None:
        """Change thresholds, keeping already recorded admissions."""
        if max_requests <= 0 or window_seconds <= 0:
            raise ConfigurationError("Rate limits must be positive")
        with self._lock:
            self.max_requests = max_requests
            self.window_seconds = window_seconds

    def get_stats(self) -> dict[str, Any]:
        with self._lock:
            self._evict(self._clock())
            return {
                "in_window": len(self._admissions),
                "max_requests": self.max_requests,
                "window_seconds": self.window_seconds,
                "total_admitted": self._total_admitted,
                "throttle_count": self._throttle_count,
            }


class RateLimiter:
    """
    Registry of sliding window limiters keyed by provider.

    Lives for the process lifetime; limits change only via update_limits().
    """

    def __init__(
        self,
        limits: dict[Provider, tuple[int, float]] | None = None,
        clock: Callable[[], float] = time.monotonic
    ):
        self._clock = clock
        self._lock = threading.Lock()
        self._limiters: dict[Provider, SlidingWindowLimiter] = {}
        for provider, (max_requests, window) in (limits or DEFAULT_RATE_LIMITS).items():
            self._limiters[provider] = SlidingWindowLimiter(max_requests, window, clock)

    def _limiter(self, provider: Provider | str) -> SlidingWindowLimiter:
        if isinstance(provider, str):
            provider = Provider.from_id(provider)
        with self._lock:
            limiter = self._limiters.get(provider)
            if limiter is None:
                max_requests, window = DEFAULT_RATE_LIMITS[provider]
                limiter = SlidingWindowLimiter(max_requests, window, self._clock)
                self._limiters[provider] = limiter
            return limiter

    def try_acquire(self, provider: Provider | str) -> bool:
        return self._limiter(provider).try_acquire()

    def next_available_slot(self, provider: Provider | str) -> float:
        return self._limiter(provider).next_available_slot()

    def update_limits(self, provider: Provider | str, max_requests: int, window_seconds: float) -> None:
        self._limiter(provider).reconfigure(max_requests, window_seconds)
        logger.info(
            f"[RATE] {provider.value if isinstance(provider, Provider) else provider}: "
            f"{max_requests} requests / {window_seconds}s"
        )

    async def acquire(
        self,
        provider: Provider,
        poll_interval: float = 1.0,
        timeout: float | None = None
    ) -> None:
        """
        Wait for admission by polling at a fixed interval.

        Raises:
            TransientProviderError: if no slot opened up within timeout
        """
        limiter = self._limiter(provider)
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout if timeout is not None else None

        while not limiter.try_acquire():
            if deadline is not None and loop.time() + poll_interval > deadline:
                raise TransientProviderError(
                    f"Rate limit admission timed out after {timeout}s",
                    provider=provider.value,
                )
            logger.debug(
                f"[RATE] {provider.value} throttled, next slot in "
                f"{limiter.next_available_slot():.1f}s"
            )
            await asyncio.sleep(poll_interval)

    def get_stats(self) -> dict[str, Any]:
        with self._lock:
            limiters = dict(self._limiters)
        return {provider.value: limiter.get_stats() for provider, limiter in limiters.items()}

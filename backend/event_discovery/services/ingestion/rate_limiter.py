"""
Rate limiting for outbound provider calls.

Each source gets its own limiter built from its ``rate_limit`` config so one
job cannot exceed a provider's quota. Two strategies share the same
steady-state rate of ``requests / window``:

- fixed delay: at least ``window / requests`` seconds between calls
- token bucket: bursts up to ``requests`` calls, refilled continuously
"""

import asyncio
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Awaitable, Callable, Literal

import structlog

logger = structlog.get_logger(__name__)

MonotonicClock = Callable[[], float]
Sleeper = Callable[[float], Awaitable[None]]


@dataclass(frozen=True)
class RateLimit:
    """At most ``requests`` calls per ``window`` seconds."""
    requests: int = 60
    window: float = 60.0

    def __post_init__(self):
        if self.requests < 1:
            raise ValueError("rate limit requests must be at least 1")
        if self.window <= 0:
            raise ValueError("rate limit window must be positive")

    def to_dict(self) -> dict:
        return {"requests": self.requests, "window": self.window}


class RateLimiter(ABC):
    """Throttle for the outbound calls of a single source."""

    strategy: str = ""

    def __init__(
        self,
        name: str,
        rate_limit: RateLimit,
        clock: MonotonicClock = time.monotonic,
        sleep: Sleeper = asyncio.sleep,
    ):
        self.name = name
        self.rate_limit = rate_limit
        self._clock = clock
        self._sleep = sleep
        self._lock = asyncio.Lock()
        self.total_acquired = 0
        self.total_wait_seconds = 0.0

    @property
    def interval(self) -> float:
        """Steady-state seconds between calls."""
        return self.rate_limit.window / self.rate_limit.requests

    async def acquire(self) -> None:
        """Wait until the next outbound call is allowed."""
        async with self._lock:
            wait_seconds = self._reserve()
            if wait_seconds > 0:
                logger.debug(
                    "rate_limiter.waiting",
                    source=self.name,
                    wait_seconds=round(wait_seconds, 3),
                )
                self.total_wait_seconds += wait_seconds
                await self._sleep(wait_seconds)
            self.total_acquired += 1

    @abstractmethod
    def _reserve(self) -> float:
        """Claim the next slot and return how long to wait for it."""

    def get_status(self) -> dict:
        return {
            "source": self.name,
            "strategy": self.strategy,
            "max_requests": self.rate_limit.requests,
            "window_seconds": self.rate_limit.window,
            "interval_seconds": round(self.interval, 4),
            "total_acquired": self.total_acquired,
            "total_wait_seconds": round(self.total_wait_seconds, 3),
        }


class FixedDelayRateLimiter(RateLimiter):
    """Inserts a fixed gap of ``window / requests`` between successive calls."""

    strategy = "fixed_delay"

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self._next_allowed: float | None = None

    def _reserve(self) -> float:
        now = self._clock()
        if self._next_allowed is None or now >= self._next_allowed:
            self._next_allowed = now + self.interval
            return 0.0

        wait = self._next_allowed - now
        self._next_allowed += self.interval
        return wait


class TokenBucketRateLimiter(RateLimiter):
    """
    Token bucket with capacity ``requests`` refilled at ``requests / window``
    tokens per second.

    Allows short bursts while holding the long-run rate at the same value as
    the fixed-delay limiter.
    """

    strategy = "token_bucket"

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self._tokens = float(self.rate_limit.requests)
        self._updated_at = self._clock()

    @property
    def refill_rate(self) -> float:
        return self.rate_limit.requests / self.rate_limit.window

    def _refill(self, now: float) -> None:
        elapsed = max(0.0, now - self._updated_at)
        self._tokens = min(
            float(self.rate_limit.requests),
            self._tokens + elapsed * self.refill_rate,
        )
        self._updated_at = now

    def _reserve(self) -> float:
        self._refill(self._clock())
        # Tokens may go negative: each waiter owns the deficit it must sleep off
        self._tokens -= 1.0
        if self._tokens >= 0:
            return 0.0
        return -self._tokens / self.refill_rate

    def get_status(self) -> dict:
        status = super().get_status()
        self._refill(self._clock())
        status["available_tokens"] = round(max(self._tokens, 0.0), 3)
        return status


def create_rate_limiter(
    name: str,
    rate_limit: RateLimit,
    strategy: Literal["fixed_delay", "token_bucket"] = "fixed_delay",
    clock: MonotonicClock = time.monotonic,
    sleep: Sleeper = asyncio.sleep,
) -> RateLimiter:
    """Build the limiter for one source."""
    if strategy == "token_bucket":
        return TokenBucketRateLimiter(name, rate_limit, clock=clock, sleep=sleep)
    if strategy == "fixed_delay":
        return FixedDelayRateLimiter(name, rate_limit, clock=clock, sleep=sleep)
    raise ValueError(f"Unknown rate limit strategy: {strategy}")

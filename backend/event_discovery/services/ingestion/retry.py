"""
Retry policy for whole-job failures.
"""
from dataclasses import dataclass
from datetime import timedelta
from typing import Optional

from event_discovery.config import RetrySettings
from event_discovery.models.domain import Backoff, BackoffType


@dataclass(frozen=True)
class RetryPolicy:
    """
    Bounded retries with backoff.

    For exponential backoff the delay after attempt ``n`` (1-based) is
    ``base_delay_ms * multiplier ** (n - 1)``: 2s, 4s, 8s with the defaults.
    """
    max_attempts: int = 3
    base_delay_ms: int = 2000
    multiplier: float = 2.0
    backoff_type: BackoffType = BackoffType.EXPONENTIAL

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.base_delay_ms < 0:
            raise ValueError("base_delay_ms must not be negative")

    @classmethod
    def from_settings(cls, settings: RetrySettings) -> "RetryPolicy":
        return cls(
            max_attempts=settings.max_attempts,
            base_delay_ms=settings.base_delay_ms,
            multiplier=settings.multiplier,
        )

    def override(
        self,
        attempts: Optional[int] = None,
        backoff: Optional[Backoff] = None,
    ) -> "RetryPolicy":
        """Apply a job payload's ``attempts``/``backoff`` on top of this policy."""
        return RetryPolicy(
            max_attempts=attempts if attempts is not None else self.max_attempts,
            base_delay_ms=backoff.delay if backoff is not None else self.base_delay_ms,
            multiplier=self.multiplier,
            backoff_type=backoff.type if backoff is not None else self.backoff_type,
        )

    def should_retry(self, attempt: int) -> bool:
        """Whether a job that just failed its ``attempt``-th try runs again."""
        return attempt < self.max_attempts

    def delay_ms(self, attempt: int) -> int:
        if attempt < 1:
            raise ValueError("attempt numbers start at 1")
        if self.backoff_type == BackoffType.FIXED:
            return self.base_delay_ms
        return int(self.base_delay_ms * self.multiplier ** (attempt - 1))

    def delay_for(self, attempt: int) -> timedelta:
        return timedelta(milliseconds=self.delay_ms(attempt))

"""
Base interface for event sources.

Every provider integration (Google Places, curated venue lists, ...)
implements ``EventSource`` and is registered with the ``SourceRegistry``.
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional

import structlog

from event_discovery.core.clock import utcnow
from event_discovery.models.domain import CanonicalEvent, SourceInfo, SourceType
from event_discovery.services.ingestion.rate_limiter import (
    RateLimit,
    RateLimiter,
    create_rate_limiter,
)

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class SourceConfig:
    """
    Static configuration for a source, fixed for the lifetime of the process.

    ``auto_approve`` has no default: every source must declare whether its
    events go live immediately or wait for moderation.
    """
    auto_approve: bool
    rate_limit: RateLimit = field(default_factory=RateLimit)
    options: dict[str, Any] = field(default_factory=dict)

    def option(self, key: str, default: Any = None) -> Any:
        return self.options.get(key, default)


@dataclass
class RawItem:
    """
    One provider record before transformation.

    Produced by a source's fetch step and consumed only by the same
    source's ``transform``.
    """
    source_id: str
    external_id: str
    raw_payload: dict[str, Any]
    fetched_at: datetime = field(default_factory=utcnow)

    @property
    def key(self) -> tuple[str, str]:
        return (self.source_id, self.external_id)


class EventSource(ABC):
    """
    Abstract base class for event sources.

    Each source implementation handles:
    - Checking its credentials with the provider
    - Fetching raw items, throttled by its rate limiter
    - Mapping raw items to the canonical event shape (pure, no I/O)
    """

    id: str = ""
    name: str = ""
    source_type: SourceType = SourceType.API

    def __init__(self, config: SourceConfig, rate_limiter: Optional[RateLimiter] = None):
        if not self.id:
            raise TypeError(f"{type(self).__name__} must define a source id")
        self.config = config
        self.rate_limiter = rate_limiter or create_rate_limiter(self.id, config.rate_limit)

    @property
    def auto_approve(self) -> bool:
        return self.config.auto_approve

    @property
    def configured(self) -> bool:
        """Whether the credentials this source needs are present."""
        return True

    @abstractmethod
    async def authenticate(self) -> None:
        """
        Verify credentials with the provider.

        Raises:
            ConfigError: credentials are absent
            AuthError: credentials are present but rejected
            TransientFetchError: the provider could not be reached
        """

    @abstractmethod
    async def fetch_events(self, params: dict[str, Any]) -> list[RawItem]:
        """
        Fetch raw items for the given provider-specific query.

        Returns an empty list, without raising, when credentials are absent.
        """

    @abstractmethod
    def transform(self, item: RawItem) -> CanonicalEvent:
        """
        Map a raw item to the canonical event shape.

        Raises:
            ValidationError: the payload is malformed
        """

    @abstractmethod
    def validate_response(self, response: Any) -> bool:
        """Check that a provider response has the expected shape."""

    def confidence(self, item: RawItem) -> float:
        """Confidence score stored on the staging record."""
        return 0.75

    async def throttle(self) -> None:
        """Wait for the rate limiter before an outbound call."""
        await self.rate_limiter.acquire()

    async def health_check(self) -> bool:
        """Check if the source is accessible."""
        try:
            await self.authenticate()
            return True
        except Exception as e:
            logger.warning("source.health_check_failed", source=self.id, error=str(e))
            return False

    def describe(self) -> SourceInfo:
        return SourceInfo(
            id=self.id,
            name=self.name,
            type=self.source_type,
            auto_approve=self.auto_approve,
            configured=self.configured,
            rate_limit=self.rate_limiter.get_status(),
        )

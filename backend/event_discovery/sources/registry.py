"""
Source registry.

Maps source ids to ``EventSource`` instances. Sources are registered once at
startup; the worker resolves jobs by id and never switches on source names.
"""
from typing import Iterator, Optional

import httpx
import structlog

from event_discovery.config import Settings
from event_discovery.services.ingestion.errors import UnknownSourceError
from event_discovery.services.ingestion.rate_limiter import create_rate_limiter
from event_discovery.sources.base import EventSource
from event_discovery.sources.curated import CuratedVenueSource, create_curated_config
from event_discovery.sources.google_places import GooglePlacesSource, create_google_places_config

logger = structlog.get_logger(__name__)


class SourceRegistry:
    """Registered sources keyed by id."""

    def __init__(self, sources: Optional[list[EventSource]] = None):
        self._sources: dict[str, EventSource] = {}
        for source in sources or []:
            self.register(source)

    def register(self, source: EventSource) -> None:
        if source.id in self._sources:
            raise ValueError(f"Source already registered: {source.id}")
        self._sources[source.id] = source
        logger.info(
            "registry.source_registered",
            source=source.id,
            auto_approve=source.auto_approve,
            configured=source.configured,
        )

    def get(self, source_id: str) -> EventSource:
        try:
            return self._sources[source_id]
        except KeyError:
            raise UnknownSourceError(
                f"No source registered with id '{source_id}'",
                {"source_id": source_id, "registered": self.ids()},
            ) from None

    def ids(self) -> list[str]:
        return sorted(self._sources)

    def __contains__(self, source_id: str) -> bool:
        return source_id in self._sources

    def __iter__(self) -> Iterator[EventSource]:
        return iter(self._sources.values())

    def __len__(self) -> int:
        return len(self._sources)


def build_registry(settings: Settings, http_client: httpx.AsyncClient) -> SourceRegistry:
    """Create the registry for this process from static configuration."""
    registry = SourceRegistry()

    google_config = create_google_places_config(settings)
    registry.register(
        GooglePlacesSource(
            google_config,
            api_key=settings.google_places_api_key,
            http_client=http_client,
            rate_limiter=create_rate_limiter(
                GooglePlacesSource.id,
                google_config.rate_limit,
                strategy=settings.rate_limit_strategy,
            ),
        )
    )

    if settings.curated_enabled:
        registry.register(CuratedVenueSource(create_curated_config(settings)))

    return registry

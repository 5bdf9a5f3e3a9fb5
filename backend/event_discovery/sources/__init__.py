"""
Event source adapters for the discovery pipeline.
"""
from event_discovery.sources.base import EventSource, RawItem, SourceConfig
from event_discovery.sources.curated import CuratedVenueSource
from event_discovery.sources.google_places import GooglePlacesSource
from event_discovery.sources.registry import SourceRegistry, build_registry

__all__ = [
    "EventSource",
    "RawItem",
    "SourceConfig",
    "GooglePlacesSource",
    "CuratedVenueSource",
    "SourceRegistry",
    "build_registry",
]

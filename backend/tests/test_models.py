"""
Tests for domain models, settings and the source registry.
"""
from datetime import datetime

import httpx
import pydantic
import pytest

from event_discovery.config import Settings
from event_discovery.models.domain import CanonicalEvent, JobState
from event_discovery.services.ingestion.deduplicator import Deduplicator
from event_discovery.services.ingestion.errors import UnknownSourceError
from event_discovery.sources.registry import SourceRegistry, build_registry

from conftest import StubSource


class TestCanonicalEvent:

    def test_title_is_stripped_and_required(self):
        event = CanonicalEvent(title="  Open Mic  ", start_time=datetime(2024, 6, 1, 19))
        assert event.title == "Open Mic"

        with pytest.raises(pydantic.ValidationError):
            CanonicalEvent(title="   ", start_time=datetime(2024, 6, 1, 19))

    def test_end_must_not_precede_start(self):
        with pytest.raises(pydantic.ValidationError):
            CanonicalEvent(
                title="Backwards",
                start_time=datetime(2024, 6, 1, 19),
                end_time=datetime(2024, 6, 1, 18),
            )

    def test_defaults(self):
        event = CanonicalEvent(title="Walk", start_time=datetime(2024, 6, 1, 7))
        assert event.tags == []
        assert event.price.type.value == "free"
        assert event.venue.name is None


def test_terminal_states():
    assert not JobState.QUEUED.is_terminal
    assert not JobState.RUNNING.is_terminal
    assert JobState.SUCCEEDED.is_terminal
    assert JobState.PARTIAL_FAILURE.is_terminal
    assert JobState.FAILED.is_terminal


class TestSettings:

    def test_defaults(self):
        settings = Settings(_env_file=None)
        assert settings.retry.max_attempts == 3
        assert settings.retry.base_delay_ms == 2000
        assert settings.retry.multiplier == 2.0
        assert settings.recurring_cron == "0 */6 * * *"
        assert settings.google_places_auto_approve is False
        assert settings.curated_auto_approve is True
        assert settings.default_radius_m == 2000

    def test_log_level_validated(self):
        assert Settings(log_level="debug", _env_file=None).log_level == "DEBUG"
        with pytest.raises(pydantic.ValidationError):
            Settings(log_level="chatty", _env_file=None)


class TestRegistry:

    def test_duplicate_registration_rejected(self):
        registry = SourceRegistry([StubSource()])
        with pytest.raises(ValueError):
            registry.register(StubSource())

    def test_unknown_source(self):
        with pytest.raises(UnknownSourceError) as exc_info:
            SourceRegistry().get("nope")
        assert exc_info.value.context["source_id"] == "nope"

    @pytest.mark.asyncio
    async def test_build_registry(self):
        settings = Settings(google_places_api_key=None, rate_limit_strategy="token_bucket", _env_file=None)
        async with httpx.AsyncClient() as client:
            registry = build_registry(settings, client)

        assert registry.ids() == ["curated-venues", "google-places"]
        google = registry.get("google-places")
        assert google.configured is False
        assert google.auto_approve is False
        assert google.rate_limiter.strategy == "token_bucket"
        assert registry.get("curated-venues").auto_approve is True

    def test_source_requires_id(self):
        class Anonymous(StubSource):
            id = ""

        with pytest.raises(TypeError):
            Anonymous()


class TestDeduplicator:

    def test_lru_eviction(self):
        dedup = Deduplicator(max_size=2)
        dedup.remember("s", "a")
        dedup.remember("s", "b")
        assert dedup.seen("s", "a")
        dedup.remember("s", "c")

        # "b" was least recently used
        assert not dedup.seen("s", "b")
        assert dedup.seen("s", "a")
        assert len(dedup) == 2

    def test_keys_are_per_source(self):
        dedup = Deduplicator()
        dedup.remember("s", "a")
        assert not dedup.seen("t", "a")
        assert dedup.seen("s", "a")
        assert dedup.get_status()["hits"] == 1
        assert dedup.get_status()["misses"] == 1

    def test_zero_size_remembers_nothing(self):
        dedup = Deduplicator(max_size=0)
        dedup.remember("s", "a")
        assert not dedup.seen("s", "a")
        assert len(dedup) == 0

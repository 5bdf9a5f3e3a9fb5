"""
Shared fixtures: temporary SQLite database, a controllable clock and
in-memory stub sources.
"""
import asyncio
from datetime import datetime, timedelta
from typing import Any, Optional

import pytest
import pytest_asyncio

from event_discovery.models.database import Database
from event_discovery.models.domain import CanonicalEvent, SourceType, Venue
from event_discovery.services.ingestion.errors import IngestionError, ValidationError
from event_discovery.services.ingestion.persistence import PersistenceGateway
from event_discovery.services.ingestion.queue import JobQueue
from event_discovery.services.ingestion.retry import RetryPolicy
from event_discovery.sources.base import EventSource, RawItem, SourceConfig

START = datetime(2024, 6, 1, 9, 0, 0)


class FakeClock:
    """Wall clock that only moves when told to."""

    def __init__(self, start: datetime = START):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


async def no_sleep(seconds: float) -> None:
    return None


def make_payloads(count: int, prefix: str = "item") -> list[dict[str, Any]]:
    return [{"id": f"{prefix}-{n}", "title": f"Event {n}"} for n in range(count)]


class StubSource(EventSource):
    """Source backed by a fixed list of payloads."""

    id = "stub"
    name = "Stub Source"
    source_type = SourceType.STATIC

    def __init__(
        self,
        payloads: Optional[list[dict[str, Any]]] = None,
        auto_approve: bool = True,
        auth_error: Optional[IngestionError] = None,
        invalid: tuple[str, ...] = (),
        fetch_delay: float = 0.0,
    ):
        super().__init__(SourceConfig(auto_approve=auto_approve))
        self.payloads = payloads if payloads is not None else make_payloads(3)
        self.auth_error = auth_error
        self.invalid = set(invalid)
        self.fetch_delay = fetch_delay
        self.authenticate_calls = 0
        self.fetch_calls = 0

    async def authenticate(self) -> None:
        self.authenticate_calls += 1
        if self.auth_error is not None:
            raise self.auth_error

    async def fetch_events(self, params: dict[str, Any]) -> list[RawItem]:
        self.fetch_calls += 1
        if self.fetch_delay:
            await asyncio.sleep(self.fetch_delay)
        return [
            RawItem(source_id=self.id, external_id=p["id"], raw_payload=p, fetched_at=START)
            for p in self.payloads
        ]

    def transform(self, item: RawItem) -> CanonicalEvent:
        if item.external_id in self.invalid:
            raise ValidationError("stub item is malformed", {"external_id": item.external_id})
        return CanonicalEvent(
            title=item.raw_payload["title"],
            start_time=datetime(2024, 6, 2, 18, 0),
            end_time=datetime(2024, 6, 2, 20, 0),
            venue=Venue(name="Community Hall", lat=12.97, lng=77.64),
            category="community",
            tags=["stub"],
        )

    def validate_response(self, response: Any) -> bool:
        return isinstance(response, dict) and "id" in response


class OtherStubSource(StubSource):
    id = "other-stub"
    name = "Other Stub Source"


@pytest.fixture
def clock():
    return FakeClock()


@pytest_asyncio.fixture
async def database(tmp_path):
    db = Database(f"sqlite+aiosqlite:///{tmp_path / 'ingestion.db'}")
    await db.create_tables()
    yield db
    await db.dispose()


@pytest.fixture
def gateway(database, clock):
    return PersistenceGateway(database, clock=clock)


@pytest.fixture
def queue(database, clock):
    return JobQueue(database, RetryPolicy(), clock=clock)

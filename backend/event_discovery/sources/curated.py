"""
Curated venue source.

Generates events from a hand-maintained list of popular Indiranagar venues.
No credentials and no outbound calls, so it also serves as a working source
in development when no provider keys are configured.
"""
import re
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Any, Optional

import structlog
from pydantic import ValidationError as PydanticValidationError

from event_discovery.config import Settings
from event_discovery.core.clock import utcnow
from event_discovery.models.domain import CanonicalEvent, Price, PriceType, SourceType, Venue
from event_discovery.services.ingestion.errors import ValidationError
from event_discovery.services.ingestion.rate_limiter import RateLimit, RateLimiter
from event_discovery.sources.base import EventSource, RawItem, SourceConfig

logger = structlog.get_logger(__name__)

CURATED_VENUES: list[dict[str, Any]] = [
    {
        "name": "Toit Brewpub",
        "address": "298, 100 Feet Road, Indiranagar, Bangalore 560038",
        "lat": 12.9783, "lng": 77.6408, "type": "bar", "rating": 4.4,
        "description": "Award-winning craft brewery with 8 beers on tap, wood-fired pizzas, and a vibrant atmosphere",
        "website": "https://toit.in",
    },
    {
        "name": "Glen's Bakehouse",
        "address": "826, 12th Main, HAL 2nd Stage, Indiranagar, Bangalore 560038",
        "lat": 12.9718, "lng": 77.6411, "type": "cafe", "rating": 4.5,
        "description": "European-style bakery known for sourdough breads, croissants, and artisanal coffee",
        "website": "https://glensbakehouse.com",
    },
    {
        "name": "The Fatty Bao",
        "address": "610/611, 12th Main, Indiranagar, Bangalore 560038",
        "lat": 12.9720, "lng": 77.6409, "type": "restaurant", "rating": 4.3,
        "description": "Asian gastropub serving innovative baos, ramen, and cocktails in a trendy setting",
        "website": None,
    },
    {
        "name": "Windmills Craftworks",
        "address": "331/1, Whitefield Main Road, Bangalore 560066",
        "lat": 12.9698, "lng": 77.6412, "type": "bar", "rating": 4.4,
        "description": "Jazz theatre microbrewery with live performances, craft beers, and Continental cuisine",
        "website": "https://windmillscraftworks.com",
    },
    {
        "name": "Third Wave Coffee Roasters",
        "address": "175, 100 Feet Road, Indiranagar, Bangalore 560038",
        "lat": 12.9770, "lng": 77.6405, "type": "cafe", "rating": 4.4,
        "description": "Specialty coffee roasters offering single-origin brews and coffee education",
        "website": "https://thirdwavecoffee.in",
    },
    {
        "name": "The Black Rabbit",
        "address": "770, 12th Main, HAL 2nd Stage, Indiranagar, Bangalore 560038",
        "lat": 12.9715, "lng": 77.6413, "type": "bar", "rating": 4.2,
        "description": "Gastro pub with craft cocktails, global tapas, and weekend DJ nights",
        "website": None,
    },
    {
        "name": "Chinita Real Mexican Food",
        "address": "1112, 12th Main, HAL 2nd Stage, Indiranagar, Bangalore 560038",
        "lat": 12.9722, "lng": 77.6407, "type": "restaurant", "rating": 4.3,
        "description": "Authentic Mexican cuisine with handmade tortillas, fresh salsas, and margaritas",
        "website": None,
    },
    {
        "name": "The Humming Tree",
        "address": "949, 12th Main, Doopanahalli, Indiranagar, Bangalore 560038",
        "lat": 12.9714, "lng": 77.6415, "type": "nightclub", "rating": 4.1,
        "description": "Live music venue and cultural space hosting indie bands, open mics, and art events",
        "website": "https://thehummingtree.in",
    },
    {
        "name": "Byg Brewski Brewing Company",
        "address": "Behind MK Retail, Sarjapur Road, Bangalore 560035",
        "lat": 12.9150, "lng": 77.6850, "type": "bar", "rating": 4.4,
        "description": "Award-winning microbrewery with 15 craft beers, global cuisine, and poolside seating",
        "website": "https://bygbrewski.com",
    },
    {
        "name": "Meghana Foods",
        "address": "506, 80 Feet Road, 6th Block, Koramangala, Bangalore 560095",
        "lat": 12.9352, "lng": 77.6145, "type": "restaurant", "rating": 4.2,
        "description": "Famous for Andhra-style biryani, spicy chicken dishes, and authentic South Indian meals",
        "website": None,
    },
    {
        "name": "Toast & Tonic",
        "address": "14, Wood Street, Ashok Nagar, Bangalore 560025",
        "lat": 12.9716, "lng": 77.6100, "type": "restaurant", "rating": 4.3,
        "description": "All-day dining with European bistro fare, craft cocktails, and Sunday brunches",
        "website": None,
    },
    {
        "name": "SodaBottleOpenerWala",
        "address": "124, 100 Feet Road, Indiranagar, Bangalore 560038",
        "lat": 12.9765, "lng": 77.6403, "type": "restaurant", "rating": 4.1,
        "description": "Bombay Irani cafe serving Parsi delicacies, berry pulao, and nostalgic decor",
        "website": None,
    },
]

VENUE_CATEGORIES = {
    "bar": "nightlife",
    "nightclub": "nightlife",
    "cafe": "venue",
    "restaurant": "dining",
}

REQUIRED_VENUE_FIELDS = ("name", "address", "lat", "lng", "type")


@dataclass(frozen=True)
class Slot:
    """When a generated event happens on a given day."""
    title: str
    hour: int
    minute: int
    duration_hours: int


def plan_slot(venue_type: str, day: date) -> Slot:
    """Pick the event slot for a venue type on a given day."""
    if venue_type in ("bar", "nightclub"):
        title = "Weekend Party at" if day.weekday() >= 5 else "Happy Hour at"
        return Slot(title, 20, 0, 4)
    if venue_type == "cafe":
        return Slot("Coffee & Pastries at", 10, 0, 2)
    # Restaurants alternate lunch and dinner by date
    if day.toordinal() % 2 == 0:
        return Slot("Lunch Special at", 12, 30, 2)
    return Slot("Dinner Experience at", 19, 30, 2)


def slugify(name: str) -> str:
    return re.sub(r"[^a-z0-9]+", "-", name.lower()).strip("-")


def create_curated_config(settings: Settings) -> SourceConfig:
    return SourceConfig(
        auto_approve=settings.curated_auto_approve,
        rate_limit=RateLimit(requests=60, window=60),
        options={"area_name": "indiranagar", "days": 7, "per_day": 5},
    )


class CuratedVenueSource(EventSource):
    """Static list of known venues, expanded into one event per venue-day."""

    id = "curated-venues"
    name = "Curated Indiranagar Venues"
    source_type = SourceType.STATIC

    def __init__(
        self,
        config: SourceConfig,
        venues: Optional[list[dict[str, Any]]] = None,
        rate_limiter: Optional[RateLimiter] = None,
    ):
        super().__init__(config, rate_limiter)
        self.venues = venues if venues is not None else CURATED_VENUES

    async def authenticate(self) -> None:
        # Nothing to authenticate against
        return None

    async def fetch_events(self, params: dict[str, Any]) -> list[RawItem]:
        days = int(params.get("days", self.config.option("days", 7)))
        per_day = int(params.get("per_day", self.config.option("per_day", 5)))
        start = params.get("start_date")
        first_day = date.fromisoformat(start) if start else utcnow().date()

        venues = [v for v in self.venues if self.validate_response(v)]
        if len(venues) < len(self.venues):
            logger.warning(
                "curated.invalid_venues_skipped",
                skipped=len(self.venues) - len(venues),
            )
        if not venues:
            return []

        fetched_at = utcnow()
        items: list[RawItem] = []
        count = min(per_day, len(venues))

        for offset in range(days):
            day = first_day + timedelta(days=offset)
            rotation = (day.toordinal() * count) % len(venues)

            for i in range(count):
                venue = venues[(rotation + i) % len(venues)]
                slot = plan_slot(venue["type"], day)
                items.append(
                    RawItem(
                        source_id=self.id,
                        external_id=f"{slugify(venue['name'])}_{day.isoformat()}_{slot.hour}",
                        raw_payload={"venue": dict(venue), "date": day.isoformat()},
                        fetched_at=fetched_at,
                    )
                )

        logger.info("curated.generated", days=days, items=len(items))
        return items

    def transform(self, item: RawItem) -> CanonicalEvent:
        venue = item.raw_payload.get("venue")
        if not isinstance(venue, dict) or not self.validate_response(venue):
            raise ValidationError("curated item has no valid venue", {"external_id": item.external_id})

        try:
            day = date.fromisoformat(item.raw_payload["date"])
        except (KeyError, TypeError, ValueError) as e:
            raise ValidationError("curated item has no valid date", {"external_id": item.external_id}) from e

        slot = plan_slot(venue["type"], day)
        start_time = datetime.combine(day, datetime.min.time()).replace(
            hour=slot.hour, minute=slot.minute
        )
        area = self.config.option("area_name", "indiranagar")

        description = venue.get("description") or ""
        if venue.get("rating"):
            description += f"\n\nRating: {venue['rating']}/5"
        description += f"\n{venue['address']}"

        try:
            return CanonicalEvent(
                title=f"{slot.title} {venue['name']}",
                description=description.strip(),
                start_time=start_time,
                end_time=start_time + timedelta(hours=slot.duration_hours),
                venue=Venue(
                    name=venue["name"],
                    address=venue["address"],
                    lat=venue["lat"],
                    lng=venue["lng"],
                ),
                category=VENUE_CATEGORIES.get(venue["type"], "venue"),
                tags=[venue["type"], area, "popular"],
                external_url=venue.get("website"),
                price=Price(type=PriceType.PAID if venue["type"] == "nightclub" else PriceType.VARIES),
            )
        except PydanticValidationError as e:
            raise ValidationError(
                "curated venue does not map to a valid event",
                {"external_id": item.external_id, "errors": e.errors(include_url=False)},
            ) from e

    def validate_response(self, response: Any) -> bool:
        return isinstance(response, dict) and all(
            response.get(f) not in (None, "") for f in REQUIRED_VENUE_FIELDS
        )

    def confidence(self, item: RawItem) -> float:
        rating = (item.raw_payload.get("venue") or {}).get("rating")
        return round(rating / 5, 3) if rating else 0.75

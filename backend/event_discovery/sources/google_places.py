"""
Google Places integration.

Searches for venues around a coordinate, looks up details for each place and
turns venues with posted hours or a website into discoverable events.

API Documentation: https://developers.google.com/maps/documentation/places/web-service
"""
from datetime import datetime, timedelta
from typing import Any, Optional

import httpx
import structlog
from pydantic import ValidationError as PydanticValidationError
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from event_discovery.config import Settings
from event_discovery.models.domain import CanonicalEvent, Price, PriceType, SourceType, Venue
from event_discovery.services.ingestion.errors import (
    AuthError,
    ConfigError,
    TransientFetchError,
    ValidationError,
)
from event_discovery.services.ingestion.rate_limiter import RateLimit, RateLimiter
from event_discovery.sources.base import EventSource, RawItem, SourceConfig

logger = structlog.get_logger(__name__)

PLACES_BASE_URL = "https://maps.googleapis.com/maps/api/place"

DETAIL_FIELDS = [
    "place_id",
    "name",
    "formatted_address",
    "geometry",
    "opening_hours",
    "editorial_summary",
    "types",
    "rating",
    "user_ratings_total",
    "price_level",
    "photos",
    "website",
]

# First matching rule wins
CATEGORY_RULES: list[tuple[tuple[str, ...], str]] = [
    (("restaurant", "cafe"), "dining"),
    (("night_club", "bar"), "nightlife"),
    (("museum", "art_gallery"), "cultural"),
    (("movie_theater", "amusement_park"), "entertainment"),
    (("gym", "stadium"), "sports"),
    (("shopping_mall",), "shopping"),
    (("spa",), "wellness"),
]
DEFAULT_CATEGORY = "venue"

# category -> (start hour, duration hours), scheduled for the day after the fetch
EVENT_WINDOWS = {
    "dining": (12, 2),
    "nightlife": (20, 4),
}
DEFAULT_EVENT_WINDOW = (15, 2)

GENERIC_TYPES = {"point_of_interest", "establishment"}

AUTH_FAILURE_STATUSES = {"REQUEST_DENIED"}
TRANSIENT_STATUSES = {"OVER_QUERY_LIMIT", "UNKNOWN_ERROR", "INVALID_REQUEST"}


def create_google_places_config(settings: Settings) -> SourceConfig:
    """Create the Google Places source configuration from settings."""
    return SourceConfig(
        auto_approve=settings.google_places_auto_approve,
        rate_limit=RateLimit(
            requests=settings.google_places_rate_limit_requests,
            window=settings.google_places_rate_limit_window,
        ),
        options={
            "search_radius": settings.default_radius_m,
            "place_types": list(settings.google_places_place_types),
            "details_per_type": settings.google_places_details_per_type,
            "default_lat": settings.default_latitude,
            "default_lng": settings.default_longitude,
            "area_name": "Indiranagar",
        },
    )


def infer_category(types: list[str]) -> str:
    """Map Google place types to an event category."""
    for place_types, category in CATEGORY_RULES:
        if any(t in types for t in place_types):
            return category
    return DEFAULT_CATEGORY


def _as_dict(value: Any) -> dict:
    return value if isinstance(value, dict) else {}


def _as_number(value: Any) -> Optional[float]:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return value


def event_window(category: str, fetched_at: datetime) -> tuple[datetime, datetime]:
    """Start and end of the suggested visit, on the day after ``fetched_at``."""
    start_hour, duration_hours = EVENT_WINDOWS.get(category, DEFAULT_EVENT_WINDOW)
    next_day = (fetched_at + timedelta(days=1)).replace(
        hour=start_hour, minute=0, second=0, microsecond=0
    )
    return next_day, next_day + timedelta(hours=duration_hours)


class GooglePlacesSource(EventSource):
    """
    Google Places source implementation.

    One nearby search per configured place type, then one details lookup per
    place. Every request goes through the source's rate limiter.
    """

    id = "google-places"
    name = "Google Places"
    source_type = SourceType.API

    def __init__(
        self,
        config: SourceConfig,
        api_key: Optional[str],
        http_client: httpx.AsyncClient,
        rate_limiter: Optional[RateLimiter] = None,
        base_url: str = PLACES_BASE_URL,
    ):
        super().__init__(config, rate_limiter)
        self.api_key = api_key or ""
        self.http_client = http_client
        self.base_url = base_url.rstrip("/")

        if not self.api_key:
            logger.warning("google_places.api_key_missing")

    @property
    def configured(self) -> bool:
        return bool(self.api_key)

    async def authenticate(self) -> None:
        if not self.configured:
            raise ConfigError("Google Places API key not configured", {"source": self.id})

        data = await self._get(
            "findplacefromtext/json",
            {"input": "test", "inputtype": "textquery"},
        )
        self._check_status(data, "findplacefromtext")

    async def fetch_events(self, params: dict[str, Any]) -> list[RawItem]:
        """
        Fetch venues near a coordinate.

        Args:
            params: ``lat``, ``lng``, ``radius`` (metres), ``limit`` (places
                per type) and ``place_types``; all optional

        Returns:
            One RawItem per place with posted hours or a website
        """
        if not self.configured:
            logger.warning("google_places.fetch_skipped", reason="api key not configured")
            return []

        lat = params.get("lat", self.config.option("default_lat"))
        lng = params.get("lng", self.config.option("default_lng"))
        radius = params.get("radius", self.config.option("search_radius", 2000))
        limit = params.get("limit", self.config.option("details_per_type", 5))
        place_types = params.get("place_types") or self.config.option("place_types", [])

        items: list[RawItem] = []
        seen: set[str] = set()

        for place_type in place_types:
            places = await self._search_nearby(lat, lng, radius, place_type)

            for place in places[:limit]:
                place_id = _as_dict(place).get("place_id")
                if not isinstance(place_id, str) or not place_id or place_id in seen:
                    continue
                seen.add(place_id)

                details = await self._place_details(place_id)
                payload = {**place, **details} if details else dict(place)

                if self._has_event_info(payload):
                    items.append(
                        RawItem(
                            source_id=self.id,
                            external_id=place_id,
                            raw_payload=payload,
                        )
                    )

        logger.info(
            "google_places.fetched",
            place_types=len(place_types),
            places_seen=len(seen),
            items=len(items),
        )
        return items

    def transform(self, item: RawItem) -> CanonicalEvent:
        place = item.raw_payload
        name = place.get("name")
        if not name or not isinstance(name, str):
            raise ValidationError("place has no name", {"external_id": item.external_id})

        types = place.get("types") or []
        if not isinstance(types, list):
            raise ValidationError("place types is not a list", {"external_id": item.external_id})
        types = [t for t in types if isinstance(t, str)]

        category = infer_category(types)
        start_time, end_time = event_window(category, item.fetched_at)
        location = _as_dict(_as_dict(place.get("geometry")).get("location"))
        photos = place.get("photos")
        photo = photos[0] if isinstance(photos, list) and photos else None

        try:
            return CanonicalEvent(
                title=f"Visit {name}",
                description=self._describe(place, category),
                start_time=start_time,
                end_time=end_time,
                venue=Venue(
                    name=name,
                    address=place.get("formatted_address") or place.get("vicinity"),
                    lat=location.get("lat"),
                    lng=location.get("lng"),
                ),
                category=category,
                tags=[t for t in types if t not in GENERIC_TYPES],
                image_url=self._photo_url(photo),
                external_url=place.get("website"),
                price=Price(type=self._price_type(place.get("price_level"))),
            )
        except PydanticValidationError as e:
            raise ValidationError(
                "place does not map to a valid event",
                {"external_id": item.external_id, "errors": e.errors(include_url=False)},
            ) from e

    def validate_response(self, response: Any) -> bool:
        return (
            isinstance(response, dict)
            and response.get("status") == "OK"
            and isinstance(response.get("results"), list)
        )

    def confidence(self, item: RawItem) -> float:
        rating = _as_number(item.raw_payload.get("rating")) or 3
        bonus = 0.1 if item.raw_payload.get("user_ratings_total") else 0.0
        return round(min(0.95, rating / 5 + bonus), 3)

    # -- Requests -------------------------------------------------------------

    async def _search_nearby(
        self,
        lat: float,
        lng: float,
        radius: int,
        place_type: str,
    ) -> list[dict]:
        data = await self._get(
            "nearbysearch/json",
            {"location": f"{lat},{lng}", "radius": radius, "type": place_type},
        )
        status = self._check_status(data, "nearbysearch")
        if status == "ZERO_RESULTS":
            return []
        if not self.validate_response(data):
            raise TransientFetchError(
                "Unexpected nearby search response",
                {"source": self.id, "place_type": place_type, "status": status},
            )
        return data["results"]

    async def _place_details(self, place_id: str) -> Optional[dict]:
        data = await self._get(
            "details/json",
            {"place_id": place_id, "fields": ",".join(DETAIL_FIELDS)},
        )
        status = self._check_status(data, "details")
        if status != "OK" or not isinstance(data.get("result"), dict):
            logger.warning("google_places.details_unavailable", place_id=place_id, status=status)
            return None
        return data["result"]

    async def _get(self, endpoint: str, params: dict[str, Any]) -> dict:
        """GET a Places endpoint and decode the JSON body."""
        try:
            response = await self._request(endpoint, params)
            response.raise_for_status()
            return response.json()
        except httpx.HTTPStatusError as e:
            code = e.response.status_code
            context = {"source": self.id, "endpoint": endpoint, "status_code": code}
            if code in (401, 403):
                raise AuthError("Google Places rejected the API key", context) from e
            raise TransientFetchError(f"Google Places returned HTTP {code}", context) from e
        except httpx.TransportError as e:
            raise TransientFetchError(
                f"Google Places unreachable: {e}",
                {"source": self.id, "endpoint": endpoint},
            ) from e
        except ValueError as e:
            raise TransientFetchError(
                "Google Places returned a non-JSON body",
                {"source": self.id, "endpoint": endpoint},
            ) from e

    @retry(
        retry=retry_if_exception_type((httpx.ConnectError, httpx.ReadTimeout)),
        stop=stop_after_attempt(2),
        wait=wait_exponential(multiplier=0.5, min=0.5, max=4),
        reraise=True,
    )
    async def _request(self, endpoint: str, params: dict[str, Any]) -> httpx.Response:
        await self.throttle()
        return await self.http_client.get(
            f"{self.base_url}/{endpoint}",
            params={**params, "key": self.api_key},
        )

    def _check_status(self, data: Any, endpoint: str) -> Optional[str]:
        """Raise for provider statuses that abort the whole job."""
        status = data.get("status") if isinstance(data, dict) else None
        context = {
            "source": self.id,
            "endpoint": endpoint,
            "status": status,
            "provider_message": data.get("error_message") if isinstance(data, dict) else None,
        }
        if status in AUTH_FAILURE_STATUSES:
            raise AuthError("Invalid Google Places API key", context)
        if status in TRANSIENT_STATUSES:
            raise TransientFetchError(f"Google Places {endpoint} failed: {status}", context)
        return status

    # -- Mapping helpers ------------------------------------------------------

    @staticmethod
    def _has_event_info(place: dict) -> bool:
        return bool(place.get("name")) and bool(place.get("opening_hours") or place.get("website"))

    def _describe(self, place: dict, category: str) -> str:
        area = self.config.option("area_name", "the area")
        description = _as_dict(place.get("editorial_summary")).get("overview") or (
            f"Popular {category} venue in {area}."
        )

        weekday_text = _as_dict(place.get("opening_hours")).get("weekday_text")
        if isinstance(weekday_text, list) and weekday_text:
            description += f"\n\nHours: {weekday_text[0]}"

        rating = _as_number(place.get("rating"))
        if rating and rating >= 4:
            reviews = place.get("user_ratings_total") or 0
            description += f"\nHighly rated ({rating}/5 from {reviews} reviews)"

        return description

    @staticmethod
    def _price_type(price_level: Any) -> PriceType:
        price_level = _as_number(price_level)
        if price_level is None:
            return PriceType.VARIES
        return PriceType.FREE if price_level <= 1 else PriceType.PAID

    def _photo_url(self, photo: Any) -> Optional[str]:
        """Photo endpoint URL without credentials; callers add the key when fetching."""
        reference = _as_dict(photo).get("photo_reference")
        if not reference:
            return None
        return f"{self.base_url}/photo?maxwidth=800&photo_reference={reference}"

"""
Tests for the Google Places source.

Provider responses are served by an httpx MockTransport, so nothing here
touches the network.
"""
from datetime import datetime

import httpx
import pytest

from event_discovery.models.domain import PriceType
from event_discovery.services.ingestion.errors import (
    AuthError,
    ConfigError,
    TransientFetchError,
    ValidationError,
)
from event_discovery.services.ingestion.rate_limiter import RateLimit, create_rate_limiter
from event_discovery.sources.base import RawItem, SourceConfig
from event_discovery.sources.google_places import GooglePlacesSource, event_window, infer_category

from conftest import no_sleep

FETCHED_AT = datetime(2024, 6, 1, 9, 30)

NEARBY_RESTAURANTS = {
    "status": "OK",
    "results": [
        {
            "place_id": "place-truffles",
            "name": "Truffles",
            "vicinity": "80 Feet Road, Koramangala",
            "types": ["restaurant", "food", "point_of_interest", "establishment"],
        },
        {
            "place_id": "place-no-hours",
            "name": "Quiet Corner",
            "vicinity": "12th Main",
            "types": ["restaurant"],
        },
    ],
}

DETAILS = {
    "place-truffles": {
        "status": "OK",
        "result": {
            "place_id": "place-truffles",
            "name": "Truffles",
            "formatted_address": "22, St Johns Road, Indiranagar, Bangalore",
            "geometry": {"location": {"lat": 12.9721, "lng": 77.6405}},
            "opening_hours": {"weekday_text": ["Monday: 11:30 AM - 11:00 PM"]},
            "types": ["restaurant", "food", "point_of_interest", "establishment"],
            "rating": 4.5,
            "user_ratings_total": 12840,
            "price_level": 2,
            "photos": [{"photo_reference": "ref-123"}],
        },
    },
    "place-no-hours": {
        "status": "OK",
        "result": {"place_id": "place-no-hours", "name": "Quiet Corner", "types": ["restaurant"]},
    },
}


class PlacesApi:
    """Routes mock requests to canned Places responses and records them."""

    def __init__(self, nearby=None, details=None, auth_status="OK"):
        self.nearby = nearby or {"restaurant": NEARBY_RESTAURANTS}
        self.details = details if details is not None else DETAILS
        self.auth_status = auth_status
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path
        params = request.url.params

        if path.endswith("/findplacefromtext/json"):
            return httpx.Response(200, json={"status": self.auth_status, "candidates": []})
        if path.endswith("/nearbysearch/json"):
            body = self.nearby.get(params["type"], {"status": "ZERO_RESULTS", "results": []})
            return httpx.Response(200, json=body)
        if path.endswith("/details/json"):
            body = self.details.get(params["place_id"], {"status": "NOT_FOUND"})
            return httpx.Response(200, json=body)
        return httpx.Response(404)

    def paths(self) -> list[str]:
        return [r.url.path.rsplit("/", 2)[-2] for r in self.requests]


def make_source(handler, api_key="test-key", place_types=("restaurant", "bar")) -> GooglePlacesSource:
    rate_limit = RateLimit(requests=100, window=60)
    config = SourceConfig(
        auto_approve=False,
        rate_limit=rate_limit,
        options={
            "search_radius": 2000,
            "place_types": list(place_types),
            "details_per_type": 5,
            "default_lat": 12.9716,
            "default_lng": 77.6411,
            "area_name": "Indiranagar",
        },
    )
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    limiter = create_rate_limiter("google-places", rate_limit, sleep=no_sleep)
    return GooglePlacesSource(config, api_key=api_key, http_client=client, rate_limiter=limiter)


class TestMissingCredentials:

    @pytest.mark.asyncio
    async def test_fetch_returns_empty_without_calls(self):
        api = PlacesApi()
        source = make_source(api, api_key=None)

        items = await source.fetch_events({"radius": 2000})

        assert items == []
        assert api.requests == []
        assert source.configured is False

    @pytest.mark.asyncio
    async def test_authenticate_raises_config_error(self):
        source = make_source(PlacesApi(), api_key="")
        with pytest.raises(ConfigError):
            await source.authenticate()


class TestFetch:

    @pytest.mark.asyncio
    async def test_fetch_around_coordinate(self):
        api = PlacesApi()
        source = make_source(api)

        items = await source.fetch_events({"lat": 12.9716, "lng": 77.6411, "radius": 2000})

        # The place without hours or website is dropped
        assert [item.external_id for item in items] == ["place-truffles"]
        assert items[0].source_id == "google-places"

        nearby = [r for r in api.requests if r.url.path.endswith("/nearbysearch/json")]
        assert {r.url.params["type"] for r in nearby} == {"restaurant", "bar"}
        assert all(r.url.params["radius"] == "2000" for r in nearby)
        assert all(r.url.params["location"] == "12.9716,77.6411" for r in nearby)
        assert all(r.url.params["key"] == "test-key" for r in api.requests)

    @pytest.mark.asyncio
    async def test_every_call_goes_through_rate_limiter(self):
        api = PlacesApi()
        source = make_source(api)

        await source.fetch_events({})

        # Two nearby searches plus two detail lookups
        assert len(api.requests) == 4
        assert source.rate_limiter.total_acquired == 4

    @pytest.mark.asyncio
    async def test_duplicate_places_looked_up_once(self):
        api = PlacesApi(nearby={"restaurant": NEARBY_RESTAURANTS, "bar": NEARBY_RESTAURANTS})
        source = make_source(api)

        items = await source.fetch_events({})

        assert len(items) == 1
        assert api.paths().count("details") == 2

    @pytest.mark.asyncio
    async def test_malformed_search_results_are_skipped(self):
        nearby = {
            "status": "OK",
            "results": ["not-a-place", {"place_id": 42}, NEARBY_RESTAURANTS["results"][0]],
        }
        api = PlacesApi(nearby={"restaurant": nearby})
        source = make_source(api)

        items = await source.fetch_events({})

        assert [item.external_id for item in items] == ["place-truffles"]
        assert api.paths().count("details") == 1

    @pytest.mark.asyncio
    async def test_request_denied_is_auth_error(self):
        api = PlacesApi(nearby={"restaurant": {"status": "REQUEST_DENIED", "error_message": "bad key"}})
        source = make_source(api)

        with pytest.raises(AuthError):
            await source.fetch_events({})

    @pytest.mark.asyncio
    async def test_authenticate_rejected_key(self):
        source = make_source(PlacesApi(auth_status="REQUEST_DENIED"))
        with pytest.raises(AuthError):
            await source.authenticate()

    @pytest.mark.asyncio
    async def test_quota_status_is_transient(self):
        api = PlacesApi(nearby={"restaurant": {"status": "OVER_QUERY_LIMIT"}})
        source = make_source(api)

        with pytest.raises(TransientFetchError):
            await source.fetch_events({})

    @pytest.mark.asyncio
    async def test_server_error_is_transient(self):
        source = make_source(lambda request: httpx.Response(503))
        with pytest.raises(TransientFetchError) as exc_info:
            await source.fetch_events({})
        assert exc_info.value.context["status_code"] == 503


class TestTransform:

    def _item(self, **overrides) -> RawItem:
        payload = {**DETAILS["place-truffles"]["result"], **overrides}
        return RawItem(
            source_id="google-places",
            external_id=payload.get("place_id", "x"),
            raw_payload=payload,
            fetched_at=FETCHED_AT,
        )

    def test_restaurant_maps_to_dining(self):
        source = make_source(PlacesApi())
        event = source.transform(self._item())

        assert event.category == "dining"
        assert event.title == "Visit Truffles"
        assert event.venue.name == "Truffles"
        assert event.venue.address == "22, St Johns Road, Indiranagar, Bangalore"
        assert event.venue.lat == 12.9721
        assert event.start_time == datetime(2024, 6, 2, 12, 0)
        assert event.end_time == datetime(2024, 6, 2, 14, 0)
        assert event.tags == ["restaurant", "food"]
        assert event.price.type == PriceType.PAID
        assert "Hours: Monday" in event.description
        assert "Highly rated" in event.description
        assert "photo_reference=ref-123" in event.image_url

    def test_price_level_mapping(self):
        source = make_source(PlacesApi())
        assert source.transform(self._item(price_level=None)).price.type == PriceType.VARIES
        assert source.transform(self._item(price_level=1)).price.type == PriceType.FREE
        assert source.transform(self._item(price_level=3)).price.type == PriceType.PAID

    def test_falls_back_to_vicinity(self):
        source = make_source(PlacesApi())
        event = source.transform(self._item(formatted_address=None, vicinity="100 Feet Road"))
        assert event.venue.address == "100 Feet Road"

    def test_missing_name_is_validation_error(self):
        source = make_source(PlacesApi())
        with pytest.raises(ValidationError):
            source.transform(self._item(name=""))

    def test_out_of_range_coordinates_is_validation_error(self):
        source = make_source(PlacesApi())
        with pytest.raises(ValidationError):
            source.transform(self._item(geometry={"location": {"lat": 123.0, "lng": 77.6}}))

    def test_photo_url_carries_no_api_key(self):
        source = make_source(PlacesApi())
        event = source.transform(self._item())
        assert "key=" not in event.image_url
        assert "test-key" not in event.image_url

    def test_malformed_optional_fields_are_ignored(self):
        source = make_source(PlacesApi())
        item = self._item(
            geometry="n/a",
            rating="4.5",
            opening_hours="always",
            editorial_summary=["nice"],
            photos="none",
            price_level="2",
            types=[{"kind": "odd"}, "bar"],
        )

        event = source.transform(item)

        assert event.venue.lat is None
        assert event.venue.lng is None
        assert event.image_url is None
        assert event.price.type == PriceType.VARIES
        assert event.category == "nightlife"
        assert event.tags == ["bar"]
        assert "Highly rated" not in event.description
        assert source.confidence(item) == 0.7

    def test_non_string_name_is_validation_error(self):
        source = make_source(PlacesApi())
        with pytest.raises(ValidationError):
            source.transform(self._item(name={"text": "Truffles"}))

    def test_confidence_from_rating(self):
        source = make_source(PlacesApi())
        assert source.confidence(self._item()) == 0.95
        assert source.confidence(self._item(rating=3.0, user_ratings_total=0)) == 0.6


class TestCategoryMapping:

    @pytest.mark.parametrize(
        "types,expected",
        [
            (["restaurant", "bar"], "dining"),
            (["cafe"], "dining"),
            (["night_club"], "nightlife"),
            (["museum"], "cultural"),
            (["movie_theater"], "entertainment"),
            (["stadium"], "sports"),
            (["shopping_mall"], "shopping"),
            (["spa"], "wellness"),
            (["point_of_interest"], "venue"),
            ([], "venue"),
        ],
    )
    def test_infer_category(self, types, expected):
        assert infer_category(types) == expected

    def test_nightlife_window(self):
        start, end = event_window("nightlife", FETCHED_AT)
        assert start == datetime(2024, 6, 2, 20, 0)
        assert end == datetime(2024, 6, 3, 0, 0)

    def test_default_window(self):
        start, end = event_window("cultural", FETCHED_AT)
        assert start == datetime(2024, 6, 2, 15, 0)
        assert end == datetime(2024, 6, 2, 17, 0)

import asyncio
from typing import List

import httpx
import pytest

from tools.geocoding import GeocodingClient, location_name_for, strip_name_prefix
from workflows.state import Activity, Coordinates, ItineraryDay

PLACES = {
    "hadimba temple manali": ("32.2480", "77.1806"),
    "manali": ("32.2432", "77.1892"),
    "solang valley manali": ("32.3166", "77.1577"),
}


def _transport(requests: List[httpx.Request], status: int = 200):
    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        if status != 200:
            return httpx.Response(status, text="unavailable")
        hit = PLACES.get(request.url.params["q"].lower())
        body = [{"lat": hit[0], "lon": hit[1], "display_name": "x"}] if hit else []
        return httpx.Response(200, json=body)

    return httpx.MockTransport(handler)


@pytest.fixture
def requests_seen():
    return []


@pytest.fixture
def client(requests_seen):
    return GeocodingClient(min_interval=0, transport=_transport(requests_seen))


def test_lookup_scopes_query_to_city_and_sends_user_agent(client, requests_seen):
    coords = asyncio.run(client.lookup("Hadimba Temple", "Manali"))

    assert coords == Coordinates(latitude=32.248, longitude=77.1806)
    sent = requests_seen[0]
    assert sent.url.params["q"] == "Hadimba Temple Manali"
    assert sent.url.params["format"] == "json"
    assert sent.url.params["limit"] == "1"
    assert sent.headers["User-Agent"].startswith("TripPlanner/")


def test_city_is_not_appended_twice(client, requests_seen):
    asyncio.run(client.lookup("Manali", "Manali"))
    assert requests_seen[0].url.params["q"] == "Manali"


def test_hits_and_misses_are_cached(client, requests_seen):
    async def scenario():
        await client.lookup("Hadimba Temple", "Manali")
        await client.lookup("hadimba temple", "MANALI")
        missing_first = await client.lookup("Nowhere Cafe", "Manali")
        missing_again = await client.lookup("Nowhere Cafe", "Manali")
        return missing_first, missing_again

    first, again = asyncio.run(scenario())

    assert first is None and again is None
    assert len(requests_seen) == 2


def test_http_errors_mean_no_coordinates():
    seen: List[httpx.Request] = []
    client = GeocodingClient(min_interval=0, transport=_transport(seen, status=503))

    assert asyncio.run(client.lookup("Hadimba Temple", "Manali")) is None


def test_requests_are_spaced_by_min_interval(monkeypatch, requests_seen):
    delays = []

    async def fake_sleep(seconds):
        delays.append(seconds)

    monkeypatch.setattr("tools.geocoding.asyncio.sleep", fake_sleep)
    client = GeocodingClient(min_interval=1.0, transport=_transport(requests_seen), clock=lambda: 100.0)

    async def scenario():
        await client.lookup("Hadimba Temple", "Manali")
        await client.lookup("Solang Valley", "Manali")

    asyncio.run(scenario())

    assert delays == [1.0]


def test_name_helpers():
    assert strip_name_prefix("Lunch at Johnson's Cafe") == "Johnson's Cafe"
    assert strip_name_prefix("Visit Hadimba Temple") == "Hadimba Temple"
    generic = Activity(name="Check-in at hotel", location="Manali")
    specific = Activity(name="Hadimba Temple", location="Manali")
    assert location_name_for(generic) == "Manali"
    assert location_name_for(specific) == "Hadimba Temple"


def _day(*names: str) -> ItineraryDay:
    return ItineraryDay(day=1, activities=[Activity(name=name, location="Manali") for name in names])


def test_enrich_itinerary_fills_coordinates(client):
    days = asyncio.run(
        client.enrich_itinerary([_day("Solang Valley", "Check-in at hotel", "Unknown Spot")], "Manali")
    )
    activities = days[0].activities

    assert activities[0].coordinates == Coordinates(latitude=32.3166, longitude=77.1577)
    # Generic names are located by the activity's location instead.
    assert activities[1].coordinates == Coordinates(latitude=32.2432, longitude=77.1892)
    assert activities[2].coordinates is None


def test_enrich_markup_reuses_structured_coordinates(client, requests_seen):
    located = Activity(
        name="Visit Hadimba Temple",
        location="Manali",
        coordinates=Coordinates(latitude=1.5, longitude=2.5),
    )
    html = (
        "<h2>Day 1</h2><ul>"
        "<li>09:00 — Visit Hadimba Temple</li>"
        "<li>13:00 — Solang Valley</li>"
        "<li>18:00 — Explore</li>"
        "</ul><ul><li>Carry cash</li></ul>"
    )

    enriched = asyncio.run(
        client.enrich_markup(html, [ItineraryDay(day=1, activities=[located])], "Manali")
    )

    assert '<li data-lat="1.5" data-lon="2.5">09:00 — Visit Hadimba Temple</li>' in enriched
    assert '<li data-lat="32.3166" data-lon="77.1577">13:00 — Solang Valley</li>' in enriched
    assert "<li>18:00 — Explore</li>" in enriched
    assert "<li>Carry cash</li>" in enriched
    assert [r.url.params["q"] for r in requests_seen] == ["solang valley Manali"]

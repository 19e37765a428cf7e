# tools/geocoding.py
"""Place-name geocoding (OpenStreetMap Nominatim) and itinerary enrichment.

Every lookup failure (network, HTTP status, empty result) means "no
coordinates"; nothing in here raises to the caller.
"""
from __future__ import annotations

import asyncio
import logging
import re
import time
from html import unescape
from typing import Callable, Dict, List, Optional

import httpx

from config import (
    GEOCODING_BASE_URL,
    GEOCODING_MIN_INTERVAL_SECONDS,
    GEOCODING_TIMEOUT_SECONDS,
    GEOCODING_USER_AGENT,
)
from workflows.state import Activity, Coordinates, ItineraryDay

logger = logging.getLogger(__name__)

# Leading verbs that wrap the actual place name ("Lunch at Karim's").
_NAME_PREFIX = re.compile(
    r"^(?:visit to|visit|breakfast at|lunch at|dinner at|coffee at|explore|tour of|stroll through|nightlife at)\s+",
    re.IGNORECASE,
)
# Activity names that describe what, not where.
_GENERIC_NAME = re.compile(
    r"^(?:check-in|check-out|explore|visit|breakfast|lunch|dinner|coffee|stroll|nightlife)\b",
    re.IGNORECASE,
)
_GENERIC_PLACE = re.compile(r"^(?:check-in|check-out|explore|visit|stroll|nightlife)$", re.IGNORECASE)
_TIMED_LI = re.compile(r"<li(?:\s[^>]*)?>(\d{2}:\d{2})\s*—\s*([^<]+)</li>", re.IGNORECASE)


class GeocodingError(Exception):
    """Raised internally when a Nominatim request fails."""


def strip_name_prefix(name: str) -> str:
    return _NAME_PREFIX.sub("", name.strip()).strip()


def location_name_for(activity: Activity) -> str:
    """Pick the text to geocode: the activity name unless it is generic."""
    name = (activity.name or "").strip()
    location = (activity.location or "").strip()
    if name and not _GENERIC_NAME.match(name):
        return name
    return location or name


class GeocodingClient:
    """Rate-limited, cached Nominatim lookups."""

    def __init__(
        self,
        *,
        base_url: str = GEOCODING_BASE_URL,
        user_agent: str = GEOCODING_USER_AGENT,
        timeout: float = GEOCODING_TIMEOUT_SECONDS,
        min_interval: float = GEOCODING_MIN_INTERVAL_SECONDS,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.base_url = base_url
        self.user_agent = user_agent
        self.timeout = timeout
        self.min_interval = min_interval
        self._transport = transport
        self._clock = clock
        self._cache: Dict[str, Optional[Coordinates]] = {}
        self._lock = asyncio.Lock()
        self._last_request: Optional[float] = None

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------
    @staticmethod
    def cache_key(name: str, city: Optional[str]) -> str:
        return f"{name}|{city or ''}".lower()

    @staticmethod
    def build_query(name: str, city: Optional[str]) -> str:
        query = name.strip()
        if city and city.lower() not in query.lower():
            query = f"{query} {city}"
        return query

    async def lookup(self, name: str, city: Optional[str] = None) -> Optional[Coordinates]:
        """Coordinates for ``name`` (scoped to ``city``) or ``None``."""

        if not name or not name.strip():
            return None
        key = self.cache_key(name, city)
        if key in self._cache:
            return self._cache[key]

        query = self.build_query(name, city)
        try:
            coordinates = await self._fetch(query)
        except GeocodingError as exc:
            logger.warning("Geocoding failed for %r: %s", query, exc)
            return None

        if coordinates is None:
            logger.debug("Geocoding found no results for %r", query)
        # Misses are cached too so a bad name is not retried every request.
        self._cache[key] = coordinates
        return coordinates

    async def _fetch(self, query: str) -> Optional[Coordinates]:
        params = {"q": query, "format": "json", "limit": "1", "addressdetails": "0"}
        headers = {"User-Agent": self.user_agent}
        async with self._lock:
            await self._wait_for_rate_limit()
            try:
                async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                    resp = await client.get(self.base_url, params=params, headers=headers)
            except httpx.HTTPError as exc:
                raise GeocodingError(f"HTTP error calling Nominatim: {exc}") from exc
            finally:
                self._last_request = self._clock()

        if resp.status_code >= 400:
            raise GeocodingError(f"Nominatim {resp.status_code}: {resp.text[:200]}")
        try:
            data = resp.json()
        except ValueError as exc:
            raise GeocodingError("Nominatim returned invalid JSON") from exc
        if not isinstance(data, list) or not data:
            return None
        try:
            return Coordinates(latitude=float(data[0]["lat"]), longitude=float(data[0]["lon"]))
        except (KeyError, TypeError, ValueError) as exc:
            raise GeocodingError(f"Unexpected Nominatim result: {data[0]!r}") from exc

    async def _wait_for_rate_limit(self) -> None:
        if self._last_request is None or self.min_interval <= 0:
            return
        elapsed = self._clock() - self._last_request
        if elapsed < self.min_interval:
            await asyncio.sleep(self.min_interval - elapsed)

    def clear_cache(self) -> None:
        self._cache.clear()

    # ------------------------------------------------------------------
    # Enrichment
    # ------------------------------------------------------------------
    async def enrich_activities(self, activities: List[Activity], city: Optional[str] = None) -> List[Activity]:
        """Return copies of ``activities`` with coordinates filled where resolvable."""

        enriched: List[Activity] = []
        for activity in activities:
            if activity.coordinates is not None:
                enriched.append(activity)
                continue
            place = location_name_for(activity)
            if not place:
                enriched.append(activity)
                continue
            coordinates = await self.lookup(place, city or activity.location)
            enriched.append(activity.model_copy(update={"coordinates": coordinates}) if coordinates else activity)
        return enriched

    async def enrich_itinerary(self, days: List[ItineraryDay], city: Optional[str] = None) -> List[ItineraryDay]:
        """Enrich one day at a time."""

        result: List[ItineraryDay] = []
        for day in days:
            activities = await self.enrich_activities(day.activities, city)
            result.append(day.model_copy(update={"activities": activities}))
        return result

    async def enrich_markup(self, html: str, days: List[ItineraryDay], city: Optional[str] = None) -> str:
        """Add ``data-lat``/``data-lon`` to ``<li>HH:MM — name</li>`` items.

        Resolution order per item: coordinates already on the structured
        activity with the same name, the same name without its leading verb,
        a partial name match, then a fresh lookup scoped to ``city``.
        """

        if not html:
            return html

        known: Dict[str, Coordinates] = {}
        for day in days:
            for activity in day.activities:
                if activity.coordinates is None or not activity.name:
                    continue
                lowered = activity.name.lower().strip()
                known[lowered] = activity.coordinates
                stripped = strip_name_prefix(lowered)
                if stripped and stripped != lowered:
                    known[stripped] = activity.coordinates

        replacements: Dict[str, str] = {}
        matches = list(_TIMED_LI.finditer(html))
        for match in matches:
            full, clock_time, text = match.group(0), match.group(1), match.group(2)
            if "data-lat" in full or full in replacements:
                continue
            lowered = unescape(text).strip().lower()
            stripped = strip_name_prefix(lowered)

            coordinates = known.get(lowered) or (known.get(stripped) if stripped else None)
            if coordinates is None:
                coordinates = next(
                    (coords for key, coords in known.items() if len(key) > 3 and (key in lowered or lowered in key)),
                    None,
                )
            if coordinates is None and stripped and not _GENERIC_PLACE.match(stripped):
                coordinates = await self.lookup(stripped, city)
                if coordinates is not None:
                    known[lowered] = coordinates
                    known[stripped] = coordinates
            if coordinates is not None:
                replacements[full] = (
                    f'<li data-lat="{coordinates.latitude}" data-lon="{coordinates.longitude}">'
                    f"{clock_time} — {text}</li>"
                )

        for original, replacement in replacements.items():
            html = html.replace(original, replacement)
        logger.info("Enriched itinerary markup: %d of %d items located", len(replacements), len(matches))
        return html


_client: Optional[GeocodingClient] = None


def get_geocoding_client() -> GeocodingClient:
    """Process-wide client so the cache and rate limit are shared."""
    global _client
    if _client is None:
        _client = GeocodingClient()
    return _client


__all__ = [
    "GeocodingClient",
    "GeocodingError",
    "get_geocoding_client",
    "location_name_for",
    "strip_name_prefix",
]

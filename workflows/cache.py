"""Request fingerprint cache for compiled trip plans."""

from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

from config import PLAN_CACHE_TTL_SECONDS
from workflows.schemas import parse_budget_range
from workflows.state import TripPlan, TripRequest

logger = logging.getLogger(__name__)

CACHE_KEY_PREFIX = "trip-plan-cache-"


def _text(value: Optional[str]) -> str:
    return (value or "").strip().lower()


def _budget_value(request: TripRequest) -> Optional[int]:
    if request.budget:
        return int(round(request.budget))
    averaged = parse_budget_range(request.budget_range_string) or parse_budget_range(request.budget_range)
    return int(round(averaged)) if averaged is not None else None


def canonical_request(request: TripRequest) -> Dict[str, Any]:
    """Normalized view of a request: the only thing the fingerprint depends on."""

    destination = request.destination or request.city or request.state or request.to
    return {
        "origin": _text(request.origin),
        "destination": _text(destination),
        "region": _text(request.region),
        "travel_type": _text(request.travel_type),
        "interests": sorted(_text(interest) for interest in request.interests),
        "season": _text(request.season),
        "duration": request.trip_days,
        "budget": _budget_value(request),
        "budget_range": _text(request.budget_range),
        "travelers": int(request.travelers),
        "currency": (request.currency or "").strip().upper(),
        # Dates only ever carry day precision here; render them at second precision.
        "start": f"{request.start_date.isoformat()}T00:00:00Z" if request.start_date else "",
        "end": f"{request.end_date.isoformat()}T00:00:00Z" if request.end_date else "",
    }


def string_hash(text: str) -> int:
    """32-bit ``h = h * 31 + c`` string hash, returned as a non-negative int."""

    value = 0
    for char in text:
        value = ((value << 5) - value + ord(char)) & 0xFFFFFFFF
    if value & 0x80000000:
        value -= 1 << 32
    return abs(value)


def fingerprint(request: TripRequest) -> str:
    key_string = json.dumps(canonical_request(request), sort_keys=True, separators=(",", ":"))
    return f"{CACHE_KEY_PREFIX}{string_hash(key_string)}"


@dataclass
class CacheEntry:
    fingerprint: str
    request: Dict[str, Any]
    plan: TripPlan
    created_at: float
    expires_at: float
    budget_range_string: str = ""

    def expired(self, now: float) -> bool:
        return now > self.expires_at


def _budgets_equivalent(
    cached: CacheEntry, canonical: Dict[str, Any], range_string: str
) -> bool:
    if cached.request.get("budget") == canonical.get("budget"):
        return True
    cached_token = cached.budget_range_string or str(cached.request.get("budget"))
    wanted_token = range_string or str(canonical.get("budget"))
    return cached_token == wanted_token


class PlanCache:
    """Process-local fingerprint -> plan map with lazy TTL eviction."""

    def __init__(self, ttl_seconds: float = PLAN_CACHE_TTL_SECONDS, clock: Callable[[], float] = time.time):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: Dict[str, CacheEntry] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, request: TripRequest) -> Optional[TripPlan]:
        """Cached plan for ``request`` or ``None``.

        Exact fingerprint first; on a miss, every live entry is compared field
        by field, treating a numeric budget and a range string that averages to
        it as the same budget.
        """

        now = self._clock()
        key = fingerprint(request)
        canonical = canonical_request(request)

        entry = self._entries.get(key)
        if entry is not None:
            if entry.expired(now):
                logger.info("Plan cache entry expired, removing %s", key)
                self._entries.pop(key, None)
            elif entry.request == canonical:
                logger.info("Plan cache hit: %s", key)
                return entry.plan

        range_string = (request.budget_range_string or "").strip()
        for other_key, other in list(self._entries.items()):
            if other.expired(now):
                self._entries.pop(other_key, None)
                continue
            same_fields = all(
                other.request.get(field) == value for field, value in canonical.items() if field != "budget"
            )
            if same_fields and _budgets_equivalent(other, canonical, range_string):
                logger.info("Plan cache hit with budget tolerance: %s", other_key)
                return other.plan

        logger.debug("Plan cache miss: %s", key)
        return None

    def set(self, request: TripRequest, plan: TripPlan) -> str:
        now = self._clock()
        key = fingerprint(request)
        self._entries[key] = CacheEntry(
            fingerprint=key,
            request=canonical_request(request),
            plan=plan,
            created_at=now,
            expires_at=now + self.ttl_seconds,
            budget_range_string=(request.budget_range_string or "").strip(),
        )
        return key

    def clear_expired(self) -> int:
        now = self._clock()
        expired: List[str] = [key for key, entry in self._entries.items() if entry.expired(now)]
        for key in expired:
            del self._entries[key]
        return len(expired)

    def clear(self) -> int:
        count = len(self._entries)
        self._entries.clear()
        return count


__all__ = ["CACHE_KEY_PREFIX", "CacheEntry", "PlanCache", "canonical_request", "fingerprint", "string_hash"]

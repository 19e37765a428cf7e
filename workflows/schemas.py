"""Pydantic schemas for incoming trip requests, plus validation and conversion."""

from __future__ import annotations

import re
from datetime import date, timedelta
from typing import Any, Dict, List, Optional, Tuple

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from config import BUDGET_DEFAULT_TARGET, DEFAULT_CURRENCY, DEFAULT_ORIGIN
from extraction.json_payload import parse_amount
from workflows.state import TripRequest, coerce_date

ALLOWED_INTERESTS = (
    "nature",
    "adventure",
    "food",
    "culture",
    "nightlife",
    "history",
    "shopping",
    "beach",
    "mountains",
)
ALLOWED_SEASONS = ("spring", "summer", "fall", "winter")
ALLOWED_TRAVEL_TYPES = ("leisure", "business", "adventure", "cultural")

MAX_TRAVELERS = 50
MAX_DURATION_DAYS = 30

# Month/day each season starts on for preference-based requests.
SEASON_START = {"spring": (3, 21), "summer": (6, 21), "fall": (9, 23), "winter": (12, 21)}

TRAVEL_STYLE_BY_TYPE = {
    "leisure": "relaxation",
    "business": "business",
    "adventure": "adventure",
    "cultural": "cultural",
}

BUDGET_BY_CATEGORY = {"budget": 20000.0, "moderate": 50000.0, "luxury": 100000.0}

_RANGE_SPLIT = re.compile(r"\s*[-–]\s*")


class TripValidationError(ValueError):
    """The request failed validation; ``errors`` lists every problem found."""

    def __init__(self, errors: List[str]):
        self.errors = list(errors)
        super().__init__("; ".join(self.errors) or "Invalid trip request")


# ============================================================================
# Request payloads
# ============================================================================

class _Payload(BaseModel):
    """Accepts both snake_case and camelCase keys."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    @field_validator("interests", mode="before", check_fields=False)
    @classmethod
    def normalize_interests(cls, v: Any) -> Optional[List[str]]:
        if v is None:
            return None
        if isinstance(v, str):
            return [item.strip() for item in v.split(",") if item.strip()]
        return [str(item).strip() for item in v if str(item).strip()]


class PlanTripPayload(_Payload):
    """Explicit destination and dates."""

    origin: Optional[str] = Field(None, validation_alias=AliasChoices("origin", "from"))
    destination: Optional[str] = Field(None, validation_alias=AliasChoices("destination", "to"))
    start_date: Optional[date] = Field(None, validation_alias=AliasChoices("start_date", "startDate"))
    end_date: Optional[date] = Field(None, validation_alias=AliasChoices("end_date", "endDate"))
    budget: Optional[float] = None
    currency: str = DEFAULT_CURRENCY
    travelers: int = 1
    interests: List[str] = Field(default_factory=list)
    owner_id: Optional[str] = Field(None, validation_alias=AliasChoices("owner_id", "ownerId", "userId"))

    @field_validator("start_date", "end_date", mode="before")
    @classmethod
    def parse_dates(cls, v: Any) -> Any:
        return coerce_date(v)


class PreferencesPayload(_Payload):
    """Season/duration based request that may leave the destination open."""

    origin: Optional[str] = Field(None, validation_alias=AliasChoices("origin", "from"))
    destination: Optional[str] = None
    state: Optional[str] = None
    city: Optional[str] = None
    region: Optional[str] = None
    season: Optional[str] = None
    duration: Optional[int] = None
    amount: Optional[float] = Field(None, validation_alias=AliasChoices("amount", "budget"))
    budget_range: Optional[str] = None
    budget_range_string: Optional[str] = None
    travel_type: Optional[str] = None
    interests: List[str] = Field(default_factory=list)
    currency: str = DEFAULT_CURRENCY
    travelers: int = 1
    owner_id: Optional[str] = Field(None, validation_alias=AliasChoices("owner_id", "ownerId", "userId"))


class TweakPayload(_Payload):
    """Partial updates merged into a stored request before re-planning."""

    origin: Optional[str] = None
    destination: Optional[str] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    budget: Optional[float] = None
    currency: Optional[str] = None
    travelers: Optional[int] = None
    interests: Optional[List[str]] = None
    season: Optional[str] = None
    duration: Optional[int] = None
    travel_type: Optional[str] = None

    @field_validator("start_date", "end_date", mode="before")
    @classmethod
    def parse_dates(cls, v: Any) -> Any:
        return coerce_date(v)


# ============================================================================
# Validation
# ============================================================================

def _check_common(
    errors: List[str],
    *,
    travelers: Optional[int],
    currency: Optional[str],
    interests: Optional[List[str]],
) -> None:
    if travelers is not None and not 1 <= travelers <= MAX_TRAVELERS:
        errors.append(f"Travelers must be between 1 and {MAX_TRAVELERS}")
    if currency is not None and not re.fullmatch(r"[A-Za-z]{3}", currency.strip()):
        errors.append("Currency must be a 3-letter code (e.g., INR, USD)")
    invalid = [interest for interest in interests or [] if interest.lower() not in ALLOWED_INTERESTS]
    if invalid:
        errors.append(
            f"Invalid interest(s) {', '.join(invalid)}. Must be one of: {', '.join(ALLOWED_INTERESTS)}"
        )


def _check_dates(errors: List[str], start: Optional[date], end: Optional[date]) -> None:
    if start and end and end < start:
        errors.append("End date must be on or after start date")
    if start and end and (end - start).days + 1 > MAX_DURATION_DAYS:
        errors.append(f"Trip duration must be between 1 and {MAX_DURATION_DAYS} days")


def validate_plan_payload(payload: PlanTripPayload) -> TripRequest:
    """Validate an explicit request and return the normalized ``TripRequest``."""

    errors: List[str] = []
    if not (payload.origin or "").strip():
        errors.append("Origin city is required")
    if not (payload.destination or "").strip():
        errors.append("Destination city is required")
    if payload.start_date is None:
        errors.append("Start date is required")
    if payload.end_date is None:
        errors.append("End date is required")
    if payload.budget is not None and payload.budget < 0:
        errors.append("Budget must be a positive number")
    _check_dates(errors, payload.start_date, payload.end_date)
    _check_common(errors, travelers=payload.travelers, currency=payload.currency, interests=payload.interests)
    if errors:
        raise TripValidationError(errors)

    request = TripRequest(
        origin=payload.origin.strip(),
        start_date=payload.start_date,
        end_date=payload.end_date,
        duration=(payload.end_date - payload.start_date).days + 1,
        travelers=payload.travelers,
        currency=payload.currency.strip().upper(),
        interests=[interest.lower() for interest in payload.interests],
        budget=payload.budget,
        owner_id=payload.owner_id,
    )
    return request.with_destination(payload.destination)


def validate_preferences_payload(payload: PreferencesPayload) -> None:
    errors: List[str] = []
    if payload.duration is None:
        errors.append("Trip duration is required")
    elif not 1 <= payload.duration <= MAX_DURATION_DAYS:
        errors.append(f"Trip duration must be between 1 and {MAX_DURATION_DAYS} days")
    if payload.season is not None and payload.season.lower() not in ALLOWED_SEASONS:
        errors.append(f"Season must be one of: {', '.join(ALLOWED_SEASONS)}")
    if payload.travel_type is not None and payload.travel_type.lower() not in ALLOWED_TRAVEL_TYPES:
        errors.append(f"Travel type must be one of: {', '.join(ALLOWED_TRAVEL_TYPES)}")
    if payload.amount is not None and payload.amount < 0:
        errors.append("Budget amount must be a positive number")
    _check_common(errors, travelers=payload.travelers, currency=payload.currency, interests=payload.interests)
    if errors:
        raise TripValidationError(errors)


# ============================================================================
# Preferences conversion
# ============================================================================

def parse_budget_range(range_string: Optional[str]) -> Optional[float]:
    """Average of a ``"<low>-<high>"`` string, or ``None`` when it is not one."""

    if not range_string:
        return None
    parts = _RANGE_SPLIT.split(range_string.strip())
    if len(parts) != 2:
        return None
    low, high = parse_amount(parts[0]), parse_amount(parts[1])
    if low is None or high is None:
        return None
    return (low + high) / 2


def resolve_budget(amount: Optional[float], budget_range: Optional[str], range_string: Optional[str]) -> float:
    if amount:
        return float(amount)
    averaged = parse_budget_range(range_string) or parse_budget_range(budget_range)
    if averaged is not None:
        return averaged
    category = (budget_range or "").strip().lower()
    return BUDGET_BY_CATEGORY.get(category, BUDGET_DEFAULT_TARGET)


def season_dates(season: Optional[str], duration: int, today: Optional[date] = None) -> Tuple[date, date]:
    """Start/end dates for a season in the current year, covering ``duration`` days."""

    today = today or date.today()
    month, day = SEASON_START.get((season or "").lower(), (today.month, today.day))
    start = date(today.year, month, day)
    return start, start + timedelta(days=max(duration, 1) - 1)


def preferences_to_request(payload: PreferencesPayload, today: Optional[date] = None) -> TripRequest:
    """Validate preferences and convert them into a ``TripRequest``."""

    validate_preferences_payload(payload)
    duration = int(payload.duration or 1)
    start, end = season_dates(payload.season, duration, today)
    travel_type = payload.travel_type.lower() if payload.travel_type else None

    request = TripRequest(
        origin=(payload.origin or "").strip() or DEFAULT_ORIGIN,
        region=(payload.region or "").strip() or None,
        start_date=start,
        end_date=end,
        season=payload.season.lower() if payload.season else None,
        duration=duration,
        travelers=payload.travelers or 1,
        currency=(payload.currency or DEFAULT_CURRENCY).strip().upper(),
        interests=[interest.lower() for interest in payload.interests],
        budget=resolve_budget(payload.amount, payload.budget_range, payload.budget_range_string),
        budget_range=(payload.budget_range or "").strip().lower() or None,
        budget_range_string=payload.budget_range_string,
        travel_type=travel_type,
        travel_style=TRAVEL_STYLE_BY_TYPE.get(travel_type or ""),
        owner_id=payload.owner_id,
    )
    destination = next(
        (value.strip() for value in (payload.city, payload.state, payload.destination) if value and value.strip()),
        None,
    )
    return request.with_destination(destination) if destination else request


# ============================================================================
# Tweaks
# ============================================================================

def merge_tweak(request: TripRequest, tweak: TweakPayload) -> TripRequest:
    """Return a new request with ``tweak`` applied; validates the result."""

    updates: Dict[str, Any] = tweak.model_dump(exclude_none=True)
    destination = updates.pop("destination", None)
    if "currency" in updates:
        updates["currency"] = updates["currency"].strip().upper()
    if "interests" in updates:
        updates["interests"] = [interest.lower() for interest in updates["interests"]]
    if "travel_type" in updates:
        updates["travel_type"] = updates["travel_type"].lower()
        updates["travel_style"] = TRAVEL_STYLE_BY_TYPE.get(updates["travel_type"], request.travel_style)

    start = updates.get("start_date", request.start_date)
    if "duration" in updates and "end_date" not in updates and start is not None:
        updates["end_date"] = start + timedelta(days=max(updates["duration"], 1) - 1)
    end = updates.get("end_date", request.end_date)
    if start and end:
        updates["duration"] = (end - start).days + 1

    errors: List[str] = []
    _check_dates(errors, start, end)
    _check_common(
        errors,
        travelers=updates.get("travelers"),
        currency=updates.get("currency"),
        interests=updates.get("interests"),
    )
    if "duration" in updates and not 1 <= updates["duration"] <= MAX_DURATION_DAYS:
        errors.append(f"Trip duration must be between 1 and {MAX_DURATION_DAYS} days")
    if errors:
        raise TripValidationError(sorted(set(errors), key=errors.index))

    merged = request.model_copy(update=updates)
    return merged.with_destination(destination) if destination else merged


__all__ = [
    "ALLOWED_INTERESTS",
    "PlanTripPayload",
    "PreferencesPayload",
    "TripValidationError",
    "TweakPayload",
    "merge_tweak",
    "parse_budget_range",
    "preferences_to_request",
    "resolve_budget",
    "season_dates",
    "validate_plan_payload",
]

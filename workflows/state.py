"""Typed state models shared across the trip planner workflow."""

from __future__ import annotations

import datetime as dt
import uuid
from datetime import date, datetime, timezone
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

BUDGET_CATEGORIES = ("accommodation", "transportation", "food", "activities", "miscellaneous")

ActivityType = Literal["lodging", "dining", "attraction", "transit", "generic"]
TimeSlot = Literal["morning", "afternoon", "evening", "night"]
BudgetStatus = Literal["within", "over", "under"]
PlanStep = Literal[
    "suggesting",
    "understanding",
    "destinations",
    "itinerary",
    "budget",
    "optimizing",
    "compiling",
    "done",
    "failed",
]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def coerce_date(value: Any) -> Any:
    # Accept full ISO timestamps ("2024-06-01T00:00:00.000Z") as plain dates.
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, str) and len(value) > 10 and value[4:5] == "-":
        return value[:10]
    return value


# ---------------------------------------------------------------------------
# Request
# ---------------------------------------------------------------------------

class TripRequest(BaseModel):
    """Normalized trip request threaded through every stage.

    ``destination`` is the canonical place field. ``city``, ``state`` and
    ``to`` are legacy aliases that mirror it once it is resolved; stages read
    only ``destination``.
    """

    model_config = ConfigDict(frozen=True)

    origin: str = "Your Location"
    destination: Optional[str] = None
    region: Optional[str] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    season: Optional[str] = None
    duration: Optional[int] = None
    travelers: int = 1
    currency: str = "INR"
    interests: List[str] = Field(default_factory=list)
    budget: Optional[float] = None
    budget_range: Optional[str] = None
    budget_range_string: Optional[str] = None
    travel_type: Optional[str] = None
    travel_style: Optional[str] = None
    owner_id: Optional[str] = None

    city: Optional[str] = None
    state: Optional[str] = None
    to: Optional[str] = None

    @field_validator("start_date", "end_date", mode="before")
    @classmethod
    def _parse_dates(cls, value: Any) -> Any:
        return coerce_date(value)

    @property
    def trip_days(self) -> int:
        """Inclusive number of calendar days covered by the request."""
        if self.start_date and self.end_date:
            return max((self.end_date - self.start_date).days + 1, 1)
        return max(int(self.duration or 1), 1)

    @property
    def has_destination(self) -> bool:
        return bool((self.destination or "").strip())

    def with_destination(self, name: str) -> "TripRequest":
        """Return a copy whose canonical destination and aliases are ``name``."""
        cleaned = name.strip()
        return self.model_copy(
            update={"destination": cleaned, "city": cleaned, "state": cleaned, "to": cleaned}
        )


# ---------------------------------------------------------------------------
# Stage outputs
# ---------------------------------------------------------------------------

class Intent(BaseModel):
    model_config = ConfigDict(frozen=True)

    purpose: str = "leisure"
    travel_style: str = "cultural"
    priority_interests: List[str] = Field(default_factory=list)
    budget_category: Literal["budget", "moderate", "luxury"] = "moderate"
    special_requirements: List[str] = Field(default_factory=list)
    estimated_days: int = 1
    complexity: Literal["simple", "moderate", "complex"] = "moderate"


class Attraction(BaseModel):
    name: str
    type: str = "culture"
    description: str = ""
    priority: str = "medium"


class LocalTransportation(BaseModel):
    metro: Optional[str] = None
    auto_rickshaw: Optional[str] = None
    e_rickshaw: Optional[str] = None
    buses: Optional[str] = None
    other: Optional[str] = None
    tips: List[str] = Field(default_factory=list)

    def is_empty(self) -> bool:
        return not any(
            [self.metro, self.auto_rickshaw, self.e_rickshaw, self.buses, self.other, self.tips]
        )


class Transportation(BaseModel):
    recommended: str = "flight"
    options: List[str] = Field(default_factory=lambda: ["flight", "train"])
    estimated_cost: float = 0.0
    local_transportation: LocalTransportation = Field(default_factory=LocalTransportation)


class DestinationInfo(BaseModel):
    name: str
    city: str = ""
    country: str = ""
    description: str = ""
    best_time_to_visit: str = "All year"
    key_areas: List[str] = Field(default_factory=list)
    attractions: List[Attraction] = Field(default_factory=list)
    transportation: Transportation = Field(default_factory=Transportation)
    html: str = ""


class Coordinates(BaseModel):
    latitude: float
    longitude: float


class Activity(BaseModel):
    name: str
    description: str = ""
    type: ActivityType = "generic"
    location: str = ""
    time_slot: TimeSlot = "morning"
    start_time: str = "09:00"
    end_time: str = "11:00"
    duration: int = 120
    cost: float = 0.0
    currency: str = "INR"
    coordinates: Optional[Coordinates] = None
    notes: str = ""


class ItineraryDay(BaseModel):
    day: int
    date: Optional[dt.date] = None
    title: str = ""
    activities: List[Activity] = Field(default_factory=list)
    notes: str = ""
    estimated_cost: float = 0.0


class ItineraryDraft(BaseModel):
    """Structured itinerary produced by the itinerary stage."""

    days: List[ItineraryDay] = Field(default_factory=list)
    html: str = ""
    highlights: List[str] = Field(default_factory=list)
    tips: List[str] = Field(default_factory=list)
    source: str = "markup"

    @property
    def total_activities(self) -> int:
        return sum(len(day.activities) for day in self.days)


class OptimizationSuggestion(BaseModel):
    category: str = "general"
    suggestion: str
    impact: str = "medium"
    estimated_savings: float = 0.0
    estimated_time_saved: float = 0.0


class AlternativeActivity(BaseModel):
    day: int = 1
    original: str = ""
    alternative: str = ""
    reason: str = ""
    cost_difference: float = 0.0


class OptimizationReport(BaseModel):
    optimizations: List[OptimizationSuggestion] = Field(default_factory=list)
    alternative_activities: List[AlternativeActivity] = Field(default_factory=list)
    route_suggested: bool = False
    route_changes: List[str] = Field(default_factory=list)
    recommendations: List[str] = Field(default_factory=list)


class BudgetBreakdown(BaseModel):
    breakdown: Dict[str, float] = Field(default_factory=dict)
    total: float = 0.0
    per_person: float = 0.0
    per_day: float = 0.0
    currency: str = "INR"
    target: float = 0.0
    status: BudgetStatus = "within"
    variance: float = 0.0
    optimizations: List[OptimizationSuggestion] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Progress and aggregate plan
# ---------------------------------------------------------------------------

class ProgressEvent(BaseModel):
    step: PlanStep
    status: Literal["in_progress", "completed"]
    message: str


class TripPlan(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    title: str
    description: str
    origin: str
    destination: str
    destination_info: DestinationInfo
    start_date: date
    end_date: date
    duration: int
    travelers: int
    currency: str
    budget: BudgetBreakdown
    itinerary: List[ItineraryDay]
    preferences: Intent
    transportation: Transportation
    highlights: List[str] = Field(default_factory=list)
    tips: List[str] = Field(default_factory=list)
    optimizations: OptimizationReport = Field(default_factory=OptimizationReport)
    recommended_areas: Optional[List[str]] = None
    itinerary_html: str = ""
    budget_html: str = ""
    transport_html: str = ""
    used_fallback_itinerary: bool = False
    ai_generated: bool = True
    request: TripRequest
    owner_id: Optional[str] = None
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: Optional[datetime] = None

    def summary(self) -> Dict[str, Any]:
        """Compact view sent to live-streaming callers on completion."""
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "destination": self.destination,
            "start_date": self.start_date.isoformat(),
            "end_date": self.end_date.isoformat(),
            "duration": self.duration,
            "travelers": self.travelers,
            "budget": {
                "total": self.budget.total,
                "currency": self.budget.currency,
                "status": self.budget.status,
            },
        }


class PlanningState(BaseModel):
    """Working state of one pipeline run; replaced, never mutated in place."""

    request_id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    phase: PlanStep = "understanding"
    request: TripRequest
    intent: Optional[Intent] = None
    destination: Optional[DestinationInfo] = None
    itinerary: Optional[ItineraryDraft] = None
    budget: Optional[BudgetBreakdown] = None
    optimizations: Optional[OptimizationReport] = None
    plan: Optional[TripPlan] = None
    error: Optional[str] = None

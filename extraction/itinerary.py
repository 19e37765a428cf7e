"""Day-by-day itinerary extraction (markup schema) and the fallback template."""
from __future__ import annotations

import re
from datetime import date, timedelta
from typing import Iterable, List, Optional, Tuple

from extraction.engine import (
    MARKUP_PREPROCESSORS,
    SYNTHETIC,
    ExtractionContext,
    Schema,
    Strategy,
)
from extraction.markup import escape_text, markup_to_text, strip_tags
from workflows.state import Activity, ActivityType, ItineraryDay, ItineraryDraft, TimeSlot

SCHEMA_NAME = "itinerary"

DEFAULT_ACTIVITY_MINUTES = 120
DAY_BLOCK_COST = 1000.0

_DAY_HEADING = re.compile(r"<h[1-3][^>]*>(?P<title>[^<]*?\bDay\s+(?P<num>\d+)\b[^<]*)</h[1-3]>", re.IGNORECASE)
_TIMED_ITEM = re.compile(
    r"<li[^>]*>\s*\[?(?P<h>\d{1,2}):(?P<m>\d{2})\]?\s*(?:[—–-]|&mdash;)\s*(?P<body>.*?)</li>",
    re.IGNORECASE | re.DOTALL,
)
_PLAIN_DAY = re.compile(r"^\W*Day\s+(\d+)\b[:.\-–—]?\s*(.*)$", re.IGNORECASE | re.MULTILINE)
_PLAIN_TIMED = re.compile(
    r"(?P<h>\d{1,2}):(?P<m>\d{2})(?:\s*(?P<ap>[AP]M))?"
    r"(?:\s*[-–—]\s*(?P<eh>\d{1,2}):(?P<em>\d{2}))?"
    r"\s*[-–—:]?\s*(?P<body>.+?)(?=\s*\b\d{1,2}:\d{2}\b|\n|$)",
    re.IGNORECASE,
)
_TITLE_NOISE = re.compile(r"^[^\w]*Day\s+\d+\s*[:.\-–—]?\s*", re.IGNORECASE)

_TYPE_KEYWORDS: Tuple[Tuple[ActivityType, Tuple[str, ...]], ...] = (
    ("dining", ("breakfast", "lunch", "dinner", "brunch", "cafe", "café", "coffee", "restaurant", "dhaba")),
    ("lodging", ("hotel", "check-in", "check-out", "check in", "check out", "resort", "hostel")),
    ("transit", ("flight", "airport", "train", "station", "transfer", "drive to", "depart for")),
    ("attraction", ("visit", "tour", "museum", "temple", "fort", "palace", "park", "market")),
)


# ---------------------------------------------------------------------------
# Activity helpers
# ---------------------------------------------------------------------------

def classify_activity(name: str) -> ActivityType:
    lowered = (name or "").lower()
    for activity_type, keywords in _TYPE_KEYWORDS:
        if any(keyword in lowered for keyword in keywords):
            return activity_type
    return "generic"


def time_slot_for(start_time: Optional[str]) -> TimeSlot:
    if not start_time:
        return "morning"
    try:
        hour = int(start_time.split(":")[0])
    except ValueError:
        return "morning"
    if 5 <= hour < 12:
        return "morning"
    if 12 <= hour < 17:
        return "afternoon"
    if 17 <= hour < 21:
        return "evening"
    return "night"


def add_minutes(start_time: Optional[str], minutes: int) -> str:
    if not start_time:
        return "17:00"
    hours, _, mins = start_time.partition(":")
    total = int(hours) * 60 + int(mins or 0) + minutes
    return f"{(total // 60) % 24:02d}:{total % 60:02d}"


def _format_time(hour: str, minute: str) -> str:
    return f"{int(hour) % 24:02d}:{minute}"


def _to_24h(hour: str, meridiem: Optional[str]) -> str:
    value = int(hour)
    if meridiem and meridiem.upper() == "PM" and value < 12:
        value += 12
    elif meridiem and meridiem.upper() == "AM" and value == 12:
        value = 0
    return str(value)


def _minutes_between(start: str, end: str) -> int:
    sh, sm = (int(part) for part in start.split(":"))
    eh, em = (int(part) for part in end.split(":"))
    delta = (eh * 60 + em) - (sh * 60 + sm)
    return delta if delta > 0 else DEFAULT_ACTIVITY_MINUTES


def _day_date(context: ExtractionContext, index: int) -> Optional[date]:
    if context.start_date is None:
        return None
    return context.start_date + timedelta(days=index)


def make_activity(
    name: str,
    start_time: str,
    context: ExtractionContext,
    *,
    end_time: Optional[str] = None,
    description: Optional[str] = None,
    cost: float = 0.0,
) -> Activity:
    end = end_time or add_minutes(start_time, DEFAULT_ACTIVITY_MINUTES)
    return Activity(
        name=name[:100],
        description=description if description is not None else name,
        type=classify_activity(name),
        location=context.destination,
        time_slot=time_slot_for(start_time),
        start_time=start_time,
        end_time=end,
        duration=_minutes_between(start_time, end),
        cost=cost,
        currency=context.currency,
    )


def _build_day(index: int, title: str, activities: List[Activity], context: ExtractionContext) -> ItineraryDay:
    return ItineraryDay(
        day=index + 1,
        date=_day_date(context, index),
        title=title or f"Day {index + 1}",
        activities=activities,
        estimated_cost=round(sum(activity.cost for activity in activities), 2),
    )


def _clean_title(raw_title: str, index: int) -> str:
    title = strip_tags(raw_title)
    rest = _TITLE_NOISE.sub("", title).strip(" :-–—")
    return f"Day {index + 1}: {rest}" if rest else f"Day {index + 1}"


# ---------------------------------------------------------------------------
# Strategies
# ---------------------------------------------------------------------------

def _day_sections(text: str) -> Iterable[Tuple[str, str]]:
    headings = list(_DAY_HEADING.finditer(text))
    for position, heading in enumerate(headings):
        end = headings[position + 1].start() if position + 1 < len(headings) else len(text)
        yield heading.group("title"), text[heading.end() : end]


def parse_itinerary_markup(text: str, context: ExtractionContext) -> Optional[ItineraryDraft]:
    """``<h2>Day N</h2>`` headings followed by ``<li>HH:MM — Activity</li>`` items."""

    days: List[ItineraryDay] = []
    for raw_title, section in _day_sections(text):
        if len(days) >= context.days:
            break
        activities = []
        for item in _TIMED_ITEM.finditer(section):
            name = strip_tags(item.group("body"))
            if not name:
                continue
            activities.append(make_activity(name, _format_time(item.group("h"), item.group("m")), context))
        if activities:
            days.append(_build_day(len(days), _clean_title(raw_title, len(days)), activities, context))
    if not days:
        return None
    return ItineraryDraft(days=days, html=text, source="markup")


def mine_itinerary_text(text: str, context: ExtractionContext) -> Optional[ItineraryDraft]:
    """Plain-text ``Day N`` blocks with ``HH:MM - activity`` lines."""

    plain = markup_to_text(text)
    markers = list(_PLAIN_DAY.finditer(plain))
    days: List[ItineraryDay] = []
    for position, marker in enumerate(markers):
        if len(days) >= context.days:
            break
        end = markers[position + 1].start() if position + 1 < len(markers) else len(plain)
        block = plain[marker.end() : end]
        heading_rest = marker.group(2).strip()
        activities: List[Activity] = []
        for item in _PLAIN_TIMED.finditer(heading_rest + "\n" + block):
            body = item.group("body").strip(" -–—:")
            if not body:
                continue
            start = _format_time(_to_24h(item.group("h"), item.group("ap")), item.group("m"))
            end_time = _format_time(item.group("eh"), item.group("em")) if item.group("eh") else None
            activities.append(make_activity(body, start, context, end_time=end_time, description=body))

        index = len(days)
        content = (heading_rest + " " + block).strip()
        if not activities and len(content) > 10:
            activities.append(
                Activity(
                    name=f"Day {index + 1} Activities",
                    description=content[:200],
                    type="generic",
                    location=context.destination,
                    time_slot="morning",
                    start_time="09:00",
                    end_time="17:00",
                    duration=480,
                    cost=DAY_BLOCK_COST,
                    currency=context.currency,
                )
            )
        if activities:
            title = f"Day {index + 1}: {heading_rest}" if heading_rest and not _PLAIN_TIMED.match(heading_rest) else ""
            days.append(_build_day(index, title[:80], activities, context))
    if not days:
        return None
    return ItineraryDraft(days=days, html=text, source="plain-text")


# ---------------------------------------------------------------------------
# Fallback template
# ---------------------------------------------------------------------------

def _template_activity(
    name: str,
    description: str,
    activity_type: ActivityType,
    start: str,
    end: str,
    cost: float,
    destination: str,
    currency: str,
    notes: str = "",
) -> Activity:
    return Activity(
        name=name,
        description=description,
        type=activity_type,
        location=destination,
        time_slot=time_slot_for(start),
        start_time=start,
        end_time=end,
        duration=_minutes_between(start, end),
        cost=cost,
        currency=currency,
        notes=notes,
    )


def build_fallback_itinerary(
    destination: str,
    days: int,
    start_date: Optional[date] = None,
    currency: str = "INR",
) -> List[ItineraryDay]:
    """Deterministic arrival / explore / departure template covering ``days`` days."""

    destination = destination or "Destination"
    days = max(int(days or 1), 1)
    itinerary: List[ItineraryDay] = []
    for index in range(days):
        if index == 0:
            title = "Arrival & Exploration"
            activities = [
                _template_activity(
                    "Check-in at hotel", "Arrive and settle into your accommodation", "lodging",
                    "10:00", "11:00", 0.0, destination, currency,
                ),
                _template_activity(
                    f"Explore {destination}", "Get familiar with the area", "attraction",
                    "14:00", "17:00", 500.0, destination, currency,
                ),
            ]
        elif index == days - 1:
            title = "Departure"
            activities = [
                _template_activity(
                    "Check-out from hotel", "Final day - prepare for departure", "lodging",
                    "10:00", "11:00", 0.0, destination, currency,
                ),
            ]
        else:
            title = f"Day {index + 1} Activities"
            activities = [
                _template_activity(
                    f"Explore {destination}", f"Enjoy activities and attractions in {destination}", "generic",
                    "09:00", "17:00", DAY_BLOCK_COST, destination, currency, notes=f"Day {index + 1} of your trip",
                ),
            ]
        itinerary.append(
            ItineraryDay(
                day=index + 1,
                date=start_date + timedelta(days=index) if start_date else None,
                title=title,
                activities=activities,
                estimated_cost=sum(activity.cost for activity in activities),
            )
        )
    return itinerary


def render_itinerary_markup(days: List[ItineraryDay]) -> str:
    """Markup for a structured itinerary in the same layout the model is asked for."""

    parts: List[str] = []
    for day in days:
        heading = day.title if day.title.lower().startswith("day") else f"Day {day.day}: {day.title}"
        parts.append(f"<h2>📅 {escape_text(heading)}</h2>")
        parts.append("<ul>")
        for activity in day.activities:
            parts.append(f"<li>{escape_text(activity.start_time)} — {escape_text(activity.name)}</li>")
        parts.append("</ul>")
    return "\n".join(parts)


def _synthesize(text: str, context: ExtractionContext) -> ItineraryDraft:
    days = build_fallback_itinerary(context.destination, context.days, context.start_date, context.currency)
    return ItineraryDraft(days=days, html=render_itinerary_markup(days), source=SYNTHETIC)


ITINERARY_SCHEMA: Schema[ItineraryDraft] = Schema(
    name=SCHEMA_NAME,
    preprocessors=MARKUP_PREPROCESSORS,
    strategies=(
        Strategy("markup", parse_itinerary_markup),
        Strategy("plain-text", mine_itinerary_text),
        Strategy(SYNTHETIC, _synthesize),
    ),
)


__all__ = [
    "ITINERARY_SCHEMA",
    "add_minutes",
    "build_fallback_itinerary",
    "classify_activity",
    "make_activity",
    "mine_itinerary_text",
    "parse_itinerary_markup",
    "render_itinerary_markup",
    "time_slot_for",
]

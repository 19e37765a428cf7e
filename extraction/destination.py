"""Destination overview extraction (markup schema)."""
from __future__ import annotations

import re
from typing import Dict, List, Optional

from extraction.engine import (
    MARKUP_PREPROCESSORS,
    SYNTHETIC,
    ExtractionContext,
    Schema,
    Strategy,
)
from extraction.markup import escape_text, markup_to_text, strip_tags
from workflows.state import Attraction, DestinationInfo, LocalTransportation, Transportation

SCHEMA_NAME = "destination"

_LABEL_TEMPLATE = r"<strong>\s*{label}\s*:?\s*</strong>\s*:?\s*([^<]+)"
_LIST_ITEM = re.compile(r"<li[^>]*>(.*?)</li>", re.IGNORECASE | re.DOTALL)
_STRONG = re.compile(r"<strong>([^<]+)</strong>", re.IGNORECASE)
_TYPE = re.compile(r"Type:\s*([^-\n<]+)", re.IGNORECASE)
_SPACED_DASH = re.compile(r"\s+[-–—]\s+")

_LOCAL_TRANSPORT_LABELS: Dict[str, str] = {
    "metro": r"Metro(?:/Subway)?",
    "auto_rickshaw": r"Auto-?Rickshaws?",
    "e_rickshaw": r"E-?Rickshaws?",
    "buses": r"Bus(?:es)?",
    "other": r"Other(?: Transportation)?",
}

_PLAIN_LABELS = {
    "name": r"(?:Destination|Name)",
    "city": r"City",
    "country": r"Country",
    "description": r"Description",
    "best_time_to_visit": r"Best Time to Visit",
}


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _label(text: str, label: str) -> Optional[str]:
    match = re.search(_LABEL_TEMPLATE.format(label=label), text, re.IGNORECASE)
    if not match:
        return None
    value = match.group(1).strip()
    return value or None


def _section_items(text: str, heading: str) -> List[str]:
    """List items of the first ``<ul>`` following a heading that contains ``heading``."""

    pattern = re.compile(
        r"<h[1-3][^>]*>[^<]*" + heading + r"[^<]*</h[1-3]>.*?<ul[^>]*>(.*?)</ul>",
        re.IGNORECASE | re.DOTALL,
    )
    match = pattern.search(text)
    if not match:
        return []
    return [item.strip() for item in _LIST_ITEM.findall(match.group(1)) if item.strip()]


def _split_tips(text: str) -> List[str]:
    return [tip.strip().rstrip(".;") for tip in re.split(r"[.;]\s+", text) if tip.strip().rstrip(".;")]


def _parse_attraction(item: str) -> Optional[Attraction]:
    strong = _STRONG.search(item)
    plain = strip_tags(item)
    if not plain:
        return None
    parts = _SPACED_DASH.split(plain)
    name = strong.group(1).strip() if strong else parts[0].strip()
    name = name.strip("[]").strip()
    if not name:
        return None
    type_match = _TYPE.search(plain)
    attraction_type = type_match.group(1).strip().strip("[]").lower() if type_match else "culture"
    description = parts[-1].strip() if len(parts) > 1 else ""
    if description.lower().startswith("type:"):
        description = ""
    return Attraction(name=name, type=attraction_type or "culture", description=description)


def _local_transportation(text: str) -> LocalTransportation:
    values: Dict[str, Optional[str]] = {}
    for item in _section_items(text, "Local Transportation"):
        for field_name, label in _LOCAL_TRANSPORT_LABELS.items():
            if field_name in values:
                continue
            match = re.match(r"\s*<strong>\s*" + label + r"\s*:\s*</strong>\s*(.*)$", item, re.IGNORECASE | re.DOTALL)
            if match:
                values[field_name] = strip_tags(match.group(1)) or None
                break
    tips_text = _label(text, "Transportation Tips")
    return LocalTransportation(tips=_split_tips(tips_text) if tips_text else [], **values)


def _resolved_name(extracted: Optional[str], context: ExtractionContext) -> str:
    if context.explicit_destination or not extracted:
        return context.destination
    return extracted


# ---------------------------------------------------------------------------
# Strategies
# ---------------------------------------------------------------------------

def parse_destination_markup(text: str, context: ExtractionContext) -> Optional[DestinationInfo]:
    """Label/section patterns over the requested HTML layout."""

    name = _label(text, "Name")
    city = _label(text, "City")
    country = _label(text, "Country")
    description = _label(text, "Description")
    best_time = _label(text, "Best Time to Visit")
    attractions = [a for a in (_parse_attraction(item) for item in _section_items(text, "Top Attractions")) if a]
    key_areas = [strip_tags(item).split(" - ")[0].strip() for item in _section_items(text, "Key Areas")]
    key_areas = [area for area in key_areas if area]

    if not any([name, country, description, attractions, key_areas]):
        return None

    transportation = Transportation()
    recommended = _label(text, "Recommended")
    if recommended:
        transportation.recommended = recommended.lower()
    options = _label(text, "Options")
    if options:
        transportation.options = [option.strip() for option in options.split(",") if option.strip()]
    cost = _label(text, "Estimated Cost")
    if cost:
        digits = re.sub(r"[^\d]", "", cost)
        transportation.estimated_cost = float(digits) if digits else 0.0
    transportation.local_transportation = _local_transportation(text)

    resolved = _resolved_name(name, context)
    if context.explicit_destination:
        resolved_city = context.destination
    else:
        resolved_city = city or resolved
    return DestinationInfo(
        name=resolved,
        city=resolved_city,
        country=country or "",
        description=description or "",
        best_time_to_visit=best_time or (context.season or "All year"),
        key_areas=key_areas,
        attractions=attractions,
        transportation=transportation,
        html=text,
    )


def _attraction_lines(plain: str) -> List[str]:
    lines: List[str] = []
    collecting = False
    for line in plain.split("\n"):
        if re.match(r"^\W*(?:Top\s+|Must-See\s+)?Attractions\s*:?\s*$", line, re.IGNORECASE):
            collecting = True
            continue
        if not collecting:
            continue
        if line.endswith(":") or re.match(r"^[A-Z][\w /&-]{0,30}:\s*$", line):
            break
        lines.append(re.sub(r"^\s*(?:[-*•]|\d+[.)])\s*", "", line).strip())
        if len(lines) >= 15:
            break
    return [line for line in lines if line]


def mine_destination_text(text: str, context: ExtractionContext) -> Optional[DestinationInfo]:
    """Looser pass over plain ``Label: value`` lines and bulleted lists."""

    plain = markup_to_text(text)
    fields: Dict[str, str] = {}
    for field_name, label in _PLAIN_LABELS.items():
        match = re.search(r"^\W*" + label + r"\s*:\s*(.+)$", plain, re.IGNORECASE | re.MULTILINE)
        if match:
            fields[field_name] = match.group(1).strip()

    attractions: List[Attraction] = []
    for line in _attraction_lines(plain):
        name = re.split(r"\s+[-–—]\s+", line)[0].strip()
        if name:
            attractions.append(Attraction(name=name, description=line[len(name):].strip(" -–—")))

    if not fields and not attractions:
        return None

    resolved = _resolved_name(fields.get("name"), context)
    return DestinationInfo(
        name=resolved,
        city=context.destination if context.explicit_destination else fields.get("city") or resolved,
        country=fields.get("country", ""),
        description=fields.get("description", ""),
        best_time_to_visit=fields.get("best_time_to_visit") or (context.season or "All year"),
        attractions=attractions,
        html=text,
    )


def fallback_destination(context: ExtractionContext) -> DestinationInfo:
    name = context.destination or "Destination"
    return DestinationInfo(
        name=name,
        city=name,
        best_time_to_visit=context.season or "All year",
        html=f"<h2>Destination Overview</h2><p><strong>Name:</strong> {escape_text(name)}</p>",
    )


def _synthesize(text: str, context: ExtractionContext) -> DestinationInfo:
    return fallback_destination(context)


DESTINATION_SCHEMA: Schema[DestinationInfo] = Schema(
    name=SCHEMA_NAME,
    preprocessors=MARKUP_PREPROCESSORS,
    strategies=(
        Strategy("markup", parse_destination_markup),
        Strategy("plain-text", mine_destination_text),
        Strategy(SYNTHETIC, _synthesize),
    ),
)


__all__ = [
    "DESTINATION_SCHEMA",
    "fallback_destination",
    "mine_destination_text",
    "parse_destination_markup",
]

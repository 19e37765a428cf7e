"""Merge stage outputs into a ``TripPlan`` and render its summary markup."""

from __future__ import annotations

from datetime import timedelta
from typing import List, Optional

from extraction.itinerary import render_itinerary_markup
from extraction.markup import escape_text
from workflows.state import (
    BudgetBreakdown,
    DestinationInfo,
    Intent,
    ItineraryDraft,
    LocalTransportation,
    OptimizationReport,
    TripPlan,
    TripRequest,
)

CURRENCY_SYMBOLS = {
    "INR": "₹",
    "USD": "$",
    "EUR": "€",
    "GBP": "£",
    "JPY": "¥",
    "AUD": "A$",
    "CAD": "C$",
    "CNY": "¥",
    "SGD": "S$",
}

_BUDGET_ROWS = (
    ("accommodation", "🏨 Accommodation"),
    ("transportation", "🚗 Transportation"),
    ("food", "🍽️ Food & Dining"),
    ("activities", "🎯 Activities & Attractions"),
    ("miscellaneous", "📦 Miscellaneous"),
)

_LOCAL_TRANSPORT_SECTIONS = (
    ("metro", "🚇 Metro/Subway"),
    ("auto_rickshaw", "🛺 Auto-Rickshaws"),
    ("e_rickshaw", "🛵 E-Rickshaws"),
    ("buses", "🚌 Buses"),
    ("other", "🚕 Other Transportation"),
)


def currency_symbol(currency: str) -> str:
    return CURRENCY_SYMBOLS.get((currency or "").upper(), currency)


def format_amount(amount: float, currency: str) -> str:
    text = f"{amount:,.2f}"
    if text.endswith(".00"):
        text = text[:-3]
    return f"{currency_symbol(currency)}{text}"


# ---------------------------------------------------------------------------
# Markup sections
# ---------------------------------------------------------------------------

def _money(amount: float, currency: str) -> str:
    return escape_text(format_amount(amount, currency))


def render_budget_table(budget: BudgetBreakdown) -> str:
    total = budget.total
    rows: List[str] = []
    for category, label in _BUDGET_ROWS:
        amount = budget.breakdown.get(category, 0.0)
        share = f"{amount / total * 100:.1f}" if total > 0 else "0"
        rows.append(
            f"<tr><td><strong>{label}</strong></td>"
            f"<td>{_money(amount, budget.currency)}</td><td>{share}%</td></tr>"
        )
    rows.append(
        f"<tr><td><strong>Total</strong></td><td>{_money(total, budget.currency)}</td><td>100%</td></tr>"
    )
    return "\n".join(
        [
            "<h2>💰 Budget Breakdown</h2>",
            "<table>",
            "<thead><tr><th>Category</th><th>Amount</th><th>Percentage</th></tr></thead>",
            "<tbody>",
            *rows,
            "</tbody>",
            "</table>",
            f"<p><strong>Per Person:</strong> {_money(budget.per_person, budget.currency)} | "
            f"<strong>Per Day:</strong> {_money(budget.per_day, budget.currency)}</p>",
        ]
    )


def render_local_transport(local: Optional[LocalTransportation]) -> str:
    if local is None or local.is_empty():
        return ""
    parts = ["<h2>🚇 Local Transportation Tips</h2>"]
    for field_name, label in _LOCAL_TRANSPORT_SECTIONS:
        value = getattr(local, field_name)
        if value:
            parts.append(f"<h3>{label}</h3>")
            parts.append(f"<p>{escape_text(value)}</p>")
    if local.tips:
        parts.append("<h3>💡 Transportation Tips</h3>")
        parts.append("<ul>")
        parts.extend(f"<li>{escape_text(tip)}</li>" for tip in local.tips)
        parts.append("</ul>")
    return "\n".join(parts)


def join_sections(*sections: str) -> str:
    return "\n\n".join(section for section in sections if section)


# ---------------------------------------------------------------------------
# Compilation
# ---------------------------------------------------------------------------

def compile_trip_plan(
    request: TripRequest,
    intent: Intent,
    destination: DestinationInfo,
    itinerary: ItineraryDraft,
    budget: BudgetBreakdown,
    optimizations: Optional[OptimizationReport] = None,
    *,
    used_fallback_itinerary: bool = False,
) -> TripPlan:
    """Assemble the immutable plan. Duration is recomputed from the dates.

    ``itinerary_html`` is the single rendered blob: the day-by-day markup,
    then local transport tips, then the budget table.
    """

    start = request.start_date or (itinerary.days[0].date if itinerary.days else None)
    duration = request.trip_days
    if start is None:
        raise ValueError("Cannot compile a trip plan without a start date")
    end = request.end_date or start + timedelta(days=duration - 1)
    duration = (end - start).days + 1

    name = request.destination or destination.name
    recommended_areas = destination.key_areas[:5] if 2 <= duration <= 3 and destination.key_areas else None

    day_markup = itinerary.html if itinerary.html and not used_fallback_itinerary else ""
    if not day_markup:
        day_markup = render_itinerary_markup(itinerary.days)
    transport_html = render_local_transport(destination.transportation.local_transportation)
    budget_html = render_budget_table(budget)

    return TripPlan(
        title=f"{request.origin} → {name}",
        description=f"A {duration}-day {intent.travel_style} trip to {name}",
        origin=request.origin,
        destination=name,
        destination_info=destination,
        start_date=start,
        end_date=end,
        duration=duration,
        travelers=request.travelers,
        currency=budget.currency,
        budget=budget,
        itinerary=itinerary.days,
        preferences=intent,
        transportation=destination.transportation,
        highlights=itinerary.highlights,
        tips=itinerary.tips,
        optimizations=optimizations or OptimizationReport(),
        recommended_areas=recommended_areas,
        itinerary_html=join_sections(day_markup, transport_html, budget_html),
        budget_html=budget_html,
        transport_html=transport_html,
        used_fallback_itinerary=used_fallback_itinerary,
        request=request,
        owner_id=request.owner_id,
    )


__all__ = [
    "CURRENCY_SYMBOLS",
    "compile_trip_plan",
    "currency_symbol",
    "format_amount",
    "render_budget_table",
    "join_sections",
    "render_local_transport",
]

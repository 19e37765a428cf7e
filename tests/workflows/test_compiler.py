from datetime import date

import pytest

from extraction.engine import ExtractionContext, ExtractionEngine
from extraction.itinerary import build_fallback_itinerary
from workflows.compiler import (
    compile_trip_plan,
    currency_symbol,
    format_amount,
    render_budget_table,
    render_local_transport,
)
from workflows.state import (
    Activity,
    BudgetBreakdown,
    DestinationInfo,
    Intent,
    ItineraryDay,
    ItineraryDraft,
    LocalTransportation,
    TripRequest,
)


@pytest.fixture
def budget():
    return BudgetBreakdown(
        breakdown={
            "accommodation": 12000,
            "transportation": 8000,
            "food": 6000,
            "activities": 3000,
            "miscellaneous": 1000,
        },
        total=30000,
        per_person=15000,
        per_day=6000,
        currency="INR",
    )


@pytest.fixture
def destination():
    return DestinationInfo(
        name="Manali",
        key_areas=["Old Manali", "Mall Road"],
        transportation={"local_transportation": {"buses": "HRTC buses", "tips": ["Carry cash"]}},
    )


def _draft(days: int, start: date = date(2024, 6, 1)) -> ItineraryDraft:
    return ItineraryDraft(
        days=build_fallback_itinerary("Manali", days, start),
        html="<h2>📅 Day 1: Model markup</h2>",
        highlights=["Solang Valley"],
    )


def test_amount_formatting():
    assert currency_symbol("inr") == "₹"
    assert currency_symbol("XYZ") == "XYZ"
    assert format_amount(2500, "INR") == "₹2,500"
    assert format_amount(12.5, "USD") == "$12.50"


def test_budget_table_shares(budget):
    html = render_budget_table(budget)
    assert "<td>₹12,000</td><td>40.0%</td>" in html
    assert "<strong>Total</strong></td><td>₹30,000</td><td>100%</td>" in html
    assert "<strong>Per Person:</strong> ₹15,000" in html


def test_local_transport_markup():
    assert render_local_transport(LocalTransportation()) == ""
    html = render_local_transport(LocalTransportation(buses="HRTC buses", tips=["Carry cash"]))
    assert "<h3>🚌 Buses</h3>" in html
    assert "<li>Carry cash</li>" in html
    assert "Metro" not in html


def test_compile_recomputes_duration_and_combines_markup(manali_request, budget, destination):
    intent = Intent(estimated_days=5, travel_style="adventure")

    plan = compile_trip_plan(manali_request, intent, destination, _draft(5), budget)

    assert plan.title == "Delhi → Manali"
    assert plan.description == "A 5-day adventure trip to Manali"
    assert plan.duration == 5
    assert plan.end_date == date(2024, 6, 5)
    assert plan.recommended_areas is None
    assert plan.itinerary_html.startswith("<h2>📅 Day 1: Model markup</h2>")
    assert plan.itinerary_html.index("Local Transportation Tips") < plan.itinerary_html.index("Budget Breakdown")
    assert plan.budget_html in plan.itinerary_html
    assert plan.highlights == ["Solang Valley"]
    assert plan.used_fallback_itinerary is False
    assert plan.request == manali_request


def test_fallback_plan_renders_template_days(manali_request, budget, destination):
    plan = compile_trip_plan(
        manali_request, Intent(), destination, _draft(5), budget, used_fallback_itinerary=True
    )

    assert plan.used_fallback_itinerary is True
    assert "Model markup" not in plan.itinerary_html
    assert "Day 1: Arrival &amp; Exploration" in plan.itinerary_html


def test_short_trips_recommend_areas(budget, destination):
    request = TripRequest(
        origin="Delhi", start_date=date(2024, 6, 1), end_date=date(2024, 6, 3)
    ).with_destination("Manali")

    plan = compile_trip_plan(request, Intent(), destination, _draft(3), budget)

    assert plan.duration == 3
    assert plan.recommended_areas == ["Old Manali", "Mall Road"]


def test_dates_fall_back_to_itinerary(budget, destination):
    request = TripRequest(origin="Delhi", duration=2).with_destination("Manali")

    plan = compile_trip_plan(request, Intent(), destination, _draft(2, date(2024, 7, 10)), budget)
    assert plan.start_date == date(2024, 7, 10)
    assert plan.end_date == date(2024, 7, 11)

    undated = ItineraryDraft(days=build_fallback_itinerary("Manali", 2))
    with pytest.raises(ValueError):
        compile_trip_plan(request, Intent(), destination, undated, budget)


def test_decoded_model_text_is_escaped_in_rendered_markup(manali_request, budget):
    answer = (
        "<h2>Destination Overview</h2><p><strong>Name:</strong> Manali</p>"
        "<h3>Local Transportation Tips</h3><ul>"
        "<li><strong>Metro:</strong> &lt;img src=x onerror=alert(1)&gt;</li></ul>"
    )
    context = ExtractionContext(destination="Manali", explicit_destination=True)
    info = ExtractionEngine().extract(answer, "destination", context).data
    assert info.transportation.local_transportation.metro == "<img src=x onerror=alert(1)>"

    day = ItineraryDay(
        day=1,
        date=date(2024, 6, 1),
        title="Arrival",
        activities=[Activity(name="<img src=y onerror=alert(2)>", start_time="09:00")],
    )
    draft = ItineraryDraft(days=[day], html="")

    plan = compile_trip_plan(manali_request, Intent(), info, draft, budget)

    assert "<img" not in plan.itinerary_html
    assert "<p>&lt;img src=x onerror=alert(1)&gt;</p>" in plan.transport_html
    assert "<li>09:00 — &lt;img src=y onerror=alert(2)&gt;</li>" in plan.itinerary_html

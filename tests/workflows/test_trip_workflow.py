import asyncio
from datetime import date

import pytest

from agents.budget_agent import BudgetAgent
from agents.itinerary_agent import ItineraryAgent, ItineraryGenerationError
from agents.text_client import RateLimitError
from workflows.schemas import TweakPayload
from workflows.state import Coordinates, TripRequest
from workflows.workflow import TripPlanningError


class _RateLimited(Exception):
    status_code = 429


def _collect():
    events = []
    return events, events.append


def test_manali_plan_runs_every_stage_in_order(make_workflow, stub_agents, manali_request):
    events, sink = _collect()

    plan = asyncio.run(make_workflow().plan(manali_request, sink=sink))

    assert [(event.step, event.status) for event in events] == [
        ("understanding", "in_progress"),
        ("understanding", "completed"),
        ("destinations", "in_progress"),
        ("destinations", "completed"),
        ("itinerary", "in_progress"),
        ("itinerary", "completed"),
        ("budget", "in_progress"),
        ("budget", "completed"),
        ("compiling", "in_progress"),
        ("compiling", "completed"),
        ("done", "completed"),
    ]
    assert events[-1].message == "Trip plan ready!"
    assert plan.destination == "Manali"
    assert plan.duration == 5
    assert len(plan.itinerary) == 5
    assert plan.preferences.estimated_days == 5
    assert plan.budget.total == round(sum(plan.budget.breakdown.values()), 2)
    assert plan.used_fallback_itinerary is False
    assert stub_agents.calls["suggest_destination"] == 0
    assert stub_agents.calls["optimize_plan"] == 0


def test_missing_destination_is_suggested_once(make_workflow, stub_agents):
    request = TripRequest(
        origin="Delhi",
        region="Europe",
        start_date=date(2024, 9, 1),
        end_date=date(2024, 9, 3),
        interests=["culture"],
    )
    events, sink = _collect()

    plan = asyncio.run(make_workflow().plan(request, sink=sink))

    assert ("suggesting", "completed", "Destination selected: Lisbon") in [
        (event.step, event.status, event.message) for event in events
    ]
    assert plan.destination == "Lisbon"
    assert plan.request.city == plan.request.to == "Lisbon"
    assert stub_agents.itinerary_requests[0].destination == "Lisbon"
    assert stub_agents.calls["suggest_destination"] == 1
    assert stub_agents.calls["find_destination"] == 0


def test_rejected_itinerary_uses_fallback_template(make_workflow, stub_agents, manali_request):
    stub_agents.itinerary_error = ItineraryGenerationError("Itinerary covers 3 of 5 days")

    plan = asyncio.run(make_workflow().plan(manali_request))

    assert plan.used_fallback_itinerary is True
    assert len(plan.itinerary) == 5
    assert plan.itinerary[0].title == "Arrival & Exploration"
    assert plan.itinerary[-1].title == "Departure"
    assert "Arrival &amp; Exploration" in plan.itinerary_html
    assert stub_agents.calls["estimate_budget"] == 1


def test_rate_limit_fails_the_run(make_workflow, stub_agents, manali_request):
    stub_agents.intent_error = RateLimitError("Rate limited after 3 retries")
    events, sink = _collect()

    with pytest.raises(TripPlanningError) as excinfo:
        asyncio.run(make_workflow().plan(manali_request, sink=sink))

    assert excinfo.value.rate_limited is True
    assert excinfo.value.step == "understanding"
    assert events[-1].step == "failed"
    assert stub_agents.calls["create_itinerary"] == 0


def test_rate_limits_after_intent_use_stage_fallbacks(
    make_workflow, stub_agents, fake_model_factory, client_for, engine, manali_request
):
    def limited_client():
        return client_for(fake_model_factory(_RateLimited(), _RateLimited(), _RateLimited()))

    workflow = make_workflow(
        itinerary_agent=ItineraryAgent(limited_client(), engine),
        budget_agent=BudgetAgent(limited_client(), engine),
    )

    plan = asyncio.run(workflow.plan(manali_request))

    assert plan.used_fallback_itinerary is True
    assert len(plan.itinerary) == 5
    assert plan.budget.total == 30000.0
    assert plan.budget.breakdown["accommodation"] == 12000.0


def test_unexpected_errors_fail_without_a_partial_plan(make_workflow, stub_agents, manali_request):
    stub_agents.itinerary_error = KeyError("days")
    events, sink = _collect()

    with pytest.raises(TripPlanningError) as excinfo:
        asyncio.run(make_workflow().plan(manali_request, sink=sink))

    assert excinfo.value.rate_limited is False
    assert excinfo.value.step == "itinerary"
    assert events[-1].step == "failed"
    assert stub_agents.calls["estimate_budget"] == 0


def test_run_without_compiled_plan_is_an_error(make_workflow, manali_request, monkeypatch):
    workflow = make_workflow()
    events, sink = _collect()

    async def skip_compile(state, sink):
        return state

    monkeypatch.setattr(workflow, "_compile", skip_compile)

    with pytest.raises(TripPlanningError) as excinfo:
        asyncio.run(workflow.plan(manali_request, sink=sink))

    assert excinfo.value.step == "compiling"
    assert events[-1].step == "failed"


def test_optimizer_runs_only_when_enabled(make_workflow, stub_agents, manali_request):
    events, sink = _collect()

    plan = asyncio.run(make_workflow(optimizer_enabled=True).plan(manali_request, sink=sink))

    assert plan.optimizations.recommendations == ["Travel light"]
    assert ("optimizing", "completed") in [(event.step, event.status) for event in events]


def test_async_sinks_are_awaited(make_workflow, manali_request):
    events = []

    async def sink(event):
        await asyncio.sleep(0)
        events.append(event.step)

    asyncio.run(make_workflow().plan(manali_request, sink=sink))

    assert events[0] == "understanding" and events[-1] == "done"


class _Geocoder:
    async def enrich_itinerary(self, days, city):
        return [
            day.model_copy(
                update={
                    "activities": [
                        activity.model_copy(update={"coordinates": Coordinates(latitude=32.2, longitude=77.1)})
                        for activity in day.activities
                    ]
                }
            )
            for day in days
        ]

    async def enrich_markup(self, html, days, city):
        return html.replace("<li>", '<li data-lat="32.2" data-lon="77.1">')


class _BrokenGeocoder:
    async def enrich_itinerary(self, days, city):
        raise RuntimeError("nominatim down")


def test_compiled_plan_is_enriched_with_coordinates(make_workflow, manali_request):
    workflow = make_workflow(geocoding_enabled=True, geocoder=_Geocoder())

    plan = asyncio.run(workflow.plan(manali_request))

    assert plan.itinerary[0].activities[0].coordinates == Coordinates(latitude=32.2, longitude=77.1)
    assert 'data-lat="32.2"' in plan.itinerary_html


def test_enrichment_failure_keeps_the_plan(make_workflow, manali_request):
    workflow = make_workflow(geocoding_enabled=True, geocoder=_BrokenGeocoder())

    plan = asyncio.run(workflow.plan(manali_request))

    assert plan.itinerary[0].activities[0].coordinates is None


def test_tweak_keeps_identity(make_workflow, manali_request):
    workflow = make_workflow()
    original = asyncio.run(workflow.plan(manali_request.model_copy(update={"owner_id": "user-1"})))

    tweaked = asyncio.run(workflow.tweak(original, TweakPayload(duration=3)))

    assert tweaked.id == original.id
    assert tweaked.owner_id == "user-1"
    assert tweaked.created_at == original.created_at
    assert tweaked.updated_at is not None
    assert tweaked.duration == 3
    assert len(tweaked.itinerary) == 3

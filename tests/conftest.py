"""Pytest fixtures for offline agent, workflow and API tests."""

from __future__ import annotations

import inspect
import os
from collections import Counter
from datetime import date, timedelta
from typing import Any, Callable, List, Optional, Union

import pytest
from langchain_core.messages import AIMessage, AIMessageChunk

# Ensure placeholder keys exist so modules that read env on import succeed.
os.environ.setdefault("GOOGLE_API_KEY", "test-google-key")
os.environ.setdefault("GEMINI_API_KEY", "test-gemini-key")
os.environ.pop("REDIS_URL", None)

from agents.budget_agent import recompute_budget  # noqa: E402
from agents.text_client import TextGenerationClient  # noqa: E402
from extraction.engine import ExtractionEngine  # noqa: E402
from workflows.state import (  # noqa: E402
    Activity,
    BudgetBreakdown,
    DestinationInfo,
    Intent,
    ItineraryDay,
    ItineraryDraft,
    OptimizationReport,
    TripRequest,
)
from workflows.workflow import TripPlannerWorkflow  # noqa: E402

Scripted = Union[str, Any, BaseException]


class FakeChatModel:
    """Stand-in for a LangChain chat model.

    ``responses`` is consumed in order by ``ainvoke``/``astream``; an exception
    entry is raised instead of answered. A callable responder receives the
    prompt text and returns the content.
    """

    def __init__(
        self,
        responses: Optional[List[Scripted]] = None,
        responder: Optional[Callable[[str], Scripted]] = None,
        chunk_size: int = 40,
    ) -> None:
        self.responses = list(responses or [])
        self.responder = responder
        self.chunk_size = chunk_size
        self.calls: List[List[Any]] = []

    def _next(self, messages: List[Any]) -> Scripted:
        self.calls.append(messages)
        if self.responder is not None:
            answer = self.responder(messages[-1].content)
        elif self.responses:
            answer = self.responses.pop(0)
        else:
            raise AssertionError("FakeChatModel ran out of scripted responses")
        if isinstance(answer, BaseException):
            raise answer
        return answer

    async def ainvoke(self, messages: List[Any], **_: Any) -> AIMessage:
        return AIMessage(content=self._next(messages))

    async def astream(self, messages: List[Any], **_: Any):
        content = self._next(messages)
        if not isinstance(content, str):
            yield AIMessageChunk(content=content)
            return
        for start in range(0, len(content), self.chunk_size):
            yield AIMessageChunk(content=content[start : start + self.chunk_size])


@pytest.fixture
def fake_model_factory():
    def _factory(*responses: Scripted, responder: Optional[Callable[[str], Scripted]] = None) -> FakeChatModel:
        return FakeChatModel(list(responses), responder=responder)

    return _factory


@pytest.fixture
def client_for():
    """Build a ``TextGenerationClient`` around a fake model with no backoff."""

    def _factory(model: FakeChatModel, **kwargs: Any) -> TextGenerationClient:
        kwargs.setdefault("backoff_base", 0)
        kwargs.setdefault("backoff_jitter", 0)
        return TextGenerationClient(model, **kwargs)

    return _factory


@pytest.fixture
def engine() -> ExtractionEngine:
    return ExtractionEngine()


@pytest.fixture
def manali_request() -> TripRequest:
    request = TripRequest(
        origin="Delhi",
        start_date=date(2024, 6, 1),
        end_date=date(2024, 6, 5),
        duration=5,
        budget=30000,
        currency="INR",
        travelers=2,
        interests=["nature", "adventure"],
    )
    return request.with_destination("Manali")


def itinerary_markup(days: int, destination: str = "Manali") -> str:
    """Well-formed itinerary answer in the requested layout."""

    sections = []
    for day in range(1, days + 1):
        sections.append(
            f"<h2>📅 Day {day}: Exploring {destination}</h2>\n<ul>\n"
            f"<li>09:00 — Breakfast at Cafe {day}</li>\n"
            f"<li>11:00 — Visit Hadimba Temple {day}</li>\n"
            f"<li>19:00 — Dinner at Johnson's Cafe</li>\n"
            "</ul>"
        )
    return "\n\n".join(sections)


DESTINATION_MARKUP = """```html
<h2>Destination Overview</h2>
<p><strong>Name:</strong> Manali</p>
<p><strong>City:</strong> Manali</p>
<p><strong>Country:</strong> India</p>
<p><strong>Description:</strong> A high-altitude Himalayan resort town.</p>
<p><strong>Best Time to Visit:</strong> March to June</p>
<h3>Transportation</h3>
<p><strong>Recommended:</strong> Bus</p>
<p><strong>Options:</strong> bus, car, flight</p>
<p><strong>Estimated Cost:</strong> ₹2,500</p>
<h3>Local Transportation Tips</h3>
<ul>
<li><strong>Buses:</strong> HRTC buses connect Old Manali and Solang.</li>
<li><strong>Other:</strong> Shared taxis are common.</li>
</ul>
<p><strong>Transportation Tips:</strong> Book taxis early. Carry cash.</p>
<h3>Top Attractions</h3>
<ul>
<li><strong>Hadimba Temple</strong> - Type: culture - Ancient cave temple in cedar forest</li>
<li><strong>Solang Valley</strong> - Type: adventure - Paragliding and ropeways</li>
</ul>
```"""


@pytest.fixture
def itinerary_html() -> Callable[..., str]:
    return itinerary_markup


@pytest.fixture
def destination_html() -> str:
    return DESTINATION_MARKUP


class StubAgents:
    """One object standing in for every stage agent, counting calls.

    Set ``intent_error`` or ``itinerary_error`` to make that stage raise.
    ``streamed_before_error`` is sent to the token callback before
    ``itinerary_error`` is raised.
    """

    def __init__(self, suggestion: str = "Lisbon") -> None:
        self.suggestion = suggestion
        self.calls: Counter = Counter()
        self.intent_error: Optional[BaseException] = None
        self.itinerary_error: Optional[BaseException] = None
        self.streamed_before_error = ""
        self.itinerary_requests: List[TripRequest] = []

    async def analyze(self, request: TripRequest) -> Intent:
        self.calls["analyze"] += 1
        if self.intent_error is not None:
            raise self.intent_error
        # Day count disagrees with the request; the workflow corrects it.
        return Intent(estimated_days=2, travel_style="adventure", priority_interests=list(request.interests))

    async def find_destination(self, request: TripRequest, intent: Intent) -> DestinationInfo:
        self.calls["find_destination"] += 1
        name = request.destination or "Nowhere"
        return DestinationInfo(name=name, city=name, country="India", key_areas=["Old Town", "Mall Road"])

    async def suggest_destination(self, request: TripRequest, intent: Intent) -> DestinationInfo:
        self.calls["suggest_destination"] += 1
        return DestinationInfo(name=self.suggestion, country="Portugal")

    async def create_itinerary(
        self,
        request: TripRequest,
        intent: Intent,
        destination: DestinationInfo,
        on_token: Optional[Callable[[str], Any]] = None,
    ) -> ItineraryDraft:
        self.calls["create_itinerary"] += 1
        self.itinerary_requests.append(request)
        if self.itinerary_error is not None:
            if on_token is not None and self.streamed_before_error:
                on_token(self.streamed_before_error)
            raise self.itinerary_error
        html = itinerary_markup(request.trip_days, request.destination)
        if on_token is not None:
            for start in range(0, len(html), 25):
                result = on_token(html[start : start + 25])
                if inspect.isawaitable(result):
                    await result
        days = [
            ItineraryDay(
                day=index,
                date=request.start_date + timedelta(days=index - 1) if request.start_date else None,
                title=f"Exploring {request.destination}",
                activities=[Activity(name=f"Sight {index}", location=request.destination, cost=250)],
            )
            for index in range(1, request.trip_days + 1)
        ]
        return ItineraryDraft(days=days, html=html, source="markup")

    async def estimate_budget(
        self,
        request: TripRequest,
        intent: Intent,
        destination: DestinationInfo,
        itinerary: Optional[ItineraryDraft] = None,
    ) -> BudgetBreakdown:
        self.calls["estimate_budget"] += 1
        days = request.trip_days
        raw = BudgetBreakdown(
            breakdown={"accommodation": 2000 * days, "food": 800 * days, "transportation": 3000},
            currency=request.currency,
        )
        return recompute_budget(raw, target=request.budget or 30000, travelers=request.travelers, days=days)

    async def optimize_plan(self, request, intent, destination, itinerary, budget) -> OptimizationReport:
        self.calls["optimize_plan"] += 1
        return OptimizationReport(recommendations=["Travel light"])


@pytest.fixture
def stub_agents() -> StubAgents:
    return StubAgents()


@pytest.fixture
def make_workflow(stub_agents):
    """Workflow wired to ``stub_agents`` with geocoding off."""

    def _factory(**kwargs: Any) -> TripPlannerWorkflow:
        kwargs.setdefault("optimizer_enabled", False)
        kwargs.setdefault("geocoding_enabled", False)
        for name in ("intent_agent", "destination_agent", "itinerary_agent", "budget_agent", "optimizer_agent"):
            kwargs.setdefault(name, stub_agents)
        return TripPlannerWorkflow(**kwargs)

    return _factory

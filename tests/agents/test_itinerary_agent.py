import asyncio

import pytest
from langchain_core.messages import AIMessage, AIMessageChunk

from agents.itinerary_agent import ItineraryAgent, ItineraryGenerationError
from agents.text_client import RateLimitError
from workflows.state import DestinationInfo, Intent


class _RateLimited(Exception):
    status_code = 429


class _DroppedStream:
    """Streams part of an answer and fails; single calls return ``answer``."""

    def __init__(self, answer):
        self.answer = answer
        self.calls = 0

    async def astream(self, messages, **_):
        self.calls += 1
        yield AIMessageChunk(content="<h2>Day 1: Arrival</h2><ul><li>09:00")
        raise RuntimeError("stream dropped")

    async def ainvoke(self, messages, **_):
        self.calls += 1
        return AIMessage(content=self.answer)


@pytest.fixture
def intent():
    return Intent(estimated_days=5, priority_interests=["nature"], budget_category="moderate")


@pytest.fixture
def destination():
    return DestinationInfo(name="Manali", city="Manali", country="India")


def test_itinerary_covers_every_day(
    fake_model_factory, client_for, engine, manali_request, intent, destination, itinerary_html
):
    model = fake_model_factory(itinerary_html(5))
    agent = ItineraryAgent(client_for(model), engine)

    draft = asyncio.run(agent.create_itinerary(manali_request, intent, destination))

    assert len(draft.days) == 5
    assert all(day.activities for day in draft.days)
    assert draft.source == "markup"
    assert model.calls[0][-1].content.startswith("Create a 5-day Moderate tour of Manali.")


def test_missing_days_are_rejected(
    fake_model_factory, client_for, engine, manali_request, intent, destination, itinerary_html
):
    agent = ItineraryAgent(client_for(fake_model_factory(itinerary_html(3))), engine)

    with pytest.raises(ItineraryGenerationError):
        asyncio.run(agent.create_itinerary(manali_request, intent, destination))


def test_unrecognizable_answer_is_rejected(fake_model_factory, client_for, engine, manali_request, intent, destination):
    agent = ItineraryAgent(client_for(fake_model_factory("I'd love to help you plan!")), engine)

    with pytest.raises(ItineraryGenerationError):
        asyncio.run(agent.create_itinerary(manali_request, intent, destination))


def test_provider_failure_is_rejected(fake_model_factory, client_for, engine, manali_request, intent, destination):
    agent = ItineraryAgent(client_for(fake_model_factory(RuntimeError("backend unavailable"))), engine)

    with pytest.raises(ItineraryGenerationError):
        asyncio.run(agent.create_itinerary(manali_request, intent, destination))


def test_rate_limit_is_rejected(fake_model_factory, client_for, engine, manali_request, intent, destination):
    model = fake_model_factory(_RateLimited(), _RateLimited(), _RateLimited())
    agent = ItineraryAgent(client_for(model), engine)

    with pytest.raises(ItineraryGenerationError) as excinfo:
        asyncio.run(agent.create_itinerary(manali_request, intent, destination))

    assert isinstance(excinfo.value.__cause__, RateLimitError)
    assert len(model.calls) == 3


def test_streaming_forwards_tokens(
    fake_model_factory, client_for, engine, manali_request, intent, destination, itinerary_html
):
    text = itinerary_html(5)
    agent = ItineraryAgent(client_for(fake_model_factory(text)), engine, streaming=True)
    tokens = []

    draft = asyncio.run(agent.create_itinerary(manali_request, intent, destination, on_token=tokens.append))

    assert "".join(tokens) == text
    assert len(draft.days) == 5


def test_failed_stream_retries_as_single_call(
    fake_model_factory, client_for, engine, manali_request, intent, destination, itinerary_html
):
    model = fake_model_factory(RuntimeError("stream dropped"), itinerary_html(5))
    agent = ItineraryAgent(client_for(model), engine, streaming=True)

    draft = asyncio.run(agent.create_itinerary(manali_request, intent, destination, on_token=lambda piece: None))

    assert len(draft.days) == 5
    assert len(model.calls) == 2


def test_output_budget_scales_with_days(fake_model_factory, client_for, engine):
    agent = ItineraryAgent(client_for(fake_model_factory()), engine)
    assert agent._options(2).max_output_tokens == 2000
    assert agent._options(10).max_output_tokens == 4000


class _DayBuffer:
    def __init__(self):
        self.pieces = []
        self.resets = 0

    def __call__(self, piece):
        self.pieces.append(piece)

    def reset(self):
        self.pieces.clear()
        self.resets += 1


def test_abandoned_stream_resets_receiver(client_for, engine, manali_request, intent, destination, itinerary_html):
    model = _DroppedStream(itinerary_html(5))
    agent = ItineraryAgent(client_for(model), engine, streaming=True)
    receiver = _DayBuffer()

    draft = asyncio.run(agent.create_itinerary(manali_request, intent, destination, on_token=receiver))

    assert len(draft.days) == 5
    assert model.calls == 2
    assert receiver.resets == 1
    assert receiver.pieces == []

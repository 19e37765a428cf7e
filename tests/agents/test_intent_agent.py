import asyncio

import pytest

from agents.intent_agent import IntentAgent
from agents.text_client import RateLimitError


class _RateLimited(Exception):
    status_code = 429


def test_intent_is_extracted_from_json(fake_model_factory, client_for, engine, manali_request):
    model = fake_model_factory(
        '{"purpose": "leisure", "travelStyle": "adventure", "priorityInterests": ["trekking"], '
        '"budgetCategory": "moderate", "estimatedDays": 3, "complexity": "moderate"}'
    )
    agent = IntentAgent(client_for(model), engine)

    intent = asyncio.run(agent.analyze(manali_request))

    assert intent.travel_style == "adventure"
    assert intent.priority_interests == ["trekking"]
    assert intent.estimated_days == 5


def test_prompt_carries_request_facts(fake_model_factory, client_for, engine, manali_request):
    agent = IntentAgent(client_for(fake_model_factory()), engine)
    prompt = agent.build_prompt(manali_request)

    assert "Delhi" in prompt and "Manali" in prompt
    assert "2024-06-01" in prompt and "2024-06-05" in prompt
    assert "nature, adventure" in prompt


def test_provider_failure_falls_back_to_default_intent(fake_model_factory, client_for, engine, manali_request):
    agent = IntentAgent(client_for(fake_model_factory(RuntimeError("backend unavailable"))), engine)

    intent = asyncio.run(agent.analyze(manali_request))

    assert intent.purpose == "leisure"
    assert intent.budget_category == "moderate"
    assert intent.priority_interests == ["nature", "adventure"]
    assert intent.estimated_days == 5


def test_rate_limit_is_not_swallowed(fake_model_factory, client_for, engine, manali_request):
    model = fake_model_factory(_RateLimited(), _RateLimited(), _RateLimited())
    agent = IntentAgent(client_for(model), engine)

    with pytest.raises(RateLimitError):
        asyncio.run(agent.analyze(manali_request))

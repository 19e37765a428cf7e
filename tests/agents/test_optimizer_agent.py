import asyncio

import pytest

from agents.optimizer_agent import OptimizerAgent
from workflows.state import BudgetBreakdown, DestinationInfo, Intent, ItineraryDraft, OptimizationReport


class _RateLimited(Exception):
    status_code = 429


@pytest.fixture
def plan_parts():
    return (
        Intent(estimated_days=5, travel_style="adventure"),
        DestinationInfo(name="Manali"),
        ItineraryDraft(),
        BudgetBreakdown(total=31000, currency="INR", status="within", variance=1000),
    )


def test_suggestions_are_returned(fake_model_factory, client_for, engine, manali_request, plan_parts):
    model = fake_model_factory(
        '{"optimizations": [{"type": "cost", "suggestion": "Share a cab to Solang", "estimatedSavings": 600}], '
        '"finalRecommendations": ["Book the Volvo bus early"]}'
    )
    agent = OptimizerAgent(client_for(model), engine)

    report = asyncio.run(agent.optimize_plan(manali_request, *plan_parts))

    assert report.optimizations[0].estimated_savings == 600.0
    assert report.recommendations == ["Book the Volvo bus early"]
    prompt = model.calls[0][-1].content
    assert "31000" in prompt and "within" in prompt


def test_failure_returns_empty_report(fake_model_factory, client_for, engine, manali_request, plan_parts):
    agent = OptimizerAgent(client_for(fake_model_factory(RuntimeError("down"))), engine)

    report = asyncio.run(agent.optimize_plan(manali_request, *plan_parts))

    assert report == OptimizationReport()


def test_rate_limit_returns_empty_report(fake_model_factory, client_for, engine, manali_request, plan_parts):
    model = fake_model_factory(_RateLimited(), _RateLimited(), _RateLimited())
    agent = OptimizerAgent(client_for(model), engine)

    report = asyncio.run(agent.optimize_plan(manali_request, *plan_parts))

    assert len(model.calls) == 3
    assert report == OptimizationReport()

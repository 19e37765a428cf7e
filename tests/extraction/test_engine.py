from datetime import date

import pytest

from extraction.engine import (
    SYNTHETIC,
    ExtractionContext,
    ExtractionEngine,
    ExtractionError,
    Schema,
    Strategy,
    context_for,
)
from workflows.state import Intent, TripRequest


def test_default_schemas_are_registered(engine):
    assert set(engine.schema_names) == {"destination", "itinerary", "intent", "budget", "optimizer"}


@pytest.mark.parametrize("raw", [None, 42, {"text": "hi"}, "", "   \n"])
def test_non_text_or_empty_input_raises(engine, raw):
    with pytest.raises(ExtractionError):
        engine.extract(raw, "itinerary")


def test_unknown_schema_raises(engine):
    with pytest.raises(ExtractionError):
        engine.extract("text", "weather")


def test_failing_strategy_is_skipped_and_first_success_wins():
    calls = []

    def broken(text, context):
        calls.append("broken")
        raise ValueError("boom")

    def empty(text, context):
        calls.append("empty")
        return None

    def shout(text, context):
        calls.append("shout")
        return text.upper()

    engine = ExtractionEngine(
        [
            Schema(
                name="shout",
                strategies=(
                    Strategy("broken", broken),
                    Strategy("empty", empty),
                    Strategy("shout", shout),
                    Strategy(SYNTHETIC, lambda text, context: "unused"),
                ),
            )
        ]
    )
    result = engine.extract("```\nhello\n```", "shout")

    assert result.data == "HELLO"
    assert result.strategy == "shout"
    assert not result.synthetic
    assert calls == ["broken", "empty", "shout"]


def test_schema_without_any_success_raises():
    engine = ExtractionEngine([Schema(name="never", strategies=(Strategy("none", lambda t, c: None),))])
    with pytest.raises(ExtractionError):
        engine.extract("anything", "never")


@pytest.mark.parametrize(
    "schema, raw",
    [
        ("destination", "<p><strong>Name:</strong> Goa</p><script>x()</script>"),
        ("itinerary", "## Day 1\n- 09:00—Breakfast\n- 12:00—Visit fort"),
        ("intent", '```json\n{"purpose": "leisure"}\n```'),
        ("budget", '{"food": 100, "hotel": 200,}'),
        ("optimizer", "- Consider the early bus to Solang"),
    ],
)
def test_extraction_is_idempotent_for_every_schema(engine, schema, raw):
    context = ExtractionContext(destination="Goa", days=1, start_date=date(2024, 1, 1))
    first = engine.extract(raw, schema, context)
    second = engine.extract(first.text, schema, context)

    assert second.data == first.data
    assert second.strategy == first.strategy


def test_context_for_prefers_request_values():
    request = TripRequest(
        origin="Delhi",
        region="Rajasthan",
        start_date=date(2024, 6, 21),
        end_date=date(2024, 6, 23),
        budget=45000,
        currency="INR",
        travelers=3,
    )
    intent = Intent(priority_interests=["history"], travel_style="cultural")
    context = context_for(request, intent=intent)

    assert context.destination == "Rajasthan"
    assert context.days == 3
    assert context.interests == ("history",)
    assert context.travel_style == "cultural"
    assert context.target_budget == 45000
    assert context.explicit_destination is False

    explicit = context_for(request.with_destination("Jaipur"))
    assert explicit.destination == "Jaipur"
    assert explicit.explicit_destination is True

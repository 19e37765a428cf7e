"""IntentAgent: classifies what kind of trip the traveler is asking for."""
from __future__ import annotations

import logging
from typing import Optional

from agents.text_client import (
    GenerationOptions,
    RateLimitError,
    TextGenerationClient,
    TextGenerationError,
)
from extraction.engine import ExtractionEngine, ExtractionError, context_for
from extraction.structured import INTENT_SCHEMA_NAME, fallback_intent
from prompts import load_prompt_template
from workflows.state import Intent, TripRequest

logger = logging.getLogger(__name__)

SYSTEM_INSTRUCTION = (
    "You are an expert travel intent analyzer. Answer concisely with the final JSON object only."
)


class IntentAgent:
    """Turn a ``TripRequest`` into an immutable :class:`Intent`.

    Timeouts, empty answers and unusable text resolve to the deterministic
    fallback intent. An exhausted rate-limit budget is re-raised.
    """

    def __init__(
        self,
        client: Optional[TextGenerationClient] = None,
        engine: Optional[ExtractionEngine] = None,
        *,
        temperature: float = 0.3,
        max_output_tokens: int = 300,
    ) -> None:
        self.client = client or TextGenerationClient()
        self.engine = engine or ExtractionEngine()
        self.options = GenerationOptions(
            temperature=temperature,
            max_output_tokens=max_output_tokens,
            system_instruction=SYSTEM_INSTRUCTION,
        )
        self._prompt_template = load_prompt_template("intent")

    def build_prompt(self, request: TripRequest) -> str:
        return self._prompt_template.format(
            origin=request.origin,
            destination=request.destination or request.region or "Not decided",
            start_date=request.start_date.isoformat() if request.start_date else "Flexible",
            end_date=request.end_date.isoformat() if request.end_date else "Flexible",
            days=request.trip_days,
            budget=request.budget if request.budget is not None else "Not specified",
            currency=request.currency,
            travelers=request.travelers,
            interests=", ".join(request.interests) or "Not specified",
            travel_type=request.travel_type or "Not specified",
        )

    async def analyze(self, request: TripRequest) -> Intent:
        context = context_for(request)
        try:
            completion = await self.client.complete(self.build_prompt(request), self.options)
            result = self.engine.extract(completion.text, INTENT_SCHEMA_NAME, context)
        except RateLimitError:
            raise
        except (TextGenerationError, ExtractionError) as exc:
            logger.warning("Intent analysis failed, using default intent: %s", exc)
            return fallback_intent(context)

        logger.info(
            "Intent analyzed: purpose=%s style=%s budget=%s (via %s)",
            result.data.purpose,
            result.data.travel_style,
            result.data.budget_category,
            result.strategy,
        )
        return result.data


__all__ = ["IntentAgent"]

"""OptimizerAgent: advisory pass over a finished plan."""
from __future__ import annotations

import logging
from typing import Optional

from agents.text_client import (
    GenerationOptions,
    TextGenerationClient,
    TextGenerationError,
)
from extraction.engine import ExtractionEngine, ExtractionError, context_for
from extraction.structured import OPTIMIZER_SCHEMA_NAME
from prompts import load_prompt_template
from workflows.state import (
    BudgetBreakdown,
    DestinationInfo,
    Intent,
    ItineraryDraft,
    OptimizationReport,
    TripRequest,
)

logger = logging.getLogger(__name__)

SYSTEM_INSTRUCTION = (
    "You are an expert trip optimizer. Suggest improvements for time, cost and "
    "experience as a single JSON object."
)


class OptimizerAgent:
    """Suggest improvements; an empty report on any failure."""

    def __init__(
        self,
        client: Optional[TextGenerationClient] = None,
        engine: Optional[ExtractionEngine] = None,
        *,
        temperature: float = 0.6,
        max_output_tokens: int = 800,
    ) -> None:
        self.client = client or TextGenerationClient()
        self.engine = engine or ExtractionEngine()
        self.options = GenerationOptions(
            temperature=temperature,
            max_output_tokens=max_output_tokens,
            system_instruction=SYSTEM_INSTRUCTION,
        )
        self._prompt_template = load_prompt_template("optimizer")

    def build_prompt(
        self,
        request: TripRequest,
        intent: Intent,
        destination: DestinationInfo,
        itinerary: ItineraryDraft,
        budget: BudgetBreakdown,
    ) -> str:
        return self._prompt_template.format(
            days=intent.estimated_days,
            travelers=request.travelers,
            budget_total=budget.total,
            currency=budget.currency,
            travel_style=intent.travel_style,
            interests=", ".join(intent.priority_interests) or "general sightseeing",
            destination=request.destination or destination.name,
            itinerary_days=len(itinerary.days),
            budget_status=budget.status,
            budget_variance=budget.variance,
        )

    async def optimize_plan(
        self,
        request: TripRequest,
        intent: Intent,
        destination: DestinationInfo,
        itinerary: ItineraryDraft,
        budget: BudgetBreakdown,
    ) -> OptimizationReport:
        context = context_for(request, destination=request.destination or destination.name, intent=intent)
        try:
            completion = await self.client.complete(
                self.build_prompt(request, intent, destination, itinerary, budget), self.options
            )
            result = self.engine.extract(completion.text, OPTIMIZER_SCHEMA_NAME, context)
        except (TextGenerationError, ExtractionError) as exc:
            logger.warning("Plan optimization failed, continuing without suggestions: %s", exc)
            return OptimizationReport()

        report: OptimizationReport = result.data
        logger.info(
            "Plan optimized: %d suggestions, %d alternatives (via %s)",
            len(report.optimizations),
            len(report.alternative_activities),
            result.strategy,
        )
        return report


__all__ = ["OptimizerAgent"]

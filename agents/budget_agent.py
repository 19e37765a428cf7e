from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from agents.text_client import (
    GenerationOptions,
    TextGenerationClient,
    TextGenerationError,
)
from config import BUDGET_DEFAULT_TARGET, BUDGET_VARIANCE_TOLERANCE
from extraction.engine import ExtractionEngine, ExtractionError, context_for
from extraction.structured import BUDGET_SCHEMA_NAME, fallback_budget
from prompts import load_prompt_template
from workflows.state import (
    BUDGET_CATEGORIES,
    BudgetBreakdown,
    DestinationInfo,
    Intent,
    ItineraryDraft,
    TripRequest,
)

logger = logging.getLogger(__name__)

SYSTEM_INSTRUCTION = (
    "You are an expert travel budget planner. Provide realistic cost estimates "
    "and practical savings suggestions as a single JSON object."
)


def recompute_budget(
    budget: BudgetBreakdown,
    *,
    target: float,
    travelers: int,
    days: int,
    tolerance: float = BUDGET_VARIANCE_TOLERANCE,
) -> BudgetBreakdown:
    """Derive total, per-person, per-day, variance and status from the categories.

    Whatever totals the model reported are discarded; the category amounts are
    the only input trusted.
    """

    breakdown: Dict[str, float] = {
        category: round(float(budget.breakdown.get(category, 0.0) or 0.0), 2) for category in BUDGET_CATEGORIES
    }
    total = round(sum(breakdown.values()), 2)
    variance = round(total - target, 2)
    if target > 0 and abs(variance) < target * tolerance:
        status = "within"
    elif variance > 0:
        status = "over"
    elif variance < 0:
        status = "under"
    else:
        status = "within"
    return budget.model_copy(
        update={
            "breakdown": breakdown,
            "total": total,
            "per_person": round(total / max(travelers, 1), 2),
            "per_day": round(total / max(days, 1), 2),
            "target": target,
            "variance": variance,
            "status": status,
        }
    )


class BudgetAgent:
    """Estimate the category budget for the planned trip."""

    def __init__(
        self,
        client: Optional[TextGenerationClient] = None,
        engine: Optional[ExtractionEngine] = None,
        *,
        temperature: float = 0.3,
        max_output_tokens: int = 400,
        default_target: float = BUDGET_DEFAULT_TARGET,
    ) -> None:
        self.client = client or TextGenerationClient()
        self.engine = engine or ExtractionEngine()
        self.default_target = default_target
        self.options = GenerationOptions(
            temperature=temperature,
            max_output_tokens=max_output_tokens,
            system_instruction=SYSTEM_INSTRUCTION,
        )
        self._prompt_template = load_prompt_template("budget")

    def target_for(self, request: TripRequest) -> float:
        return float(request.budget) if request.budget else self.default_target

    def build_prompt(
        self,
        request: TripRequest,
        intent: Intent,
        destination: DestinationInfo,
        itinerary: Optional[ItineraryDraft],
    ) -> str:
        return self._prompt_template.format(
            days=intent.estimated_days,
            travelers=request.travelers,
            target=self._safe_int(self.target_for(request), int(self.default_target)),
            currency=request.currency,
            budget_category=intent.budget_category,
            destination=request.destination or destination.name,
            transportation=destination.transportation.recommended,
            itinerary_days=len(itinerary.days) if itinerary else 0,
        )

    async def estimate_budget(
        self,
        request: TripRequest,
        intent: Intent,
        destination: DestinationInfo,
        itinerary: Optional[ItineraryDraft] = None,
    ) -> BudgetBreakdown:
        target = self.target_for(request)
        context = context_for(request, destination=request.destination or destination.name, intent=intent)
        try:
            completion = await self.client.complete(
                self.build_prompt(request, intent, destination, itinerary), self.options
            )
            result = self.engine.extract(completion.text, BUDGET_SCHEMA_NAME, context)
            estimate: BudgetBreakdown = result.data
            strategy = result.strategy
        except (TextGenerationError, ExtractionError) as exc:
            logger.warning("Budget estimation failed, splitting the target budget: %s", exc)
            estimate = fallback_budget(context, target)
            strategy = "fallback"

        if not any(estimate.breakdown.values()):
            estimate = fallback_budget(context, target)
            strategy = "fallback"

        budget = recompute_budget(
            estimate.model_copy(update={"currency": request.currency}),
            target=target,
            travelers=request.travelers,
            days=context.days,
        )
        logger.info(
            "Budget estimated: total=%s %s status=%s variance=%s (via %s)",
            budget.total,
            budget.currency,
            budget.status,
            budget.variance,
            strategy,
        )
        return budget

    @staticmethod
    def _safe_int(value: Any, default: int) -> int:
        try:
            return int(value)
        except (TypeError, ValueError):
            return default


__all__ = ["BudgetAgent", "recompute_budget"]

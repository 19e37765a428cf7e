# agents/itinerary_agent.py
"""ItineraryAgent: builds the day-by-day itinerary.

The agent asks the model for a fixed HTML layout (one ``Day N`` heading per
day followed by ``HH:MM — Activity`` list items), optionally streaming the
answer to a live caller, and hands the text to the extraction engine.

Unlike the other stages this one does not patch over bad output: a partial
itinerary would break the budget math downstream, so any result that does not
cover every day with at least one activity raises
:class:`ItineraryGenerationError` and the workflow substitutes the whole
fallback template instead.
"""
from __future__ import annotations

import logging
from typing import List, Optional

from agents.text_client import (
    GenerationOptions,
    RateLimitError,
    TextGenerationClient,
    TextGenerationError,
    TokenCallback,
)
from config import ITINERARY_STREAMING_ENABLED
from extraction.engine import ExtractionEngine, ExtractionError, context_for
from extraction.itinerary import SCHEMA_NAME
from prompts import load_prompt_template
from workflows.state import DestinationInfo, Intent, ItineraryDraft, TripRequest

logger = logging.getLogger(__name__)

SYSTEM_INSTRUCTION = (
    "Output HTML itinerary only. Use real place names. "
    "No JSON, no markdown code blocks, no explanations."
)

_BUDGET_LABELS = {"budget": "Budget", "moderate": "Moderate", "luxury": "Luxury"}


class ItineraryGenerationError(Exception):
    """The itinerary stage produced nothing usable for every day of the trip."""


class ItineraryAgent:
    """Construct a structured itinerary from the researched destination."""

    def __init__(
        self,
        client: Optional[TextGenerationClient] = None,
        engine: Optional[ExtractionEngine] = None,
        *,
        temperature: float = 0.3,
        tokens_per_day: int = 400,
        min_output_tokens: int = 2000,
        streaming: bool = ITINERARY_STREAMING_ENABLED,
    ) -> None:
        self.client = client or TextGenerationClient()
        self.engine = engine or ExtractionEngine()
        self.temperature = temperature
        self.tokens_per_day = tokens_per_day
        self.min_output_tokens = min_output_tokens
        self.streaming = streaming
        self._prompt_template = load_prompt_template("itinerary")

    # ------------------------------------------------------------------
    # Prompt
    # ------------------------------------------------------------------
    def _options(self, days: int) -> GenerationOptions:
        return GenerationOptions(
            temperature=self.temperature,
            max_output_tokens=max(self.min_output_tokens, self.tokens_per_day * days),
            system_instruction=SYSTEM_INSTRUCTION,
        )

    def build_prompt(self, request: TripRequest, intent: Intent, destination: DestinationInfo) -> str:
        place = request.destination or destination.city or destination.name
        category = request.budget_range if request.budget_range in _BUDGET_LABELS else intent.budget_category
        attractions: List[str] = [attraction.name for attraction in destination.attractions[:8]]
        return self._prompt_template.format(
            days=intent.estimated_days,
            budget_label=_BUDGET_LABELS.get(category, "Moderate"),
            season=f" {request.season}" if request.season else "",
            destination=place,
            origin=request.origin,
            start_date=request.start_date.isoformat() if request.start_date else "Flexible",
            interests=", ".join(intent.priority_interests or request.interests) or "sightseeing",
            attractions=", ".join(attractions) or place,
        )

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    async def create_itinerary(
        self,
        request: TripRequest,
        intent: Intent,
        destination: DestinationInfo,
        on_token: Optional[TokenCallback] = None,
    ) -> ItineraryDraft:
        """Return an itinerary covering every day of the trip or raise.

        Raises:
            ItineraryGenerationError: generation failed or was rate limited,
                or the answer did not yield at least one activity for each day.
        """

        context = context_for(request, destination=request.destination or destination.name, intent=intent)
        prompt = self.build_prompt(request, intent, destination)
        text = await self._generate(prompt, context.days, on_token)

        try:
            result = self.engine.extract(text, SCHEMA_NAME, context)
        except ExtractionError as exc:
            raise ItineraryGenerationError(f"Itinerary could not be extracted: {exc}") from exc

        draft: ItineraryDraft = result.data
        if result.synthetic:
            raise ItineraryGenerationError("Itinerary response contained no recognizable days")
        if len(draft.days) < context.days:
            raise ItineraryGenerationError(
                f"Itinerary covers {len(draft.days)} of {context.days} days"
            )
        empty = [day.day for day in draft.days if not day.activities]
        if empty:
            raise ItineraryGenerationError(f"Itinerary days without activities: {empty}")

        logger.info(
            "Itinerary created: %d days, %d activities (via %s)",
            len(draft.days),
            draft.total_activities,
            result.strategy,
        )
        return draft

    async def _generate(self, prompt: str, days: int, on_token: Optional[TokenCallback]) -> str:
        options = self._options(days)
        if on_token is not None and self.streaming:
            try:
                completion = await self.client.stream(prompt, options, on_token=on_token)
                return completion.text
            except RateLimitError as exc:
                raise ItineraryGenerationError(f"Itinerary generation was rate limited: {exc}") from exc
            except TextGenerationError as exc:
                logger.warning("Itinerary streaming failed, falling back to a single call: %s", exc)
                _discard_streamed(on_token)

        try:
            completion = await self.client.complete(prompt, options)
        except TextGenerationError as exc:
            raise ItineraryGenerationError(f"Itinerary generation failed: {exc}") from exc
        return completion.text


def _discard_streamed(on_token: TokenCallback) -> None:
    # Receivers that buffer partial output expose ``reset()``.
    reset = getattr(on_token, "reset", None)
    if callable(reset):
        reset()


__all__ = ["ItineraryAgent", "ItineraryGenerationError"]

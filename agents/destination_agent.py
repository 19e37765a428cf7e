"""DestinationAgent: researches (or suggests) the trip destination."""
from __future__ import annotations

import logging
from typing import Optional

from agents.text_client import (
    GenerationOptions,
    TextGenerationClient,
    TextGenerationError,
)
from extraction.destination import SCHEMA_NAME, fallback_destination
from extraction.engine import ExtractionContext, ExtractionEngine, ExtractionError, context_for
from prompts import load_prompt_template
from workflows.state import DestinationInfo, Intent, TripRequest

logger = logging.getLogger(__name__)

SYSTEM_INSTRUCTION = (
    "Output HTML destination information only. Use real place names. "
    "No JSON, no markdown code blocks, no explanations."
)

# Answers shorter than this are treated as no answer at all.
MIN_RESPONSE_CHARS = 50


class DestinationAgent:
    """Produce :class:`DestinationInfo` for the canonical destination."""

    def __init__(
        self,
        client: Optional[TextGenerationClient] = None,
        engine: Optional[ExtractionEngine] = None,
        *,
        temperature: float = 0.3,
        max_output_tokens: int = 1200,
    ) -> None:
        self.client = client or TextGenerationClient()
        self.engine = engine or ExtractionEngine()
        self.options = GenerationOptions(
            temperature=temperature,
            max_output_tokens=max_output_tokens,
            system_instruction=SYSTEM_INSTRUCTION,
        )
        self._prompt_template = load_prompt_template("destination")

    # ------------------------------------------------------------------
    # Prompt
    # ------------------------------------------------------------------
    def build_prompt(self, request: TripRequest, intent: Intent) -> str:
        days = intent.estimated_days
        if request.has_destination:
            destination = request.destination
            note = " (use this exact destination, do not change it)"
        elif request.region:
            destination = f"one destination in {request.region}"
            note = " (pick ONE specific city and put it in the Name field)"
        else:
            destination = "a suitable destination"
            note = " (suggest one specific city and put it in the Name field)"

        areas_instruction = ""
        if 2 <= days <= 3:
            areas_instruction = (
                f"\nIMPORTANT: Since this is a {days}-day trip, recommend the BEST 3-5 areas or "
                "neighborhoods to explore, each walkable and close to several attractions. "
                "Add a short reason after each Key Areas item."
            )

        return self._prompt_template.format(
            destination=destination,
            destination_note=note,
            days=days,
            origin=request.origin,
            interests=", ".join(intent.priority_interests or request.interests) or "sightseeing",
            season=request.season or "any",
            budget_category=intent.budget_category,
            areas_instruction=areas_instruction,
        )

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    async def find_destination(self, request: TripRequest, intent: Intent) -> DestinationInfo:
        """Research the request's destination; never replaces an explicit one."""

        return await self._research(request, intent, context_for(request, intent=intent))

    async def suggest_destination(self, request: TripRequest, intent: Intent) -> DestinationInfo:
        """Pick a destination for a request that only names a region (or nothing).

        The returned ``name`` becomes the canonical destination. When nothing
        usable comes back, the region itself is used.
        """

        context = context_for(request, intent=intent)
        info = await self._research(request, intent, context)
        if info.name == context.destination:
            logger.warning("No destination suggested for %s; using the region as destination", context.destination)
        else:
            logger.info("Suggested destination %s for region %s", info.name, request.region or "any")
        return info

    async def _research(self, request: TripRequest, intent: Intent, context: ExtractionContext) -> DestinationInfo:
        try:
            completion = await self.client.complete(self.build_prompt(request, intent), self.options)
            if len(completion.text.strip()) < MIN_RESPONSE_CHARS:
                logger.warning("Destination response too short (%d chars), using fallback", len(completion.text))
                return fallback_destination(context)
            result = self.engine.extract(completion.text, SCHEMA_NAME, context)
        except (TextGenerationError, ExtractionError) as exc:
            logger.warning("Destination research failed, using fallback: %s", exc)
            return fallback_destination(context)

        info: DestinationInfo = result.data
        logger.info(
            "Destination researched: %s (%d attractions, %d key areas, via %s)",
            info.name,
            len(info.attractions),
            len(info.key_areas),
            result.strategy,
        )
        return info


__all__ = ["DestinationAgent", "MIN_RESPONSE_CHARS"]

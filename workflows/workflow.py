"""Trip planner workflow orchestration.

This module exposes :class:`TripPlannerWorkflow`, the coordinator that drives
the stage agents in a fixed order and reports progress as it goes:

1. Understanding: ``IntentAgent`` classifies the request.
2. Suggesting (only when no destination was given): ``DestinationAgent``
   picks one, and it becomes the canonical destination for every later stage.
3. Destinations: ``DestinationAgent`` researches the destination.
4. Itinerary: ``ItineraryAgent`` builds the days; on failure the whole
   itinerary is replaced with the fallback template.
5. Budget: ``BudgetAgent`` estimates and recomputes the breakdown.
6. Optimizing (optional): ``OptimizerAgent`` adds advisory suggestions.
7. Compiling: outputs are merged into a ``TripPlan`` and enriched with
   coordinates.

Each step emits an ``in_progress`` event before it starts and a
``completed`` event when it ends. Callers get a complete plan or a
:class:`TripPlanningError`, never a partial plan.
"""

from __future__ import annotations

import functools
import inspect
import logging
from datetime import datetime, timezone
from typing import Awaitable, Callable, List, Optional, Tuple, Union

from agents.budget_agent import BudgetAgent
from agents.destination_agent import DestinationAgent
from agents.intent_agent import IntentAgent
from agents.itinerary_agent import ItineraryAgent, ItineraryGenerationError
from agents.optimizer_agent import OptimizerAgent
from agents.text_client import RateLimitError, TextGenerationClient, TokenCallback
from config import OPTIMIZER_ENABLED
from extraction.engine import ExtractionEngine
from extraction.itinerary import build_fallback_itinerary, render_itinerary_markup
from tools.geocoding import GeocodingClient, get_geocoding_client
from workflows.compiler import compile_trip_plan
from workflows.schemas import TweakPayload, merge_tweak
from workflows.state import (
    ItineraryDraft,
    OptimizationReport,
    PlanningState,
    PlanStep,
    ProgressEvent,
    TripPlan,
    TripRequest,
)

logger = logging.getLogger(__name__)

ProgressSink = Callable[[ProgressEvent], Union[None, Awaitable[None]]]
Stage = Callable[[PlanningState, Optional[ProgressSink]], Awaitable[PlanningState]]

STEP_MESSAGES = {
    "understanding": ("Analyzing your trip preferences...", "Trip preferences analyzed"),
    "suggesting": ("Finding the best destination for you...", "Destination selected"),
    "destinations": ("Researching destinations and routes...", "Destination research complete"),
    "itinerary": ("Creating day-by-day itinerary...", "Itinerary created"),
    "budget": ("Estimating budget...", "Budget estimated"),
    "optimizing": ("Optimizing your trip plan...", "Trip plan optimized"),
    "compiling": ("Compiling your trip plan...", "Trip plan compiled"),
}


class TripPlanningError(Exception):
    """The pipeline could not produce a plan."""

    def __init__(self, message: str, *, step: Optional[str] = None, rate_limited: bool = False):
        super().__init__(message)
        self.step = step
        self.rate_limited = rate_limited


class TripPlannerWorkflow:
    """Explicit state machine over :class:`PlanningState`."""

    def __init__(
        self,
        *,
        intent_agent: Optional[IntentAgent] = None,
        destination_agent: Optional[DestinationAgent] = None,
        itinerary_agent: Optional[ItineraryAgent] = None,
        budget_agent: Optional[BudgetAgent] = None,
        optimizer_agent: Optional[OptimizerAgent] = None,
        geocoder: Optional[GeocodingClient] = None,
        optimizer_enabled: bool = OPTIMIZER_ENABLED,
        geocoding_enabled: bool = True,
    ) -> None:
        client: Optional[TextGenerationClient] = None
        engine: Optional[ExtractionEngine] = None
        if not all([intent_agent, destination_agent, itinerary_agent, budget_agent]) or (
            optimizer_enabled and optimizer_agent is None
        ):
            client = TextGenerationClient()
            engine = ExtractionEngine()

        self.intent_agent = intent_agent or IntentAgent(client, engine)
        self.destination_agent = destination_agent or DestinationAgent(client, engine)
        self.itinerary_agent = itinerary_agent or ItineraryAgent(client, engine)
        self.budget_agent = budget_agent or BudgetAgent(client, engine)
        self.optimizer_enabled = optimizer_enabled
        self.optimizer_agent = optimizer_agent or (OptimizerAgent(client, engine) if optimizer_enabled else None)
        self.geocoding_enabled = geocoding_enabled
        self.geocoder = geocoder if geocoder is not None else (get_geocoding_client() if geocoding_enabled else None)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    async def plan(
        self,
        request: TripRequest,
        *,
        sink: Optional[ProgressSink] = None,
        on_token: Optional[TokenCallback] = None,
        request_id: Optional[str] = None,
    ) -> TripPlan:
        """Run every stage for ``request`` and return the compiled plan.

        Raises:
            TripPlanningError: a stage failed in a way no fallback covers.
        """

        state = PlanningState(request=request, **({"request_id": request_id} if request_id else {}))
        logger.info(
            "Planning trip %s: %s -> %s (%d days)",
            state.request_id,
            request.origin,
            request.destination or request.region or "<suggest>",
            request.trip_days,
        )
        phase: PlanStep = "understanding"
        try:
            for phase, stage in self._stages(request, on_token):
                state = await stage(state, sink)
        except TripPlanningError:
            raise
        except RateLimitError as exc:
            await self._fail(state, sink, str(exc))
            raise TripPlanningError(str(exc), step=phase, rate_limited=True) from exc
        except Exception as exc:
            logger.exception("Trip planning failed during %s", phase)
            await self._fail(state, sink, f"Trip planning failed: {exc}")
            raise TripPlanningError(f"Trip planning failed: {exc}", step=phase) from exc

        if state.plan is None:
            await self._fail(state, sink, "Trip planning finished without a compiled plan")
            raise TripPlanningError("Trip planning finished without a compiled plan", step="compiling")
        await self._emit(sink, "done", "completed", "Trip plan ready!")
        return state.plan

    async def tweak(
        self,
        plan: TripPlan,
        updates: TweakPayload,
        *,
        sink: Optional[ProgressSink] = None,
    ) -> TripPlan:
        """Merge ``updates`` into the plan's request and re-run every stage.

        The new plan keeps the original id, owner and creation time.
        """

        request = merge_tweak(plan.request, updates)
        new_plan = await self.plan(request, sink=sink)
        return new_plan.model_copy(
            update={
                "id": plan.id,
                "owner_id": plan.owner_id,
                "created_at": plan.created_at,
                "updated_at": datetime.now(timezone.utc),
            }
        )

    # ------------------------------------------------------------------
    # Stages
    # ------------------------------------------------------------------
    def _stages(self, request: TripRequest, on_token: Optional[TokenCallback]) -> List[Tuple[PlanStep, Stage]]:
        stages: List[Tuple[PlanStep, Stage]] = [("understanding", self._understand)]
        if not request.has_destination:
            stages.append(("suggesting", self._suggest))
        stages += [
            ("destinations", self._research),
            ("itinerary", functools.partial(self._build_itinerary, on_token=on_token)),
            ("budget", self._estimate_budget),
        ]
        if self.optimizer_enabled and self.optimizer_agent is not None:
            stages.append(("optimizing", self._optimize))
        stages.append(("compiling", self._compile))
        return stages

    async def _understand(self, state: PlanningState, sink: Optional[ProgressSink]) -> PlanningState:
        state = await self._enter(state, sink, "understanding")
        intent = await self.intent_agent.analyze(state.request)
        if intent.estimated_days != state.request.trip_days:
            intent = intent.model_copy(update={"estimated_days": state.request.trip_days})
        await self._complete(sink, "understanding")
        return state.model_copy(update={"intent": intent})

    async def _suggest(self, state: PlanningState, sink: Optional[ProgressSink]) -> PlanningState:
        state = await self._enter(state, sink, "suggesting")
        info = await self.destination_agent.suggest_destination(state.request, state.intent)
        name = info.name or state.request.region or "Destination"
        request = state.request.with_destination(name)
        info = info.model_copy(update={"name": name, "city": info.city or name})
        logger.info("Destination resolved to %s", name)
        await self._emit(sink, "suggesting", "completed", f"Destination selected: {name}")
        return state.model_copy(update={"request": request, "destination": info})

    async def _research(self, state: PlanningState, sink: Optional[ProgressSink]) -> PlanningState:
        state = await self._enter(state, sink, "destinations")
        info = state.destination
        if info is None:
            info = await self.destination_agent.find_destination(state.request, state.intent)
        await self._complete(sink, "destinations")
        return state.model_copy(update={"destination": info})

    async def _build_itinerary(
        self,
        state: PlanningState,
        sink: Optional[ProgressSink],
        on_token: Optional[TokenCallback],
    ) -> PlanningState:
        state = await self._enter(state, sink, "itinerary")
        request = state.request
        try:
            draft = await self.itinerary_agent.create_itinerary(request, state.intent, state.destination, on_token)
        except ItineraryGenerationError as exc:
            logger.warning("Itinerary rejected, using the fallback template: %s", exc)
            days = build_fallback_itinerary(
                request.destination or state.destination.name,
                request.trip_days,
                request.start_date,
                request.currency,
            )
            draft = ItineraryDraft(days=days, html=render_itinerary_markup(days), source="fallback")
        await self._complete(sink, "itinerary")
        return state.model_copy(update={"itinerary": draft})

    async def _estimate_budget(self, state: PlanningState, sink: Optional[ProgressSink]) -> PlanningState:
        state = await self._enter(state, sink, "budget")
        budget = await self.budget_agent.estimate_budget(
            state.request, state.intent, state.destination, state.itinerary
        )
        await self._complete(sink, "budget")
        return state.model_copy(update={"budget": budget})

    async def _optimize(self, state: PlanningState, sink: Optional[ProgressSink]) -> PlanningState:
        state = await self._enter(state, sink, "optimizing")
        report = await self.optimizer_agent.optimize_plan(
            state.request, state.intent, state.destination, state.itinerary, state.budget
        )
        await self._complete(sink, "optimizing")
        return state.model_copy(update={"optimizations": report})

    async def _compile(self, state: PlanningState, sink: Optional[ProgressSink]) -> PlanningState:
        state = await self._enter(state, sink, "compiling")
        plan = compile_trip_plan(
            state.request,
            state.intent,
            state.destination,
            state.itinerary,
            state.budget,
            state.optimizations or OptimizationReport(),
            used_fallback_itinerary=state.itinerary.source == "fallback",
        )
        plan = await self._enrich(plan)
        await self._complete(sink, "compiling")
        return state.model_copy(update={"plan": plan, "phase": "done"})

    async def _enrich(self, plan: TripPlan) -> TripPlan:
        if not self.geocoding_enabled or self.geocoder is None:
            return plan
        city = plan.destination_info.city or plan.destination
        try:
            days = await self.geocoder.enrich_itinerary(plan.itinerary, city)
            html = await self.geocoder.enrich_markup(plan.itinerary_html, days, city)
        except Exception as exc:
            logger.warning("Geocoding enrichment failed, continuing without coordinates: %s", exc)
            return plan
        return plan.model_copy(update={"itinerary": days, "itinerary_html": html})

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------
    async def _enter(self, state: PlanningState, sink: Optional[ProgressSink], step: PlanStep) -> PlanningState:
        await self._emit(sink, step, "in_progress", STEP_MESSAGES[step][0])
        return state.model_copy(update={"phase": step})

    async def _complete(self, sink: Optional[ProgressSink], step: PlanStep) -> None:
        await self._emit(sink, step, "completed", STEP_MESSAGES[step][1])

    async def _fail(self, state: PlanningState, sink: Optional[ProgressSink], message: str) -> None:
        try:
            await self._emit(sink, "failed", "completed", message)
        except Exception:
            logger.exception("Progress sink failed while reporting failure of %s", state.request_id)

    @staticmethod
    async def _emit(sink: Optional[ProgressSink], step: PlanStep, status: str, message: str) -> None:
        if sink is None:
            return
        result = sink(ProgressEvent(step=step, status=status, message=message))
        if inspect.isawaitable(result):
            await result


__all__ = ["ProgressSink", "STEP_MESSAGES", "TripPlanningError", "TripPlannerWorkflow"]

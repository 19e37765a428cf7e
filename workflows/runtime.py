from __future__ import annotations

import asyncio
import logging
import uuid
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Dict, List, Optional, Set, Tuple

from agents.text_client import TokenCallback
from workflows.cache import PlanCache
from workflows.progress import DaySplitter, ProgressTracker, format_sse
from workflows.schemas import TweakPayload
from workflows.state import ProgressEvent, TripPlan, TripRequest
from workflows.storage import TripStorage, get_trip_storage
from workflows.workflow import ProgressSink, TripPlannerWorkflow, TripPlanningError

logger = logging.getLogger(__name__)


class TripNotFoundError(LookupError):
    """No stored trip with that id is visible to the caller."""


class _StreamedDays:
    """Token receiver that queues one ``itinerary-day`` event per finished day."""

    def __init__(self, queue: asyncio.Queue) -> None:
        self.queue = queue
        self.splitter = DaySplitter()

    def __call__(self, token: str) -> None:
        self._put(self.splitter.feed(token))

    def flush(self) -> None:
        self._put(self.splitter.flush())

    def reset(self) -> None:
        self.splitter.reset()

    def _put(self, chunks: List[Dict[str, Any]]) -> None:
        for chunk in chunks:
            self.queue.put_nowait(("itinerary-day", chunk))


class TripPlannerRuntime:
    """Runtime helper that owns the workflow, the plan cache and trip storage."""

    def __init__(
        self,
        *,
        workflow: Optional[TripPlannerWorkflow] = None,
        cache: Optional[PlanCache] = None,
        storage: Optional[TripStorage] = None,
        tracker: Optional[ProgressTracker] = None,
    ) -> None:
        self.workflow = workflow or TripPlannerWorkflow()
        self.cache = cache if cache is not None else PlanCache()
        self.storage = storage if storage is not None else get_trip_storage()
        self.tracker = tracker if tracker is not None else ProgressTracker()
        # Pipelines outlive the streaming response that started them.
        self._background: Set[asyncio.Task] = set()

    @staticmethod
    def new_request_id() -> str:
        return uuid.uuid4().hex

    # ------------------------------------------------------------------
    # Planning
    # ------------------------------------------------------------------
    async def plan_trip(
        self,
        request: TripRequest,
        *,
        request_id: Optional[str] = None,
        sink: Optional[ProgressSink] = None,
        on_token: Optional[TokenCallback] = None,
    ) -> Tuple[TripPlan, bool]:
        """Return ``(plan, cached)``; the plan is stored either way."""

        request_id = request_id or self.new_request_id()
        tracked = self._tracking_sink(request_id, sink)

        cached = self.cache.get(request)
        if cached is not None:
            plan = self._adopt_cached(cached, request)
            self.storage.save(plan)
            await tracked(ProgressEvent(step="done", status="completed", message="Trip plan loaded from cache"))
            return plan, True

        plan = await self.workflow.plan(request, sink=tracked, on_token=on_token, request_id=request_id)
        self.storage.save(plan)
        self.cache.set(request, plan)
        logger.info("Stored trip %s for %s", plan.id, plan.destination)
        return plan, False

    async def stream_plan(self, request: TripRequest, request_id: Optional[str] = None) -> AsyncIterator[str]:
        """Server-sent event frames for one planning run.

        Closing the iterator early does not cancel the run; the plan is still
        stored and cached when it finishes.
        """

        request_id = request_id or self.new_request_id()
        queue: asyncio.Queue = asyncio.Queue()
        on_token = _StreamedDays(queue)

        def on_progress(event: ProgressEvent) -> None:
            queue.put_nowait(("progress", event))

        async def run() -> None:
            try:
                plan, cached = await self.plan_trip(
                    request, request_id=request_id, sink=on_progress, on_token=on_token
                )
                if not plan.used_fallback_itinerary:
                    on_token.flush()
                queue.put_nowait(("complete", {"summary": plan.summary(), "trip": plan, "cached": cached}))
            except TripPlanningError as exc:
                queue.put_nowait(("error", {"message": str(exc), "rateLimited": exc.rate_limited}))
            except Exception as exc:
                logger.exception("Streaming plan %s failed", request_id)
                queue.put_nowait(("error", {"message": f"Trip planning failed: {exc}", "rateLimited": False}))
            finally:
                queue.put_nowait(None)

        task = asyncio.create_task(run())
        self._background.add(task)
        task.add_done_callback(self._background.discard)

        yield format_sse("connected", {"requestId": request_id})
        while True:
            item = await queue.get()
            if item is None:
                break
            event, data = item
            yield format_sse(event, data)

    async def tweak_trip(self, trip_id: str, updates: TweakPayload, owner_id: Optional[str] = None) -> TripPlan:
        plan = self.storage.get(trip_id, owner_id)
        if plan is None:
            raise TripNotFoundError(trip_id)
        updated = await self.workflow.tweak(plan, updates)
        self.storage.save(updated)
        self.cache.set(updated.request, updated)
        return updated

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------
    def get_trip(self, trip_id: str, owner_id: Optional[str] = None) -> TripPlan:
        plan = self.storage.get(trip_id, owner_id)
        if plan is None:
            raise TripNotFoundError(trip_id)
        return plan

    def progress(self, request_id: str) -> Optional[ProgressEvent]:
        return self.tracker.latest(request_id)

    def clear_cache(self) -> int:
        return self.cache.clear()

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    def _tracking_sink(self, request_id: str, sink: Optional[ProgressSink]) -> ProgressSink:
        async def _record(event: ProgressEvent) -> None:
            self.tracker.record(request_id, event)
            if sink is not None:
                result: Any = sink(event)
                if asyncio.iscoroutine(result):
                    await result

        return _record

    @staticmethod
    def _adopt_cached(cached: TripPlan, request: TripRequest) -> TripPlan:
        if request.owner_id is None or request.owner_id == cached.owner_id:
            return cached
        # A second owner gets their own stored copy.
        return cached.model_copy(
            update={
                "id": uuid.uuid4().hex,
                "owner_id": request.owner_id,
                "request": cached.request.model_copy(update={"owner_id": request.owner_id}),
                "created_at": datetime.now(timezone.utc),
            }
        )


__all__ = ["TripNotFoundError", "TripPlannerRuntime"]

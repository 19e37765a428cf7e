"""FastAPI application exposing the trip planner runtime."""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional, Type, TypeVar

from fastapi import Body, FastAPI, Header, HTTPException, Request
from fastapi.encoders import jsonable_encoder
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import BaseModel, ValidationError

from config import API_HOST, API_PORT, CORS_ORIGINS, LOG_LEVEL, validate_api_keys
from workflows.runtime import TripNotFoundError, TripPlannerRuntime
from workflows.schemas import (
    PlanTripPayload,
    PreferencesPayload,
    TripValidationError,
    TweakPayload,
    preferences_to_request,
    validate_plan_payload,
)
from workflows.state import TripPlan
from workflows.workflow import TripPlanningError

logging.basicConfig(level=LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
logger = logging.getLogger(__name__)

PayloadT = TypeVar("PayloadT", bound=BaseModel)

app = FastAPI(title="Trip Planner API", version="1.0.0")
app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["X-Request-ID"],
)

runtime = TripPlannerRuntime()

_missing_keys = validate_api_keys()
if _missing_keys:
    logger.warning("Missing API keys: %s. Trip planning requests will fail.", ", ".join(_missing_keys))


# ---------------------------------------------------------------------------
# Error mapping
# ---------------------------------------------------------------------------

@app.exception_handler(TripValidationError)
async def _validation_error(_: Request, exc: TripValidationError) -> JSONResponse:
    return JSONResponse(status_code=400, content={"errors": exc.errors})


@app.exception_handler(TripPlanningError)
async def _planning_error(_: Request, exc: TripPlanningError) -> JSONResponse:
    status = 429 if exc.rate_limited else 502
    return JSONResponse(status_code=status, content={"error": str(exc), "step": exc.step})


@app.exception_handler(TripNotFoundError)
async def _not_found(_: Request, exc: TripNotFoundError) -> JSONResponse:
    return JSONResponse(status_code=404, content={"error": f"Trip {exc.args[0]} not found"})


def _parse(model: Type[PayloadT], payload: Optional[Dict[str, Any]]) -> PayloadT:
    try:
        return model.model_validate(payload or {})
    except ValidationError as exc:
        messages = [
            f"{'.'.join(str(part) for part in error['loc']) or 'body'}: {error['msg']}" for error in exc.errors()
        ]
        raise TripValidationError(messages) from exc


def _serialize_plan(plan: TripPlan) -> Dict[str, Any]:
    return jsonable_encoder(plan.model_dump())


def _wants_stream(request: Request, stream: bool) -> bool:
    return stream or "text/event-stream" in request.headers.get("accept", "")


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------

@app.get("/health")
async def health() -> Dict[str, str]:
    return {"status": "ok"}


@app.post("/trips/plan")
async def plan_trip(
    payload: Optional[Dict[str, Any]] = Body(default=None),
    x_owner_id: Optional[str] = Header(default=None),
) -> JSONResponse:
    parsed = _parse(PlanTripPayload, payload)
    trip_request = validate_plan_payload(parsed)
    if x_owner_id and not trip_request.owner_id:
        trip_request = trip_request.model_copy(update={"owner_id": x_owner_id})

    request_id = runtime.new_request_id()
    plan, cached = await runtime.plan_trip(trip_request, request_id=request_id)
    return JSONResponse(
        content={"trip": _serialize_plan(plan), "cached": cached},
        headers={"X-Request-ID": request_id},
    )


@app.post("/trips/plan-with-preferences")
async def plan_with_preferences(
    request: Request,
    payload: Optional[Dict[str, Any]] = Body(default=None),
    stream: bool = False,
    x_owner_id: Optional[str] = Header(default=None),
):
    parsed = _parse(PreferencesPayload, payload)
    trip_request = preferences_to_request(parsed)
    if x_owner_id and not trip_request.owner_id:
        trip_request = trip_request.model_copy(update={"owner_id": x_owner_id})

    request_id = runtime.new_request_id()
    if _wants_stream(request, stream):
        return StreamingResponse(
            runtime.stream_plan(trip_request, request_id),
            media_type="text/event-stream",
            headers={
                "X-Request-ID": request_id,
                "Cache-Control": "no-cache",
                "Connection": "keep-alive",
                "X-Accel-Buffering": "no",
            },
        )

    plan, cached = await runtime.plan_trip(trip_request, request_id=request_id)
    return JSONResponse(
        content={"trip": _serialize_plan(plan), "cached": cached},
        headers={"X-Request-ID": request_id},
    )


@app.get("/trips/progress/{request_id}")
async def get_progress(request_id: str) -> Dict[str, Any]:
    event = runtime.progress(request_id)
    if event is None:
        raise HTTPException(status_code=404, detail="No progress recorded for this request")
    return {"requestId": request_id, "progress": jsonable_encoder(event)}


@app.delete("/trips/cache")
async def clear_cache() -> Dict[str, Any]:
    cleared = runtime.clear_cache()
    logger.info("Cleared %d cached trip plans", cleared)
    return {"cleared": cleared}


@app.get("/trips/{trip_id}")
async def get_trip(trip_id: str, x_owner_id: Optional[str] = Header(default=None)) -> Dict[str, Any]:
    plan = runtime.get_trip(trip_id, x_owner_id)
    return {"trip": _serialize_plan(plan)}


@app.post("/trips/{trip_id}/tweak")
async def tweak_trip(
    trip_id: str,
    payload: Optional[Dict[str, Any]] = Body(default=None),
    x_owner_id: Optional[str] = Header(default=None),
) -> Dict[str, Any]:
    updates = _parse(TweakPayload, payload)
    plan = await runtime.tweak_trip(trip_id, updates, x_owner_id)
    return {"trip": _serialize_plan(plan)}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("api.main:app", host=API_HOST, port=API_PORT, log_level=LOG_LEVEL.lower())

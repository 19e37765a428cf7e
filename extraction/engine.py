"""Text-to-structure extraction engine.

Every target schema is described as data: a tuple of text preprocessors
followed by an ordered tuple of strategies. A strategy returns structured data
or ``None``; the first strategy that returns something wins. Schemas end with
a synthetic strategy built from the :class:`ExtractionContext`, so extraction
only raises when the raw input is not text at all.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Callable, Dict, Generic, Iterable, Optional, Tuple, TypeVar

from extraction.markup import repair_formatting, sanitize_markup, strip_fences

logger = logging.getLogger(__name__)

T = TypeVar("T")


class ExtractionError(ValueError):
    """Raised when the raw input cannot be treated as text at all."""


@dataclass(frozen=True)
class ExtractionContext:
    """Request facts the strategies may use to fill gaps or synthesize data."""

    destination: str = "Destination"
    days: int = 1
    start_date: Optional[date] = None
    currency: str = "INR"
    travelers: int = 1
    target_budget: Optional[float] = None
    interests: Tuple[str, ...] = ()
    travel_style: Optional[str] = None
    season: Optional[str] = None
    explicit_destination: bool = False
    extras: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class Strategy(Generic[T]):
    name: str
    run: Callable[[str, ExtractionContext], Optional[T]]


@dataclass(frozen=True)
class Schema(Generic[T]):
    name: str
    strategies: Tuple[Strategy[T], ...]
    preprocessors: Tuple[Callable[[str], str], ...] = (strip_fences,)


@dataclass(frozen=True)
class Extraction(Generic[T]):
    data: T
    strategy: str
    text: str

    @property
    def synthetic(self) -> bool:
        return self.strategy == SYNTHETIC


SYNTHETIC = "synthetic"

MARKUP_PREPROCESSORS: Tuple[Callable[[str], str], ...] = (strip_fences, repair_formatting, sanitize_markup)
JSON_PREPROCESSORS: Tuple[Callable[[str], str], ...] = (strip_fences,)


def context_for(request: Any, *, destination: Optional[str] = None, intent: Any = None) -> ExtractionContext:
    """Build an :class:`ExtractionContext` from a ``TripRequest`` (and optional intent)."""

    name = destination or request.destination or request.region or "Destination"
    interests = tuple(request.interests or (intent.priority_interests if intent is not None else ()))
    travel_style = request.travel_style or (intent.travel_style if intent is not None else None)
    return ExtractionContext(
        destination=name,
        days=request.trip_days,
        start_date=request.start_date,
        currency=request.currency,
        travelers=request.travelers,
        target_budget=request.budget,
        interests=interests,
        travel_style=travel_style,
        season=request.season,
        explicit_destination=request.has_destination,
    )


def ensure_text(raw: Any) -> str:
    if not isinstance(raw, str):
        raise ExtractionError(f"Cannot extract from {type(raw).__name__}; expected text")
    if not raw.strip():
        raise ExtractionError("Cannot extract from empty text")
    return raw


class ExtractionEngine:
    """Run a named schema's strategies over raw model output."""

    def __init__(self, schemas: Optional[Iterable[Schema[Any]]] = None) -> None:
        if schemas is None:
            from extraction.schemas import default_schemas

            schemas = default_schemas()
        self._schemas: Dict[str, Schema[Any]] = {schema.name: schema for schema in schemas}

    @property
    def schema_names(self) -> Tuple[str, ...]:
        return tuple(self._schemas)

    def prepare(self, raw: Any, schema_name: str) -> str:
        """Apply the schema's preprocessors and return the cleaned text."""

        text = ensure_text(raw)
        for step in self._schema(schema_name).preprocessors:
            text = step(text)
        return text

    def extract(self, raw: Any, schema_name: str, context: Optional[ExtractionContext] = None) -> Extraction[Any]:
        schema = self._schema(schema_name)
        context = context or ExtractionContext()
        text = self.prepare(raw, schema_name)

        for strategy in schema.strategies:
            try:
                data = strategy.run(text, context)
            except Exception as exc:
                logger.warning("Extraction strategy %s/%s failed: %s", schema.name, strategy.name, exc)
                continue
            if data is not None:
                if strategy.name == SYNTHETIC:
                    logger.warning("Extraction for %s fell back to synthetic data", schema.name)
                else:
                    logger.debug("Extraction for %s succeeded with %s", schema.name, strategy.name)
                return Extraction(data=data, strategy=strategy.name, text=text)

        raise ExtractionError(f"No extraction strategy produced data for schema '{schema.name}'")

    def _schema(self, name: str) -> Schema[Any]:
        try:
            return self._schemas[name]
        except KeyError:
            raise ExtractionError(f"Unknown extraction schema: {name}") from None


__all__ = [
    "Extraction",
    "ExtractionContext",
    "ExtractionEngine",
    "ExtractionError",
    "JSON_PREPROCESSORS",
    "MARKUP_PREPROCESSORS",
    "SYNTHETIC",
    "Schema",
    "Strategy",
    "context_for",
    "ensure_text",
]

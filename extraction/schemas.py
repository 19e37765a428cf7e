"""Registry of the schemas the planning stages extract."""
from __future__ import annotations

from typing import Any, List

from extraction.destination import DESTINATION_SCHEMA
from extraction.engine import Schema
from extraction.itinerary import ITINERARY_SCHEMA
from extraction.structured import BUDGET_SCHEMA, INTENT_SCHEMA, OPTIMIZER_SCHEMA


def default_schemas() -> List[Schema[Any]]:
    return [DESTINATION_SCHEMA, ITINERARY_SCHEMA, INTENT_SCHEMA, BUDGET_SCHEMA, OPTIMIZER_SCHEMA]


__all__ = ["default_schemas"]

"""JSON-answer schemas: intent analysis, budget estimate, plan optimizations."""
from __future__ import annotations

import re
from typing import Any, Dict, List, Optional

from extraction.engine import (
    JSON_PREPROCESSORS,
    SYNTHETIC,
    ExtractionContext,
    Schema,
    Strategy,
)
from extraction.json_payload import mine_labelled_values, parse_amount, parse_json_payload
from workflows.state import (
    BUDGET_CATEGORIES,
    AlternativeActivity,
    BudgetBreakdown,
    Intent,
    OptimizationReport,
    OptimizationSuggestion,
)

INTENT_SCHEMA_NAME = "intent"
BUDGET_SCHEMA_NAME = "budget"
OPTIMIZER_SCHEMA_NAME = "optimizer"

BUDGET_SPLIT: Dict[str, float] = {
    "accommodation": 0.40,
    "transportation": 0.30,
    "food": 0.15,
    "activities": 0.10,
    "miscellaneous": 0.05,
}

# Synonyms the model uses for each canonical budget category.
_CATEGORY_ALIASES: Dict[str, tuple] = {
    "accommodation": ("accommodation", "lodging", "hotel", "hotels", "stay"),
    "transportation": ("transportation", "transport", "travel", "transit"),
    "food": ("food", "dining", "meals", "food & dining"),
    "activities": ("activities", "attractions", "sightseeing", "activities & attractions"),
    "miscellaneous": ("miscellaneous", "misc", "other", "others", "extras"),
}

_BUDGET_CATEGORY_VALUES = {"budget", "moderate", "luxury"}
_COMPLEXITY_VALUES = {"simple", "moderate", "complex"}


def _get(payload: Dict[str, Any], *keys: str) -> Any:
    for key in keys:
        if key in payload and payload[key] not in (None, ""):
            return payload[key]
    return None


def _string_list(value: Any) -> List[str]:
    if isinstance(value, str):
        return [part.strip() for part in value.split(",") if part.strip()]
    if isinstance(value, (list, tuple)):
        return [str(item).strip() for item in value if str(item).strip()]
    return []


def budget_category_for(amount: Optional[float]) -> str:
    """Budget thresholds: under 20k budget, under 50k moderate, otherwise luxury."""
    if amount is None:
        return "moderate"
    if amount < 20000:
        return "budget"
    if amount < 50000:
        return "moderate"
    return "luxury"


# ---------------------------------------------------------------------------
# Intent
# ---------------------------------------------------------------------------

def fallback_intent(context: ExtractionContext) -> Intent:
    return Intent(
        purpose="leisure",
        travel_style=context.travel_style or "cultural",
        priority_interests=list(context.interests),
        budget_category=budget_category_for(context.target_budget),
        estimated_days=context.days,
        complexity="moderate",
    )


def _intent_from_mapping(payload: Dict[str, Any], context: ExtractionContext) -> Optional[Intent]:
    purpose = _get(payload, "purpose")
    style = _get(payload, "travelStyle", "travel_style", "style")
    category = str(_get(payload, "budgetCategory", "budget_category") or "").strip().lower()
    complexity = str(_get(payload, "complexity") or "").strip().lower()
    interests = _string_list(_get(payload, "priorityInterests", "priority_interests", "interests"))
    requirements = _string_list(_get(payload, "specialRequirements", "special_requirements"))

    if not any([purpose, style, category, interests]):
        return None

    fallback = fallback_intent(context)
    return Intent(
        purpose=str(purpose).strip().lower() if purpose else fallback.purpose,
        travel_style=str(style).strip().lower() if style else fallback.travel_style,
        priority_interests=interests or fallback.priority_interests,
        budget_category=category if category in _BUDGET_CATEGORY_VALUES else fallback.budget_category,
        special_requirements=requirements,
        # Trip length comes from the request dates; the model's guess is ignored.
        estimated_days=context.days,
        complexity=complexity if complexity in _COMPLEXITY_VALUES else "moderate",
    )


def parse_intent_json(text: str, context: ExtractionContext) -> Optional[Intent]:
    payload = parse_json_payload(text)
    return _intent_from_mapping(payload, context) if payload else None


def mine_intent_text(text: str, context: ExtractionContext) -> Optional[Intent]:
    values = mine_labelled_values(
        text, ["purpose", "travelStyle", "travel style", "budgetCategory", "budget category", "complexity"]
    )
    if not values:
        return None
    mapped = {
        "purpose": values.get("purpose"),
        "travelStyle": values.get("travelStyle") or values.get("travel style"),
        "budgetCategory": values.get("budgetCategory") or values.get("budget category"),
        "complexity": values.get("complexity"),
    }
    return _intent_from_mapping(mapped, context)


# ---------------------------------------------------------------------------
# Budget
# ---------------------------------------------------------------------------

def _canonical_category(key: str) -> Optional[str]:
    lowered = key.strip().lower()
    for category, aliases in _CATEGORY_ALIASES.items():
        if lowered in aliases:
            return category
    return None


def _budget_suggestions(raw: Any) -> List[OptimizationSuggestion]:
    suggestions: List[OptimizationSuggestion] = []
    if not isinstance(raw, list):
        return suggestions
    for item in raw:
        if isinstance(item, str) and item.strip():
            suggestions.append(OptimizationSuggestion(suggestion=item.strip()))
        elif isinstance(item, dict) and _get(item, "suggestion"):
            suggestions.append(
                OptimizationSuggestion(
                    category=str(_get(item, "category", "type") or "general"),
                    suggestion=str(item["suggestion"]),
                    impact=str(_get(item, "impact") or "medium"),
                    estimated_savings=parse_amount(
                        _get(item, "potentialSavings", "estimatedSavings", "estimated_savings")
                    )
                    or 0.0,
                )
            )
    return suggestions


def parse_budget_json(text: str, context: ExtractionContext) -> Optional[BudgetBreakdown]:
    payload = parse_json_payload(text)
    if not payload:
        return None
    raw_breakdown = payload.get("breakdown")
    source = raw_breakdown if isinstance(raw_breakdown, dict) else payload
    breakdown: Dict[str, float] = {}
    for key, value in source.items():
        category = _canonical_category(str(key))
        amount = parse_amount(value)
        if category and amount is not None and amount >= 0:
            breakdown[category] = breakdown.get(category, 0.0) + amount
    if not breakdown:
        return None
    return BudgetBreakdown(
        breakdown=breakdown,
        currency=str(payload.get("currency") or context.currency).upper(),
        optimizations=_budget_suggestions(payload.get("optimizations")),
    )


def mine_budget_text(text: str, context: ExtractionContext) -> Optional[BudgetBreakdown]:
    breakdown: Dict[str, float] = {}
    for category, aliases in _CATEGORY_ALIASES.items():
        alternation = "|".join(re.escape(alias) for alias in sorted(aliases, key=len, reverse=True))
        match = re.search(
            r"\b(?:" + alternation + r")\b[^\n\d]{0,20}?[:=\-–]\s*[^\d\n]{0,6}(\d[\d,]*(?:\.\d+)?)",
            text,
            re.IGNORECASE,
        )
        if match:
            amount = parse_amount(match.group(1))
            if amount is not None:
                breakdown[category] = amount
    if not breakdown:
        return None
    return BudgetBreakdown(breakdown=breakdown, currency=context.currency)


def fallback_budget(context: ExtractionContext, target: float) -> BudgetBreakdown:
    breakdown = {category: round(target * share, 2) for category, share in BUDGET_SPLIT.items()}
    return BudgetBreakdown(breakdown=breakdown, currency=context.currency, target=target)


def _synthesize_budget(text: str, context: ExtractionContext) -> BudgetBreakdown:
    return fallback_budget(context, context.target_budget or 0.0)


# ---------------------------------------------------------------------------
# Optimizer
# ---------------------------------------------------------------------------

def parse_optimizer_json(text: str, context: ExtractionContext) -> Optional[OptimizationReport]:
    payload = parse_json_payload(text)
    if not payload:
        return None

    optimizations: List[OptimizationSuggestion] = []
    for item in payload.get("optimizations") or []:
        if not isinstance(item, dict) or not _get(item, "suggestion"):
            continue
        optimizations.append(
            OptimizationSuggestion(
                category=str(_get(item, "type", "category") or "general"),
                suggestion=str(item["suggestion"]),
                impact=str(_get(item, "impact") or "medium"),
                estimated_savings=parse_amount(_get(item, "estimatedSavings", "estimated_savings")) or 0.0,
                estimated_time_saved=parse_amount(_get(item, "estimatedTimeSaved", "estimated_time_saved")) or 0.0,
            )
        )

    alternatives: List[AlternativeActivity] = []
    for item in payload.get("alternativeActivities") or payload.get("alternative_activities") or []:
        if not isinstance(item, dict) or not _get(item, "alternative"):
            continue
        alternatives.append(
            AlternativeActivity(
                day=int(parse_amount(_get(item, "day")) or 1),
                original=str(_get(item, "original") or ""),
                alternative=str(item["alternative"]),
                reason=str(_get(item, "reason") or ""),
                cost_difference=parse_amount(_get(item, "costDifference", "cost_difference")) or 0.0,
            )
        )

    route = payload.get("routeOptimization") or payload.get("route_optimization") or {}
    route = route if isinstance(route, dict) else {}
    recommendations = _string_list(payload.get("finalRecommendations") or payload.get("recommendations"))

    if not any([optimizations, alternatives, recommendations, route.get("changes")]):
        return None
    return OptimizationReport(
        optimizations=optimizations,
        alternative_activities=alternatives,
        route_suggested=bool(route.get("suggested")),
        route_changes=_string_list(route.get("changes")),
        recommendations=recommendations,
    )


def mine_optimizer_text(text: str, context: ExtractionContext) -> Optional[OptimizationReport]:
    suggestions = []
    for line in text.splitlines():
        match = re.match(r"^\s*(?:[-*•]|\d+[.)])\s+(.{10,})$", line)
        if match:
            suggestions.append(OptimizationSuggestion(suggestion=match.group(1).strip()))
    if not suggestions:
        return None
    return OptimizationReport(optimizations=suggestions[:10])


def _synthesize_optimizer(text: str, context: ExtractionContext) -> OptimizationReport:
    return OptimizationReport()


INTENT_SCHEMA: Schema[Intent] = Schema(
    name=INTENT_SCHEMA_NAME,
    preprocessors=JSON_PREPROCESSORS,
    strategies=(
        Strategy("json", parse_intent_json),
        Strategy("labelled-values", mine_intent_text),
        Strategy(SYNTHETIC, lambda text, context: fallback_intent(context)),
    ),
)

BUDGET_SCHEMA: Schema[BudgetBreakdown] = Schema(
    name=BUDGET_SCHEMA_NAME,
    preprocessors=JSON_PREPROCESSORS,
    strategies=(
        Strategy("json", parse_budget_json),
        Strategy("labelled-values", mine_budget_text),
        Strategy(SYNTHETIC, _synthesize_budget),
    ),
)

OPTIMIZER_SCHEMA: Schema[OptimizationReport] = Schema(
    name=OPTIMIZER_SCHEMA_NAME,
    preprocessors=JSON_PREPROCESSORS,
    strategies=(
        Strategy("json", parse_optimizer_json),
        Strategy("bullets", mine_optimizer_text),
        Strategy(SYNTHETIC, _synthesize_optimizer),
    ),
)


__all__ = [
    "BUDGET_CATEGORIES",
    "BUDGET_SCHEMA",
    "BUDGET_SPLIT",
    "INTENT_SCHEMA",
    "OPTIMIZER_SCHEMA",
    "budget_category_for",
    "fallback_budget",
    "fallback_intent",
]

"""Prompt templates for the trip planner stages.

Each stage agent keeps its prompt in ``<stage>.md`` beside this module.
Literal braces in those files are doubled because they are rendered with
``str.format``. Setting ``TRIP_PLANNER_PROMPT_<STAGE>`` replaces a template at
runtime: a readable file path is loaded, any other value is used verbatim.
"""
from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from string import Formatter
from typing import Any

__all__ = ["OVERRIDE_PREFIX", "PromptTemplate", "load_prompt_template", "prompt_names"]

PROMPT_DIR = Path(__file__).resolve().parent
OVERRIDE_PREFIX = "TRIP_PLANNER_PROMPT_"


@dataclass(frozen=True)
class PromptTemplate:
    """Stage prompt with named ``{field}`` slots."""

    text: str
    source: str = "bundled"

    @property
    def placeholders(self) -> frozenset[str]:
        return frozenset(field for _, field, _, _ in Formatter().parse(self.text) if field)

    def format(self, **values: Any) -> str:
        """Fill every slot; extra values are ignored, missing ones raise ``KeyError``."""
        missing = self.placeholders.difference(values)
        if missing:
            raise KeyError(f"Prompt is missing values for: {', '.join(sorted(missing))}")
        return self.text.format(**values)


def _override(stage: str) -> PromptTemplate | None:
    value = os.getenv(f"{OVERRIDE_PREFIX}{stage.upper()}")
    if not value:
        return None
    candidate = Path(value)
    if candidate.is_file():
        return PromptTemplate(candidate.read_text(encoding="utf-8"), source=str(candidate))
    return PromptTemplate(value, source="environment")


@lru_cache(maxsize=None)
def load_prompt_template(stage: str) -> PromptTemplate:
    """Template for ``stage`` (``"intent"``, ``"itinerary"``...), override first.

    Results are cached per stage; call ``load_prompt_template.cache_clear()``
    after changing an override.
    """

    template = _override(stage)
    if template is not None:
        return template
    path = PROMPT_DIR / f"{stage}.md"
    if not path.is_file():
        raise FileNotFoundError(f"No prompt template for stage {stage!r} at {path}")
    return PromptTemplate(path.read_text(encoding="utf-8"))


def prompt_names() -> list[str]:
    """Stages that ship a bundled template."""
    return sorted(path.stem for path in PROMPT_DIR.glob("*.md"))
